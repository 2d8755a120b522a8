import numpy as np
import pytest

from capturelab.engine import (AlsaCaptureEngine, CaptureEngine, generate_log_sweep, generate_pink_noise,
                               generate_white_noise, read_wav, route_to_output, transfer_function,
                               write_wav)

RATE = 8000


def test_settings_are_validated():
    engine = CaptureEngine()

    engine.set_capture_volume(150)
    engine.set_output_volume(-3)
    engine.set_output_device("")

    assert (engine.capture_volume, engine.output_volume, engine.output_device) == (100, 0, "default")
    with pytest.raises(ValueError):
        engine.set_signal_type("chirp")
    with pytest.raises(ValueError):
        engine.set_output_channel("center")
    with pytest.raises(ValueError):
        engine.set_sweep_duration(0)


def test_start_capture_never_raises():
    result = CaptureEngine().start_capture("hw:0")
    assert not result.success


def test_disposed_engine_refuses_to_capture():
    engine = CaptureEngine()
    engine.dispose()
    result = engine.start_capture("default")
    assert not result.success
    assert "disposed" in result.error


def test_signals_have_requested_length_and_level():
    sweep = generate_log_sweep(20, 4000, 1.0, RATE)
    white = generate_white_noise(1.0, RATE, rng=np.random.default_rng(0))
    pink = generate_pink_noise(1.0, RATE, rng=np.random.default_rng(0))

    for signal in (sweep, white, pink):
        assert len(signal) == RATE
        assert np.max(np.abs(signal)) <= 0.5 + 1e-9
        # Faded in and out
        assert signal[0] == 0.0
        assert signal[-1] == 0.0


def test_route_to_output():
    signal = np.ones(4)

    left = route_to_output(signal, "left", 50)
    right = route_to_output(signal, "right", 100)
    both = route_to_output(signal, "both", 100)

    assert left.shape == (4, 2)
    np.testing.assert_array_equal(left[:, 0], 0.5)
    np.testing.assert_array_equal(left[:, 1], 0.0)
    np.testing.assert_array_equal(right[:, 0], 0.0)
    np.testing.assert_array_equal(both[:, 1], 1.0)


def test_wav_roundtrip(tmp_path):
    path = str(tmp_path / "x.wav")
    samples = np.column_stack((np.linspace(-0.5, 0.5, 100), np.zeros(100)))

    write_wav(path, samples, RATE)
    loaded, rate = read_wav(path)

    assert rate == RATE
    assert loaded.shape == (100, 2)
    np.testing.assert_allclose(loaded, samples, atol=1e-4)


def test_transfer_function_of_delayed_attenuated_copy():
    reference = generate_log_sweep(20, 4000, 1.0, RATE)
    recorded = np.concatenate((np.zeros(100), 0.5 * reference, np.zeros(200)))

    response = transfer_function(reference, recorded, RATE, points_per_octave=6, f_min=50, f_max=3000)

    assert np.all(np.diff(response.frequencies) > 0)
    np.testing.assert_allclose(response.magnitudes, 20 * np.log10(0.5), atol=0.2)
    np.testing.assert_allclose(response.phases, 0.0, atol=1.0)


def test_analyze_builds_channel_responses():
    engine = AlsaCaptureEngine(f_start=50, f_end=3000, points_per_octave=6)
    engine.set_sample_rate(RATE)
    reference = generate_log_sweep(20, 4000, 1.0, RATE)
    samples = np.column_stack((reference, 0.25 * reference))

    result = engine.analyze(reference, samples)

    assert result.success
    assert set(result.channels) == {"left", "right"}
    assert np.mean(result.channels["left"].magnitudes) > np.mean(result.channels["right"].magnitudes) + 10


def test_analyze_silent_recording_fails():
    engine = AlsaCaptureEngine()
    result = engine.analyze(np.ones(10), np.zeros((10, 2)))
    assert not result.success
    assert "no microphone" in result.error.lower()
