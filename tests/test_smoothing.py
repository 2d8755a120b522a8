import numpy as np
import pytest

from capturelab.response import FrequencyResponse
from capturelab.smoothing import (apply_calibration, apply_phase_smoothing, apply_smoothing,
                                  interpolate_calibration)

from conftest import FREQS


def test_flat_curve_stays_flat():
    smoothed = apply_smoothing(FREQS, np.full(len(FREQS), -4.0), 3)
    np.testing.assert_allclose(smoothed, -4.0, atol=1e-9)


def test_smoothing_reduces_ripple():
    ripple = 6.0 * np.sin(np.arange(len(FREQS)))

    smoothed = apply_smoothing(FREQS, ripple, 1)

    assert np.std(smoothed) < np.std(ripple)
    assert len(smoothed) == len(FREQS)


def test_smoothing_rejects_bad_input():
    with pytest.raises(ValueError):
        apply_smoothing(FREQS, np.zeros(3), 3)
    with pytest.raises(ValueError):
        apply_smoothing(FREQS, np.zeros(len(FREQS)), 0)


def test_phase_smoothing_handles_wrap_and_range():
    # A constant phase sitting right on the wrap point
    phases = np.where(np.arange(len(FREQS)) % 2, 179.0, -179.0)

    smoothed = apply_phase_smoothing(FREQS, phases, 3)

    assert np.all(smoothed > -180.0)
    assert np.all(smoothed <= 180.0)
    # Near +-180, not averaged towards 0
    assert np.all(np.abs(smoothed) > 170.0)


def test_calibration_interpolates_on_log_axis_and_holds_edges():
    curve = FrequencyResponse([100.0, 1000.0], [0.0, 10.0])

    values = interpolate_calibration(curve, [10.0, 100.0, np.sqrt(100.0 * 1000.0), 1000.0, 5000.0])

    np.testing.assert_allclose(values, [0.0, 0.0, 5.0, 10.0, 10.0])


def test_apply_calibration_subtracts_and_keeps_phase():
    response = FrequencyResponse([100.0, 1000.0], [3.0, 3.0], [10.0, 20.0])
    curve = FrequencyResponse([100.0, 1000.0], [1.0, -1.0])

    corrected = apply_calibration(response, curve)

    assert corrected.magnitudes.tolist() == [2.0, 4.0]
    assert corrected.phases.tolist() == [10.0, 20.0]
    assert response.magnitudes.tolist() == [3.0, 3.0]
