#!/usr/bin/env python3
"""
Capture engine for capturelab.

Plays a test signal (log sine sweep, white or pink noise) on an ALSA output
while recording the response with arecord, then computes the transfer
function of the measured path on a logarithmic frequency grid.
"""

import logging
import os
import subprocess
import tempfile
import threading
import time
import wave
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .response import FrequencyResponse

logger = logging.getLogger(__name__)

SIGNAL_TYPES = ("sweep", "white", "pink")
OUTPUT_CHANNELS = ("left", "right", "both", "default")

DEFAULT_SWEEP_DURATION = 10
DEFAULT_SAMPLE_RATE = 48000


@dataclass
class CaptureResult:
    """Outcome of a single capture run."""
    success: bool
    frequencies: List[float] = field(default_factory=list)
    magnitudes: List[float] = field(default_factory=list)
    phases: List[float] = field(default_factory=list)
    error: Optional[str] = None
    # Per-input-channel responses keyed by "left" / "right" when recorded in stereo
    channels: Dict[str, FrequencyResponse] = field(default_factory=dict)

    @classmethod
    def failed(cls, error: str) -> "CaptureResult":
        return cls(success=False, error=error)

    @classmethod
    def from_response(cls, response: FrequencyResponse,
                      channels: Optional[Dict[str, FrequencyResponse]] = None) -> "CaptureResult":
        return cls(
            success=True,
            frequencies=response.frequencies.tolist(),
            magnitudes=response.magnitudes.tolist(),
            phases=response.phases.tolist(),
            channels=dict(channels or {}),
        )

    def response(self) -> FrequencyResponse:
        return FrequencyResponse(self.frequencies, self.magnitudes, self.phases)


class CaptureEngine:
    """
    Base class holding the capture settings.

    Subclasses implement _capture(). start_capture() never raises: any
    exception is turned into a failed CaptureResult carrying its message.
    """

    def __init__(self):
        self.sweep_duration = DEFAULT_SWEEP_DURATION
        self.output_channel = "both"
        self.sample_rate = DEFAULT_SAMPLE_RATE
        self.signal_type = "sweep"
        self.capture_volume = 70
        self.output_volume = 50
        self.output_device = "default"
        self._stop_event = threading.Event()
        self._disposed = False

    def set_sweep_duration(self, seconds: int):
        seconds = int(seconds)
        if seconds <= 0:
            raise ValueError("Sweep duration must be positive")
        self.sweep_duration = seconds

    def set_output_channel(self, channel: str):
        if channel not in OUTPUT_CHANNELS:
            raise ValueError(f"Output channel must be one of: {', '.join(OUTPUT_CHANNELS)}")
        self.output_channel = channel

    def set_sample_rate(self, sample_rate: int):
        sample_rate = int(sample_rate)
        if sample_rate <= 0:
            raise ValueError("Sample rate must be positive")
        self.sample_rate = sample_rate

    def set_signal_type(self, signal_type: str):
        if signal_type not in SIGNAL_TYPES:
            raise ValueError(f"Signal type must be one of: {', '.join(SIGNAL_TYPES)}")
        self.signal_type = signal_type

    def set_capture_volume(self, volume: int):
        self.capture_volume = _clamp_volume(volume)

    def set_output_volume(self, volume: int):
        self.output_volume = _clamp_volume(volume)

    def set_output_device(self, device: str):
        self.output_device = device or "default"

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start_capture(self, device_id: str) -> CaptureResult:
        if self._disposed:
            return CaptureResult.failed("Capture engine has been disposed")
        self._stop_event.clear()
        try:
            return self._capture(device_id)
        except Exception as e:
            logger.error(f"Capture on {device_id} failed: {e}")
            return CaptureResult.failed(str(e))

    def _capture(self, device_id: str) -> CaptureResult:
        raise NotImplementedError

    def stop(self):
        self._stop_event.set()

    def dispose(self):
        self.stop()
        self._disposed = True


def _clamp_volume(volume) -> int:
    return max(0, min(100, int(volume)))


def generate_log_sweep(f_start: float, f_end: float, duration: float, sample_rate: int,
                       amplitude: float = 0.5) -> np.ndarray:
    """
    Logarithmic sine sweep, f(t) = f_start * (f_end/f_start)^(t/T), with a
    10 ms fade at both ends.
    """
    n = int(duration * sample_rate)
    t = np.arange(n) / sample_rate
    ratio = f_end / f_start
    log_ratio = np.log(ratio)
    phase = 2 * np.pi * f_start * duration / log_ratio * (np.power(ratio, t / duration) - 1)
    signal = amplitude * np.sin(phase)
    _apply_fade(signal, sample_rate)
    return signal


def generate_white_noise(duration: float, sample_rate: int, amplitude: float = 0.5,
                         rng: Optional[np.random.Generator] = None) -> np.ndarray:
    rng = rng or np.random.default_rng()
    signal = rng.uniform(-1.0, 1.0, int(duration * sample_rate)) * amplitude
    _apply_fade(signal, sample_rate)
    return signal


def generate_pink_noise(duration: float, sample_rate: int, amplitude: float = 0.5,
                        rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Pink noise by shaping white noise with 1/sqrt(f) in the frequency domain."""
    rng = rng or np.random.default_rng()
    n = int(duration * sample_rate)
    spectrum = np.fft.rfft(rng.standard_normal(n))
    scale = np.ones(len(spectrum))
    scale[1:] = 1.0 / np.sqrt(np.arange(1, len(spectrum)))
    scale[0] = 0.0
    signal = np.fft.irfft(spectrum * scale, n)
    peak = np.max(np.abs(signal)) if n else 0.0
    if peak > 0:
        signal = signal / peak * amplitude
    _apply_fade(signal, sample_rate)
    return signal


def _apply_fade(signal: np.ndarray, sample_rate: int, seconds: float = 0.01):
    fade = min(int(seconds * sample_rate), len(signal) // 2)
    if fade > 0:
        signal[:fade] *= np.linspace(0, 1, fade)
        signal[-fade:] *= np.linspace(1, 0, fade)


def route_to_output(signal: np.ndarray, output_channel: str, volume: int) -> np.ndarray:
    """Build a stereo (n, 2) buffer carrying the signal on the requested channel(s)."""
    gain = volume / 100.0
    silent = np.zeros_like(signal)
    if output_channel == "left":
        stereo = np.column_stack((signal, silent))
    elif output_channel == "right":
        stereo = np.column_stack((silent, signal))
    else:
        stereo = np.column_stack((signal, signal))
    return stereo * gain


def write_wav(path: str, samples: np.ndarray, sample_rate: int):
    """Write float samples in [-1, 1] as 16 bit PCM."""
    data = np.clip(samples, -1.0, 1.0)
    channels = 1 if data.ndim == 1 else data.shape[1]
    with wave.open(path, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes((data * 32767).astype("<i2").tobytes())


def read_wav(path: str) -> Tuple[np.ndarray, int]:
    """Read a 16 bit PCM WAV file as float samples of shape (n, channels)."""
    with wave.open(path, "rb") as wav_file:
        if wav_file.getsampwidth() != 2:
            raise RuntimeError(f"Unsupported sample width: {wav_file.getsampwidth()} bytes")
        channels = wav_file.getnchannels()
        sample_rate = wav_file.getframerate()
        raw = wav_file.readframes(wav_file.getnframes())
    data = np.frombuffer(raw, dtype="<i2").astype(np.float64) / 32768.0
    return data.reshape(-1, channels), sample_rate


def estimate_delay(reference: np.ndarray, recorded: np.ndarray) -> int:
    """Samples by which ``recorded`` lags ``reference``, from the cross-correlation peak."""
    n = len(reference) + len(recorded)
    size = 1 << int(np.ceil(np.log2(n)))
    correlation = np.fft.irfft(np.fft.rfft(recorded, size) * np.conj(np.fft.rfft(reference, size)), size)
    lag = int(np.argmax(np.abs(correlation[:len(recorded)])))
    return lag


def transfer_function(reference: np.ndarray, recorded: np.ndarray, sample_rate: int,
                      points_per_octave: int = 24, f_min: float = 20.0,
                      f_max: float = 20000.0) -> FrequencyResponse:
    """
    Transfer function recorded/reference summarized on a log frequency grid.

    The recording is first aligned to the reference so the phase does not
    carry the playback latency. Each log bucket averages the complex
    response of the FFT bins it covers.
    """
    delay = estimate_delay(reference, recorded)
    aligned = recorded[delay:delay + len(reference)]
    if len(aligned) < len(reference):
        aligned = np.pad(aligned, (0, len(reference) - len(aligned)))

    size = 1 << int(np.ceil(np.log2(max(len(reference), 2))))
    ref_spectrum = np.fft.rfft(reference, size)
    rec_spectrum = np.fft.rfft(aligned, size)
    frequencies = np.fft.rfftfreq(size, 1.0 / sample_rate)

    ref_power = np.abs(ref_spectrum) ** 2
    regularization = 1e-6 * np.max(ref_power) if ref_power.size else 0.0
    h = rec_spectrum * np.conj(ref_spectrum) / (ref_power + regularization + 1e-30)

    f_min = max(f_min, frequencies[1])
    f_max = min(f_max, frequencies[-1])
    if f_min >= f_max:
        raise RuntimeError("No frequency data available in the measured range")

    n_points = max(1, int(np.log2(f_max / f_min) * points_per_octave))
    x = (f_max / f_min) ** (1.0 / n_points)

    out_freqs, out_mags, out_phases = [], [], []
    for i in range(n_points):
        fr_start = f_min * x ** i
        fr_end = f_min * x ** (i + 1)
        mask = (frequencies >= fr_start) & (frequencies < fr_end)
        if not np.any(mask):
            # Bucket narrower than the FFT resolution: take the nearest bin
            center = np.sqrt(fr_start * fr_end)
            mask = np.zeros_like(frequencies, dtype=bool)
            mask[int(np.argmin(np.abs(frequencies - center)))] = True
        value = np.mean(h[mask])
        out_freqs.append((fr_end - fr_start) / np.log(fr_end / fr_start))
        out_mags.append(20 * np.log10(np.abs(value) + 1e-20))
        out_phases.append(np.degrees(np.angle(value)))

    return FrequencyResponse(out_freqs, out_mags, out_phases)


class AlsaCaptureEngine(CaptureEngine):
    """
    Capture engine driving ALSA through aplay/arecord.

    ``device_id`` passed to start_capture() is an ALSA PCM name such as
    "hw:1" or "default".
    """

    def __init__(self, f_start: float = 20.0, f_end: float = 20000.0,
                 points_per_octave: int = 24, temp_dir: Optional[str] = None):
        super().__init__()
        self.f_start = f_start
        self.f_end = f_end
        self.points_per_octave = points_per_octave
        self.temp_dir = temp_dir
        self._processes: List[subprocess.Popen] = []

    def generate_signal(self) -> np.ndarray:
        if self.signal_type == "white":
            return generate_white_noise(self.sweep_duration, self.sample_rate)
        if self.signal_type == "pink":
            return generate_pink_noise(self.sweep_duration, self.sample_rate)
        return generate_log_sweep(self.f_start, self.f_end, self.sweep_duration, self.sample_rate)

    def _set_capture_volume(self, device_id: str):
        if not device_id.startswith("hw:"):
            return
        card = device_id[3:].split(",")[0]
        cmd = ["amixer", "-c", card, "sset", "Capture", f"{self.capture_volume}%"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
            if result.returncode != 0:
                logger.warning(f"Could not set capture volume on {device_id}: {result.stderr.strip()}")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not set capture volume on {device_id}: {e}")

    def _wait(self, process: subprocess.Popen, timeout: float) -> bool:
        """Wait for a process, polling the stop flag. False if stopped or timed out."""
        deadline = time.time() + timeout
        while process.poll() is None:
            if self.stopped or time.time() > deadline:
                process.terminate()
                process.wait(timeout=5)
                return False
            time.sleep(0.05)
        return True

    def _capture(self, device_id: str) -> CaptureResult:
        device = device_id or "default"
        reference = self.generate_signal()
        playback = route_to_output(reference, self.output_channel, self.output_volume)

        work_dir = tempfile.mkdtemp(prefix="capturelab_", dir=self.temp_dir)
        play_path = os.path.join(work_dir, "signal.wav")
        record_path = os.path.join(work_dir, "recording.wav")

        try:
            write_wav(play_path, playback, self.sample_rate)
            self._set_capture_volume(device)

            logger.info(f"Capturing {self.signal_type} for {self.sweep_duration}s: "
                        f"input {device}, output {self.output_device} ({self.output_channel})")

            # Record one extra second to cover playback latency
            record_cmd = ["arecord", "-D", device, "-f", "S16_LE", "-c", "2",
                          "-r", str(self.sample_rate), "-d", str(self.sweep_duration + 1),
                          record_path]
            play_cmd = ["aplay", "-D", self.output_device, play_path]

            recorder = subprocess.Popen(record_cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
            self._processes.append(recorder)
            player = subprocess.Popen(play_cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
            self._processes.append(player)

            timeout = self.sweep_duration + 10
            played = self._wait(player, timeout)
            recorded = self._wait(recorder, timeout)

            if self.stopped:
                return CaptureResult.failed("Capture stopped")
            if not played:
                return CaptureResult.failed(f"Playback on {self.output_device} timed out")
            if player.returncode != 0:
                return CaptureResult.failed(player.stderr.read().strip() or "Playback failed")
            if not recorded or recorder.returncode != 0:
                return CaptureResult.failed(recorder.stderr.read().strip() or "Recording failed")

            samples, _rate = read_wav(record_path)
            return self.analyze(reference, samples)
        finally:
            self._processes = []
            for path in (play_path, record_path):
                try:
                    os.unlink(path)
                except FileNotFoundError:
                    pass
            os.rmdir(work_dir)

    def analyze(self, reference: np.ndarray, samples: np.ndarray) -> CaptureResult:
        """Compute the combined and per-input-channel responses of a recording."""
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        if not np.any(samples):
            return CaptureResult.failed("Recording is silent, no microphone signal detected")

        combined = transfer_function(reference, samples.mean(axis=1), self.sample_rate,
                                     self.points_per_octave, self.f_start, self.f_end)
        channels = {}
        if samples.shape[1] >= 2:
            for index, name in enumerate(("left", "right")):
                channels[name] = transfer_function(reference, samples[:, index], self.sample_rate,
                                                   self.points_per_octave, self.f_start, self.f_end)

        logger.info(f"Captured {len(combined)} frequency points")
        return CaptureResult.from_response(combined, channels)

    def stop(self):
        super().stop()
        for process in list(self._processes):
            if process.poll() is None:
                process.terminate()
