"""
Smoothing and calibration helpers used when rendering captures.

Fractional-octave smoothing averages each bin over a window of 1/N octave
centred on it. Magnitudes are averaged in the power domain; phase is
unwrapped, averaged and wrapped back to (-180, 180].
"""

from typing import Sequence
import numpy as np

from .response import FrequencyResponse


def _octave_windows(freq: np.ndarray, octave_fraction: int):
    """Yield (index, lo, hi) slice bounds of the 1/N octave window around each bin."""
    half_width = 2.0 ** (1.0 / (2.0 * octave_fraction))
    lows = np.searchsorted(freq, freq / half_width, side="left")
    highs = np.searchsorted(freq, freq * half_width, side="right")
    for i in range(len(freq)):
        yield i, lows[i], max(highs[i], i + 1)


def apply_smoothing(frequencies: Sequence[float], magnitudes: Sequence[float],
                    octave_fraction: int) -> np.ndarray:
    """
    Apply 1/N-octave smoothing to a magnitude curve.

    Args:
        frequencies: Frequency array in Hz (increasing)
        magnitudes: Magnitude array in dB
        octave_fraction: N in 1/N octave (1 = full octave, 3 = third octave, ...)

    Returns:
        Smoothed magnitude array in dB, same length as the input

    Raises:
        ValueError: If parameters are invalid
    """
    freq = np.asarray(frequencies, dtype=np.float64)
    mag = np.asarray(magnitudes, dtype=np.float64)

    if len(freq) != len(mag):
        raise ValueError("Frequency and magnitude arrays must have same length")
    if octave_fraction < 1:
        raise ValueError("Octave fraction must be at least 1")

    smoothed = mag.copy()
    power = np.power(10.0, mag / 10.0)
    for i, lo, hi in _octave_windows(freq, octave_fraction):
        if freq[i] <= 0:
            continue
        smoothed[i] = 10.0 * np.log10(np.mean(power[lo:hi]) + 1e-20)
    return smoothed


def apply_phase_smoothing(frequencies: Sequence[float], phases: Sequence[float],
                          octave_fraction: int) -> np.ndarray:
    """1/N-octave smoothing of a phase curve in degrees."""
    freq = np.asarray(frequencies, dtype=np.float64)
    phase = np.asarray(phases, dtype=np.float64)

    if len(freq) != len(phase):
        raise ValueError("Frequency and phase arrays must have same length")
    if octave_fraction < 1:
        raise ValueError("Octave fraction must be at least 1")

    unwrapped = np.unwrap(np.deg2rad(phase))
    smoothed = unwrapped.copy()
    for i, lo, hi in _octave_windows(freq, octave_fraction):
        if freq[i] <= 0:
            continue
        smoothed[i] = np.mean(unwrapped[lo:hi])

    wrapped = np.rad2deg(np.angle(np.exp(1j * smoothed)))
    # np.angle returns [-180, 180]; fold -180 onto 180
    wrapped[wrapped <= -180.0] += 360.0
    return wrapped


def interpolate_calibration(curve: FrequencyResponse, frequencies: Sequence[float]) -> np.ndarray:
    """
    Interpolate a calibration curve onto another frequency grid, linearly on
    a log-frequency axis. Values outside the curve hold its edge values.
    """
    target = np.asarray(frequencies, dtype=np.float64)
    log_target = np.log(np.clip(target, curve.frequencies[0], curve.frequencies[-1]))
    return np.interp(log_target, np.log(curve.frequencies), curve.magnitudes)


def apply_calibration(response: FrequencyResponse, curve: FrequencyResponse) -> FrequencyResponse:
    """Subtract a calibration curve from a response. Phase is left untouched."""
    correction = interpolate_calibration(curve, response.frequencies)
    return FrequencyResponse(response.frequencies.copy(),
                             response.magnitudes - correction,
                             response.phases.copy())
