"""
Complex-domain averaging of two frequency responses.

Averaging the dB values of two channels hides interference: two channels
that are 180 degrees apart cancel acoustically but their mean magnitude
looks flat. Averaging the complex values reproduces the cancellation.
"""

import numpy as np

from .errors import IncompatibleResponses
from .response import FrequencyResponse


def to_complex(response: FrequencyResponse) -> np.ndarray:
    """Magnitude (dB) and phase (degrees) to complex values."""
    amplitude = np.power(10.0, response.magnitudes / 20.0)
    return amplitude * np.exp(1j * np.deg2rad(response.phases))


def from_complex(frequencies: np.ndarray, values: np.ndarray) -> FrequencyResponse:
    """Complex values back to magnitude (dB, -inf on full cancellation) and phase (degrees)."""
    with np.errstate(divide="ignore"):
        magnitudes = 20.0 * np.log10(np.abs(values))
    phases = np.rad2deg(np.arctan2(values.imag, values.real))
    return FrequencyResponse(frequencies.copy(), magnitudes, phases)


def average_complex(a: FrequencyResponse, b: FrequencyResponse) -> FrequencyResponse:
    """
    Average two responses bin by bin as complex numbers.

    Args:
        a: First response, with phase
        b: Second response, with phase, on the same frequency grid

    Returns:
        Averaged response on the grid of ``a``

    Raises:
        IncompatibleResponses: If either response lacks phase or the grids differ
    """
    if not a.has_phase or not b.has_phase:
        raise IncompatibleResponses("Both responses must carry phase for complex averaging")
    if not a.same_grid(b):
        raise IncompatibleResponses(
            f"Responses use different frequency grids ({len(a)} vs {len(b)} points)")

    averaged = (to_complex(a) + to_complex(b)) / 2.0
    return from_complex(a.frequencies, averaged)
