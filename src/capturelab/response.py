"""
Frequency response model shared by the capture, calibration and display code.
"""

from typing import Dict, Sequence, Optional, Any
import numpy as np


class FrequencyResponse:
    """
    Magnitude (dB) and optional phase (degrees) over a strictly increasing
    frequency grid (Hz).

    Arrays are stored as float64 numpy arrays. ``phases`` is an empty array
    when no phase was measured.
    """

    __slots__ = ("frequencies", "magnitudes", "phases")

    def __init__(self, frequencies: Sequence[float], magnitudes: Sequence[float],
                 phases: Optional[Sequence[float]] = None):
        freq = np.asarray(frequencies, dtype=np.float64).reshape(-1)
        mag = np.asarray(magnitudes, dtype=np.float64).reshape(-1)
        phase = np.asarray(phases if phases is not None else [], dtype=np.float64).reshape(-1)

        if len(freq) != len(mag):
            raise ValueError(
                f"Frequency and magnitude arrays must have same length "
                f"({len(freq)} != {len(mag)})")
        if len(phase) and len(phase) != len(freq):
            raise ValueError(
                f"Phase array must be empty or match the frequency array "
                f"({len(phase)} != {len(freq)})")
        if len(freq) > 1 and not np.all(np.diff(freq) > 0):
            raise ValueError("Frequencies must be strictly increasing")

        self.frequencies = freq
        self.magnitudes = mag
        self.phases = phase

    def __len__(self) -> int:
        return len(self.frequencies)

    def __repr__(self) -> str:
        span = f"{self.frequencies[0]:.1f}-{self.frequencies[-1]:.1f} Hz" if len(self) else "empty"
        return f"FrequencyResponse({len(self)} points, {span}, phase={self.has_phase})"

    @property
    def has_phase(self) -> bool:
        return len(self.phases) > 0 and len(self.phases) == len(self.frequencies)

    def copy(self) -> "FrequencyResponse":
        return FrequencyResponse(self.frequencies.copy(), self.magnitudes.copy(), self.phases.copy())

    def freeze(self) -> "FrequencyResponse":
        """Make the arrays read-only. Copies stay writeable."""
        for values in (self.frequencies, self.magnitudes, self.phases):
            values.setflags(write=False)
        return self

    def same_grid(self, other: "FrequencyResponse", rtol: float = 1e-9, atol: float = 1e-9) -> bool:
        """True if both responses are sampled on the same frequencies."""
        if len(self) != len(other):
            return False
        return bool(np.allclose(self.frequencies, other.frequencies, rtol=rtol, atol=atol))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frequencies": self.frequencies.tolist(),
            "magnitudes": self.magnitudes.tolist(),
            "phases": self.phases.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FrequencyResponse":
        return cls(data["frequencies"], data["magnitudes"], data.get("phases") or [])
