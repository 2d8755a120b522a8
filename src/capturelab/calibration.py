"""
Microphone calibration curves.

A calibration file is free-form text with one "frequency magnitude" pair per
line (comma, tab or space separated). Comment lines start with ``#`` or
``//`` and a single header line mentioning the frequency column is skipped.
"""

import logging
import math
import re
from typing import Callable, List, Optional

from .errors import EmptyCalibration, LengthMismatch
from .response import FrequencyResponse

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[,\t ]+")


def _parse_float(token: str) -> Optional[float]:
    try:
        value = float(token)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_calibration(text: str) -> FrequencyResponse:
    """
    Parse calibration file text into a magnitude-only response.

    Rows whose first two tokens are not numbers, or whose frequency is not
    positive, are dropped. Rows are sorted by frequency and duplicate
    frequencies keep their first value.

    Raises:
        EmptyCalibration: If no valid row was found
        LengthMismatch: If frequency and magnitude counts differ
    """
    frequencies: List[float] = []
    magnitudes: List[float] = []
    header_seen = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or line.startswith("//"):
            continue

        lowered = line.lower()
        if not header_seen and "freq" in lowered:
            header_seen = True
            continue

        parts = [p for p in _SEPARATORS.split(line) if p]
        if len(parts) < 2:
            continue

        freq = _parse_float(parts[0])
        mag = _parse_float(parts[1])
        if freq is None or mag is None or freq <= 0:
            continue

        frequencies.append(freq)
        magnitudes.append(mag)

    if len(frequencies) != len(magnitudes):
        raise LengthMismatch(
            f"Frequency and magnitude arrays have different lengths "
            f"({len(frequencies)} != {len(magnitudes)})")
    if not frequencies:
        raise EmptyCalibration("No valid data found in calibration file")

    rows = {}
    for freq, mag in zip(frequencies, magnitudes):
        rows.setdefault(freq, mag)
    ordered = sorted(rows.items())

    logger.info(f"Parsed {len(ordered)} calibration points")
    return FrequencyResponse([f for f, _ in ordered], [m for _, m in ordered])


class CalibrationStore:
    """
    Holds the single active calibration curve of a session.

    Subscribers are called with the new curve (or None after clear()) so the
    renderer knows to redraw with or without calibration.
    """

    def __init__(self):
        self._curve: Optional[FrequencyResponse] = None
        self._source: Optional[str] = None
        self._subscribers: List[Callable[[Optional[FrequencyResponse]], None]] = []

    @property
    def curve(self) -> Optional[FrequencyResponse]:
        return self._curve

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def active(self) -> bool:
        return self._curve is not None

    def subscribe(self, callback: Callable[[Optional[FrequencyResponse]], None]):
        self._subscribers.append(callback)

    def _notify(self):
        for callback in list(self._subscribers):
            try:
                callback(self._curve)
            except Exception as e:
                logger.error(f"Calibration subscriber failed: {e}")

    def set_curve(self, curve: FrequencyResponse, source: Optional[str] = None):
        self._curve = curve
        self._source = source
        logger.info(f"Calibration loaded: {len(curve)} points"
                    + (f" from {source}" if source else ""))
        self._notify()

    def load(self, text: str, source: Optional[str] = None) -> FrequencyResponse:
        """Parse text and make it the active curve. A parse failure keeps the previous curve."""
        curve = parse_calibration(text)
        self.set_curve(curve, source)
        return curve

    def load_file(self, path: str) -> FrequencyResponse:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
        return self.load(text, source=path)

    def clear(self):
        if self._curve is None:
            return
        logger.info("Clearing calibration")
        self._curve = None
        self._source = None
        self._notify()

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "source": self._source,
            "points": len(self._curve) if self._curve is not None else 0,
            "curve": self._curve.to_dict() if self._curve is not None else None,
        }
