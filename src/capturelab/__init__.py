"""
capturelab package: audio device catalog, frequency response capture,
calibration and capture comparison.
"""

from .response import FrequencyResponse
from .averaging import average_complex
from .calibration import CalibrationStore, parse_calibration

__version__ = "0.1.0"
__all__ = ["FrequencyResponse", "average_complex", "CalibrationStore", "parse_calibration"]
