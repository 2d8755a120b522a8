"""
Display-mode resolution.

A display mode names which curves to show: the current session capture or
one of its channels, a stored capture, an overlay of stored captures, or the
complex L+R average of the latest left and right captures. Resolving a mode
only chooses curves; drawing them (and applying the calibration carried in
the result) is up to the renderer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .averaging import average_complex
from .calibration import CalibrationStore
from .errors import InsufficientData
from .repository import CaptureRepository
from .response import FrequencyResponse
from .session import Capture, CaptureSession
from .smoothing import apply_calibration

logger = logging.getLogger(__name__)

CAPTURE_PREFIX = "capture_"
CHANNEL_MODES = ("average", "left", "right")

CHANNEL_LABELS = {"left": " (Left)", "right": " (Right)", "both": " (Stereo)", "default": ""}


@dataclass
class DisplayContext:
    """Everything a display mode may draw from."""
    session: CaptureSession
    repository: CaptureRepository
    calibration: Optional[CalibrationStore] = None

    @property
    def calibration_curve(self) -> Optional[FrequencyResponse]:
        return self.calibration.curve if self.calibration is not None else None


@dataclass
class DisplayCurve:
    label: str
    raw: FrequencyResponse
    smoothed: FrequencyResponse
    capture_id: Optional[str] = None

    def to_dict(self, calibration: Optional[FrequencyResponse] = None) -> Dict[str, Any]:
        raw, smoothed = self.raw, self.smoothed
        if calibration is not None:
            raw = apply_calibration(raw, calibration)
            smoothed = apply_calibration(smoothed, calibration)
        return {
            "label": self.label,
            "capture_id": self.capture_id,
            "raw": raw.to_dict(),
            "smoothed": smoothed.to_dict(),
        }


@dataclass
class DisplayResult:
    mode: str
    curves: List[DisplayCurve] = field(default_factory=list)
    calibration: Optional[FrequencyResponse] = None
    overlay: bool = False

    @property
    def has_data(self) -> bool:
        return bool(self.curves)

    def to_dict(self, apply_calibration: bool = True) -> Dict[str, Any]:
        curve = self.calibration if apply_calibration else None
        return {
            "mode": self.mode,
            "has_data": self.has_data,
            "overlay": self.overlay,
            "calibrated": curve is not None,
            "curves": [c.to_dict(curve) for c in self.curves],
        }


def _capture_curve(capture: Capture, label: Optional[str] = None) -> DisplayCurve:
    return DisplayCurve(label or capture.name, capture.raw, capture.smoothed, capture.id)


def _session_channels(context: DisplayContext, names) -> List[DisplayCurve]:
    current = context.session.current
    if current is None:
        return []
    return [DisplayCurve(name, current.channel_data[name].raw, current.channel_data[name].smoothed)
            for name in names if name in current.channel_data]


def _resolve_lr_sum(context: DisplayContext) -> List[DisplayCurve]:
    left = context.repository.latest_for_channel("left")
    right = context.repository.latest_for_channel("right")
    if left is None or right is None:
        missing = " and ".join(c for c, v in (("left", left), ("right", right)) if v is None)
        raise InsufficientData(f"L+R average needs a {missing} channel capture")

    averaged = average_complex(left.smoothed, right.smoothed)
    return [DisplayCurve("L+R Average (Complex)", averaged, averaged)]


def resolve_display(mode: str, context: DisplayContext) -> Optional[DisplayResult]:
    """
    Resolve a display mode to the curves to draw.

    Returns:
        DisplayResult (possibly without curves when there is nothing to
        show), or None for an unknown mode

    Raises:
        InsufficientData: For lr_sum without both a left and a right capture
        IncompatibleResponses: For lr_sum when the two captures cannot be averaged
    """
    result = DisplayResult(mode=mode, calibration=context.calibration_curve)
    current = context.session.current

    if mode == "current":
        if current is not None:
            result.curves = [DisplayCurve("combined", current.raw, current.smoothed)]
    elif mode in CHANNEL_MODES:
        result.curves = _session_channels(context, [mode])
    elif mode == "all":
        if current is not None:
            result.curves = [DisplayCurve("combined", current.raw, current.smoothed)]
            result.curves += _session_channels(context, ("left", "right", "average"))
    elif mode == "lr_sum":
        result.curves = _resolve_lr_sum(context)
    elif mode == "combined_all":
        captures = context.repository.selected_captures() or context.repository.all()
        result.curves = [_capture_curve(c) for c in captures]
        result.overlay = True
    elif mode.startswith(CAPTURE_PREFIX) and len(mode) > len(CAPTURE_PREFIX):
        capture = context.repository.get(mode[len(CAPTURE_PREFIX):])
        if capture is not None:
            result.curves = [_capture_curve(capture)]
        else:
            logger.warning(f"Display mode {mode}: capture not found")
    else:
        logger.warning(f"Unknown display mode: {mode}")
        return None

    if not result.has_data:
        logger.debug(f"Display mode {mode} has no data")
    return result


def available_modes(context: DisplayContext) -> List[Dict[str, str]]:
    """The display modes that currently have something to show, with labels."""
    modes = []
    current = context.session.current
    if current is not None:
        modes.append({"value": "current",
                      "label": f"Current{CHANNEL_LABELS.get(current.output_channel, '')}"})
        for name in CHANNEL_MODES:
            if name in current.channel_data:
                modes.append({"value": name, "label": name.title()})
        if current.channel_data:
            modes.append({"value": "all", "label": "All channels"})

    captures = context.repository.all()
    by_channel = context.repository.by_channel()
    if by_channel.get("left") and by_channel.get("right"):
        modes.append({"value": "lr_sum", "label": "L+R Average (Complex)"})
    if len(captures) > 1:
        modes.append({"value": "combined_all", "label": f"Combined (All {len(captures)} captures)"})
    for index, capture in enumerate(captures, start=1):
        modes.append({"value": f"{CAPTURE_PREFIX}{capture.id}", "label": f"{index}. {capture.name}"})
    return modes
