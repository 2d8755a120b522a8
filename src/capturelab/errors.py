"""
Exception types raised by the capturelab core.
"""

from typing import Optional


class CaptureLabError(Exception):
    """Base class for all capturelab errors."""
    pass


class DeviceUnavailable(CaptureLabError):
    """One device backend could not be queried."""
    pass


class DeviceNotFound(CaptureLabError):
    """Lookup or selection by an unknown device id."""

    def __init__(self, device_id: str):
        super().__init__(f"Device {device_id} not found")
        self.device_id = device_id


class CaptureNotFound(CaptureLabError):
    """Lookup of an unknown capture id."""

    def __init__(self, capture_id: str):
        super().__init__(f"Capture {capture_id} not found")
        self.capture_id = capture_id


class CaptureBusy(CaptureLabError):
    """A capture was requested while another one is running."""
    pass


class CaptureFailed(CaptureLabError):
    """
    The capture engine reported a failure or returned no data.

    The engine message is kept verbatim; ``category`` gives the caller an
    actionable classification.
    """

    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    DEVICE_BUSY = "device_busy"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"

    HINTS = {
        PERMISSION_DENIED: "Grant microphone access to this process and try again",
        NO_DEVICE: "Connect a microphone or select a different input device",
        DEVICE_BUSY: "Close other applications using the device and try again",
        UNSUPPORTED: "The audio environment does not support capturing",
        UNKNOWN: "Check the device connection and try again",
    }

    def __init__(self, message: str, category: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.category = category or classify_capture_error(message)

    @property
    def hint(self) -> str:
        return self.HINTS.get(self.category, self.HINTS[self.UNKNOWN])


class IncompatibleResponses(CaptureLabError):
    """Two responses cannot be combined (different grids or missing phase)."""
    pass


class InsufficientData(CaptureLabError):
    """A derived view needs captures that do not exist."""
    pass


class InvalidCalibration(CaptureLabError):
    """A calibration file could not be turned into a curve."""
    pass


class EmptyCalibration(InvalidCalibration):
    pass


class LengthMismatch(InvalidCalibration):
    pass


def classify_capture_error(message: Optional[str]) -> str:
    """Map an engine error message to a CaptureFailed category."""
    text = (message or "").lower()
    if "permission" in text or "not allowed" in text:
        return CaptureFailed.PERMISSION_DENIED
    if "no microphone" in text or "no device" in text or "not found" in text \
            or "no such" in text:
        return CaptureFailed.NO_DEVICE
    if "already in use" in text or "busy" in text:
        return CaptureFailed.DEVICE_BUSY
    if "not supported" in text or "unsupported" in text:
        return CaptureFailed.UNSUPPORTED
    return CaptureFailed.UNKNOWN
