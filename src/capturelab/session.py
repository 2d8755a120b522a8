"""
The capture session: one in-memory measurement and its derived views.

The session owns the raw response of the last successful capture and the
smoothed curves derived from it. Changing the smoothing only re-derives the
smoothed curves; raw data is never touched after the capture.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import numpy as np

from .averaging import average_complex
from .engine import CaptureEngine, CaptureResult, OUTPUT_CHANNELS, SIGNAL_TYPES
from .errors import CaptureBusy, CaptureFailed, IncompatibleResponses, InsufficientData
from .response import FrequencyResponse
from .smoothing import apply_phase_smoothing, apply_smoothing

logger = logging.getLogger(__name__)

IDLE = "idle"
CAPTURING = "capturing"
CAPTURED = "captured"

CHANNEL_KEYS = ("left", "right", "average")

DEFAULT_SMOOTHING = 3


@dataclass
class CaptureParams:
    """Settings passed to the capture engine for one measurement."""
    duration: int = 10
    output_channel: str = "both"
    sample_rate: int = 48000
    signal_type: str = "sweep"
    capture_volume: int = 70
    output_volume: int = 50
    output_device: str = "default"
    device_name: Optional[str] = None

    def validate(self):
        if int(self.duration) <= 0:
            raise ValueError("duration must be a positive number of seconds")
        if int(self.sample_rate) <= 0:
            raise ValueError("sample_rate must be positive")
        if self.signal_type not in SIGNAL_TYPES:
            raise ValueError(f"signal_type must be one of: {', '.join(SIGNAL_TYPES)}")
        if self.output_channel not in OUTPUT_CHANNELS:
            raise ValueError(f"output_channel must be one of: {', '.join(OUTPUT_CHANNELS)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureParams":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        params = cls(**known)
        params.duration = int(params.duration)
        params.sample_rate = int(params.sample_rate)
        params.validate()
        return params


@dataclass
class ChannelData:
    """Raw and smoothed response of one channel."""
    raw: FrequencyResponse
    smoothed: FrequencyResponse

    def to_dict(self) -> Dict[str, Any]:
        return {"raw": self.raw.to_dict(), "smoothed": self.smoothed.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelData":
        return cls(FrequencyResponse.from_dict(data["raw"]),
                   FrequencyResponse.from_dict(data["smoothed"]))


@dataclass
class Capture:
    """A measurement with its metadata, as stored in the repository."""
    id: Optional[str]
    name: str
    timestamp: datetime
    device_name: str
    signal_type: str
    duration: int
    sample_rate: int
    output_channel: str
    raw: FrequencyResponse
    smoothed: FrequencyResponse
    smoothing_fraction: int = DEFAULT_SMOOTHING
    channel_data: Dict[str, ChannelData] = field(default_factory=dict)

    @property
    def has_channel_data(self) -> bool:
        return bool(self.channel_data)

    def copy(self) -> "Capture":
        return copy.deepcopy(self)

    def summary(self) -> Dict[str, Any]:
        """Metadata only, for listings."""
        return {
            "id": self.id,
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            "device_name": self.device_name,
            "signal_type": self.signal_type,
            "duration": self.duration,
            "sample_rate": self.sample_rate,
            "output_channel": self.output_channel,
            "smoothing_fraction": self.smoothing_fraction,
            "points": len(self.raw),
            "channels": sorted(self.channel_data),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary()
        del data["points"]
        del data["channels"]
        data.update({
            "raw": self.raw.to_dict(),
            "smoothed": self.smoothed.to_dict(),
            "channel_data": {k: v.to_dict() for k, v in self.channel_data.items()},
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Capture":
        return cls(
            id=data.get("id"),
            name=data["name"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            device_name=data["device_name"],
            signal_type=data["signal_type"],
            duration=int(data["duration"]),
            sample_rate=int(data["sample_rate"]),
            output_channel=data["output_channel"],
            raw=FrequencyResponse.from_dict(data["raw"]),
            smoothed=FrequencyResponse.from_dict(data["smoothed"]),
            smoothing_fraction=int(data.get("smoothing_fraction", DEFAULT_SMOOTHING)),
            channel_data={k: ChannelData.from_dict(v) for k, v in (data.get("channel_data") or {}).items()},
        )


def default_capture_name(timestamp: datetime, output_channel: str) -> str:
    channel = {"both": "Stereo", "left": "L", "right": "R"}.get(output_channel, "Mono")
    return f"Capture {timestamp.strftime('%Y-%m-%d %H:%M:%S')} ({channel})"


class CaptureSession:
    """
    State machine around a single measurement: idle -> capturing -> captured.

    ``smoothing`` and ``phase_smoothing`` are pure functions
    ``(frequencies, values, octave_fraction) -> values``; they default to the
    fractional-octave smoothing of capturelab.smoothing.
    """

    def __init__(self, smoothing_fraction: int = DEFAULT_SMOOTHING,
                 smoothing: Callable = apply_smoothing,
                 phase_smoothing: Callable = apply_phase_smoothing):
        if smoothing_fraction < 1:
            raise ValueError("Smoothing fraction must be at least 1")
        self._smoothing = smoothing
        self._phase_smoothing = phase_smoothing
        self._lock = threading.Lock()
        self._state = IDLE
        self._engine: Optional[CaptureEngine] = None
        self._current: Optional[Capture] = None
        self.smoothing_fraction = smoothing_fraction
        self.last_error: Optional[CaptureFailed] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def current(self) -> Optional[Capture]:
        return self._current

    @property
    def has_channel_data(self) -> bool:
        return self._current is not None and self._current.has_channel_data

    def _smooth(self, raw: FrequencyResponse, octave_fraction: int) -> FrequencyResponse:
        magnitudes = self._smoothing(raw.frequencies, raw.magnitudes, octave_fraction)
        phases = []
        if raw.has_phase:
            phases = self._phase_smoothing(raw.frequencies, raw.phases, octave_fraction)
        # Smoothed arrays never alias the read-only raw arrays
        return FrequencyResponse(raw.frequencies.copy(), np.array(magnitudes, dtype=np.float64),
                                 np.array(phases, dtype=np.float64))

    def _build_channel_data(self, result: CaptureResult, octave_fraction: int) -> Dict[str, ChannelData]:
        channels = {k: v for k, v in result.channels.items() if k in CHANNEL_KEYS}
        if "left" in channels and "right" in channels and "average" not in channels:
            try:
                channels["average"] = average_complex(channels["left"], channels["right"])
            except IncompatibleResponses as e:
                logger.warning(f"No average channel: {e}")
        return {name: ChannelData(raw.copy().freeze(), self._smooth(raw, octave_fraction))
                for name, raw in channels.items()}

    def start_capture(self, engine: CaptureEngine, device_id: str,
                      params: Optional[CaptureParams] = None) -> Capture:
        """
        Run one measurement on ``engine`` and make it the current capture.

        The engine is disposed whatever the outcome. On failure the session
        goes back to idle without data.

        Raises:
            CaptureBusy: If a capture is already running, or a stopped one
                has not returned from its engine yet
            CaptureFailed: If the engine failed or returned no points
        """
        params = params or CaptureParams()
        params.validate()

        with self._lock:
            if self._state == CAPTURING:
                engine.dispose()
                raise CaptureBusy("A capture is already in progress")
            if self._engine is not None:
                # A stopped run has not returned from its engine yet
                engine.dispose()
                raise CaptureBusy("The previous capture is still stopping")
            self._state = CAPTURING
            self._engine = engine
            self._current = None
            self.last_error = None

        try:
            engine.set_sweep_duration(params.duration)
            engine.set_output_channel(params.output_channel)
            engine.set_sample_rate(params.sample_rate)
            engine.set_signal_type(params.signal_type)
            engine.set_capture_volume(params.capture_volume)
            engine.set_output_volume(params.output_volume)
            engine.set_output_device(params.output_device)
            result = engine.start_capture(device_id)
        except Exception as e:
            result = CaptureResult.failed(str(e))
        finally:
            engine.dispose()

        with self._lock:
            self._engine = None
            if self._state != CAPTURING:
                result = CaptureResult.failed("Capture stopped")

            try:
                if not result.success or not result.frequencies:
                    raise CaptureFailed(result.error or "Capture failed: no frequency data")

                octave_fraction = self.smoothing_fraction
                raw = result.response().freeze()
                timestamp = datetime.now()
                self._current = Capture(
                    id=None,
                    name=default_capture_name(timestamp, params.output_channel),
                    timestamp=timestamp,
                    device_name=params.device_name or device_id,
                    signal_type=params.signal_type,
                    duration=params.duration,
                    sample_rate=params.sample_rate,
                    output_channel=params.output_channel,
                    raw=raw,
                    smoothed=self._smooth(raw, octave_fraction),
                    smoothing_fraction=octave_fraction,
                    channel_data=self._build_channel_data(result, octave_fraction),
                )
            except CaptureFailed as e:
                self._state = IDLE
                self.last_error = e
                logger.error(f"Capture failed ({e.category}): {e}")
                raise
            except ValueError as e:
                self._state = IDLE
                self.last_error = CaptureFailed(f"Invalid capture data: {e}")
                logger.error(f"Capture failed: {e}")
                raise self.last_error from e

            self._state = CAPTURED

        logger.info(f"Captured {len(raw)} points from {device_id}"
                    + (f" with channels {sorted(self._current.channel_data)}" if self._current.channel_data else ""))
        return self._current

    def stop(self):
        """Abort a running capture; the session returns to idle without data."""
        with self._lock:
            if self._state != CAPTURING:
                return
            self._state = IDLE
            engine = self._engine
        logger.info("Stopping capture")
        if engine is not None:
            engine.stop()

    def clear(self):
        with self._lock:
            if self._state == CAPTURING:
                raise CaptureBusy("Cannot clear while capturing")
            self._current = None
            self._state = IDLE

    def reprocess(self, octave_fraction: int):
        """
        Re-derive the smoothed curves of the current capture and all its
        channels with a new octave fraction. Raw data is left untouched.
        """
        if octave_fraction < 1:
            raise ValueError("Smoothing fraction must be at least 1")
        self.smoothing_fraction = octave_fraction

        capture = self._current
        if capture is None:
            return
        capture.smoothed = self._smooth(capture.raw, octave_fraction)
        for channel in capture.channel_data.values():
            channel.smoothed = self._smooth(channel.raw, octave_fraction)
        capture.smoothing_fraction = octave_fraction
        logger.debug(f"Reprocessed current capture with 1/{octave_fraction} octave smoothing")

    def to_capture(self, name: Optional[str] = None) -> Capture:
        """
        Detached copy of the current capture for persisting.

        Raises:
            InsufficientData: If there is no captured data
        """
        if self._state != CAPTURED or self._current is None:
            raise InsufficientData("No captured data to save")
        capture = self._current.copy()
        if name:
            capture.name = name
        return capture

    def status(self) -> Dict[str, Any]:
        data = {
            "state": self._state,
            "smoothing_fraction": self.smoothing_fraction,
            "has_channel_data": self.has_channel_data,
            "capture": self._current.summary() if self._current else None,
            "error": None,
        }
        if self.last_error is not None:
            data["error"] = {
                "message": self.last_error.message,
                "category": self.last_error.category,
                "hint": self.last_error.hint,
            }
        return data
