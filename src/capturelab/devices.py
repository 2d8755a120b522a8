#!/usr/bin/env python3
"""
Unified audio device catalog for capturelab.

Devices come from two independent sources: a native backend (ALSA cards)
and a browser-style media device backend (labelled devices that can be
probed by opening a transient input stream). The catalog merges both into
one list, preferring the native record when both sources report a device
with the same name and kind.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import DeviceNotFound, DeviceUnavailable

logger = logging.getLogger(__name__)

INPUT = "input"
OUTPUT = "output"
KINDS = (INPUT, OUTPUT)

NATIVE = "native"
BROWSER = "browser"

DEFAULT_SAMPLE_RATE = 48000
DEFAULT_CHANNELS = 2
DEFAULT_FORMAT = "f32"


@dataclass
class DeviceConfig:
    """One configuration a native device supports (or is configured with)."""
    channels: int
    sample_rate: int
    sample_format: str = DEFAULT_FORMAT


@dataclass
class NativeDevice:
    """Device record as reported by the native backend bridge."""
    name: str
    is_default: bool = False
    supported_configs: List[DeviceConfig] = field(default_factory=list)
    default_config: Optional[DeviceConfig] = None
    hw_id: Optional[str] = None


@dataclass
class BrowserDevice:
    """Device record as reported by the media device backend."""
    device_id: str
    label: str
    kind: str
    is_default: bool = False
    group_id: Optional[str] = None


@dataclass
class AudioConfig:
    sample_rate: int
    channels: int
    sample_format: str = DEFAULT_FORMAT
    buffer_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "sample_format": self.sample_format,
            "buffer_size": self.buffer_size,
        }


@dataclass
class UnifiedDevice:
    device_id: str
    name: str
    kind: str
    origin: str
    is_default: bool = False
    channels: int = DEFAULT_CHANNELS
    sample_rates: List[int] = field(default_factory=list)
    default_sample_rate: Optional[int] = None
    formats: List[str] = field(default_factory=list)
    native_device: Optional[NativeDevice] = None
    browser_device: Optional[BrowserDevice] = None

    @property
    def is_native(self) -> bool:
        return self.origin == NATIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.device_id,
            "name": self.name,
            "kind": self.kind,
            "origin": self.origin,
            "is_default": self.is_default,
            "channels": self.channels,
            "sample_rates": list(self.sample_rates),
            "default_sample_rate": self.default_sample_rate,
            "formats": list(self.formats),
            "browser_device_id": self.browser_device.device_id if self.browser_device else None,
        }


@dataclass
class DeviceSelection:
    """Outcome of DeviceCatalog.select_device()."""
    success: bool
    device: Optional[UnifiedDevice] = None
    config: Optional[AudioConfig] = None
    error: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success}
        if self.device is not None:
            result["device"] = self.device.to_dict()
        if self.config is not None:
            result["config"] = self.config.to_dict()
        if self.error is not None:
            result["error"] = str(self.error)
        return result


class NameIdentityResolver:
    """
    Match a browser device to an existing native entry by label and kind.

    Two distinct physical devices sharing a label will be merged; a resolver
    with stronger identity information can be passed to DeviceCatalog
    instead.
    """

    def match(self, device: BrowserDevice, candidates: List[UnifiedDevice]) -> Optional[UnifiedDevice]:
        for candidate in candidates:
            if candidate.is_native and candidate.name == device.label and candidate.kind == device.kind:
                return candidate
        return None


class DeviceCatalog:
    """
    Enumerates devices from both backends and keeps the unified result.

    Either backend may be None. Enumeration never raises: a failing backend
    is logged and the other one's devices are still returned.
    """

    def __init__(self, native_backend=None, browser_backend=None,
                 prefer_native: bool = True, identity_resolver=None):
        self.native_backend = native_backend
        self.browser_backend = browser_backend
        self.prefer_native = prefer_native
        self.identity_resolver = identity_resolver or NameIdentityResolver()
        self._devices: "OrderedDict[str, UnifiedDevice]" = OrderedDict()

    @property
    def devices(self) -> List[UnifiedDevice]:
        return list(self._devices.values())

    def enumerate(self) -> Dict[str, List[UnifiedDevice]]:
        """
        Enumerate all devices from the native and browser backends.

        Returns:
            Dict with "input" and "output" lists of UnifiedDevice, in
            enumeration order (native devices first).
        """
        logger.info("Enumerating devices from all sources...")
        self._devices = OrderedDict()
        result = {INPUT: [], OUTPUT: []}

        try:
            native = self._query_native()
            for kind in KINDS:
                for device in native.get(kind, []):
                    unified = self._native_to_unified(device, kind)
                    self._add(unified)
                    result[kind].append(unified)
            logger.info(f"Got native devices: {len(result[INPUT])} input, {len(result[OUTPUT])} output")
        except DeviceUnavailable as e:
            logger.warning(f"Could not get native devices: {e}")
            logger.info("Falling back to browser devices only")

        try:
            browser_devices = self._query_browser()
        except DeviceUnavailable as e:
            logger.error(f"Error enumerating browser devices: {e}")
            browser_devices = []

        for device in browser_devices:
            if device.kind not in KINDS:
                continue

            existing = self.identity_resolver.match(device, self.devices)
            if existing is not None and self.prefer_native:
                existing.browser_device = device
                logger.debug(f"Attached browser device {device.device_id} to {existing.device_id}")
                continue

            unified = self._browser_to_unified(device)
            self._add(unified)
            result[device.kind].append(unified)

        logger.info(f"Total unified devices: {len(result[INPUT])} input, {len(result[OUTPUT])} output")
        return result

    def _query_native(self) -> Dict[str, List[NativeDevice]]:
        if self.native_backend is None:
            raise DeviceUnavailable("no native backend configured")
        try:
            return self.native_backend.get_audio_devices()
        except DeviceUnavailable:
            raise
        except Exception as e:
            raise DeviceUnavailable(str(e)) from e

    def _query_browser(self) -> List[BrowserDevice]:
        if self.browser_backend is None:
            return []
        try:
            return list(self.browser_backend.enumerate_devices())
        except DeviceUnavailable:
            raise
        except Exception as e:
            raise DeviceUnavailable(str(e)) from e

    def _add(self, device: UnifiedDevice):
        base_id = device.device_id
        suffix = 2
        while device.device_id in self._devices:
            device.device_id = f"{base_id}_{suffix}"
            suffix += 1
        self._devices[device.device_id] = device

    def _native_to_unified(self, device: NativeDevice, kind: str) -> UnifiedDevice:
        configs = device.supported_configs
        sample_rates = sorted({c.sample_rate for c in configs})
        default_channels = device.default_config.channels if device.default_config else DEFAULT_CHANNELS
        channels = max([c.channels for c in configs] + [default_channels])
        formats = list(OrderedDict.fromkeys(c.sample_format for c in configs))
        slug = re.sub(r"\s+", "_", device.name)

        return UnifiedDevice(
            device_id=f"native_{kind}_{slug}",
            name=device.name,
            kind=kind,
            origin=NATIVE,
            is_default=device.is_default,
            channels=channels,
            sample_rates=sample_rates,
            default_sample_rate=device.default_config.sample_rate if device.default_config else None,
            formats=formats,
            native_device=device,
        )

    def _browser_to_unified(self, device: BrowserDevice) -> UnifiedDevice:
        channels, sample_rate = self._probe(device)
        fallback = "Microphone" if device.kind == INPUT else "Speaker"
        return UnifiedDevice(
            device_id=device.device_id,
            name=device.label or f"{fallback} {device.device_id[:8]}",
            kind=device.kind,
            origin=BROWSER,
            is_default=device.is_default or device.device_id == "default",
            channels=channels,
            sample_rates=[sample_rate],
            default_sample_rate=sample_rate,
            formats=[DEFAULT_FORMAT],
            browser_device=device,
        )

    def _probe(self, device: BrowserDevice) -> Tuple[int, int]:
        """Probe a browser device once; any failure yields the defaults."""
        if self.browser_backend is None or device.kind != INPUT:
            return DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE
        try:
            channels, sample_rate = self.browser_backend.probe(device)
            return int(channels or DEFAULT_CHANNELS), int(sample_rate or DEFAULT_SAMPLE_RATE)
        except Exception as e:
            logger.warning(f"Could not probe browser device {device.label}: {e}")
            return DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE

    def get_device(self, device_id: str) -> UnifiedDevice:
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        return device

    def select_device(self, device_id: str, config: Optional[Dict[str, Any]] = None) -> DeviceSelection:
        """
        Select and configure a device.

        Args:
            device_id: Unified device id
            config: Optional partial config (sample_rate, channels,
                sample_format, buffer_size)

        Returns:
            DeviceSelection; on failure ``error`` holds the backend error
            or DeviceNotFound.
        """
        config = config or {}
        device = self._devices.get(device_id)
        if device is None:
            return DeviceSelection(success=False, error=DeviceNotFound(device_id))

        logger.info(f"Selecting device: {device.name} {config}")
        channels = min(int(config.get("channels") or DEFAULT_CHANNELS), device.channels)

        if device.native_device is not None:
            full_config = AudioConfig(
                sample_rate=int(config.get("sample_rate") or device.default_sample_rate or DEFAULT_SAMPLE_RATE),
                channels=channels,
                sample_format=config.get("sample_format") or (device.formats[0] if device.formats else DEFAULT_FORMAT),
                buffer_size=config.get("buffer_size"),
            )
            try:
                result = self.native_backend.set_audio_device(
                    device.native_device.name, device.kind == INPUT, full_config)
                logger.info(f"Device configured: {result}")
            except Exception as e:
                logger.error(f"Error configuring native device {device.name}: {e}")
                return DeviceSelection(success=False, device=device, error=e)
            return DeviceSelection(success=True, device=device, config=full_config)

        # Browser devices are configured when they are first opened
        return DeviceSelection(
            success=True,
            device=device,
            config=AudioConfig(
                sample_rate=device.default_sample_rate or DEFAULT_SAMPLE_RATE,
                channels=channels,
                sample_format=DEFAULT_FORMAT,
                buffer_size=config.get("buffer_size"),
            ),
        )

    def get_current_state(self) -> Optional[Dict[str, Any]]:
        if self.native_backend is None:
            return None
        try:
            return self.native_backend.get_audio_config()
        except Exception as e:
            logger.error(f"Error getting audio state: {e}")
            return None

    def get_device_details(self, device_id: str) -> Dict[str, Any]:
        device = self.get_device(device_id)

        if device.native_device is not None:
            try:
                return self.native_backend.get_device_properties(
                    device.native_device.name, device.kind == INPUT)
            except Exception as e:
                logger.error(f"Error getting device properties: {e}")

        return {
            "name": device.name,
            "kind": device.kind,
            "channels": device.channels,
            "sample_rates": list(device.sample_rates),
            "formats": list(device.formats),
            "origin": device.origin,
        }

    def find_best(self, kind: str, preferred_channels: Optional[int] = None,
                  preferred_sample_rate: Optional[int] = None,
                  prefer_default: bool = False) -> Optional[UnifiedDevice]:
        """
        Pick the best device of a kind.

        With prefer_default, the first default device wins outright. Otherwise
        every device is scored (+10 native, +5 enough channels, +5 preferred
        sample rate supported, plus its number of sample rates and channels)
        and the highest score wins; ties keep the earlier device.
        """
        candidates = [d for d in self._devices.values() if d.kind == kind]
        if not candidates:
            return None

        if prefer_default:
            for device in candidates:
                if device.is_default:
                    return device

        best_device = None
        best_score = None
        for device in candidates:
            score = 0
            if device.is_native:
                score += 10
            if preferred_channels and device.channels >= preferred_channels:
                score += 5
            if preferred_sample_rate and preferred_sample_rate in device.sample_rates:
                score += 5
            score += len(device.sample_rates)
            score += device.channels

            if best_score is None or score > best_score:
                best_score = score
                best_device = device

        return best_device

    def list_for_display(self, kind: str) -> List[Dict[str, str]]:
        """Dropdown-friendly projection of the devices of one kind."""
        entries = []
        for device in self._devices.values():
            if device.kind != kind:
                continue
            parts = [f"{device.channels}ch"]
            if device.default_sample_rate:
                parts.append(f"{round(device.default_sample_rate / 1000)}kHz")
            if device.is_default:
                parts.append("(Default)")
            entries.append({
                "value": device.device_id,
                "label": device.name,
                "info": " ".join(parts),
            })
        return entries


def load_backends():
    """
    Create the ALSA and PortAudio backends. A backend whose library is not
    installed is reported as None.
    """
    native = browser = None
    try:
        from .alsa_devices import AlsaBackend
        native = AlsaBackend()
    except ImportError as e:
        logger.warning(f"ALSA backend not available: {e}")
    try:
        from .media_devices import PortAudioBackend
        browser = PortAudioBackend()
    except (ImportError, OSError) as e:
        logger.warning(f"PortAudio backend not available: {e}")
    return native, browser
