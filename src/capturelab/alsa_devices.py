#!/usr/bin/env python3
"""
Native device backend for capturelab.

Enumerates ALSA cards through the native Python ALSA API, reports what each
card supports for capture and playback, and remembers the configuration
pushed by DeviceCatalog.select_device().
"""

import logging
from typing import Dict, List, Optional, Tuple

import alsaaudio

from .devices import AudioConfig, DeviceConfig, NativeDevice, INPUT, OUTPUT
from .errors import DeviceNotFound, DeviceUnavailable

logger = logging.getLogger(__name__)


class AlsaBackend:
    """Native device bridge backed by ALSA hardware cards."""

    # Known measurement microphones: (usb_id, card id) -> (device_name, sensitivity)
    KNOWN_MICROPHONES = {
        ("0d8c:0134", "Microphone"): ("HiFiBerry Mic", "115.5"),
        (None, "UMM6"): ("Dayton UMM6", "137.5"),
        (None, "U18dB"): ("MiniDSP Umik", "115"),
    }

    STANDARD_RATES = [8000, 11025, 16000, 22050, 32000, 44100, 48000,
                      88200, 96000, 176400, 192000]

    FORMAT_NAMES = {
        "S16_LE": "s16",
        "S24_LE": "s24",
        "S32_LE": "s32",
        "FLOAT_LE": "f32",
    }

    FORMAT_CODES = {
        "s16": alsaaudio.PCM_FORMAT_S16_LE,
        "s24": alsaaudio.PCM_FORMAT_S24_LE,
        "s32": alsaaudio.PCM_FORMAT_S32_LE,
        "f32": alsaaudio.PCM_FORMAT_FLOAT_LE,
    }

    def __init__(self):
        self._configured: Dict[Tuple[str, bool], AudioConfig] = {}

    def _get_audio_cards(self) -> List[Tuple[int, str]]:
        """Get (card_index, card_name) pairs for all ALSA cards."""
        try:
            cards = []
            for index in alsaaudio.card_indexes():
                name, _longname = alsaaudio.card_name(index)
                cards.append((index, name))
            return cards
        except Exception as e:
            raise DeviceUnavailable(f"Failed to get audio cards: {e}") from e

    def _get_card_index(self, card_name: str) -> int:
        for index, name in self._get_audio_cards():
            if name == card_name:
                return index
        raise DeviceNotFound(card_name)

    def _read_proc(self, card_index: int, entry: str) -> Optional[str]:
        """Read /proc/asound metadata for a card, None if not available."""
        try:
            with open(f"/proc/asound/card{card_index}/{entry}", "r") as f:
                return f.read().strip()
        except (FileNotFoundError, IOError):
            return None

    def _open_pcm(self, card_index: int, is_input: bool):
        pcm_type = alsaaudio.PCM_CAPTURE if is_input else alsaaudio.PCM_PLAYBACK
        return alsaaudio.PCM(pcm_type, alsaaudio.PCM_NORMAL, f"hw:{card_index}")

    def _expand_rates(self, rates) -> List[int]:
        # getrates() returns either a (min, max) range or a list of rates
        if isinstance(rates, tuple) and len(rates) == 2:
            low, high = rates
            return [r for r in self.STANDARD_RATES if low <= r <= high]
        if isinstance(rates, int):
            return [rates]
        return sorted(int(r) for r in rates)

    def _card_capabilities(self, card_index: int, is_input: bool) -> Optional[Tuple[List[int], List[int], List[str]]]:
        """
        Open the card for capture or playback and read what it supports.

        Returns:
            (channels, sample_rates, formats) or None if the card cannot be
            opened in that direction.
        """
        try:
            pcm = self._open_pcm(card_index, is_input)
        except alsaaudio.ALSAAudioError:
            return None

        try:
            channels = sorted(int(c) for c in pcm.getchannels())
            rates = self._expand_rates(pcm.getrates())
            formats = [self.FORMAT_NAMES[f] for f in pcm.getformats() if f in self.FORMAT_NAMES]
        except (alsaaudio.ALSAAudioError, AttributeError) as e:
            logger.debug(f"Could not read capabilities of card {card_index}: {e}")
            channels, rates, formats = [2], [48000], ["s16"]
        finally:
            pcm.close()

        return channels or [2], rates or [48000], formats or ["s16"]

    def _to_native_device(self, card_index: int, name: str, is_input: bool,
                          is_default: bool) -> Optional[NativeDevice]:
        capabilities = self._card_capabilities(card_index, is_input)
        if capabilities is None:
            return None

        channels, rates, formats = capabilities
        max_channels = max(channels)
        supported = [DeviceConfig(max_channels, rate, fmt) for rate in rates for fmt in formats]
        default_rate = 48000 if 48000 in rates else rates[0]
        default = DeviceConfig(min(2, max_channels), default_rate, formats[0])

        return NativeDevice(
            name=name,
            is_default=is_default,
            supported_configs=supported,
            default_config=default,
            hw_id=f"hw:{card_index}",
        )

    def get_audio_devices(self) -> Dict[str, List[NativeDevice]]:
        """
        Enumerate ALSA cards with capture and/or playback capability.

        The first capable card of each kind is reported as the default.
        """
        devices = {INPUT: [], OUTPUT: []}
        for card_index, name in self._get_audio_cards():
            for kind, is_input in ((INPUT, True), (OUTPUT, False)):
                device = self._to_native_device(card_index, name, is_input, not devices[kind])
                if device is not None:
                    devices[kind].append(device)

        logger.debug(f"ALSA devices: {len(devices[INPUT])} input, {len(devices[OUTPUT])} output")
        return devices

    def _identify_microphone(self, usb_id: Optional[str], card_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        if not card_id:
            return None, None
        for (known_usb_id, known_name), (device, sensitivity) in self.KNOWN_MICROPHONES.items():
            if known_usb_id and usb_id:
                if usb_id == known_usb_id and card_id == known_name:
                    return device, sensitivity
            elif card_id == known_name:
                return device, sensitivity
        return None, None

    def set_audio_device(self, name: str, is_input: bool, config: AudioConfig) -> Dict:
        """
        Open the card with the requested configuration to validate it and
        remember it as the active configuration for that card.

        Raises:
            DeviceNotFound: If no card has that name
            RuntimeError: If ALSA rejects the configuration
        """
        card_index = self._get_card_index(name)
        fmt = self.FORMAT_CODES.get(config.sample_format, alsaaudio.PCM_FORMAT_S16_LE)
        try:
            pcm = alsaaudio.PCM(
                type=alsaaudio.PCM_CAPTURE if is_input else alsaaudio.PCM_PLAYBACK,
                mode=alsaaudio.PCM_NORMAL,
                rate=config.sample_rate,
                channels=config.channels,
                format=fmt,
                periodsize=config.buffer_size or 1024,
                device=f"hw:{card_index}",
            )
            pcm.close()
        except alsaaudio.ALSAAudioError as e:
            raise RuntimeError(f"Failed to configure ALSA device {name}: {e}")

        self._configured[(name, is_input)] = config
        logger.info(f"Configured {'input' if is_input else 'output'} device {name}: "
                    f"{config.channels}ch {config.sample_rate}Hz {config.sample_format}")
        return {"device": name, "hw_id": f"hw:{card_index}", "config": config.to_dict()}

    def get_device_properties(self, name: str, is_input: bool) -> Dict:
        card_index = self._get_card_index(name)
        capabilities = self._card_capabilities(card_index, is_input)
        usb_id = self._read_proc(card_index, "usbid")
        card_id = self._read_proc(card_index, "id")
        microphone, sensitivity = self._identify_microphone(usb_id, card_id)
        configured = self._configured.get((name, is_input))

        properties = {
            "name": name,
            "kind": INPUT if is_input else OUTPUT,
            "card_index": card_index,
            "hw_id": f"hw:{card_index}",
            "usb_id": usb_id,
            "card_id": card_id,
            "available": capabilities is not None,
            "config": configured.to_dict() if configured else None,
        }
        if capabilities is not None:
            channels, rates, formats = capabilities
            properties.update({"channels": channels, "sample_rates": rates, "formats": formats})
        if microphone:
            properties.update({"microphone": microphone, "sensitivity": sensitivity})
        return properties

    def get_audio_config(self) -> Dict:
        return {
            "input": {name: cfg.to_dict() for (name, is_input), cfg in self._configured.items() if is_input},
            "output": {name: cfg.to_dict() for (name, is_input), cfg in self._configured.items() if not is_input},
        }
