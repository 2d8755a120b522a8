"""
Media device backend for capturelab, built on PortAudio via sounddevice.

Devices are reported by label, the way a browser's media device list does,
and input devices can be probed by briefly opening an input stream.
"""

import logging
from typing import List, Tuple

import sounddevice as sd

from .devices import BrowserDevice, INPUT, OUTPUT

logger = logging.getLogger(__name__)


class PortAudioBackend:
    """Lists PortAudio devices and probes inputs with a transient stream."""

    def __init__(self, probe_channels: int = 32):
        self.probe_channels = probe_channels

    def enumerate_devices(self) -> List[BrowserDevice]:
        devices = []
        default_input, default_output = sd.default.device

        for info in sd.query_devices():
            index = info["index"]
            if info["max_input_channels"] > 0:
                devices.append(BrowserDevice(
                    device_id=f"pa_input_{index}",
                    label=info["name"],
                    kind=INPUT,
                    is_default=index == default_input,
                    group_id=str(info["hostapi"]),
                ))
            if info["max_output_channels"] > 0:
                devices.append(BrowserDevice(
                    device_id=f"pa_output_{index}",
                    label=info["name"],
                    kind=OUTPUT,
                    is_default=index == default_output,
                    group_id=str(info["hostapi"]),
                ))

        logger.debug(f"PortAudio reported {len(devices)} devices")
        return devices

    @staticmethod
    def device_index(device: BrowserDevice) -> int:
        return int(device.device_id.rsplit("_", 1)[-1])

    def probe(self, device: BrowserDevice) -> Tuple[int, int]:
        """
        Open a short-lived input stream to read the channel count and sample
        rate the device actually runs at. The stream is always closed.
        """
        index = self.device_index(device)
        info = sd.query_devices(index)
        channels = max(1, min(int(info["max_input_channels"]), self.probe_channels))

        stream = sd.InputStream(device=index, channels=channels)
        try:
            return int(stream.channels), int(stream.samplerate)
        finally:
            stream.close()
