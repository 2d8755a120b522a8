import os
import sys
from datetime import datetime

import numpy as np

# Add the src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from capturelab.devices import AudioConfig, BrowserDevice, DeviceConfig, NativeDevice, INPUT, OUTPUT
from capturelab.engine import CaptureEngine, CaptureResult
from capturelab.response import FrequencyResponse
from capturelab.session import Capture


class FakeNativeBackend:
    def __init__(self, devices=None, error=None, set_error=None):
        self.devices = devices or {INPUT: [], OUTPUT: []}
        self.error = error
        self.set_error = set_error
        self.configured = []

    def get_audio_devices(self):
        if self.error:
            raise self.error
        return self.devices

    def set_audio_device(self, name, is_input, config: AudioConfig):
        if self.set_error:
            raise self.set_error
        self.configured.append((name, is_input, config))
        return {"device": name}

    def get_device_properties(self, name, is_input):
        return {"name": name, "is_input": is_input, "source": "native"}

    def get_audio_config(self):
        return {"configured": len(self.configured)}


class FakeBrowserBackend:
    def __init__(self, devices=None, probe_result=(2, 48000), probe_error=None):
        self.devices = devices or []
        self.probe_result = probe_result
        self.probe_error = probe_error
        self.probed = []

    def enumerate_devices(self):
        return list(self.devices)

    def probe(self, device):
        self.probed.append(device.device_id)
        if self.probe_error:
            raise self.probe_error
        return self.probe_result


class FakeEngine(CaptureEngine):
    """Engine returning a prepared result."""

    def __init__(self, result=None, error=None):
        super().__init__()
        self.result = result
        self.error = error
        self.disposed = False
        self.devices = []

    def _capture(self, device_id):
        self.devices.append(device_id)
        if self.error:
            raise self.error
        return self.result

    def dispose(self):
        super().dispose()
        self.disposed = True


def native_device(name, channels=2, rates=(44100, 48000), is_default=False, hw_id="hw:1"):
    configs = [DeviceConfig(channels, rate, "s16") for rate in rates]
    return NativeDevice(name=name, is_default=is_default, supported_configs=configs,
                        default_config=DeviceConfig(channels, 48000, "s16"), hw_id=hw_id)


def browser_device(device_id, label, kind=INPUT, is_default=False):
    return BrowserDevice(device_id=device_id, label=label, kind=kind, is_default=is_default)


FREQS = np.geomspace(20, 20000, 64)


def make_response(level=0.0, phase=0.0, freqs=FREQS, with_phase=True):
    mags = np.full(len(freqs), level, dtype=float)
    phases = np.full(len(freqs), phase, dtype=float) if with_phase else None
    return FrequencyResponse(freqs, mags, phases)


def noisy_response(seed=0, freqs=FREQS):
    rng = np.random.default_rng(seed)
    return FrequencyResponse(freqs, rng.normal(0, 3, len(freqs)), rng.uniform(-180, 180, len(freqs)))


def make_result(response=None, channels=None):
    return CaptureResult.from_response(response or noisy_response(), channels)


def make_capture(capture_id=None, name="Capture", output_channel="both",
                 timestamp=None, level=0.0, phase=0.0):
    response = make_response(level, phase)
    return Capture(
        id=capture_id,
        name=name,
        timestamp=timestamp or datetime(2026, 1, 1, 12, 0, 0),
        device_name="USB Mic",
        signal_type="sweep",
        duration=10,
        sample_rate=48000,
        output_channel=output_channel,
        raw=response,
        smoothed=response.copy(),
    )

