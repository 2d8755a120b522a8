from capturelab.devices import (AudioConfig, DeviceCatalog, NameIdentityResolver,
                                BROWSER, INPUT, NATIVE, OUTPUT)
from capturelab.errors import DeviceNotFound

from conftest import FakeBrowserBackend, FakeNativeBackend, browser_device, native_device


def usb_mic_catalog(**kwargs):
    native = FakeNativeBackend({INPUT: [native_device("USB Mic", channels=2, rates=(48000,))], OUTPUT: []})
    browser = FakeBrowserBackend([browser_device("abc123def456", "USB Mic")])
    return DeviceCatalog(native, browser, **kwargs), native, browser


def test_same_device_from_both_sources_is_merged():
    catalog, _, browser = usb_mic_catalog()

    devices = catalog.enumerate()

    mics = [d for d in devices[INPUT] if d.name == "USB Mic"]
    assert len(mics) == 1
    assert mics[0].origin == NATIVE
    assert mics[0].browser_device.device_id == "abc123def456"
    assert mics[0].channels == 2
    assert mics[0].sample_rates == [48000]
    # Merged devices are never probed
    assert browser.probed == []


def test_without_native_preference_browser_device_gets_own_entry():
    catalog, _, _ = usb_mic_catalog(prefer_native=False)

    devices = catalog.enumerate()

    assert [d.origin for d in devices[INPUT]] == [NATIVE, BROWSER]


def test_native_failure_falls_back_to_browser_devices():
    native = FakeNativeBackend(error=RuntimeError("bridge not running"))
    browser = FakeBrowserBackend([browser_device("default", "", is_default=False),
                                  browser_device("spk1", "Speakers", kind=OUTPUT)],
                                 probe_result=(1, 44100))
    catalog = DeviceCatalog(native, browser)

    devices = catalog.enumerate()

    assert len(devices[INPUT]) == 1
    mic = devices[INPUT][0]
    assert mic.origin == BROWSER
    assert mic.name == "Microphone default"
    assert mic.is_default
    assert (mic.channels, mic.default_sample_rate) == (1, 44100)
    assert devices[OUTPUT][0].name == "Speakers"
    # Output devices are not probed
    assert browser.probed == ["default"]


def test_no_native_backend_is_not_fatal():
    catalog = DeviceCatalog(None, FakeBrowserBackend([browser_device("x", "Mic")]))
    assert [d.name for d in catalog.enumerate()[INPUT]] == ["Mic"]


def test_probe_failure_uses_defaults():
    browser = FakeBrowserBackend([browser_device("m1", "Headset")], probe_error=OSError("busy"))
    catalog = DeviceCatalog(None, browser)

    mic = catalog.enumerate()[INPUT][0]

    assert mic.channels == 2
    assert mic.sample_rates == [48000]


def test_native_ids_replace_whitespace_and_stay_unique():
    native = FakeNativeBackend({INPUT: [native_device("USB  Audio Device"), native_device("USB  Audio Device")],
                                OUTPUT: []})
    catalog = DeviceCatalog(native, None)

    ids = [d.device_id for d in catalog.enumerate()[INPUT]]

    assert ids == ["native_input_USB_Audio_Device", "native_input_USB_Audio_Device_2"]


def test_enumerate_starts_from_empty_catalog():
    catalog, native, _ = usb_mic_catalog()
    catalog.enumerate()
    native.devices = {INPUT: [], OUTPUT: []}
    catalog.browser_backend.devices = []

    assert catalog.enumerate() == {INPUT: [], OUTPUT: []}
    assert catalog.devices == []


def test_find_best_prefers_default_when_asked():
    native = FakeNativeBackend({INPUT: [native_device("Big Interface", channels=8, rates=(44100, 48000, 96000)),
                                        native_device("Small Mic", channels=1, is_default=True)],
                                OUTPUT: []})
    catalog = DeviceCatalog(native, None)
    catalog.enumerate()

    assert catalog.find_best(INPUT, prefer_default=True).name == "Small Mic"
    assert catalog.find_best(INPUT).name == "Big Interface"


def test_find_best_scores_native_over_richer_browser_device():
    native = FakeNativeBackend({INPUT: [native_device("Native Mic", channels=1, rates=(48000,))], OUTPUT: []})
    browser = FakeBrowserBackend([browser_device("b1", "Browser Mic")], probe_result=(4, 48000))
    catalog = DeviceCatalog(native, browser)
    catalog.enumerate()

    # native: 10 + 1 rate + 1 channel = 12, browser: 1 rate + 4 channels = 5
    assert catalog.find_best(INPUT).name == "Native Mic"
    # browser: 5 + 5 (channels) = 10, native: 12
    assert catalog.find_best(INPUT, preferred_channels=2).name == "Native Mic"


def test_find_best_is_deterministic_and_keeps_first_on_ties():
    native = FakeNativeBackend({INPUT: [native_device("First"), native_device("Second")], OUTPUT: []})
    catalog = DeviceCatalog(native, None)
    catalog.enumerate()

    picks = {catalog.find_best(INPUT, preferred_channels=2, preferred_sample_rate=48000).name for _ in range(5)}

    assert picks == {"First"}


def test_find_best_without_devices_returns_none():
    catalog = DeviceCatalog(None, None)
    catalog.enumerate()
    assert catalog.find_best(OUTPUT) is None


def test_select_native_device_pushes_config():
    catalog, native, _ = usb_mic_catalog()
    catalog.enumerate()

    selection = catalog.select_device("native_input_USB_Mic", {"channels": 8})

    assert selection.success
    assert selection.config.channels == 2
    assert selection.config.sample_rate == 48000
    assert selection.config.sample_format == "s16"
    name, is_input, config = native.configured[0]
    assert (name, is_input) == ("USB Mic", True)
    assert isinstance(config, AudioConfig)


def test_select_native_device_surfaces_backend_error():
    catalog, native, _ = usb_mic_catalog()
    catalog.enumerate()
    native.set_error = RuntimeError("Invalid sample rate")

    selection = catalog.select_device("native_input_USB_Mic", {"sample_rate": 12345})

    assert not selection.success
    assert str(selection.error) == "Invalid sample rate"


def test_select_browser_device_needs_no_backend_roundtrip():
    catalog = DeviceCatalog(None, FakeBrowserBackend([browser_device("b1", "Mic")], probe_result=(1, 44100)))
    catalog.enumerate()

    selection = catalog.select_device("b1", {"channels": 2, "sample_rate": 96000, "sample_format": "s16"})

    assert selection.success
    assert selection.config.channels == 1
    assert selection.config.sample_rate == 44100
    assert selection.config.sample_format == "f32"


def test_select_unknown_device():
    catalog = DeviceCatalog(None, None)
    selection = catalog.select_device("nope")
    assert not selection.success
    assert isinstance(selection.error, DeviceNotFound)


def test_list_for_display():
    native = FakeNativeBackend({INPUT: [native_device("USB Mic", is_default=True)], OUTPUT: []})
    catalog = DeviceCatalog(native, None)
    catalog.enumerate()

    assert catalog.list_for_display(INPUT) == [
        {"value": "native_input_USB_Mic", "label": "USB Mic", "info": "2ch 48kHz (Default)"}
    ]
    assert catalog.list_for_display(OUTPUT) == []


def test_device_details_fall_back_to_catalog_info():
    catalog = DeviceCatalog(None, FakeBrowserBackend([browser_device("b1", "Mic")]))
    catalog.enumerate()

    details = catalog.get_device_details("b1")

    assert details["origin"] == BROWSER
    assert details["channels"] == 2


def test_name_resolver_ignores_kind_mismatch():
    catalog, _, _ = usb_mic_catalog()
    catalog.enumerate()
    speaker = browser_device("s1", "USB Mic", kind=OUTPUT)

    assert NameIdentityResolver().match(speaker, catalog.devices) is None


def test_current_state_comes_from_native_backend():
    catalog, native, _ = usb_mic_catalog()
    catalog.enumerate()
    catalog.select_device("native_input_USB_Mic")

    assert catalog.get_current_state() == {"configured": 1}
    assert DeviceCatalog(None, None).get_current_state() is None
