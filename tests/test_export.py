import io

import numpy as np
import pytest

from capturelab.export import COLUMNS, export_capture_csv, export_capture_csv_string, import_capture_csv
from capturelab.response import FrequencyResponse
from capturelab.session import CaptureSession

from conftest import FakeEngine, make_capture, make_result, noisy_response


def test_csv_layout():
    capture = make_capture(capture_id="abc", name="Desk, left")

    text = export_capture_csv_string(capture)
    lines = text.splitlines()

    assert lines[0] == '# name: "Desk, left"'
    assert '# id: "abc"' in lines
    assert '# output_channel: "both"' in lines
    header_index = lines.index(",".join(COLUMNS))
    assert len(lines) - header_index - 1 == len(capture.raw)


def test_export_import_preserves_values_exactly():
    session = CaptureSession()
    session.start_capture(FakeEngine(make_result(noisy_response(seed=7))), "hw:2")
    capture = session.to_capture("Measured")
    capture.id = "xyz"

    buffer = io.StringIO()
    export_capture_csv(capture, buffer)
    buffer.seek(0)
    loaded = import_capture_csv(buffer)

    assert loaded.id == "xyz"
    assert loaded.name == "Measured"
    assert loaded.timestamp == capture.timestamp
    assert loaded.device_name == "hw:2"
    assert loaded.smoothing_fraction == capture.smoothing_fraction
    np.testing.assert_array_equal(loaded.raw.frequencies, capture.raw.frequencies)
    np.testing.assert_array_equal(loaded.raw.magnitudes, capture.raw.magnitudes)
    np.testing.assert_array_equal(loaded.smoothed.magnitudes, capture.smoothed.magnitudes)
    np.testing.assert_array_equal(loaded.raw.phases, capture.raw.phases)
    np.testing.assert_array_equal(loaded.smoothed.phases, capture.smoothed.phases)


def test_magnitude_only_capture_exports_empty_phase_cells():
    capture = make_capture()
    capture.raw = FrequencyResponse([100.0, 200.0], [1.0, 2.0])
    capture.smoothed = FrequencyResponse([100.0, 200.0], [1.5, 1.5])

    text = export_capture_csv_string(capture)
    loaded = import_capture_csv(io.StringIO(text))

    assert text.splitlines()[-1] == "200.0,2.0,1.5,,"
    assert not loaded.raw.has_phase


def test_import_rejects_wrong_header():
    with pytest.raises(ValueError):
        import_capture_csv(io.StringIO("freq,mag\n100,1\n"))


def test_metadata_whitespace_and_newlines_survive():
    capture = make_capture(name="  Left speaker\nroom 2 ")
    capture.device_name = ' USB Mic "pro" '

    loaded = import_capture_csv(io.StringIO(export_capture_csv_string(capture)))

    assert loaded.name == "  Left speaker\nroom 2 "
    assert loaded.device_name == ' USB Mic "pro" '


def test_import_accepts_plain_metadata_values():
    text = "# name: Desk\n# duration: 5\n" + ",".join(COLUMNS) + "\n100.0,1.0,1.0,,\n"

    loaded = import_capture_csv(io.StringIO(text))

    assert loaded.name == "Desk"
    assert loaded.duration == 5
