import pytest

from capturelab.calibration import CalibrationStore, parse_calibration
from capturelab.errors import EmptyCalibration, InvalidCalibration


def test_parse_skips_comments_header_and_bad_rows():
    curve = parse_calibration("# comment\nFrequency,Magnitude\n100,0.5\n200,-0.3\nabc,xyz\n")

    assert curve.frequencies.tolist() == [100.0, 200.0]
    assert curve.magnitudes.tolist() == [0.5, -0.3]
    assert not curve.has_phase


def test_parse_accepts_mixed_separators_and_extra_columns():
    text = '// exported\n"Sens Factor =-1.2dB"\n20\t-3.1\t12.0\n1000 0.0\n20000,,1.5\n'

    curve = parse_calibration(text)

    assert curve.frequencies.tolist() == [20.0, 1000.0, 20000.0]
    assert curve.magnitudes.tolist() == [-3.1, 0.0, 1.5]


def test_parse_drops_non_positive_frequencies_and_sorts():
    curve = parse_calibration("0,1.0\n-5,2.0\n500,1.0\n50,2.0\n50,9.0\n")

    assert curve.frequencies.tolist() == [50.0, 500.0]
    assert curve.magnitudes.tolist() == [2.0, 1.0]


def test_only_first_freq_line_is_a_header():
    curve = parse_calibration("freq mag\nfreq mag\n100 1\n")
    assert len(curve) == 1


def test_parse_empty_raises():
    with pytest.raises(EmptyCalibration):
        parse_calibration("# nothing here\nFrequency,dB\n")
    assert issubclass(EmptyCalibration, InvalidCalibration)


def test_store_notifies_on_load_and_clear():
    store = CalibrationStore()
    seen = []
    store.subscribe(seen.append)

    curve = store.load("100,1\n200,2\n", source="umik.txt")
    store.clear()
    store.clear()

    assert seen == [curve, None]
    assert not store.active
    assert store.source is None


def test_failed_load_keeps_previous_curve():
    store = CalibrationStore()
    curve = store.load("100,1\n")

    with pytest.raises(EmptyCalibration):
        store.load("garbage")

    assert store.curve is curve


def test_subscriber_errors_do_not_break_store():
    store = CalibrationStore()

    def broken(_curve):
        raise RuntimeError("renderer gone")

    store.subscribe(broken)
    store.load("100,1\n")

    assert store.active


def test_load_file(tmp_path):
    path = tmp_path / "mic.cal"
    path.write_text("* header line\n10 -1.5\n100 0\n")

    curve = CalibrationStore().load_file(str(path))

    assert curve.frequencies.tolist() == [10.0, 100.0]
