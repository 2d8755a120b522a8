"""
CSV export and import of captures.

Layout: ``# key: value`` metadata lines, a header row and one row per
frequency bin. Floats are written with repr() so they read back exactly.
"""

import csv
import io
import json
import logging
from datetime import datetime
from typing import IO, Dict, List

from .response import FrequencyResponse
from .session import Capture, DEFAULT_SMOOTHING

logger = logging.getLogger(__name__)

COLUMNS = ["frequency_hz", "raw_magnitude_db", "smoothed_magnitude_db",
           "raw_phase_deg", "smoothed_phase_deg"]


def _metadata(capture: Capture) -> Dict[str, str]:
    return {
        "name": capture.name,
        "id": capture.id or "",
        "timestamp": capture.timestamp.isoformat(),
        "device": capture.device_name,
        "signal_type": capture.signal_type,
        "duration": str(capture.duration),
        "sample_rate": str(capture.sample_rate),
        "output_channel": capture.output_channel,
        "smoothing": str(capture.smoothing_fraction),
    }


def _decode_value(value: str) -> str:
    """JSON-quoted metadata value; hand-written plain values are taken as is."""
    try:
        decoded = json.loads(value)
    except ValueError:
        return value.strip()
    return decoded if isinstance(decoded, str) else value.strip()


def _cell(values, i: int) -> str:
    return repr(float(values[i])) if len(values) else ""


def export_capture_csv(capture: Capture, fileobj: IO[str]):
    for key, value in _metadata(capture).items():
        # JSON-quoted so whitespace and newlines survive
        fileobj.write(f"# {key}: {json.dumps(value)}\n")

    writer = csv.writer(fileobj, lineterminator="\n")
    writer.writerow(COLUMNS)
    raw, smoothed = capture.raw, capture.smoothed
    for i in range(len(raw)):
        writer.writerow([
            repr(float(raw.frequencies[i])),
            repr(float(raw.magnitudes[i])),
            _cell(smoothed.magnitudes, i),
            _cell(raw.phases, i),
            _cell(smoothed.phases, i),
        ])
    logger.debug(f"Exported capture {capture.id} ({len(raw)} rows)")


def export_capture_csv_string(capture: Capture) -> str:
    buffer = io.StringIO()
    export_capture_csv(capture, buffer)
    return buffer.getvalue()


def import_capture_csv(fileobj: IO[str]) -> Capture:
    """
    Read a capture written by export_capture_csv().

    Raises:
        ValueError: If the header or a row is malformed
    """
    metadata: Dict[str, str] = {}
    data_lines: List[str] = []
    for line in fileobj:
        if line.startswith("#"):
            key, sep, value = line[1:].rstrip("\r\n").partition(": ")
            if sep:
                metadata[key.strip()] = _decode_value(value)
        elif line.strip():
            data_lines.append(line)

    rows = list(csv.reader(data_lines))
    if not rows or [c.strip() for c in rows[0]] != COLUMNS:
        raise ValueError(f"Expected CSV header: {','.join(COLUMNS)}")

    columns: Dict[str, List[float]] = {name: [] for name in COLUMNS}
    for line_number, row in enumerate(rows[1:], start=2):
        if len(row) != len(COLUMNS):
            raise ValueError(f"Row {line_number} has {len(row)} columns, expected {len(COLUMNS)}")
        for name, cell in zip(COLUMNS, row):
            if cell.strip():
                columns[name].append(float(cell))

    frequencies = columns["frequency_hz"]
    raw = FrequencyResponse(frequencies, columns["raw_magnitude_db"], columns["raw_phase_deg"])
    smoothed = FrequencyResponse(frequencies, columns["smoothed_magnitude_db"] or columns["raw_magnitude_db"],
                                 columns["smoothed_phase_deg"])

    timestamp = metadata.get("timestamp")
    return Capture(
        id=metadata.get("id") or None,
        name=metadata.get("name") or "Imported capture",
        timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
        device_name=metadata.get("device", ""),
        signal_type=metadata.get("signal_type", "sweep"),
        duration=int(metadata.get("duration") or 10),
        sample_rate=int(metadata.get("sample_rate") or 48000),
        output_channel=metadata.get("output_channel", "both"),
        raw=raw,
        smoothed=smoothed,
        smoothing_fraction=int(metadata.get("smoothing") or DEFAULT_SMOOTHING),
    )
