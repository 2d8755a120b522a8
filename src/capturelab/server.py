#!/usr/bin/env python3
"""
REST API for capturelab.

Exposes the device catalog, the capture session, stored captures, the
comparison selection, calibration and display-mode resolution over HTTP.
"""

import argparse
import io
import logging
import sys
import threading
from typing import Any, Callable, Dict, Optional

from flask import Flask, Response, abort, jsonify, request
from flask_cors import CORS

from . import __version__
from .calibration import CalibrationStore
from .config import Config
from .devices import DeviceCatalog, INPUT, KINDS, load_backends
from .display import DisplayContext, available_modes, resolve_display
from .engine import AlsaCaptureEngine, CaptureEngine
from .errors import (CaptureBusy, CaptureFailed, CaptureLabError, CaptureNotFound,
                     DeviceNotFound, IncompatibleResponses, InsufficientData,
                     InvalidCalibration)
from .export import export_capture_csv_string, import_capture_csv
from .repository import CaptureRepository, JsonCaptureStore, MemoryCaptureStore
from .session import CAPTURING, CaptureParams, CaptureSession

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

# Service state, built on first use or injected with configure()
_state: Dict[str, Any] = {}
_state_lock = threading.Lock()
_capture_thread: Optional[threading.Thread] = None


def configure(config: Optional[Config] = None, catalog: Optional[DeviceCatalog] = None,
              session: Optional[CaptureSession] = None, repository: Optional[CaptureRepository] = None,
              calibration: Optional[CalibrationStore] = None,
              engine_factory: Optional[Callable[[], CaptureEngine]] = None):
    """Set up the service state. Anything not given is built from the config."""
    config = config or Config.from_env()

    if catalog is None:
        native, browser = load_backends()
        catalog = DeviceCatalog(native, browser, prefer_native=config.prefer_native)
    if repository is None:
        store = JsonCaptureStore(config.data_dir) if config.store == "json" else MemoryCaptureStore()
        repository = CaptureRepository(store)

    with _state_lock:
        _state.clear()
        _state.update({
            "config": config,
            "catalog": catalog,
            "session": session or CaptureSession(config.smoothing),
            "repository": repository,
            "calibration": calibration or CalibrationStore(),
            "engine_factory": engine_factory or AlsaCaptureEngine,
        })
    logger.info(f"Configured capturelab: store={config.store}, smoothing=1/{config.smoothing}")


def _get(name: str):
    if not _state:
        configure()
    return _state[name]


def _context() -> DisplayContext:
    return DisplayContext(_get("session"), _get("repository"), _get("calibration"))


# Add response headers middleware
@app.after_request
def after_request(response):
    response.headers["server"] = f"capturelab-api/{__version__}"
    return response


# Add request logging middleware
@app.before_request
def log_request_info():
    """Log request information for debugging."""
    logger.info(f"Request: {request.method} {request.url}")
    if request.args:
        logger.debug(f"Query parameters: {dict(request.args)}")
    if request.content_type:
        logger.debug(f"Content-Type: {request.content_type}")


def _error_response(status: int, error: str, message: str, **extra):
    body = {
        "error": error,
        "message": message,
        "endpoint": request.endpoint,
        "url": request.url,
        "method": request.method,
    }
    body.update(extra)
    return jsonify(body), status


@app.errorhandler(404)
def not_found_error(error):
    logger.warning(f"404 Not Found: {request.method} {request.url} - {error.description}")
    return _error_response(404, "Not Found", error.description or "The requested resource was not found")


@app.errorhandler(400)
def bad_request_error(error):
    logger.warning(f"400 Bad Request: {request.method} {request.url} - {error.description}")
    return _error_response(400, "Bad Request", error.description or "The request was invalid")


@app.errorhandler(409)
def conflict_error(error):
    logger.warning(f"409 Conflict: {request.method} {request.url} - {error.description}")
    return _error_response(409, "Conflict", error.description)


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"500 Internal Server Error: {request.method} {request.url} - {error}")
    return _error_response(500, "Internal Server Error", "An internal server error occurred")


@app.errorhandler(CaptureLabError)
def capturelab_error(error):
    """Map core errors to JSON responses."""
    if isinstance(error, (DeviceNotFound, CaptureNotFound)):
        return _error_response(404, "Not Found", str(error))
    if isinstance(error, CaptureBusy):
        return _error_response(409, "Capture busy", str(error))
    if isinstance(error, CaptureFailed):
        logger.warning(f"Capture failed ({error.category}): {error}")
        return _error_response(422, "Capture failed", error.message,
                               category=error.category, hint=error.hint)
    if isinstance(error, (InsufficientData, IncompatibleResponses)):
        return _error_response(422, type(error).__name__, str(error))
    if isinstance(error, InvalidCalibration):
        return _error_response(400, "Invalid calibration", str(error))
    logger.error(f"Unhandled capturelab error: {error}")
    return _error_response(500, type(error).__name__, str(error))


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, "JSON body must be an object")
    return data


def _int_param(name: str, value, min_val: int = None) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        abort(400, f"Invalid {name}: must be an integer")
    if min_val is not None and number < min_val:
        abort(400, f"{name} must be >= {min_val}")
    return number


def _bool_param(value, default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).lower() in ("1", "true", "yes", "on")


def _check_kind(kind: str):
    if kind not in KINDS:
        abort(404, f"Unknown device kind {kind}, expected one of: {', '.join(KINDS)}")


@app.route("/version", methods=["GET"])
def get_version():
    """Get API version information."""
    return jsonify({
        "version": __version__,
        "api_name": "capturelab Audio Capture API",
        "features": [
            "Unified ALSA and PortAudio device catalog",
            "Sweep, white and pink noise frequency response capture",
            "Fractional-octave smoothing with re-derivation on demand",
            "Complex L+R channel averaging",
            "Microphone calibration curves",
            "Capture storage, comparison selection and CSV export",
        ],
        "server_info": {
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            "store": _get("config").store,
        },
    })


# Devices

@app.route("/devices", methods=["GET"])
def get_devices():
    catalog = _get("catalog")
    devices = catalog.enumerate()
    return jsonify({
        "input": [d.to_dict() for d in devices[INPUT]],
        "output": [d.to_dict() for d in devices["output"]],
        "state": catalog.get_current_state(),
    })


def _ensure_enumerated(catalog: DeviceCatalog):
    if not catalog.devices:
        catalog.enumerate()


@app.route("/devices/<kind>/list", methods=["GET"])
def list_devices(kind: str):
    _check_kind(kind)
    catalog = _get("catalog")
    _ensure_enumerated(catalog)
    return jsonify({"kind": kind, "devices": catalog.list_for_display(kind)})


@app.route("/devices/<kind>/best", methods=["GET"])
def best_device(kind: str):
    _check_kind(kind)
    catalog = _get("catalog")
    _ensure_enumerated(catalog)
    device = catalog.find_best(
        kind,
        preferred_channels=_int_param("channels", request.args.get("channels"), 1),
        preferred_sample_rate=_int_param("sample_rate", request.args.get("sample_rate"), 1),
        prefer_default=_bool_param(request.args.get("prefer_default")),
    )
    if device is None:
        abort(404, f"No {kind} devices available")
    return jsonify(device.to_dict())


@app.route("/devices/select", methods=["POST"])
def select_device():
    data = _json_body()
    device_id = data.get("device_id")
    if not device_id:
        abort(400, "device_id is required")
    catalog = _get("catalog")
    _ensure_enumerated(catalog)

    selection = catalog.select_device(device_id, data.get("config") or {})
    if not selection.success:
        status = 404 if isinstance(selection.error, DeviceNotFound) else 500
        logger.error(f"Device selection failed: {selection.error}")
        return jsonify(selection.to_dict()), status
    return jsonify(selection.to_dict())


@app.route("/devices/<device_id>/details", methods=["GET"])
def device_details(device_id: str):
    catalog = _get("catalog")
    _ensure_enumerated(catalog)
    return jsonify(catalog.get_device_details(device_id))


# Capture session

def _alsa_device_name(device_id: str) -> str:
    """ALSA PCM name for a catalog device id."""
    if not device_id or device_id == "default":
        return "default"
    catalog = _get("catalog")
    _ensure_enumerated(catalog)
    device = catalog.get_device(device_id)
    if device.native_device is not None and device.native_device.hw_id:
        return device.native_device.hw_id
    logger.warning(f"Device {device.name} has no ALSA name, capturing from default")
    return "default"


def _capture_worker(engine: CaptureEngine, alsa_device: str, params: CaptureParams):
    try:
        _get("session").start_capture(engine, alsa_device, params)
    except CaptureFailed as e:
        logger.error(f"Background capture failed: {e}")
    except CaptureLabError as e:
        logger.error(f"Background capture rejected: {e}")


@app.route("/capture/start", methods=["POST"])
def start_capture():
    """
    Start a measurement in the background.

    JSON body: device_id, output_device, duration, sample_rate, signal_type,
    output_channel, capture_volume, output_volume. With ?wait=true the
    request returns once the capture is done.
    """
    global _capture_thread

    data = _json_body()
    device_id = data.get("device_id") or "default"
    output_id = data.get("output_device") or "default"

    try:
        params = CaptureParams.from_dict({k: v for k, v in data.items()
                                          if k not in ("device_id", "output_device")})
    except (TypeError, ValueError) as e:
        abort(400, str(e))

    params.output_device = _alsa_device_name(output_id)
    alsa_device = _alsa_device_name(device_id)
    params.device_name = device_id
    if device_id != "default":
        params.device_name = _get("catalog").get_device(device_id).name

    session = _get("session")
    engine = _get("engine_factory")()

    if _bool_param(request.args.get("wait")):
        if _capture_thread is not None and _capture_thread.is_alive():
            engine.dispose()
            raise CaptureBusy("A capture is already in progress")
        capture = session.start_capture(engine, alsa_device, params)
        return jsonify({"status": "captured", "capture": capture.summary()})

    with _state_lock:
        if session.state == CAPTURING or (_capture_thread is not None and _capture_thread.is_alive()):
            engine.dispose()
            raise CaptureBusy("A capture is already in progress")
        _capture_thread = threading.Thread(target=_capture_worker,
                                           args=(engine, alsa_device, params), daemon=True)
        _capture_thread.start()

    logger.info(f"Started capture on {alsa_device}: {params.signal_type}, {params.duration}s")
    return jsonify({
        "status": "started",
        "device": alsa_device,
        "signal_type": params.signal_type,
        "duration": params.duration,
        "output_channel": params.output_channel,
    })


@app.route("/capture/status", methods=["GET"])
def capture_status():
    return jsonify(_get("session").status())


@app.route("/capture/stop", methods=["POST"])
def stop_capture():
    session = _get("session")
    session.stop()
    return jsonify({"status": "stopped", "state": session.state})


@app.route("/capture/clear", methods=["POST"])
def clear_capture():
    session = _get("session")
    session.clear()
    return jsonify({"status": "cleared", "state": session.state})


@app.route("/capture/reprocess", methods=["POST"])
def reprocess_capture():
    data = _json_body()
    smoothing = _int_param("smoothing", data.get("smoothing", request.args.get("smoothing")), 1)
    if smoothing is None:
        abort(400, "smoothing is required")
    session = _get("session")
    session.reprocess(smoothing)
    return jsonify(session.status())


@app.route("/capture/save", methods=["POST"])
def save_capture():
    data = _json_body()
    capture_id = _get("repository").save(_get("session"), data.get("name"))
    return jsonify({"status": "saved", "id": capture_id})


def _csv_response(text: str, filename: str) -> Response:
    return Response(text, mimetype="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={filename}"})


@app.route("/capture/current/export", methods=["GET"])
def export_current():
    capture = _get("session").to_capture()
    return _csv_response(export_capture_csv_string(capture), "capture.csv")


# Stored captures

@app.route("/captures", methods=["GET"])
def list_captures():
    repository = _get("repository")
    channel = request.args.get("channel")
    captures = repository.by_channel().get(channel, []) if channel else repository.all()
    return jsonify({
        "captures": [c.summary() for c in captures],
        "selection": repository.selection,
    })


@app.route("/captures/<capture_id>", methods=["GET"])
def get_capture(capture_id: str):
    return jsonify(_get("repository").require(capture_id).to_dict())


@app.route("/captures/<capture_id>", methods=["PATCH"])
def rename_capture(capture_id: str):
    name = _json_body().get("name")
    try:
        capture = _get("repository").rename(capture_id, name)
    except ValueError as e:
        abort(400, str(e))
    return jsonify(capture.summary())


@app.route("/captures/<capture_id>", methods=["DELETE"])
def delete_capture(capture_id: str):
    _get("repository").delete(capture_id)
    return jsonify({"status": "deleted", "id": capture_id})


@app.route("/captures/delete", methods=["POST"])
def delete_captures():
    ids = _json_body().get("ids")
    if not isinstance(ids, list):
        abort(400, "ids must be a list of capture ids")
    return jsonify(_get("repository").delete_many(ids))


@app.route("/captures/<capture_id>/export", methods=["GET"])
def export_capture(capture_id: str):
    capture = _get("repository").require(capture_id)
    return _csv_response(export_capture_csv_string(capture), f"capture_{capture_id}.csv")


def _uploaded_text() -> str:
    """Text from a multipart 'file' upload, a JSON 'text' field or the raw body."""
    if "file" in request.files:
        return request.files["file"].read().decode("utf-8", errors="replace")
    if request.is_json:
        text = _json_body().get("text")
        if not isinstance(text, str):
            abort(400, "JSON body needs a 'text' field")
        return text
    return request.get_data(as_text=True)


@app.route("/captures/import", methods=["POST"])
def import_capture():
    try:
        capture = import_capture_csv(io.StringIO(_uploaded_text()))
    except ValueError as e:
        abort(400, f"Invalid capture CSV: {e}")
    capture_id = _get("repository").save(capture)
    return jsonify({"status": "imported", "id": capture_id})


# Comparison selection

@app.route("/selection", methods=["GET"])
def get_selection():
    return jsonify({"selection": _get("repository").selection})


@app.route("/selection/all", methods=["POST"])
def select_all():
    repository = _get("repository")
    repository.select_all()
    return jsonify({"selection": repository.selection})


@app.route("/selection/<capture_id>", methods=["POST"])
def select_capture(capture_id: str):
    repository = _get("repository")
    repository.select(capture_id)
    return jsonify({"selection": repository.selection})


@app.route("/selection/<capture_id>", methods=["DELETE"])
def deselect_capture(capture_id: str):
    repository = _get("repository")
    repository.deselect(capture_id)
    return jsonify({"selection": repository.selection})


@app.route("/selection", methods=["DELETE"])
def clear_selection():
    repository = _get("repository")
    repository.clear_selection()
    return jsonify({"selection": repository.selection})


# Calibration

@app.route("/calibration", methods=["GET"])
def get_calibration():
    return jsonify(_get("calibration").to_dict())


@app.route("/calibration", methods=["POST"])
def load_calibration():
    source = request.files["file"].filename if "file" in request.files else request.args.get("source")
    calibration = _get("calibration")
    calibration.load(_uploaded_text(), source)
    return jsonify(calibration.to_dict())


@app.route("/calibration", methods=["DELETE"])
def clear_calibration():
    calibration = _get("calibration")
    calibration.clear()
    return jsonify(calibration.to_dict())


# Display

@app.route("/display", methods=["GET"])
def list_display_modes():
    return jsonify({"modes": available_modes(_context())})


@app.route("/display/<mode>", methods=["GET"])
def get_display(mode: str):
    result = resolve_display(mode, _context())
    if result is None:
        abort(400, f"Unknown display mode: {mode}")
    return jsonify(result.to_dict(apply_calibration=_bool_param(request.args.get("calibrated"), True)))


def main():
    """Main entry point for the capturelab-server console script."""
    parser = argparse.ArgumentParser(description="capturelab REST API server")
    parser.add_argument("--host", help="Address to listen on (default from CAPTURELAB_HOST)")
    parser.add_argument("--port", type=int, help="Port to listen on (default from CAPTURELAB_PORT)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    config = Config.from_env()
    configure(config)

    app.run(
        host=args.host or config.host,
        port=args.port or config.port,
        debug=False,
        threaded=True
    )


if __name__ == "__main__":
    main()
