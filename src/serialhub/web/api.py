"""
REST API endpoints for polling access to serial lines.

Inbound bytes accumulate in each session's receive buffer and are
collected with a destructive read.
"""

import logging
from datetime import datetime

from flask import Blueprint, Response, current_app, g, jsonify, request

from serialhub import __version__
from serialhub.core.errors import (
    AccessDeniedError,
    AlreadyOpenError,
    DeviceError,
    InvalidLineNameError,
    NotOpenError,
    SerialHubError,
    WriteError,
)
from serialhub.core.models import LineSettings
from serialhub.core.policy import Capability, canonical_line_name
from serialhub.serial.traffic_log import TrafficLog

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

# Most specific first
ERROR_STATUS = [
    (InvalidLineNameError, 400),
    (AccessDeniedError, 403),
    (AlreadyOpenError, 409),
    (NotOpenError, 409),
    (WriteError, 502),
    (DeviceError, 502),
]


@api_bp.errorhandler(SerialHubError)
def handle_serialhub_error(error: SerialHubError):
    """Convert core errors to JSON responses."""
    status = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            status = code
            break
    logger.debug(f"{request.method} {request.path}: {error}")
    return jsonify({"error": str(error)}), status


def api_status():
    """API name, version and uptime in milliseconds."""
    started = current_app.config["SERIALHUB_STARTED"]
    uptime = datetime.now() - started
    return jsonify({
        "name": "serialhub",
        "version": __version__,
        "uptime": int(uptime.total_seconds() * 1000),
    })


def _line_name(name: str) -> str:
    """Canonicalize a URL line name and check it against the allow-list."""
    line = canonical_line_name(name)
    g.policy.require_line(line)
    return line


def _port_entries() -> list[dict]:
    """Enumerated ports plus open sessions, filtered by the allow-list."""
    lister = current_app.config["SERIALHUB_PORT_LISTER"]
    entries = []
    seen = set()

    for port in lister():
        name = port.get("name")
        if not g.policy.is_line_allowed(name):
            continue
        entry = dict(port)
        session = g.registry.get(name)
        entry["status"] = "open" if session else "closed"
        if session:
            entry["config"] = session.settings.to_dict()
        entries.append(entry)
        seen.add(name)

    for session in g.registry.sessions():
        if session.name in seen or not g.policy.is_line_allowed(session.name):
            continue
        entries.append({
            "name": session.name,
            "status": "open",
            "config": session.settings.to_dict(),
        })

    return entries


# --- Port Endpoints ---

@api_bp.route("/port", methods=["GET"])
def list_ports():
    """List serial ports."""
    g.policy.require(Capability.LIST)
    ports = _port_entries()
    return jsonify({
        "ports": ports,
        "count": len(ports),
    })


@api_bp.route("/port/<name>", methods=["GET"])
def get_port(name: str):
    """Get a specific port status."""
    line = _line_name(name)

    for entry in _port_entries():
        if entry["name"] == line:
            session = g.registry.get(line)
            if session:
                entry.update(session.info())
            return jsonify(entry)

    return jsonify({"error": f"Serial port not found: {line}"}), 404


@api_bp.route("/port/<name>/open", methods=["POST"])
def open_port(name: str):
    """Open a serial port."""
    line = _line_name(name)

    data = request.get_json(silent=True)
    if data is None:
        data = {}
    try:
        settings = LineSettings.from_dict(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    session = g.registry.open(line, settings)

    if g.config.log_dir:
        TrafficLog(g.config.log_dir, line).attach(session)

    return jsonify({
        "name": line,
        "status": "open",
        "config": settings.to_dict(),
    })


@api_bp.route("/port/<name>/close", methods=["POST"])
def close_port(name: str):
    """Close a serial port."""
    line = _line_name(name)
    g.registry.close(line)
    return jsonify({"name": line, "status": "closed"})


@api_bp.route("/port/<name>/write", methods=["POST"])
def write_port(name: str):
    """Write the raw request body to a serial port."""
    line = _line_name(name)
    session = g.registry.require(line)
    g.policy.require(Capability.WRITE, line)

    length = session.write(request.get_data())
    return jsonify({"name": line, "length": length})


@api_bp.route("/port/<name>/read", methods=["GET"])
def read_port(name: str):
    """Read and clear the receive buffer.

    Optional 'take' query parameter limits the number of bytes returned;
    the rest of the buffer is discarded either way.
    """
    line = _line_name(name)
    session = g.registry.require(line)
    g.policy.require(Capability.READ, line)

    take = request.args.get("take")
    if take is not None:
        try:
            take = int(take)
        except ValueError:
            return jsonify({"error": "take must be an integer"}), 400
        if take < 0:
            return jsonify({"error": "take must not be negative"}), 400

    data, overflow = session.drain_buffer(take)
    available, _, _ = session.peek_available()

    # Detect content type: binary or text
    mimetype = "application/octet-stream"
    accept = request.headers.get("Accept", "")
    if "text/html" in accept or "text/plain" in accept:
        mimetype = "text/plain"

    response = Response(data, mimetype=mimetype)
    response.headers["X-Read-Length"] = str(len(data))
    response.headers["X-Read-Available"] = str(available)
    response.headers["X-Read-Overflow"] = "true" if overflow else "false"
    return response


@api_bp.route("/port/<name>/read", methods=["DELETE"])
def clear_port(name: str):
    """Clear the receive buffer."""
    line = _line_name(name)
    session = g.registry.require(line)
    g.policy.require(Capability.READ, line)

    session.clear_buffer()
    return "", 204


@api_bp.route("/port/<name>/available", methods=["GET"])
def available_port(name: str):
    """Get the number of bytes available to read."""
    line = _line_name(name)
    session = g.registry.require(line)
    g.policy.require(Capability.READ, line)

    length, capacity, overflow = session.peek_available()
    return jsonify({
        "name": line,
        "length": length,
        "capacity": capacity,
        "overflow": overflow,
    })
