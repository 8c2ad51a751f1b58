"""
Flask application factory for the serialhub HTTP server.
"""

from datetime import datetime
from functools import partial
from typing import Callable, Optional

from flask import Flask, g, jsonify

from serialhub.core.config import Config, load_config
from serialhub.core.policy import AccessPolicy
from serialhub.serial.device import create_serial_device, list_serial_ports
from serialhub.serial.registry import Registry


def create_app(
    config: Config | None = None,
    registry: Optional[Registry] = None,
    port_lister: Optional[Callable[[], list[dict]]] = None,
) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Optional Config instance. If None, loads from default location.
        registry: Session registry shared with other transports. If None, a
            new one is created from the config.
        port_lister: Enumerates serial ports; defaults to pyserial's list.

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    if registry is None:
        registry = Registry(
            device_factory=partial(create_serial_device, write_timeout=config.write_timeout),
            capacity=config.buffer_capacity,
            queue_size=config.event_queue_size,
        )

    app.config["SERIALHUB_CONFIG"] = config
    app.config["SERIALHUB_POLICY"] = config.permissions.to_policy()
    app.config["SERIALHUB_REGISTRY"] = registry
    app.config["SERIALHUB_PORT_LISTER"] = port_lister or list_serial_ports
    app.config["SERIALHUB_STARTED"] = datetime.now()

    from serialhub.web.api import api_bp, api_status

    prefix = config.server.prefix.rstrip("/")
    app.register_blueprint(api_bp, url_prefix=prefix or None)
    app.add_url_rule(prefix or "/", "api_status", api_status)

    @app.before_request
    def before_request():
        """Expose shared state to request handlers."""
        g.config = app.config["SERIALHUB_CONFIG"]
        g.policy = app.config["SERIALHUB_POLICY"]
        g.registry = app.config["SERIALHUB_REGISTRY"]

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not Found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method Not Allowed"}), 405

    return app


def get_registry_from_app(app: Flask) -> Registry:
    """Get session registry from application config."""
    return app.config["SERIALHUB_REGISTRY"]


def get_policy_from_app(app: Flask) -> AccessPolicy:
    """Get access policy from application config."""
    return app.config["SERIALHUB_POLICY"]
