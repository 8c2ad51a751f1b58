"""
HTTP interface for serialhub.

Provides the polling REST API and Socket.IO push access to serial lines.
"""

from serialhub.web.app import create_app
from serialhub.web.websocket import init_socketio

__all__ = ["create_app", "init_socketio"]
