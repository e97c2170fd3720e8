"""Transport layer for device connections."""

from voicerelay.transport.base import Connection, Transport
from voicerelay.transport.websocket_transport import WebSocketConnection, WebSocketTransport

__all__ = [
    "Connection",
    "Transport",
    "WebSocketConnection",
    "WebSocketTransport",
]
