"""WebSocket transport implementation.

Devices connect over a plain WebSocket and exchange JSON protocol messages.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets
from pydantic import ValidationError
from websockets.asyncio.server import ServerConnection, serve
from websockets.protocol import State

from voicerelay.transport.base import Connection, Transport
from voicerelay.transport.protocol import (
    ClientMessage,
    ErrorMessage,
    ServerMessage,
    parse_client_message,
)

logger = logging.getLogger(__name__)


class WebSocketConnection(Connection):
    """WebSocket-based device connection."""

    def __init__(self, websocket: ServerConnection, connection_id: str) -> None:
        """Initialize WebSocket connection.

        Args:
            websocket: WebSocket connection
            connection_id: Unique connection identifier
        """
        self._websocket = websocket
        self._connection_id = connection_id
        self._connected = True

        logger.info(
            "WebSocket connection initialized",
            extra={"connection_id": connection_id, "remote": websocket.remote_address},
        )

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def is_connected(self) -> bool:
        return self._connected and self._websocket.state == State.OPEN

    async def send_message(self, message: ServerMessage) -> bool:
        if not self.is_connected:
            return False

        try:
            await self._websocket.send(message.to_json())
        except websockets.exceptions.ConnectionClosed:
            self._connected = False
            logger.debug(
                "Send on closed WebSocket dropped",
                extra={"connection_id": self._connection_id, "type": message.type},
            )
            return False
        return True

    async def receive_messages(self) -> AsyncIterator[ClientMessage]:
        try:
            async for raw_message in self._websocket:
                try:
                    message = parse_client_message(raw_message)
                except ValidationError as e:
                    errors = "; ".join(
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                        for err in e.errors()
                    )
                    await self._reject(f"Invalid message: {errors}")
                    continue
                except ValueError as e:
                    await self._reject(str(e))
                    continue

                logger.debug(
                    "Message received",
                    extra={"connection_id": self._connection_id, "type": message.type},
                )
                yield message

        except websockets.exceptions.ConnectionClosed:
            logger.info(
                "WebSocket connection closed by client",
                extra={"connection_id": self._connection_id},
            )
        finally:
            self._connected = False

    async def _reject(self, reason: str) -> None:
        logger.warning(
            "Rejected inbound message",
            extra={"connection_id": self._connection_id, "error": reason},
        )
        await self.send_message(ErrorMessage(message=reason, code="INVALID_MESSAGE"))

    async def close(self) -> None:
        if not self._connected:
            return

        logger.info("Closing WebSocket connection", extra={"connection_id": self._connection_id})
        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"connection_id": self._connection_id, "error": str(e)},
            )
        finally:
            self._connected = False


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Accepted connections are queued for the relay server, which drives each
    one until it closes.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 3000,
        max_connections: int = 200,
        max_message_bytes: int = 10 * 2**20,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port (0 picks a free port)
            max_connections: Maximum concurrent connections
            max_message_bytes: Maximum inbound frame size
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_bytes = max_message_bytes
        self._server: Any = None
        self._running = False
        self._active: set[str] = set()
        self._connection_queue: asyncio.Queue[WebSocketConnection] = asyncio.Queue()

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """Bound port (resolved after start when configured as 0)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    @property
    def active_connections(self) -> int:
        return len(self._active)

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
            )
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

        self._running = True
        logger.info("WebSocket server started", extra={"host": self._host, "port": self.port})

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_connection(self) -> Connection:
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")
        return await self._connection_queue.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        if len(self._active) >= self._max_connections:
            logger.warning(
                "Connection limit reached, rejecting client",
                extra={"remote": websocket.remote_address, "limit": self._max_connections},
            )
            await websocket.close(code=1013, reason="Server busy")
            return

        connection_id = f"ws-{uuid.uuid4().hex[:12]}"
        self._active.add(connection_id)
        connection = WebSocketConnection(websocket, connection_id)
        await self._connection_queue.put(connection)

        try:
            # The relay server reads from the socket; keep the handler alive until close.
            await websocket.wait_closed()
        finally:
            self._active.discard(connection_id)
            logger.info("WebSocket connection closed", extra={"connection_id": connection_id})
