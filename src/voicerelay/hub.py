"""Connection hub: maps connection ids to live transport connections.

The registry and the relay pipeline address devices by connection id only;
the hub turns those addresses into protocol messages on the right socket.
"""

import logging

from voicerelay.errors import RelayError
from voicerelay.metrics import MetricsCollector, get_metrics_collector
from voicerelay.models import RelayResult, SessionStatus
from voicerelay.transport.base import Connection
from voicerelay.transport.protocol import (
    ErrorMessage,
    ServerMessage,
    SessionStatusMessage,
    VoiceReceivedMessage,
)

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Registry of live connections, used as status notifier and relay delivery."""

    def __init__(self, metrics: MetricsCollector | None = None) -> None:
        self._connections: dict[str, Connection] = {}
        self._metrics = metrics or get_metrics_collector()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def register(self, connection: Connection) -> None:
        self._connections[connection.connection_id] = connection
        self._metrics.record_connection_open()
        logger.debug("Connection registered", extra={"connection_id": connection.connection_id})

    def unregister(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            self._metrics.record_connection_closed()
            logger.debug("Connection unregistered", extra={"connection_id": connection_id})

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    async def send(self, connection_id: str, message: ServerMessage) -> bool:
        """Send a message to a connection.

        Returns:
            False if the connection is unknown, closed or the write failed
        """
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_connected:
            return False

        try:
            return await connection.send_message(message)
        except Exception as e:
            logger.warning(
                "Failed to send message",
                extra={"connection_id": connection_id, "type": message.type, "error": str(e)},
            )
            return False

    async def send_status(self, connection_id: str, status: SessionStatus, message: str) -> None:
        if status is SessionStatus.TERMINATED:
            return
        await self.send(connection_id, SessionStatusMessage(status=status.value, message=message))

    async def deliver(self, connection_id: str, result: RelayResult) -> bool:
        return await self.send(connection_id, VoiceReceivedMessage.from_result(result))

    async def send_error(self, connection_id: str, error: RelayError) -> None:
        await self.send(
            connection_id,
            ErrorMessage(message=error.message, code=error.code, stage=error.stage),
        )
