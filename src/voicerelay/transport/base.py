"""Base transport abstraction for device connections.

Defines the interface a transport implementation must provide so the relay
server can stay independent of the wire technology.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from voicerelay.transport.protocol import ClientMessage, ServerMessage


class Connection(ABC):
    """One live device connection.

    Each transport implementation provides a concrete connection type that
    handles framing and serialization of protocol messages.
    """

    @abstractmethod
    async def send_message(self, message: ServerMessage) -> bool:
        """Send a protocol message to the device.

        Returns:
            True if the message was written, False if the connection is closed
        """
        pass

    @abstractmethod
    async def receive_messages(self) -> AsyncIterator[ClientMessage]:
        """Receive validated protocol messages until the device disconnects.

        Malformed frames are answered with an error message and skipped.

        Yields:
            ClientMessage: Parsed inbound message
        """
        # Using yield to make this an async generator
        if False:
            yield

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        pass

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique connection identifier."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is still open."""
        pass


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a transport server and hands out a Connection
    for each device that connects.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start accepting connections.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport and close all connections."""
        pass

    @abstractmethod
    async def accept_connection(self) -> Connection:
        """Block until the next device connects.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport is accepting connections."""
        pass
