"""Session registry: pairing state machine for two-device sessions.

Owns every session in the process and enforces the two-party invariant.
Mutations on a session key (join, leave, eviction) are serialized by a
per-key asyncio lock and re-validate registry state after the lock is
acquired, so concurrent joiners on the same key can never both create the
session or both be admitted as its second device.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Callable
from typing import Protocol

from voicerelay.errors import NoReceiverError, NotInSessionError, SessionFullError
from voicerelay.metrics import MetricsCollector, get_metrics_collector
from voicerelay.models import (
    Device,
    JoinOutcome,
    PeerResolution,
    Session,
    SessionStatus,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

MSG_WAITING = "Waiting for another device to join"
MSG_ALREADY_JOINED = "You are already in this session"
MSG_CONNECTED = "Devices connected successfully"
MSG_PEER_LEFT = "Other device disconnected, waiting for reconnection"
MSG_EXPIRED = "Session expired"


class StatusNotifier(Protocol):
    """Outbound channel for ``sessionStatus`` events."""

    async def send_status(
        self, connection_id: str, status: SessionStatus, message: str
    ) -> None: ...


class SessionRegistry:
    """In-memory registry of paired sessions.

    Thread-safety: This class is NOT thread-safe. All calls must come from the
    event loop that owns it.
    """

    def __init__(
        self,
        notifier: StatusNotifier,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
        notify_timeout_s: float = 5.0,
    ) -> None:
        """Initialize registry.

        Args:
            notifier: Receives status notifications for session members
            clock: Wall-clock source for session creation times
            metrics: Metrics collector (defaults to the process collector)
            notify_timeout_s: Upper bound on each status send made while
                holding a session lock
        """
        self._notifier = notifier
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()
        self._notify_timeout_s = notify_timeout_s
        self._sessions: dict[str, Session] = {}
        self._membership: dict[str, str] = {}  # connection_id -> session key
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def connection_count(self) -> int:
        return len(self._membership)

    def get_session(self, key: str) -> Session | None:
        """Return a snapshot of a session, or None if it does not exist."""
        session = self._sessions.get(key)
        return session.snapshot() if session is not None else None

    def session_for(self, connection_id: str) -> str | None:
        """Return the key of the session a connection belongs to."""
        return self._membership.get(connection_id)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def join(self, key: str, connection_id: str, language: str) -> JoinOutcome:
        """Admit a device into the session identified by ``key``.

        Args:
            key: Client-supplied session key
            connection_id: Transport connection of the joining device
            language: Declared language token of the joining device

        Returns:
            JoinOutcome describing the caller's resulting status

        Raises:
            SessionFullError: If the session already holds two other devices
            ValueError: If key or language is empty
        """
        if not key or not key.strip():
            raise ValueError("Session key must not be empty")
        if not language or not language.strip():
            raise ValueError("Language must not be empty")

        # A connection belongs to at most one session at a time.
        current_key = self._membership.get(connection_id)
        if current_key is not None and current_key != key:
            logger.info(
                "Connection switching sessions",
                extra={"connection_id": connection_id, "from": current_key, "to": key},
            )
            await self.leave(connection_id)

        lock = self._lock_for(key)
        async with lock:
            session = self._sessions.get(key)

            if session is None:
                session = Session(key=key, created_at=self._clock())
                session.devices.append(Device(connection_id, language))
                self._sessions[key] = session
                self._membership[connection_id] = key
                self._metrics.set_active_sessions(len(self._sessions))

                logger.info(
                    "Session created",
                    extra={"session_key": key, "connection_id": connection_id},
                )
                await self._notify(connection_id, SessionStatus.WAITING, MSG_WAITING)
                return JoinOutcome(key, SessionStatus.WAITING, MSG_WAITING)

            if session.find_device(connection_id) is not None:
                status = session.status
                message = MSG_ALREADY_JOINED if status is SessionStatus.WAITING else MSG_CONNECTED
                await self._notify(connection_id, status, message)
                return JoinOutcome(key, status, message, already_joined=True)

            if session.is_full:
                self._metrics.record_join_rejected()
                logger.warning(
                    "Join rejected, session full",
                    extra={"session_key": key, "connection_id": connection_id},
                )
                raise SessionFullError()

            old_status = session.status
            session.devices.append(Device(connection_id, language))
            self._membership[connection_id] = key
            self._log_transition(key, old_status, session.status)

            for member in session.connection_ids:
                await self._notify(member, SessionStatus.CONNECTED, MSG_CONNECTED)
            return JoinOutcome(key, SessionStatus.CONNECTED, MSG_CONNECTED)

    async def leave(self, connection_id: str) -> str | None:
        """Remove a device from its session.

        Used for both explicit leave requests and connection loss.

        Args:
            connection_id: Connection of the departing device

        Returns:
            Key of the session that was left, or None if not a member
        """
        key = self._membership.get(connection_id)
        if key is None:
            return None

        async with self._lock_for(key):
            session = self._sessions.get(key)
            # Membership may have changed while waiting for the lock.
            if session is None or session.find_device(connection_id) is None:
                return None

            old_status = session.status
            session.devices = [d for d in session.devices if d.connection_id != connection_id]
            del self._membership[connection_id]

            if not session.devices:
                del self._sessions[key]
                self._metrics.set_active_sessions(len(self._sessions))
                self._log_transition(key, old_status, SessionStatus.TERMINATED)
                logger.info("Removed empty session", extra={"session_key": key})
                return key

            self._log_transition(key, old_status, session.status)
            for member in session.connection_ids:
                await self._notify(member, SessionStatus.WAITING, MSG_PEER_LEFT)
            return key

    def resolve_peer(self, connection_id: str) -> PeerResolution:
        """Find the sender's device and its counterpart.

        Args:
            connection_id: Connection of the sending device

        Returns:
            Immutable snapshot of session key, sender and receiver

        Raises:
            NotInSessionError: If the connection is not in any session
            NoReceiverError: If the session has only the sender
        """
        key = self._membership.get(connection_id)
        session = self._sessions.get(key) if key is not None else None
        if session is None:
            raise NotInSessionError()

        sender = session.find_device(connection_id)
        if sender is None:
            raise NotInSessionError()

        receiver = next(
            (d for d in session.devices if d.connection_id != connection_id), None
        )
        if receiver is None:
            raise NoReceiverError()

        return PeerResolution(session_key=key, sender=sender, receiver=receiver)

    async def evict_expired(self, ttl_seconds: float, now: float | None = None) -> list[str]:
        """Evict every session older than ``ttl_seconds``.

        Members are notified with an ``expired`` status before deletion,
        regardless of how many devices the session holds.

        Args:
            ttl_seconds: Retention window in seconds
            now: Current time (defaults to the registry clock)

        Returns:
            Keys of the evicted sessions
        """
        if now is None:
            now = self._clock()

        candidates = [
            key for key, session in self._sessions.items() if session.age(now) > ttl_seconds
        ]
        evicted: list[str] = []

        for key in candidates:
            async with self._lock_for(key):
                session = self._sessions.get(key)
                if session is None or session.age(now) <= ttl_seconds:
                    continue

                members = session.connection_ids
                self._log_transition(key, session.status, SessionStatus.EXPIRED)
                for member in members:
                    await self._notify(member, SessionStatus.EXPIRED, MSG_EXPIRED)

                del self._sessions[key]
                for member in members:
                    self._membership.pop(member, None)
                evicted.append(key)

                logger.info(
                    "Removed expired session",
                    extra={"session_key": key, "age_s": session.age(now), "members": len(members)},
                )

        if evicted:
            self._metrics.record_sessions_expired(len(evicted))
            self._metrics.set_active_sessions(len(self._sessions))
        return evicted

    async def _notify(self, connection_id: str, status: SessionStatus, message: str) -> None:
        try:
            await asyncio.wait_for(
                self._notifier.send_status(connection_id, status, message),
                timeout=self._notify_timeout_s,
            )
        except TimeoutError:
            logger.warning(
                "Session status send timed out",
                extra={
                    "connection_id": connection_id,
                    "status": status.value,
                    "timeout_s": self._notify_timeout_s,
                },
            )
        except Exception as e:
            logger.warning(
                "Failed to send session status",
                extra={"connection_id": connection_id, "status": status.value, "error": str(e)},
            )

    def _log_transition(self, key: str, old: SessionStatus, new: SessionStatus) -> None:
        if old is new:
            return
        if not is_valid_transition(old, new):
            raise ValueError(f"Invalid state transition: {old.value} → {new.value}")
        logger.info(
            "Session state transition",
            extra={"session_key": key, "from_state": old.value, "to_state": new.value},
        )
