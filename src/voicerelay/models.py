"""Shared data model for session pairing and voice relay.

Sessions are owned by the registry; everything handed out to other components
(devices, peer resolutions, relay results) is immutable so an in-flight relay
never observes a session being mutated underneath it.
"""

from dataclasses import dataclass, field
from enum import Enum

AUTO_LANGUAGE = "auto"

MAX_DEVICES_PER_SESSION = 2


class SessionStatus(Enum):
    """Session status as seen by the paired devices.

    State Transitions:
    - WAITING → CONNECTED (second device joins)
    - WAITING → TERMINATED (last device leaves)
    - CONNECTED → WAITING (one device leaves)
    - WAITING/CONNECTED → EXPIRED (evicted by the sweeper)

    States:
    - WAITING: One device joined, waiting for its peer
    - CONNECTED: Both devices present, clips can be relayed
    - EXPIRED: Session exceeded its retention window and was evicted
    - TERMINATED: Session deleted after its last device left

    ERROR is never a session state; it is the status sent to a joiner whose
    request was rejected.
    """

    WAITING = "waiting"
    CONNECTED = "connected"
    ERROR = "error"
    EXPIRED = "expired"
    TERMINATED = "terminated"


VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.WAITING: {
        SessionStatus.CONNECTED,
        SessionStatus.TERMINATED,
        SessionStatus.EXPIRED,
    },
    SessionStatus.CONNECTED: {SessionStatus.WAITING, SessionStatus.EXPIRED},
    SessionStatus.EXPIRED: set(),
    SessionStatus.TERMINATED: set(),
    SessionStatus.ERROR: set(),
}


def is_valid_transition(current: SessionStatus, new: SessionStatus) -> bool:
    """Check whether a session may move from ``current`` to ``new``."""
    return new in VALID_TRANSITIONS.get(current, set())


def normalize_language(language: str) -> str:
    """Normalize a language token for comparison (``en_US`` → ``en-us``)."""
    return language.strip().replace("_", "-").lower()


def is_auto_language(language: str) -> bool:
    """Check whether a token is the auto-detect sentinel."""
    return normalize_language(language) == AUTO_LANGUAGE


def resolve_language(language: str, default_locale: str) -> str:
    """Resolve the auto-detect sentinel to a concrete language code.

    Args:
        language: Declared language token
        default_locale: Code used in place of the auto-detect sentinel

    Returns:
        The declared token (stripped) or ``default_locale`` for ``auto``
    """
    if is_auto_language(language):
        return default_locale
    return language.strip()


def languages_match(first: str, second: str) -> bool:
    """Exact comparison of two resolved language codes after normalization."""
    return normalize_language(first) == normalize_language(second)


@dataclass(frozen=True)
class Device:
    """A live connection plus its declared language preference."""

    connection_id: str
    language: str


@dataclass
class Session:
    """Pairing context for at most two devices.

    Only the registry creates and mutates sessions.
    """

    key: str
    created_at: float
    devices: list[Device] = field(default_factory=list)

    @property
    def status(self) -> SessionStatus:
        """Status derived from the device count."""
        if len(self.devices) >= MAX_DEVICES_PER_SESSION:
            return SessionStatus.CONNECTED
        return SessionStatus.WAITING

    @property
    def is_full(self) -> bool:
        return len(self.devices) >= MAX_DEVICES_PER_SESSION

    @property
    def connection_ids(self) -> list[str]:
        return [device.connection_id for device in self.devices]

    def find_device(self, connection_id: str) -> Device | None:
        for device in self.devices:
            if device.connection_id == connection_id:
                return device
        return None

    def age(self, now: float) -> float:
        return now - self.created_at

    def snapshot(self) -> "Session":
        """Return a copy that does not share the device list."""
        return Session(key=self.key, created_at=self.created_at, devices=list(self.devices))


@dataclass(frozen=True)
class JoinOutcome:
    """Result of a successful join request."""

    session_key: str
    status: SessionStatus
    message: str
    already_joined: bool = False


@dataclass(frozen=True)
class PeerResolution:
    """Consistent snapshot of a sender and its counterpart."""

    session_key: str
    sender: Device
    receiver: Device


@dataclass(frozen=True)
class VoiceClip:
    """One inbound voice clip; consumed by a single relay invocation."""

    sender_connection_id: str
    audio: bytes
    timestamp: str | None = None
    sequence: int = 0


@dataclass(frozen=True)
class RelayResult:
    """Payload delivered to the receiving device."""

    audio: bytes
    from_language: str
    to_language: str
    timestamp: str
    text: str | None = None
    translated_text: str | None = None
    sequence: int = 0
    synthesized: bool = False
