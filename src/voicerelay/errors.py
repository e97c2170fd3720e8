"""Error taxonomy for session pairing and voice relay.

Registry precondition errors (session full, not in session, no receiver) and
pipeline stage failures share a common base so the server can turn any of
them into a sender-visible event with a stable error code.
"""


class RelayError(Exception):
    """Base exception for registry and relay pipeline errors.

    Attributes:
        message: Human-readable reason shown to the sender
        code: Stable machine-readable error code
        stage: Pipeline stage that failed (None for registry errors)
    """

    code: str = "RELAY_ERROR"
    stage: str | None = None
    default_message: str = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class SessionFullError(RelayError):
    """Raised when a third device tries to join a session."""

    code = "SESSION_FULL"
    default_message = "Session is full"


class NotInSessionError(RelayError):
    """Raised when the sender is not a member of any session."""

    code = "NOT_IN_SESSION"
    stage = "resolve"
    default_message = "Not in any active session"


class NoReceiverError(RelayError):
    """Raised when the sender's session has no second device yet."""

    code = "NO_RECEIVER"
    stage = "resolve"
    default_message = "No receiver in session"


class TranscodeError(RelayError):
    """Raised when audio cannot be converted to the normalized format."""

    code = "TRANSCODE_FAILED"
    stage = "transcode"
    default_message = "Failed to convert audio"


class TranscriptionError(RelayError):
    """Raised when the speech recognizer fails.

    An empty transcript is not an error and never raises this.
    """

    code = "TRANSCRIPTION_FAILED"
    stage = "recognize"
    default_message = "Failed to transcribe speech"


class TranslationError(RelayError):
    """Raised when the translation service fails."""

    code = "TRANSLATION_FAILED"
    stage = "translate"
    default_message = "Failed to get translation"


class SynthesisError(RelayError):
    """Raised when the text-to-speech service fails."""

    code = "SYNTHESIS_FAILED"
    stage = "synthesize"
    default_message = "Failed to synthesize speech"
