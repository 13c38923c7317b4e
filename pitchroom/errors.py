class PitchRoomError(Exception):
    """Base class for errors raised by the pitch session core."""


class ValidationError(PitchRoomError, ValueError):
    """Caller misuse. Nothing was mutated; fix the input and retry."""


class DuplicateSubmitError(ValidationError):
    pass


class SessionNotFoundError(PitchRoomError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Session not found."


class ConfigurationError(PitchRoomError, RuntimeError):
    """No usable provider (unknown id or missing credentials)."""


class PersistenceError(PitchRoomError, RuntimeError):
    """Saving the session failed. The change was rolled back and can be resubmitted."""

    retryable = True


class TransportError(PitchRoomError, RuntimeError):
    """Provider unreachable, non-2xx or timed out. The turn can be resubmitted."""

    retryable = True

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
