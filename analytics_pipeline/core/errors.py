"""
Error taxonomy for the event pipeline.

Request-scoped errors (InvalidPayload, PublishError) become HTTP statuses,
message-scoped errors (ConsumeError, PersistenceError) are logged by the
subscriber loop, and TransportAuthError fails the connection attempt.
"""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} | Caused by: {self.cause}"
        return self.message


class TransportAuthError(PipelineError):
    """Credential or negotiation failure while connecting to the broker."""


class AuthInitError(TransportAuthError):
    """The exchange could not be started (hash primitive or credentials unusable)."""


class AuthProtocolError(TransportAuthError):
    """The server sent a malformed challenge or rejected the proof."""


class InvalidPayload(PipelineError):
    """Inbound event body is not valid JSON or does not match the event schema."""


class PublishError(PipelineError):
    """The broker did not acknowledge the message within the retry budget."""


class ConsumeError(PipelineError):
    """Transport-level read error on the subscriber."""


class PersistenceError(PipelineError):
    """Storage read or write failed."""
