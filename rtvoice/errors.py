"""Custom exceptions for the realtime session."""


class RealtimeError(Exception):
    """Base exception for realtime session errors."""

    pass


class CredentialError(RealtimeError):
    """Raised when the ephemeral session credential cannot be acquired."""

    pass


class NegotiationError(RealtimeError):
    """Raised when a step of the offer/answer exchange fails."""

    def __init__(self, step: str, reason: str) -> None:
        super().__init__(f"{step} failed: {reason}")
        self.step = step
        self.reason = reason


class ChannelSendError(RealtimeError):
    """Raised when an outbound event cannot be serialized."""

    pass


class ChannelParseError(RealtimeError):
    """Raised when an inbound channel payload is not a usable event."""

    pass
