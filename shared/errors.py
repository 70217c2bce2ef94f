from __future__ import annotations

from typing import Optional


class ConfigError(Exception):
    """Base class for configuration registry failures."""
    pass


class SourceParseError(ConfigError):
    """Raised when a configuration source exists but cannot be parsed."""

    def __init__(self, source: str, detail: str) -> None:
        super().__init__(f"{source}: {detail}")
        self.source = source
        self.detail = detail


class TypeMismatchError(ConfigError, TypeError):
    """Raised when a payload or accessor does not match the bucket kind."""
    pass


class ConnectionAttemptError(Exception):
    """Base class for the terminal failures of a single connection attempt."""

    def __init__(self, detail: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(detail)
        self.cause = cause


class DialError(ConnectionAttemptError):
    """The transport could not open the socket."""
    pass


class SendError(ConnectionAttemptError):
    """The handshake frame could not be written."""
    pass


class ReceiveError(ConnectionAttemptError):
    """No server frame could be read."""
    pass


class CloseError(ConnectionAttemptError):
    """Closing the socket failed. Never changes the reported outcome."""
    pass
