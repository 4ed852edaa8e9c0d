"""Centralized exception definitions for ftpwire."""

from typing import Optional


class FtpwireError(Exception):
    """Base exception for all ftpwire errors."""


# Configuration Exceptions


class ConfigError(FtpwireError):
    """Base exception for configuration errors."""


class RemoteNotFoundError(ConfigError):
    """Exception raised when a remote configuration is not found."""


class ValidationError(ConfigError):
    """Exception raised when configuration validation fails."""


# Client/Connection Exceptions


class ClientError(FtpwireError):
    """Base exception for client operation errors."""


class ProtocolError(ClientError):
    """The server answered a command with a code of 400 or above."""

    def __init__(self, code: int, text: str) -> None:
        super().__init__(text or "Unknown FTP error.")
        self.code = code
        self.text = text


class AuthenticationError(ProtocolError):
    """Authentication failed."""

    def __init__(self, text: str, code: Optional[int] = None) -> None:
        super().__init__(code or 530, text)


class ClientConnectionError(ClientError):
    """Failed to connect to, or lost the connection with, the remote server."""


class SessionClosedError(ClientConnectionError):
    """The session was closed while the command was still pending."""


class DataTimeoutError(ClientError):
    """The data connection stayed idle for longer than the configured timeout."""


class ParseError(ClientError):
    """A server reply could not be parsed."""


class ListingError(ClientError):
    """Directory listing failed."""


class TransferError(ClientError):
    """File transfer (get/put) failed."""
