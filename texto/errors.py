"""Exceptions raised by texto."""

from __future__ import annotations


class TextoError(RuntimeError):
    """Base class for all texto errors."""


class DriverAlreadyRegistered(TextoError):
    """Raised when a driver name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Driver '{name}' already registered.")
        self.name = name


class UnsupportedDriver(TextoError):
    """Raised when a driver name cannot be resolved to a sender."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unsupported driver: {name}")
        self.name = name


class SendFailed(TextoError):
    """Raised by a driver when the provider rejected the send or the transport failed."""

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
