"""Exception types shared by the relay server and client."""

from __future__ import annotations

from typing import Any


class RoomRelayError(Exception):
    """Base exception for roomrelay."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class RoomNotFoundError(RoomRelayError):
    """Raised by ``describe`` for an unknown room identifier."""


class RelayRequestError(RoomRelayError):
    """Raised when a call to the relay server fails or is rejected."""


class NegotiationError(RoomRelayError):
    """Raised when the transport rejects a description or a path fails permanently."""
