"""Relay server package: room directory, mailboxes and HTTP API."""

from .config import BackendSettings, load_settings
from .directory import RoomDirectory
from .errors import NegotiationError, RelayRequestError, RoomNotFoundError, RoomRelayError
from .relay import RelayQueue
from .store import InMemoryMailboxStore, InMemoryRoomStore, MailboxStore, RelayState, RoomStore, create_relay_state
from .sweeper import IdleSweeper

__all__ = [
    "BackendSettings",
    "create_relay_state",
    "IdleSweeper",
    "InMemoryMailboxStore",
    "InMemoryRoomStore",
    "load_settings",
    "MailboxStore",
    "NegotiationError",
    "RelayQueue",
    "RelayRequestError",
    "RelayState",
    "RoomDirectory",
    "RoomNotFoundError",
    "RoomRelayError",
    "RoomStore",
]
