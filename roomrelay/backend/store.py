"""Storage interfaces and in-memory implementations for rooms and mailboxes.

Stores are plain data holders. Callers serialize access through the lock
carried by :class:`RelayState`.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Protocol

from roomrelay.backend.models import RelayMessage, Room, utc_now


class RoomStore(Protocol):
    def get(self, room_id: str) -> Room | None:
        """Return the room or ``None`` when unknown."""

    def put(self, room: Room) -> None:
        """Insert or replace a room."""

    def delete(self, room_id: str) -> Room | None:
        """Remove a room and return it, if present."""

    def rooms(self) -> Iterable[Room]:
        """Iterate over every stored room."""

    def count(self) -> int:
        """Return the number of stored rooms."""


class MailboxStore(Protocol):
    def append(self, room_id: str, peer_id: str, message: RelayMessage) -> int:
        """Append a message to a mailbox, creating it, and return the new size."""

    def pop_oldest(self, room_id: str, peer_id: str) -> RelayMessage | None:
        """Drop and return the oldest queued message."""

    def take_all(self, room_id: str, peer_id: str) -> list[RelayMessage]:
        """Remove and return every queued message in enqueue order."""

    def clear(self, room_id: str, peer_id: str) -> None:
        """Delete one mailbox."""

    def clear_room(self, room_id: str) -> None:
        """Delete every mailbox belonging to a room."""

    def activity(self) -> list[tuple[str, str, datetime]]:
        """Return ``(room_id, peer_id, last_activity)`` for every mailbox."""


@dataclass
class InMemoryRoomStore:
    def __post_init__(self) -> None:
        self._rooms: dict[str, Room] = {}

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def put(self, room: Room) -> None:
        self._rooms[room.room_id] = room

    def delete(self, room_id: str) -> Room | None:
        return self._rooms.pop(room_id, None)

    def rooms(self) -> Iterable[Room]:
        return list(self._rooms.values())

    def count(self) -> int:
        return len(self._rooms)


@dataclass
class _Mailbox:
    messages: deque
    last_activity: datetime


@dataclass
class InMemoryMailboxStore:
    def __post_init__(self) -> None:
        # room_id -> recipient peer_id -> mailbox
        self._mailboxes: dict[str, dict[str, _Mailbox]] = {}

    def append(self, room_id: str, peer_id: str, message: RelayMessage) -> int:
        room_mailboxes = self._mailboxes.setdefault(room_id, {})
        mailbox = room_mailboxes.get(peer_id)
        if mailbox is None:
            mailbox = _Mailbox(messages=deque(), last_activity=utc_now())
            room_mailboxes[peer_id] = mailbox
        mailbox.messages.append(message)
        mailbox.last_activity = utc_now()
        return len(mailbox.messages)

    def pop_oldest(self, room_id: str, peer_id: str) -> RelayMessage | None:
        mailbox = self._mailboxes.get(room_id, {}).get(peer_id)
        if mailbox is None or not mailbox.messages:
            return None
        return mailbox.messages.popleft()

    def take_all(self, room_id: str, peer_id: str) -> list[RelayMessage]:
        room_mailboxes = self._mailboxes.get(room_id)
        if room_mailboxes is None:
            return []
        mailbox = room_mailboxes.pop(peer_id, None)
        if not room_mailboxes:
            self._mailboxes.pop(room_id, None)
        if mailbox is None:
            return []
        return list(mailbox.messages)

    def clear(self, room_id: str, peer_id: str) -> None:
        room_mailboxes = self._mailboxes.get(room_id)
        if room_mailboxes is None:
            return
        room_mailboxes.pop(peer_id, None)
        if not room_mailboxes:
            self._mailboxes.pop(room_id, None)

    def clear_room(self, room_id: str) -> None:
        self._mailboxes.pop(room_id, None)

    def activity(self) -> list[tuple[str, str, datetime]]:
        return [
            (room_id, peer_id, mailbox.last_activity)
            for room_id, room_mailboxes in self._mailboxes.items()
            for peer_id, mailbox in room_mailboxes.items()
        ]


@dataclass
class RelayState:
    """Room and mailbox stores behind one process-wide lock."""

    rooms: RoomStore
    mailboxes: MailboxStore
    lock: threading.RLock = field(default_factory=threading.RLock)


def create_relay_state() -> RelayState:
    return RelayState(rooms=InMemoryRoomStore(), mailboxes=InMemoryMailboxStore())
