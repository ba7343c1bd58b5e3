"""Per-room, per-recipient mailboxes with at-most-once drain."""

from __future__ import annotations

import logging

from roomrelay.backend.models import RelayMessage, utc_now
from roomrelay.backend.store import RelayState

logger = logging.getLogger(__name__)


class RelayQueue:
    def __init__(self, state: RelayState, max_mailbox_size: int | None = None) -> None:
        self._state = state
        self._max_mailbox_size = max_mailbox_size

    def enqueue(self, room_id: str, to_peer_id: str, message: RelayMessage) -> None:
        """Append a message for ``to_peer_id``.

        Membership is not checked: a message may be relayed before the
        recipient's join has been recorded.
        """
        with self._state.lock:
            size = self._state.mailboxes.append(room_id, to_peer_id, message)
            while self._max_mailbox_size and size > self._max_mailbox_size:
                dropped = self._state.mailboxes.pop_oldest(room_id, to_peer_id)
                size -= 1
                logger.warning(
                    "Mailbox for %s in room '%s' is full, dropped oldest %s message",
                    to_peer_id,
                    room_id,
                    dropped.kind if dropped is not None else "unknown",
                )
            self._touch_room(room_id)

    def drain(self, room_id: str, for_peer_id: str) -> list[RelayMessage]:
        """Remove and return every queued message for the recipient, oldest first."""
        with self._state.lock:
            messages = self._state.mailboxes.take_all(room_id, for_peer_id)
            self._touch_room(room_id)
        return messages

    def _touch_room(self, room_id: str) -> None:
        room = self._state.rooms.get(room_id)
        if room is None:
            return
        room.last_activity = utc_now()
        self._state.rooms.put(room)
