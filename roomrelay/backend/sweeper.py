"""Idle expiry for rooms and orphan mailboxes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from roomrelay.backend.models import utc_now
from roomrelay.backend.store import RelayState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    rooms_removed: tuple[str, ...]
    mailboxes_removed: tuple[tuple[str, str], ...]


class IdleSweeper:
    def __init__(self, state: RelayState, idle_seconds: float) -> None:
        self._state = state
        self._idle = timedelta(seconds=idle_seconds)

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """Remove rooms and mailboxes without activity for longer than the idle period."""
        cutoff = (now or utc_now()) - self._idle
        with self._state.lock:
            rooms_removed: list[str] = []
            for room in self._state.rooms.rooms():
                if room.last_activity < cutoff:
                    self._state.rooms.delete(room.room_id)
                    self._state.mailboxes.clear_room(room.room_id)
                    rooms_removed.append(room.room_id)

            mailboxes_removed: list[tuple[str, str]] = []
            for room_id, peer_id, last_activity in self._state.mailboxes.activity():
                if self._state.rooms.get(room_id) is None and last_activity < cutoff:
                    self._state.mailboxes.clear(room_id, peer_id)
                    mailboxes_removed.append((room_id, peer_id))

        if rooms_removed or mailboxes_removed:
            logger.info(
                "Idle sweep removed %d rooms and %d orphan mailboxes",
                len(rooms_removed),
                len(mailboxes_removed),
            )
        return SweepResult(rooms_removed=tuple(rooms_removed), mailboxes_removed=tuple(mailboxes_removed))

    async def run(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()
