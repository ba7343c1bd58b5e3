"""Room directory: initiator election and responder membership."""

from __future__ import annotations

import logging

from roomrelay.backend.errors import RoomNotFoundError
from roomrelay.backend.models import (
    ROLE_INITIATOR,
    ROLE_RESPONDER,
    JoinResult,
    Participant,
    Room,
    RoomSnapshot,
    utc_now,
)
from roomrelay.backend.store import RelayState

logger = logging.getLogger(__name__)


class RoomDirectory:
    """Maps room identifiers to their initiator and responder set.

    The first participant to reference an unknown room becomes its initiator;
    concurrent joins are serialized by the relay state lock so the first
    successful write wins.
    """

    def __init__(self, state: RelayState, max_rooms: int | None = None) -> None:
        self._state = state
        self._max_rooms = max_rooms

    def join(self, room_id: str, peer_id: str, display_name: str | None = None) -> JoinResult:
        name = display_name or peer_id
        with self._state.lock:
            room = self._state.rooms.get(room_id)
            if room is None:
                self._evict_if_full()
                room = Room(room_id=room_id, initiator=Participant(peer_id=peer_id, display_name=name))
                self._state.rooms.put(room)
                logger.info("Room '%s' created by initiator %s", room_id, peer_id)
                return JoinResult(role=ROLE_INITIATOR, initiator=room.initiator, responders=())

            room.last_activity = utc_now()
            if room.initiator.peer_id == peer_id:
                role = ROLE_INITIATOR
            else:
                role = ROLE_RESPONDER
                if not room.has_responder(peer_id):
                    room.responders.append(Participant(peer_id=peer_id, display_name=name))
                    logger.info(
                        "Peer %s joined room '%s' as responder. Room has %d responders",
                        peer_id,
                        room_id,
                        len(room.responders),
                    )
            self._state.rooms.put(room)
            return JoinResult(role=role, initiator=room.initiator, responders=tuple(room.responders))

    def leave(self, room_id: str, peer_id: str) -> None:
        with self._state.lock:
            room = self._state.rooms.get(room_id)
            if room is None:
                return
            if room.initiator.peer_id == peer_id:
                self._state.rooms.delete(room_id)
                self._state.mailboxes.clear_room(room_id)
                logger.info("Room '%s' deleted (initiator %s left)", room_id, peer_id)
                return
            if not room.has_responder(peer_id):
                return
            room.responders = [responder for responder in room.responders if responder.peer_id != peer_id]
            room.last_activity = utc_now()
            self._state.rooms.put(room)
            self._state.mailboxes.clear(room_id, peer_id)
            logger.info("Peer %s left room '%s'", peer_id, room_id)

    def describe(self, room_id: str) -> RoomSnapshot:
        with self._state.lock:
            room = self._state.rooms.get(room_id)
            if room is None:
                raise RoomNotFoundError("Room not found", {"room_id": room_id})
            return room.snapshot()

    def room_count(self) -> int:
        with self._state.lock:
            return self._state.rooms.count()

    def _evict_if_full(self) -> None:
        if not self._max_rooms or self._state.rooms.count() < self._max_rooms:
            return
        oldest = min(self._state.rooms.rooms(), key=lambda room: room.last_activity)
        self._state.rooms.delete(oldest.room_id)
        self._state.mailboxes.clear_room(oldest.room_id)
        logger.warning("Room limit %d reached, evicted least recently active room '%s'", self._max_rooms, oldest.room_id)
