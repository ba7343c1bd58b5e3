"""Domain models for room directory, relay mailboxes and relay paths."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Union

ROLE_INITIATOR = "initiator"
ROLE_RESPONDER = "responder"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Participant:
    peer_id: str
    display_name: str


@dataclass(frozen=True)
class RoomSnapshot:
    room_id: str
    initiator: Participant
    responders: tuple[Participant, ...]


@dataclass(frozen=True)
class JoinResult:
    role: str
    initiator: Participant
    responders: tuple[Participant, ...]

    @property
    def is_initiator(self) -> bool:
        return self.role == ROLE_INITIATOR


@dataclass
class Room:
    room_id: str
    initiator: Participant
    responders: list[Participant] = field(default_factory=list)
    last_activity: datetime = field(default_factory=utc_now)

    def has_responder(self, peer_id: str) -> bool:
        return any(responder.peer_id == peer_id for responder in self.responders)

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(room_id=self.room_id, initiator=self.initiator, responders=tuple(self.responders))


@dataclass(frozen=True)
class RelayPath:
    """A relay-capable network path (TURN server) used by the relay-only strategy."""

    urls: tuple[str, ...]
    username: str | None = None
    credential: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"urls": list(self.urls), "username": self.username, "credential": self.credential}


@dataclass(frozen=True)
class Offer:
    kind: ClassVar[str] = "offer"

    from_peer_id: str
    description: dict[str, Any]
    enqueued_at: datetime = field(default_factory=utc_now)

    @property
    def payload(self) -> dict[str, Any]:
        return self.description


@dataclass(frozen=True)
class Answer:
    kind: ClassVar[str] = "answer"

    from_peer_id: str
    description: dict[str, Any]
    enqueued_at: datetime = field(default_factory=utc_now)

    @property
    def payload(self) -> dict[str, Any]:
        return self.description


@dataclass(frozen=True)
class Candidate:
    kind: ClassVar[str] = "candidate"

    from_peer_id: str
    candidate: dict[str, Any]
    enqueued_at: datetime = field(default_factory=utc_now)

    @property
    def payload(self) -> dict[str, Any]:
        return self.candidate


RelayMessage = Union[Offer, Answer, Candidate]

_MESSAGE_TYPES: dict[str, type] = {
    Offer.kind: Offer,
    Answer.kind: Answer,
    Candidate.kind: Candidate,
}


def message_to_wire(message: RelayMessage) -> dict[str, Any]:
    return {
        "kind": message.kind,
        "from": message.from_peer_id,
        "payload": message.payload,
        "enqueued_at": message.enqueued_at.isoformat(),
    }


def message_from_wire(data: dict[str, Any]) -> RelayMessage:
    """Rebuild a relay message from its JSON form; raises ``ValueError`` on unknown kinds."""
    kind = str(data.get("kind", ""))
    message_type = _MESSAGE_TYPES.get(kind)
    if message_type is None:
        raise ValueError(f"Unknown relay message kind: {kind!r}")
    enqueued_raw = data.get("enqueued_at")
    enqueued_at = datetime.fromisoformat(enqueued_raw) if enqueued_raw else utc_now()
    return message_type(str(data["from"]), dict(data["payload"]), enqueued_at)
