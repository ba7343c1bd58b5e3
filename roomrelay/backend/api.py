"""FastAPI endpoints for room membership, negotiation relay and path discovery."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from .config import BackendSettings, load_settings
from .directory import RoomDirectory
from .errors import RoomNotFoundError
from .logging_config import setup_logging
from .models import Answer, Candidate, JoinResult, Offer, Participant, RoomSnapshot, message_to_wire
from .relay import RelayQueue
from .store import RelayState, create_relay_state
from .sweeper import IdleSweeper

logger = logging.getLogger(__name__)


class ParticipantModel(BaseModel):
    peer_id: str
    display_name: str

    @classmethod
    def from_participant(cls, participant: Participant) -> "ParticipantModel":
        return cls(peer_id=participant.peer_id, display_name=participant.display_name)


class _RoomRequest(BaseModel):
    room_id: str = Field(min_length=1, max_length=200)


class JoinRequest(_RoomRequest):
    peer_id: str = Field(min_length=1, max_length=200)
    display_name: str = Field(default="", max_length=200)


class JoinResponse(BaseModel):
    role: str
    initiator: ParticipantModel
    responders: list[ParticipantModel]


class LeaveRequest(_RoomRequest):
    peer_id: str = Field(min_length=1, max_length=200)


class LeaveResponse(BaseModel):
    success: bool = True


class RoomResponse(BaseModel):
    initiator: ParticipantModel
    responders: list[ParticipantModel]


class _RelayEnvelope(_RoomRequest):
    model_config = ConfigDict(populate_by_name=True)

    to_peer: str = Field(alias="to", min_length=1)
    from_peer: str = Field(alias="from", min_length=1)


class DescriptionEnvelope(_RelayEnvelope):
    sdp: dict[str, Any]


class CandidateEnvelope(_RelayEnvelope):
    candidate: dict[str, Any]


class QueuedResponse(BaseModel):
    queued: bool = True


class DrainRequest(_RoomRequest):
    for_peer: str = Field(min_length=1)


class DrainResponse(BaseModel):
    messages: list[dict[str, Any]]


class RelayPathsResponse(BaseModel):
    relay_paths: list[dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    rooms: int


def _join_response(result: JoinResult) -> JoinResponse:
    return JoinResponse(
        role=result.role,
        initiator=ParticipantModel.from_participant(result.initiator),
        responders=[ParticipantModel.from_participant(responder) for responder in result.responders],
    )


def _room_response(snapshot: RoomSnapshot) -> RoomResponse:
    return RoomResponse(
        initiator=ParticipantModel.from_participant(snapshot.initiator),
        responders=[ParticipantModel.from_participant(responder) for responder in snapshot.responders],
    )


def create_app(state: RelayState | None = None, settings: BackendSettings | None = None) -> FastAPI:
    app_settings = settings if settings is not None else load_settings()
    relay_state = state if state is not None else create_relay_state()
    directory = RoomDirectory(relay_state, max_rooms=app_settings.max_rooms)
    relay_queue = RelayQueue(relay_state, max_mailbox_size=app_settings.max_mailbox_size)
    sweeper = IdleSweeper(relay_state, idle_seconds=app_settings.room_idle_seconds)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        sweep_task: asyncio.Task | None = None
        if app_settings.sweep_interval_seconds > 0:
            sweep_task = asyncio.create_task(sweeper.run(app_settings.sweep_interval_seconds))
            logger.info("Idle sweeper started (every %ss)", app_settings.sweep_interval_seconds)
        yield
        if sweep_task is not None:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task

    app = FastAPI(title="Room Relay API", version="0.1.0", lifespan=lifespan)
    app.state.directory = directory
    app.state.relay_queue = relay_queue
    app.state.sweeper = sweeper

    def get_directory() -> RoomDirectory:
        return directory

    def get_relay_queue() -> RelayQueue:
        return relay_queue

    @app.post("/api/rooms/join", response_model=JoinResponse)
    def join_room(
        payload: JoinRequest,
        local_directory: RoomDirectory = Depends(get_directory),
    ) -> JoinResponse:
        result = local_directory.join(
            room_id=payload.room_id,
            peer_id=payload.peer_id,
            display_name=payload.display_name,
        )
        return _join_response(result)

    @app.post("/api/rooms/leave", response_model=LeaveResponse)
    def leave_room(
        payload: LeaveRequest,
        local_directory: RoomDirectory = Depends(get_directory),
    ) -> LeaveResponse:
        local_directory.leave(room_id=payload.room_id, peer_id=payload.peer_id)
        return LeaveResponse()

    @app.get("/api/rooms", response_model=RoomResponse)
    def describe_room(
        room_id: str = Query(min_length=1, max_length=200),
        local_directory: RoomDirectory = Depends(get_directory),
    ) -> RoomResponse:
        try:
            snapshot = local_directory.describe(room_id)
        except RoomNotFoundError:
            raise HTTPException(status_code=404, detail="Room not found")
        return _room_response(snapshot)

    @app.post("/api/relay/offer", response_model=QueuedResponse)
    def relay_offer(
        payload: DescriptionEnvelope,
        local_queue: RelayQueue = Depends(get_relay_queue),
    ) -> QueuedResponse:
        local_queue.enqueue(
            payload.room_id,
            payload.to_peer,
            Offer(from_peer_id=payload.from_peer, description=payload.sdp),
        )
        return QueuedResponse()

    @app.post("/api/relay/answer", response_model=QueuedResponse)
    def relay_answer(
        payload: DescriptionEnvelope,
        local_queue: RelayQueue = Depends(get_relay_queue),
    ) -> QueuedResponse:
        local_queue.enqueue(
            payload.room_id,
            payload.to_peer,
            Answer(from_peer_id=payload.from_peer, description=payload.sdp),
        )
        return QueuedResponse()

    @app.post("/api/relay/candidate", response_model=QueuedResponse)
    def relay_candidate(
        payload: CandidateEnvelope,
        local_queue: RelayQueue = Depends(get_relay_queue),
    ) -> QueuedResponse:
        local_queue.enqueue(
            payload.room_id,
            payload.to_peer,
            Candidate(from_peer_id=payload.from_peer, candidate=payload.candidate),
        )
        return QueuedResponse()

    @app.post("/api/relay/drain", response_model=DrainResponse)
    def drain_mailbox(
        payload: DrainRequest,
        local_queue: RelayQueue = Depends(get_relay_queue),
    ) -> DrainResponse:
        messages = local_queue.drain(payload.room_id, payload.for_peer)
        return DrainResponse(messages=[message_to_wire(message) for message in messages])

    @app.get("/api/relay-paths", response_model=RelayPathsResponse)
    def relay_paths() -> RelayPathsResponse:
        return RelayPathsResponse(relay_paths=[path.to_dict() for path in app_settings.relay_paths])

    @app.get("/api/health", response_model=HealthResponse)
    def health(local_directory: RoomDirectory = Depends(get_directory)) -> HealthResponse:
        return HealthResponse(status="ok", rooms=local_directory.room_count())

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    setup_logging(level=settings.log_level, log_file=settings.log_file)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port, log_config=None)


app = create_app()


if __name__ == "__main__":
    main()
