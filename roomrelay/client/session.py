"""Client-side negotiation session.

One session per participant. Polled relay messages, room snapshots, adapter
events and timer expiries are merged into a single queue consumed by one actor
task, so session state is only ever mutated from that task (``leave`` aside,
which only flags the session and waits for the actor to stop).

Phases::

    idle -> role-assigned -> offering -> awaiting-answer -> connecting -> connected
                          -> awaiting-offer -> answering -> connecting -> connected

A path failure, a rejected description or the connect timeout escalates once to
the relay-only strategy; a second failure is terminal (``relay-exhausted``).
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from roomrelay.backend.errors import NegotiationError, RelayRequestError
from roomrelay.backend.models import (
    ROLE_INITIATOR,
    Answer,
    Candidate,
    JoinResult,
    Offer,
    RelayMessage,
    RelayPath,
    RoomSnapshot,
)
from roomrelay.client.config import ClientSettings
from roomrelay.client.relay_client import RelayClient
from roomrelay.client.transport import (
    PATH_CONNECTED,
    STRATEGY_DEFAULT,
    STRATEGY_RELAY_ONLY,
    TERMINAL_PATH_STATES,
    AdapterEvent,
    AdapterFactory,
    GatheringStateChanged,
    LocalCandidate,
    PathStateChanged,
    TransportAdapter,
)

logger = logging.getLogger(__name__)

PHASE_IDLE = "idle"
PHASE_ROLE_ASSIGNED = "role-assigned"
PHASE_OFFERING = "offering"
PHASE_AWAITING_OFFER = "awaiting-offer"
PHASE_ANSWERING = "answering"
PHASE_AWAITING_ANSWER = "awaiting-answer"
PHASE_CONNECTING = "connecting"
PHASE_CONNECTED = "connected"
PHASE_FAILED = "failed"

REASON_NO_RESPONSE = "no-response"
REASON_PATH_FAILED = "path-failed"
REASON_RELAY_EXHAUSTED = "relay-exhausted"

# phases in which candidates flow in both directions
_EXCHANGE_PHASES = frozenset({PHASE_AWAITING_ANSWER, PHASE_CONNECTING, PHASE_CONNECTED})
_WAITING_FOR_PATH = frozenset({PHASE_AWAITING_ANSWER, PHASE_CONNECTING})

TIMER_PEER_WAIT = "peer-wait"
TIMER_CONNECT = "connect"


@dataclass(frozen=True)
class SessionFailure:
    reason: str
    detail: str = ""


@dataclass
class SessionState:
    phase: str = PHASE_IDLE
    role: str | None = None
    strategy: str = STRATEGY_DEFAULT
    negotiation_peer: str | None = None
    escalated: bool = False
    failure: SessionFailure | None = None
    phase_history: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Drained:
    messages: list[RelayMessage]


@dataclass(frozen=True)
class _RoomObserved:
    snapshot: RoomSnapshot | None


@dataclass(frozen=True)
class _AdapterInput:
    generation: int
    event: AdapterEvent


@dataclass(frozen=True)
class _TimerFired:
    name: str
    seq: int


_STOP = object()


class NegotiationSession:
    def __init__(
        self,
        relay: RelayClient,
        room_id: str,
        peer_id: str,
        adapter_factory: AdapterFactory,
        display_name: str = "",
        settings: ClientSettings | None = None,
        on_state_change: Callable[[SessionState], None] | None = None,
    ) -> None:
        self.relay = relay
        self.room_id = room_id
        self.peer_id = peer_id
        self.display_name = display_name
        self.settings = settings if settings is not None else ClientSettings()
        self.state = SessionState()
        self._adapter_factory = adapter_factory
        self._on_state_change = on_state_change

        self._inputs: asyncio.Queue[Any] = asyncio.Queue()
        self._adapter: TransportAdapter | None = None
        self._generation = 0
        self._remote_applied = False
        self._pending_candidates: list[dict[str, Any]] = []
        self._relay_paths: list[RelayPath] = []
        self._timers: dict[str, tuple[int, asyncio.Task]] = {}
        self._timer_seq = 0
        self._actor: asyncio.Task | None = None
        self._poller: asyncio.Task | None = None
        self._left = False
        self._changed = asyncio.Condition()
        self._notifications: set[asyncio.Task] = set()
        self._finished = asyncio.Event()

    # -- public API -----------------------------------------------------------

    @property
    def phase(self) -> str:
        return self.state.phase

    @property
    def failure(self) -> SessionFailure | None:
        return self.state.failure

    @property
    def is_finished(self) -> bool:
        return self._left or self.state.failure is not None

    async def start(self) -> JoinResult:
        """Join the room, take the assigned role and start polling."""
        result = await self.relay.join(self.room_id, self.peer_id, self.display_name)
        self.state.role = result.role
        self._set_phase(PHASE_ROLE_ASSIGNED)
        self._relay_paths = await self._discover_relay_paths(self._relay_paths)

        if result.role == ROLE_INITIATOR:
            logger.info("Joined room '%s' as initiator, waiting for a responder", self.room_id)
        else:
            # a lost initiator race lands here too: the directory's answer is authoritative
            self.state.negotiation_peer = result.initiator.peer_id
            logger.info(
                "Joined room '%s' as responder, initiator is %s (%s)",
                self.room_id,
                result.initiator.peer_id,
                result.initiator.display_name,
            )
            self._build_adapter()
            self._set_phase(PHASE_AWAITING_OFFER)
        self._start_timer(TIMER_PEER_WAIT, self.settings.peer_wait_timeout)

        self._actor = asyncio.create_task(self._run())
        self._poller = asyncio.create_task(self._poll_loop())
        return result

    async def leave(self) -> None:
        """Abandon the session: stop negotiation, release the adapter and leave the room."""
        if self._left:
            return
        self._set_phase(PHASE_IDLE)
        self._left = True
        self._cancel_timers()
        try:
            await self._stop_tasks()
        finally:
            await self._close_adapter()
            try:
                await self.relay.leave(self.room_id, self.peer_id)
            except RelayRequestError as exc:
                logger.warning("Leave request for room '%s' failed: %s", self.room_id, exc)
            self._finished.set()
            await self._notify_waiters()

    async def wait_closed(self) -> SessionFailure | None:
        """Wait until the session left the room or failed terminally."""
        await self._finished.wait()
        return self.state.failure

    async def wait_for_phase(self, *phases: str) -> str:
        """Wait until the session is in one of ``phases`` or finished; return the current phase."""
        async with self._changed:
            await self._changed.wait_for(lambda: self.state.phase in phases or self._finished.is_set())
        return self.state.phase

    # -- input streams --------------------------------------------------------

    async def _poll_loop(self) -> None:
        while True:
            try:
                if self.state.role == ROLE_INITIATOR and self.state.phase == PHASE_ROLE_ASSIGNED:
                    snapshot = await self.relay.describe(self.room_id)
                    self._inputs.put_nowait(_RoomObserved(snapshot))
                messages = await self.relay.drain(self.room_id, self.peer_id)
                if messages:
                    self._inputs.put_nowait(_Drained(messages))
            except RelayRequestError as exc:
                logger.warning("Polling room '%s' failed: %s", self.room_id, exc)
            await asyncio.sleep(self.settings.poll_interval)

    def _adapter_sink(self, generation: int) -> Callable[[AdapterEvent], None]:
        def sink(event: AdapterEvent) -> None:
            self._inputs.put_nowait(_AdapterInput(generation=generation, event=event))

        return sink

    def _start_timer(self, name: str, delay: float) -> None:
        self._cancel_timer(name)
        self._timer_seq += 1
        seq = self._timer_seq
        self._timers[name] = (seq, asyncio.create_task(self._fire_after(name, seq, delay)))

    async def _fire_after(self, name: str, seq: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._inputs.put_nowait(_TimerFired(name=name, seq=seq))

    def _cancel_timer(self, name: str) -> None:
        entry = self._timers.pop(name, None)
        if entry is not None:
            entry[1].cancel()

    def _cancel_timers(self) -> None:
        for name in list(self._timers):
            self._cancel_timer(name)

    # -- actor ----------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            item = await self._inputs.get()
            if item is _STOP:
                return
            if self.is_finished:
                logger.debug("Discarding %s after session end", type(item).__name__)
                continue
            try:
                await self._dispatch(item)
            except RelayRequestError as exc:
                # at-most-once relay: a lost send is recovered by the connect timeout
                logger.warning("Relay call failed while handling %s: %s", type(item).__name__, exc)
            except Exception as exc:
                logger.exception("Unexpected error while handling %s", type(item).__name__)
                await self._recover(f"{type(exc).__name__}: {exc}")

    async def _dispatch(self, item: Any) -> None:
        if isinstance(item, _Drained):
            for message in item.messages:
                if self.is_finished:
                    logger.debug("Dropping %s from %s after session end", message.kind, message.from_peer_id)
                    continue
                await self._on_message(message)
        elif isinstance(item, _RoomObserved):
            await self._on_room_observed(item.snapshot)
        elif isinstance(item, _AdapterInput):
            if item.generation != self._generation:
                logger.debug("Ignoring %s from replaced adapter", type(item.event).__name__)
                return
            await self._on_adapter_event(item.event)
        elif isinstance(item, _TimerFired):
            entry = self._timers.get(item.name)
            if entry is None or entry[0] != item.seq:
                return
            self._timers.pop(item.name, None)
            await self._on_timer(item.name)

    async def _on_message(self, message: RelayMessage) -> None:
        if isinstance(message, Offer):
            await self._on_offer(message)
        elif isinstance(message, Answer):
            await self._on_answer(message)
        elif isinstance(message, Candidate):
            await self._on_candidate(message)

    async def _on_room_observed(self, snapshot: RoomSnapshot | None) -> None:
        if self.state.role != ROLE_INITIATOR or self.state.phase != PHASE_ROLE_ASSIGNED:
            return
        if snapshot is None:
            logger.warning("Room '%s' is no longer known to the directory", self.room_id)
            return
        if not snapshot.responders:
            return
        responder = snapshot.responders[0]
        logger.info("Responder %s (%s) joined room '%s'", responder.peer_id, responder.display_name, self.room_id)
        self.state.negotiation_peer = responder.peer_id
        self._cancel_timer(TIMER_PEER_WAIT)
        await self._send_offer()

    async def _send_offer(self) -> None:
        self._set_phase(PHASE_OFFERING)
        if self._adapter is None:
            self._build_adapter()
        generation = self._generation
        try:
            description = await self._adapter.create_local_description("offer")
        except NegotiationError as exc:
            if not self._superseded(generation):
                await self._handle_failure(f"offer creation failed: {exc}")
            return
        if self._superseded(generation):
            return
        await self.relay.send_offer(self.room_id, self.state.negotiation_peer, self.peer_id, description)
        if self._superseded(generation):
            return
        self._set_phase(PHASE_AWAITING_ANSWER)
        self._start_timer(TIMER_CONNECT, self.settings.connect_timeout)

    async def _on_offer(self, offer: Offer) -> None:
        if self.state.role == ROLE_INITIATOR:
            logger.warning("Initiator ignoring offer from %s", offer.from_peer_id)
            return
        if self.state.phase != PHASE_AWAITING_OFFER:
            if offer.from_peer_id != self.state.negotiation_peer:
                logger.warning("Ignoring offer from %s while negotiating with another peer", offer.from_peer_id)
                return
            # the initiator restarted negotiation, most likely after its own path failure
            logger.info("Initiator %s restarted negotiation", offer.from_peer_id)
            if self.state.strategy == STRATEGY_DEFAULT:
                if not await self._escalate():
                    return
            else:
                await self._rebuild_adapter()

        self.state.negotiation_peer = offer.from_peer_id
        self._cancel_timer(TIMER_PEER_WAIT)
        self._set_phase(PHASE_ANSWERING)
        generation = self._generation
        try:
            await self._adapter.apply_remote_description(offer.description)
            if self._superseded(generation):
                return
            await self._mark_remote_applied(generation)
            if self._superseded(generation):
                return
            description = await self._adapter.create_local_description("answer")
        except NegotiationError as exc:
            if not self._superseded(generation):
                await self._handle_failure(f"offer rejected: {exc}")
            return
        if self._superseded(generation):
            return
        await self.relay.send_answer(self.room_id, offer.from_peer_id, self.peer_id, description)
        if self._superseded(generation):
            return
        self._set_phase(PHASE_CONNECTING)
        self._start_timer(TIMER_CONNECT, self.settings.connect_timeout)

    async def _on_answer(self, answer: Answer) -> None:
        if (
            self.state.role != ROLE_INITIATOR
            or self.state.phase != PHASE_AWAITING_ANSWER
            or answer.from_peer_id != self.state.negotiation_peer
        ):
            logger.debug("Ignoring stale answer from %s in phase %s", answer.from_peer_id, self.state.phase)
            return
        generation = self._generation
        try:
            await self._adapter.apply_remote_description(answer.description)
        except NegotiationError as exc:
            if not self._superseded(generation):
                await self._handle_failure(f"answer rejected: {exc}")
            return
        if self._superseded(generation):
            return
        self._set_phase(PHASE_CONNECTING)
        await self._mark_remote_applied(generation)

    async def _on_candidate(self, message: Candidate) -> None:
        if message.from_peer_id != self.state.negotiation_peer:
            logger.debug("Ignoring candidate from %s", message.from_peer_id)
            return
        if not self._remote_applied:
            self._pending_candidates.append(message.candidate)
            return
        await self._apply_candidate(message.candidate)

    async def _mark_remote_applied(self, generation: int) -> None:
        self._remote_applied = True
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            if self._superseded(generation):
                return
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: dict[str, Any]) -> None:
        try:
            await self._adapter.add_remote_candidate(candidate)
        except NegotiationError as exc:
            logger.warning("Could not apply remote candidate: %s", exc)

    async def _on_adapter_event(self, event: AdapterEvent) -> None:
        if isinstance(event, LocalCandidate):
            if self.state.negotiation_peer is None:
                return
            await self.relay.send_candidate(self.room_id, self.state.negotiation_peer, self.peer_id, event.candidate)
        elif isinstance(event, PathStateChanged):
            if event.state == PATH_CONNECTED and self.state.phase in _WAITING_FOR_PATH:
                self._cancel_timer(TIMER_CONNECT)
                self._set_phase(PHASE_CONNECTED)
                logger.info("Path to %s established (%s strategy)", self.state.negotiation_peer, self.state.strategy)
            elif event.state in TERMINAL_PATH_STATES and self.state.phase in _EXCHANGE_PHASES | {PHASE_ANSWERING}:
                await self._handle_failure(f"path {event.state}")
        elif isinstance(event, GatheringStateChanged):
            logger.debug("Candidate gathering %s", event.state)

    async def _on_timer(self, name: str) -> None:
        if name == TIMER_PEER_WAIT and self.state.phase in (PHASE_ROLE_ASSIGNED, PHASE_AWAITING_OFFER):
            await self._fail(REASON_NO_RESPONSE, f"no peer within {self.settings.peer_wait_timeout}s")
        elif name == TIMER_CONNECT and self.state.phase in _WAITING_FOR_PATH:
            await self._handle_failure(f"no path within {self.settings.connect_timeout}s")

    # -- failure and escalation -----------------------------------------------

    async def _handle_failure(self, detail: str) -> None:
        logger.warning("Negotiation in room '%s' failed (%s strategy): %s", self.room_id, self.state.strategy, detail)
        self._cancel_timer(TIMER_CONNECT)
        self._set_phase(PHASE_FAILED)
        if self.state.strategy == STRATEGY_RELAY_ONLY:
            await self._fail(REASON_RELAY_EXHAUSTED, detail)
            return
        if not await self._escalate():
            return
        if self.state.role == ROLE_INITIATOR:
            await self._send_offer()
        else:
            self._set_phase(PHASE_AWAITING_OFFER)
            self._start_timer(TIMER_PEER_WAIT, self.settings.peer_wait_timeout)

    async def _recover(self, detail: str) -> None:
        if self.is_finished:
            return
        try:
            await self._handle_failure(detail)
        except Exception as exc:
            logger.exception("Failure handling in room '%s' failed", self.room_id)
            reason = REASON_RELAY_EXHAUSTED if self.state.strategy == STRATEGY_RELAY_ONLY else REASON_PATH_FAILED
            await self._fail(reason, f"{detail}; {type(exc).__name__}: {exc}")

    async def _escalate(self) -> bool:
        self._relay_paths = await self._discover_relay_paths(self._relay_paths)
        if not self._relay_paths:
            await self._fail(REASON_PATH_FAILED, "no relay paths available for relay-only fallback")
            return False
        logger.info("Escalating room '%s' to relay-only strategy", self.room_id)
        self.state.strategy = STRATEGY_RELAY_ONLY
        self.state.escalated = True
        await self._rebuild_adapter()
        return True

    async def _fail(self, reason: str, detail: str) -> None:
        logger.error("Session in room '%s' failed terminally: %s (%s)", self.room_id, reason, detail)
        self.state.failure = SessionFailure(reason=reason, detail=detail)
        self._set_phase(PHASE_FAILED)
        self._cancel_timers()
        if self._poller is not None:
            self._poller.cancel()
        await self._close_adapter()
        self._finished.set()
        await self._notify_waiters()

    # -- adapter lifecycle ----------------------------------------------------

    def _build_adapter(self) -> None:
        self._generation += 1
        self._remote_applied = False
        self._pending_candidates = []
        self._adapter = self._adapter_factory(
            self.state.strategy,
            list(self._relay_paths),
            self._adapter_sink(self._generation),
        )

    async def _rebuild_adapter(self) -> None:
        await self._close_adapter()
        self._build_adapter()

    async def _close_adapter(self) -> None:
        adapter, self._adapter = self._adapter, None
        if adapter is not None:
            # events emitted while closing belong to a generation nobody listens to
            self._generation += 1
            try:
                await adapter.close()
            except Exception:
                logger.exception("Closing the transport adapter failed")

    async def _discover_relay_paths(self, fallback: Sequence[RelayPath]) -> list[RelayPath]:
        try:
            return await self.relay.relay_paths()
        except RelayRequestError as exc:
            logger.warning("Relay path discovery failed: %s", exc)
            return list(fallback)

    # -- helpers --------------------------------------------------------------

    def _superseded(self, generation: int) -> bool:
        return self.is_finished or generation != self._generation

    def _set_phase(self, phase: str) -> None:
        if self._left or self.state.phase == phase:
            return
        logger.info("Session %s in room '%s': %s -> %s", self.peer_id, self.room_id, self.state.phase, phase)
        self.state.phase = phase
        self.state.phase_history.append(phase)
        if self._on_state_change is not None:
            self._on_state_change(dataclasses.replace(self.state, phase_history=list(self.state.phase_history)))
        task = asyncio.ensure_future(self._notify_waiters())
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify_waiters(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    async def _stop_tasks(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poller
        if self._actor is not None:
            self._inputs.put_nowait(_STOP)
            try:
                await self._actor
            except Exception:
                logger.exception("Session actor for room '%s' ended with an error", self.room_id)
