"""Transport adapter backed by aiortc's RTCPeerConnection.

aiortc gathers every local candidate while applying the local description and
embeds them in the SDP. The adapter additionally reports each of them as a
``LocalCandidate`` so the session can trickle them through the relay like any
other implementation would.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.sdp import candidate_from_sdp

from roomrelay.backend.errors import NegotiationError
from roomrelay.backend.models import RelayPath
from roomrelay.client.config import DEFAULT_STUN_URLS
from roomrelay.client.transport import (
    PATH_NEW,
    STRATEGY_RELAY_ONLY,
    EventSink,
    GatheringStateChanged,
    LocalCandidate,
    PathStateChanged,
)

logger = logging.getLogger(__name__)

CANDIDATE_PREFIX = "a=candidate:"

# aiortc's SDP parser reports malformed input through bare assertions and lookups
_SDP_ERRORS = (AssertionError, IndexError, KeyError, ValueError)
_DESCRIPTION_ERRORS = (InvalidAccessError, InvalidStateError) + _SDP_ERRORS


def build_rtc_configuration(
    strategy: str,
    relay_paths: Sequence[RelayPath],
    stun_urls: Sequence[str] = DEFAULT_STUN_URLS,
) -> RTCConfiguration:
    ice_servers: list[RTCIceServer] = []
    if strategy != STRATEGY_RELAY_ONLY:
        ice_servers.extend(RTCIceServer(urls=url) for url in stun_urls)
    for path in relay_paths:
        ice_servers.append(RTCIceServer(urls=list(path.urls), username=path.username, credential=path.credential))
    return RTCConfiguration(iceServers=ice_servers)


def candidate_type(candidate_line: str) -> str | None:
    """Return the ``typ`` field of a candidate attribute (host, srflx, prflx, relay)."""
    bits = candidate_line.split()
    for index, bit in enumerate(bits[:-1]):
        if bit == "typ":
            return bits[index + 1]
    return None


def candidates_from_sdp(sdp: str) -> list[dict[str, Any]]:
    """Extract candidate init objects (``candidate``, ``sdpMid``, ``sdpMLineIndex``) from an SDP blob."""
    sections: list[tuple[str | None, list[str]]] = []
    mid: str | None = None
    lines: list[str] = []
    in_media = False
    for line in sdp.splitlines():
        if line.startswith("m="):
            if in_media:
                sections.append((mid, lines))
            in_media = True
            mid = None
            lines = []
        elif in_media and line.startswith("a=mid:"):
            mid = line[len("a=mid:"):].strip()
        elif in_media and line.startswith(CANDIDATE_PREFIX):
            lines.append(line[2:])
    if in_media:
        sections.append((mid, lines))

    candidates: list[dict[str, Any]] = []
    for index, (section_mid, section_lines) in enumerate(sections):
        for line in section_lines:
            candidates.append({"candidate": line, "sdpMid": section_mid, "sdpMLineIndex": index})
    return candidates


def filter_relay_candidates(sdp: str) -> str:
    """Drop every non-relay candidate line from an SDP blob."""
    kept = [
        line
        for line in sdp.splitlines()
        if not line.startswith(CANDIDATE_PREFIX) or candidate_type(line) == "relay"
    ]
    return "\r\n".join(kept) + "\r\n"


def _candidate_value(candidate_line: str) -> str:
    if candidate_line.startswith("candidate:"):
        return candidate_line[len("candidate:"):]
    return candidate_line


class AiortcTransportAdapter:
    def __init__(
        self,
        strategy: str,
        relay_paths: Sequence[RelayPath],
        on_event: EventSink,
        stun_urls: Sequence[str] = DEFAULT_STUN_URLS,
    ) -> None:
        self.strategy = strategy
        self._on_event = on_event
        self._pc = RTCPeerConnection(configuration=build_rtc_configuration(strategy, relay_paths, stun_urls))
        self._channel = None
        self._known_remote: set[str] = set()

        @self._pc.on("connectionstatechange")
        def on_connection_state_change() -> None:
            self._on_event(PathStateChanged(self._pc.connectionState))

        @self._pc.on("icegatheringstatechange")
        def on_ice_gathering_state_change() -> None:
            self._on_event(GatheringStateChanged(self._pc.iceGatheringState))

    @property
    def relay_only(self) -> bool:
        return self.strategy == STRATEGY_RELAY_ONLY

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState or PATH_NEW

    @property
    def gathering_state(self) -> str:
        return self._pc.iceGatheringState

    async def create_local_description(self, kind: str) -> dict[str, Any]:
        try:
            if kind == "offer":
                if self._channel is None:
                    # a transport section is needed for ICE to start without media tracks
                    self._channel = self._pc.createDataChannel("roomrelay")
                description = await self._pc.createOffer()
            else:
                description = await self._pc.createAnswer()
            await self._pc.setLocalDescription(description)
        except _DESCRIPTION_ERRORS as exc:
            raise NegotiationError("could not create local description", {"kind": kind, "error": str(exc)}) from exc

        local = self._pc.localDescription
        sdp = filter_relay_candidates(local.sdp) if self.relay_only else local.sdp
        for candidate in candidates_from_sdp(sdp):
            self._on_event(LocalCandidate(candidate))
        return {"type": local.type, "sdp": sdp}

    async def apply_remote_description(self, description: dict[str, Any]) -> None:
        sdp = str(description.get("sdp", ""))
        if self.relay_only:
            sdp = filter_relay_candidates(sdp)
        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=str(description.get("type"))))
        except _DESCRIPTION_ERRORS as exc:
            raise NegotiationError("remote description rejected", {"error": str(exc)}) from exc
        self._known_remote.update(_candidate_value(item["candidate"]) for item in candidates_from_sdp(sdp))

    async def add_remote_candidate(self, candidate: dict[str, Any]) -> None:
        line = str(candidate.get("candidate") or "")
        if not line:
            return
        value = _candidate_value(line)
        if value in self._known_remote:
            return
        if self.relay_only and candidate_type(value) != "relay":
            logger.debug("Ignoring %s candidate under relay-only strategy", candidate_type(value))
            return
        try:
            rtc_candidate = candidate_from_sdp(value)
        except _SDP_ERRORS as exc:
            raise NegotiationError("malformed candidate", {"candidate": line}) from exc
        rtc_candidate.sdpMid = candidate.get("sdpMid")
        rtc_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        try:
            await self._pc.addIceCandidate(rtc_candidate)
        except (InvalidStateError, ValueError) as exc:
            raise NegotiationError("candidate rejected", {"candidate": line, "error": str(exc)}) from exc
        self._known_remote.add(value)

    async def close(self) -> None:
        await self._pc.close()


def create_aiortc_adapter(stun_urls: Sequence[str] = DEFAULT_STUN_URLS):
    """Return an ``AdapterFactory`` producing aiortc adapters with the given STUN servers."""

    def factory(strategy: str, relay_paths: Sequence[RelayPath], on_event: EventSink) -> AiortcTransportAdapter:
        return AiortcTransportAdapter(strategy, relay_paths, on_event, stun_urls=stun_urls)

    return factory
