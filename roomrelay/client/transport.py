"""Narrow interface between the negotiation session and a peer-connection implementation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence, Union

from roomrelay.backend.models import RelayPath

STRATEGY_DEFAULT = "default"
STRATEGY_RELAY_ONLY = "relay-only"

PATH_NEW = "new"
PATH_CONNECTING = "connecting"
PATH_CONNECTED = "connected"
PATH_DISCONNECTED = "disconnected"
PATH_FAILED = "failed"
PATH_CLOSED = "closed"

# path states after which no candidate pair remains usable
TERMINAL_PATH_STATES = frozenset({PATH_DISCONNECTED, PATH_FAILED, PATH_CLOSED})


@dataclass(frozen=True)
class LocalCandidate:
    candidate: dict[str, Any]


@dataclass(frozen=True)
class PathStateChanged:
    state: str


@dataclass(frozen=True)
class GatheringStateChanged:
    state: str


AdapterEvent = Union[LocalCandidate, PathStateChanged, GatheringStateChanged]
EventSink = Callable[[AdapterEvent], None]


class TransportAdapter(Protocol):
    strategy: str

    @property
    def connection_state(self) -> str:
        """Current path state (one of the ``PATH_*`` values)."""

    @property
    def gathering_state(self) -> str:
        """Current candidate gathering state."""

    async def create_local_description(self, kind: str) -> dict[str, Any]:
        """Create an ``offer`` or ``answer``, apply it locally and return ``{"type", "sdp"}``."""

    async def apply_remote_description(self, description: dict[str, Any]) -> None:
        """Apply the peer's description; raises ``NegotiationError`` when rejected."""

    async def add_remote_candidate(self, candidate: dict[str, Any]) -> None:
        """Add one remote candidate; raises ``NegotiationError`` when it cannot be applied."""

    async def close(self) -> None:
        """Release the underlying connection."""


class AdapterFactory(Protocol):
    def __call__(self, strategy: str, relay_paths: Sequence[RelayPath], on_event: EventSink) -> TransportAdapter:
        """Build an adapter for a path strategy, reporting through ``on_event``."""
