"""Participant side: relay client, transport adapter interface and negotiation session.

The aiortc adapter lives in :mod:`roomrelay.client.aiortc_adapter` and needs the
``rtc`` extra.
"""

from .config import ClientSettings, load_client_settings
from .relay_client import RelayClient
from .session import NegotiationSession, SessionFailure, SessionState
from .transport import (
    STRATEGY_DEFAULT,
    STRATEGY_RELAY_ONLY,
    AdapterFactory,
    GatheringStateChanged,
    LocalCandidate,
    PathStateChanged,
    TransportAdapter,
)

__all__ = [
    "AdapterFactory",
    "ClientSettings",
    "GatheringStateChanged",
    "load_client_settings",
    "LocalCandidate",
    "NegotiationSession",
    "PathStateChanged",
    "RelayClient",
    "SessionFailure",
    "SessionState",
    "STRATEGY_DEFAULT",
    "STRATEGY_RELAY_ONLY",
    "TransportAdapter",
]
