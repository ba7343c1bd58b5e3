import asyncio

import pytest

pytest.importorskip("aiortc")

from roomrelay.backend.errors import NegotiationError
from roomrelay.backend.models import RelayPath
from roomrelay.client.aiortc_adapter import (
    AiortcTransportAdapter,
    build_rtc_configuration,
    candidate_type,
    candidates_from_sdp,
    filter_relay_candidates,
)
from roomrelay.client.transport import STRATEGY_DEFAULT, STRATEGY_RELAY_ONLY

SDP = "\r\n".join(
    [
        "v=0",
        "o=- 1 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "a=group:BUNDLE 0",
        "m=application 9 UDP/DTLS/SCTP webrtc-datachannel",
        "c=IN IP4 0.0.0.0",
        "a=mid:0",
        "a=candidate:1 1 udp 2130706431 192.168.1.2 5000 typ host",
        "a=candidate:2 1 udp 1694498815 198.51.100.7 5001 typ srflx raddr 192.168.1.2 rport 5000",
        "a=candidate:3 1 udp 16777215 203.0.113.5 6000 typ relay raddr 198.51.100.7 rport 5001",
        "a=end-of-candidates",
        "",
    ]
)

TURN = RelayPath(urls=("turn:relay.example:3478",), username="user", credential="secret")


def test_candidate_type_reads_typ_field() -> None:
    assert candidate_type("candidate:1 1 udp 2130706431 192.168.1.2 5000 typ host") == "host"
    assert candidate_type("a=candidate:3 1 udp 1 203.0.113.5 6000 typ relay raddr 0.0.0.0 rport 0") == "relay"
    assert candidate_type("candidate:1 1 udp 1 10.0.0.1 5000") is None


def test_candidates_from_sdp_carries_media_section() -> None:
    candidates = candidates_from_sdp(SDP)

    assert [candidate_type(item["candidate"]) for item in candidates] == ["host", "srflx", "relay"]
    assert all(item["candidate"].startswith("candidate:") for item in candidates)
    assert {item["sdpMid"] for item in candidates} == {"0"}
    assert {item["sdpMLineIndex"] for item in candidates} == {0}


def test_filter_relay_candidates_keeps_only_relay_lines() -> None:
    filtered = filter_relay_candidates(SDP)

    assert "typ host" not in filtered
    assert "typ srflx" not in filtered
    assert "typ relay" in filtered
    assert "a=mid:0" in filtered
    assert "a=end-of-candidates" in filtered
    assert filtered.endswith("\r\n")


def test_default_configuration_uses_stun_and_relay_paths() -> None:
    config = build_rtc_configuration(STRATEGY_DEFAULT, [TURN], stun_urls=("stun:stun.example:3478",))

    urls = [server.urls for server in config.iceServers]
    assert urls == ["stun:stun.example:3478", ["turn:relay.example:3478"]]
    assert config.iceServers[1].username == "user"
    assert config.iceServers[1].credential == "secret"


def test_relay_only_configuration_drops_stun() -> None:
    config = build_rtc_configuration(STRATEGY_RELAY_ONLY, [TURN], stun_urls=("stun:stun.example:3478",))

    assert [server.urls for server in config.iceServers] == [["turn:relay.example:3478"]]


def test_malformed_remote_description_raises_negotiation_error() -> None:
    async def scenario() -> None:
        adapter = AiortcTransportAdapter(STRATEGY_DEFAULT, [], lambda event: None, stun_urls=())
        try:
            with pytest.raises(NegotiationError):
                await adapter.apply_remote_description({"type": "offer", "sdp": "v=0\r\nm=audio x\r\n"})
        finally:
            await adapter.close()

    asyncio.run(scenario())
