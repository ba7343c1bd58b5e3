"""Configuration helpers for negotiating clients."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_STUN_URLS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
)


@dataclass(frozen=True)
class ClientSettings:
    server_url: str = "http://127.0.0.1:8000"
    poll_interval: float = 1.0
    peer_wait_timeout: float = 60.0
    # bounded wait for the first established path after descriptions are exchanged
    connect_timeout: float = 10.0
    request_timeout: float = 5.0
    stun_urls: tuple[str, ...] = DEFAULT_STUN_URLS


def load_client_settings() -> ClientSettings:
    stun_raw = os.getenv("ROOMRELAY_STUN_URLS")
    stun_urls = tuple(url.strip() for url in stun_raw.split(",") if url.strip()) if stun_raw else DEFAULT_STUN_URLS
    return ClientSettings(
        server_url=os.getenv("ROOMRELAY_SERVER_URL", "http://127.0.0.1:8000"),
        poll_interval=float(os.getenv("ROOMRELAY_POLL_INTERVAL", "1.0")),
        peer_wait_timeout=float(os.getenv("ROOMRELAY_PEER_WAIT_TIMEOUT", "60.0")),
        connect_timeout=float(os.getenv("ROOMRELAY_CONNECT_TIMEOUT", "10.0")),
        request_timeout=float(os.getenv("ROOMRELAY_REQUEST_TIMEOUT", "5.0")),
        stun_urls=stun_urls,
    )
