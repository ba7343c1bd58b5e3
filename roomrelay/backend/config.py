"""Configuration helpers for relay server runtime."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from roomrelay.backend.models import RelayPath


@dataclass(frozen=True)
class BackendSettings:
    host: str
    port: int
    log_level: str = "INFO"
    log_file: str | None = None
    room_idle_seconds: float = 1800.0
    sweep_interval_seconds: float = 60.0
    max_rooms: int = 10000
    max_mailbox_size: int = 512
    relay_paths: tuple[RelayPath, ...] = field(default_factory=tuple)


def parse_relay_paths(raw: str | None) -> tuple[RelayPath, ...]:
    """Parse a JSON list of ``{urls, username, credential}`` objects."""
    if not raw:
        return ()
    entries = json.loads(raw)
    if not isinstance(entries, list):
        raise ValueError("ROOMRELAY_RELAY_PATHS must be a JSON list")
    paths: list[RelayPath] = []
    for entry in entries:
        urls = entry["urls"]
        if isinstance(urls, str):
            urls = [urls]
        paths.append(
            RelayPath(
                urls=tuple(urls),
                username=entry.get("username"),
                credential=entry.get("credential"),
            )
        )
    return tuple(paths)


def load_settings() -> BackendSettings:
    port_raw = os.getenv("ROOMRELAY_PORT", "8000")
    return BackendSettings(
        host=os.getenv("ROOMRELAY_HOST", "127.0.0.1"),
        port=int(port_raw),
        log_level=os.getenv("ROOMRELAY_LOG_LEVEL", "INFO"),
        log_file=os.getenv("ROOMRELAY_LOG_FILE"),
        room_idle_seconds=float(os.getenv("ROOMRELAY_ROOM_IDLE_SECONDS", "1800")),
        sweep_interval_seconds=float(os.getenv("ROOMRELAY_SWEEP_INTERVAL_SECONDS", "60")),
        max_rooms=int(os.getenv("ROOMRELAY_MAX_ROOMS", "10000")),
        max_mailbox_size=int(os.getenv("ROOMRELAY_MAX_MAILBOX_SIZE", "512")),
        relay_paths=parse_relay_paths(os.getenv("ROOMRELAY_RELAY_PATHS")),
    )
