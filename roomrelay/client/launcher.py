"""Command line participant: join a room and negotiate a direct path with aiortc."""

from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
import time
import uuid
from pathlib import Path

import httpx

from roomrelay.backend.logging_config import setup_logging
from roomrelay.client.config import load_client_settings
from roomrelay.client.relay_client import RelayClient
from roomrelay.client.session import PHASE_CONNECTED, NegotiationSession, SessionState

PROJECT_DIR = Path(__file__).resolve().parents[2]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = load_client_settings()
    parser = argparse.ArgumentParser(description="Room relay participant")
    parser.add_argument("--server", default=settings.server_url)
    parser.add_argument("--room", required=True)
    parser.add_argument("--peer-id", default="")
    parser.add_argument("--name", default="")
    parser.add_argument("--start-server", action="store_true")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def server_is_healthy(server_url: str, timeout: float = 0.5) -> bool:
    try:
        response = httpx.get(f"{server_url.rstrip('/')}/api/health", timeout=timeout)
    except httpx.HTTPError:
        return False
    if response.status_code != 200:
        return False
    try:
        return response.json().get("status") == "ok"
    except ValueError:
        return False


def wait_for_server(server_url: str, timeout_s: float = 8.0, interval_s: float = 0.2) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if server_is_healthy(server_url):
            return True
        time.sleep(interval_s)
    return False


def spawn_relay_server(server_url: str) -> subprocess.Popen[str] | None:
    """Run the relay app under uvicorn on the host and port of ``server_url``."""
    url = httpx.URL(server_url)
    port = url.port or (443 if url.scheme == "https" else 80)
    process = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "roomrelay.backend.api:app", "--host", url.host, "--port", str(port)],
        cwd=str(PROJECT_DIR),
    )
    if wait_for_server(server_url):
        return process
    process.terminate()
    process.wait(timeout=5)
    return None


def print_state(state: SessionState) -> None:
    print(f"[{state.role or '-'}] {state.phase} (strategy={state.strategy})", flush=True)


async def run_participant(server_url: str, room_id: str, peer_id: str, display_name: str) -> int:
    from roomrelay.client.aiortc_adapter import create_aiortc_adapter

    settings = load_client_settings()
    async with RelayClient(server_url, timeout=settings.request_timeout) as relay:
        session = NegotiationSession(
            relay=relay,
            room_id=room_id,
            peer_id=peer_id,
            display_name=display_name,
            adapter_factory=create_aiortc_adapter(settings.stun_urls),
            settings=settings,
            on_state_change=print_state,
        )
        await session.start()
        try:
            await session.wait_for_phase(PHASE_CONNECTED)
            if session.failure is not None:
                print(f"Session failed: {session.failure.reason} ({session.failure.detail})", file=sys.stderr)
                return 1
            print("Connected. Press Ctrl+C to leave.", flush=True)
            await session.wait_closed()
            return 0 if session.failure is None else 1
        finally:
            await session.leave()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(level=args.log_level)

    server_process: subprocess.Popen[str] | None = None
    if args.start_server:
        server_process = spawn_relay_server(args.server)
        if server_process is None:
            print("Relay server could not be started.", file=sys.stderr)
            return 1
    elif not wait_for_server(args.server):
        print(f"No relay server answering at {args.server} (try --start-server).", file=sys.stderr)
        return 1

    peer_id = args.peer_id or uuid.uuid4().hex
    try:
        return asyncio.run(run_participant(args.server, args.room, peer_id, args.name or peer_id))
    except KeyboardInterrupt:
        return 130
    finally:
        if server_process is not None:
            server_process.terminate()


if __name__ == "__main__":
    raise SystemExit(main())
