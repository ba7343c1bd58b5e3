"""HTTP client for the relay protocol."""

from __future__ import annotations

from typing import Any

import httpx

from roomrelay.backend.errors import RelayRequestError
from roomrelay.backend.models import JoinResult, Participant, RelayMessage, RelayPath, RoomSnapshot, message_from_wire


def _participant(data: dict[str, Any]) -> Participant:
    return Participant(peer_id=str(data["peer_id"]), display_name=str(data.get("display_name") or data["peer_id"]))


class RelayClient:
    """Stateless request/response calls against one relay server.

    Every method raises :class:`RelayRequestError` when the request fails or the
    server rejects it; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def join(self, room_id: str, peer_id: str, display_name: str = "") -> JoinResult:
        data = await self._post(
            "/api/rooms/join",
            {"room_id": room_id, "peer_id": peer_id, "display_name": display_name},
        )
        return JoinResult(
            role=str(data["role"]),
            initiator=_participant(data["initiator"]),
            responders=tuple(_participant(item) for item in data.get("responders", [])),
        )

    async def leave(self, room_id: str, peer_id: str) -> None:
        await self._post("/api/rooms/leave", {"room_id": room_id, "peer_id": peer_id})

    async def describe(self, room_id: str) -> RoomSnapshot | None:
        """Return the room snapshot, or ``None`` when the room does not exist."""
        try:
            response = await self._client.get("/api/rooms", params={"room_id": room_id})
        except httpx.HTTPError as exc:
            raise RelayRequestError("describe failed", {"room_id": room_id, "error": str(exc)}) from exc
        if response.status_code == 404:
            return None
        data = self._json(response)
        return RoomSnapshot(
            room_id=room_id,
            initiator=_participant(data["initiator"]),
            responders=tuple(_participant(item) for item in data.get("responders", [])),
        )

    async def send_offer(self, room_id: str, to_peer_id: str, from_peer_id: str, description: dict[str, Any]) -> None:
        await self._post(
            "/api/relay/offer",
            {"room_id": room_id, "to": to_peer_id, "from": from_peer_id, "sdp": description},
        )

    async def send_answer(self, room_id: str, to_peer_id: str, from_peer_id: str, description: dict[str, Any]) -> None:
        await self._post(
            "/api/relay/answer",
            {"room_id": room_id, "to": to_peer_id, "from": from_peer_id, "sdp": description},
        )

    async def send_candidate(self, room_id: str, to_peer_id: str, from_peer_id: str, candidate: dict[str, Any]) -> None:
        await self._post(
            "/api/relay/candidate",
            {"room_id": room_id, "to": to_peer_id, "from": from_peer_id, "candidate": candidate},
        )

    async def drain(self, room_id: str, for_peer_id: str) -> list[RelayMessage]:
        data = await self._post("/api/relay/drain", {"room_id": room_id, "for_peer": for_peer_id})
        try:
            return [message_from_wire(item) for item in data.get("messages", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise RelayRequestError("malformed relay message", {"room_id": room_id, "error": str(exc)}) from exc

    async def relay_paths(self) -> list[RelayPath]:
        try:
            response = await self._client.get("/api/relay-paths")
        except httpx.HTTPError as exc:
            raise RelayRequestError("relay path discovery failed", {"error": str(exc)}) from exc
        data = self._json(response)
        paths: list[RelayPath] = []
        for item in data.get("relay_paths", []):
            urls = item["urls"]
            paths.append(
                RelayPath(
                    urls=(urls,) if isinstance(urls, str) else tuple(urls),
                    username=item.get("username"),
                    credential=item.get("credential"),
                )
            )
        return paths

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise RelayRequestError("relay request failed", {"path": path, "error": str(exc)}) from exc
        return self._json(response)

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise RelayRequestError(
                "relay server rejected request",
                {"path": response.request.url.path, "status": response.status_code},
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RelayRequestError(
                "relay server sent a non-JSON body",
                {"path": response.request.url.path, "status": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise RelayRequestError("relay server sent an unexpected body", {"path": response.request.url.path})
        return data
