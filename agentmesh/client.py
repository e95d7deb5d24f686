"""
Async HTTP client for AgentMesh.

Typical cursor-polling loop:

    async with MeshClient(api_key=key) as mesh:
        await mesh.join("Keko")
        cursor = 0
        while True:
            new, cursor = await mesh.poll("Keko", since_id=cursor)
            for m in new:
                print(m["from_agent"], m["content"])
            if new:
                await mesh.mark_read("Keko", cursor)
            await asyncio.sleep(1)
"""
from typing import Any, Optional

import httpx

from agentmesh.auth import API_KEY_HEADER
from agentmesh.config import HOST, PORT

DEFAULT_BASE_URL = f"http://{HOST}:{PORT}"


class MeshClientError(Exception):
    """Raised for any non-2xx response; carries the server's error text."""

    def __init__(self, status_code: int, error: str) -> None:
        self.status_code = status_code
        self.error = error
        super().__init__(f"HTTP {status_code}: {error}")


class MeshClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10,
    ) -> None:
        self.api_key = api_key
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "MeshClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, *, json: Any = None, params: Optional[dict] = None) -> dict:
        headers = {API_KEY_HEADER: self.api_key} if self.api_key else {}
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        resp = await self._http.request(method, path, json=json, params=params, headers=headers)
        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text}
        if resp.status_code >= 400:
            raise MeshClientError(resp.status_code, body.get("error", resp.reason_phrase))
        return body

    # ── Rooms ──────────────────────────────────

    async def create_room(self, name: str) -> dict:
        """Create a room and adopt its api_key for subsequent calls."""
        body = await self._request("POST", "/rooms", json={"name": name})
        self.api_key = body["api_key"]
        return body

    async def room_info(self) -> dict:
        return await self._request("GET", "/rooms")

    # ── Agents ─────────────────────────────────

    async def join(self, name: str) -> dict:
        return (await self._request("POST", "/agents", json={"name": name}))["agent"]

    async def agents(self) -> list[dict]:
        return (await self._request("GET", "/agents"))["agents"]

    # ── Messages ───────────────────────────────

    async def send(self, from_agent: str, content: str, to: Optional[str] = None, type: Optional[str] = None) -> int:
        payload = {"from": from_agent, "content": content, "to": to, "type": type}
        return (await self._request("POST", "/messages", json=payload))["id"]

    async def messages(
        self,
        for_agent: Optional[str] = None,
        since_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params = {"for": for_agent, "since_id": since_id, "limit": limit}
        return (await self._request("GET", "/messages", params=params))["messages"]

    async def poll(self, for_agent: Optional[str], since_id: int = 0, limit: Optional[int] = None) -> tuple[list[dict], int]:
        """Fetch messages newer than the cursor and return them with the advanced cursor."""
        new = await self.messages(for_agent=for_agent, since_id=since_id, limit=limit)
        cursor = max((m["id"] for m in new), default=since_id)
        return new, cursor

    async def mark_read(self, agent: str, up_to_id: int) -> int:
        body = await self._request("POST", "/messages/read", json={"agent": agent, "up_to_id": up_to_id})
        return body["marked"]

    # ── Tasks ──────────────────────────────────

    async def create_task(
        self,
        title: str,
        created_by: str,
        description: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> int:
        payload = {"title": title, "created_by": created_by,
                   "description": description, "assigned_to": assigned_to}
        return (await self._request("POST", "/tasks", json=payload))["id"]

    async def tasks(self, status: Optional[str] = None, assigned_to: Optional[str] = None) -> list[dict]:
        params = {"status": status, "assigned_to": assigned_to}
        return (await self._request("GET", "/tasks", params=params))["tasks"]

    async def update_task(self, task_id: int, **fields: Optional[str]) -> dict:
        return (await self._request("PATCH", f"/tasks/{task_id}", json=fields))["task"]
