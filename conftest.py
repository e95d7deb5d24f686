"""
Shared fixtures for AgentMesh tests.

Every store-backed test runs twice, once per backend (SQLite and JSON
snapshot), each on a fresh file under tmp_path. HTTP tests drive the FastAPI
app in-process through httpx's ASGI transport, so no server process or port
is needed.
"""
import httpx
import pytest
import pytest_asyncio

from agentmesh import services
from agentmesh.client import MeshClient
from agentmesh.db.store import build_store
from agentmesh.main import create_app

BASE_URL = "http://agentmesh.test"
BACKENDS = ["sqlite", "json"]


def store_file(tmp_path, backend: str) -> str:
    return str(tmp_path / ("mesh.db" if backend == "sqlite" else "mesh.json"))


@pytest_asyncio.fixture(params=BACKENDS)
async def store(request, tmp_path):
    """An open store on a fresh file, for each backend."""
    s = build_store(request.param, store_file(tmp_path, request.param))
    await s.open()
    try:
        yield s
    finally:
        await s.close()


@pytest_asyncio.fixture
async def room(store):
    return await services.create_room(store, "Room A")


@pytest_asyncio.fixture
async def other_room(store):
    return await services.create_room(store, "Room B")


@pytest_asyncio.fixture
async def client(store):
    """Raw httpx client bound to an app that uses `store`."""
    app = create_app(store)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as c:
        yield c


@pytest_asyncio.fixture
async def mesh(store):
    """MeshClient bound to an app that uses `store` (no api_key yet)."""
    app = create_app(store)
    async with MeshClient(base_url=BASE_URL, transport=httpx.ASGITransport(app=app)) as m:
        yield m


@pytest.fixture
def auth():
    """Build the x-api-key header for a room."""
    def _auth(room) -> dict:
        key = room if isinstance(room, str) else room.api_key
        return {"x-api-key": key}
    return _auth
