"""
AgentMesh main entry point.

Starts a FastAPI HTTP server exposing rooms, agents, messages and tasks.
Every route except room creation and the informational ones requires the
room's x-api-key header; the resolved Room is passed explicitly to each
service call.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from agentmesh import services
from agentmesh.auth import get_store, require_room
from agentmesh.config import HOST, PORT, MESH_VERSION, STORE_BACKEND, get_config_dict, store_path
from agentmesh.db.models import Room, Agent
from agentmesh.db.store import Store, build_store
from agentmesh.errors import MeshError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("agentmesh")

router = APIRouter()


# ─────────────────────────────────────────────
# Request bodies
# Required fields are Optional here so that a missing one is reported by
# the service layer as a 400 with the same message as an empty one. Routes
# default each body to an empty model, so an absent body behaves like {}.
# ─────────────────────────────────────────────

# Ids are SQLite INTEGERs; anything outside that range is rejected as a 400
# before it reaches a store.
ID_MIN = -(2**63)
ID_MAX = 2**63 - 1


class RoomCreate(BaseModel):
    name: Optional[str] = None


class AgentJoin(BaseModel):
    name: Optional[str] = None


class MessageCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_agent: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None


class ReadReceipt(BaseModel):
    agent: Optional[str] = None
    up_to_id: Optional[int] = Field(default=None, ge=ID_MIN, le=ID_MAX)


class TaskCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None


class TaskPatch(BaseModel):
    status: Optional[str] = None
    assigned_to: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


def _agent_out(a: Agent) -> dict:
    return {"id": a.id, "name": a.name, "joined_at": a.joined_at}


def _room_out(r: Room) -> dict:
    # api_key is only ever returned once, by POST /rooms
    return {"id": r.id, "name": r.name, "created_at": r.created_at}


# ─────────────────────────────────────────────
# Rooms
# ─────────────────────────────────────────────

@router.post("/rooms", status_code=201)
async def api_create_room(body: RoomCreate = RoomCreate(), store: Store = Depends(get_store)):
    room = await services.create_room(store, body.name)
    return {
        "room_id": room.id,
        "name": room.name,
        "api_key": room.api_key,
        "message": "Room created! Share the api_key with your collaborators.",
    }


@router.get("/rooms")
async def api_room_info(room: Room = Depends(require_room), store: Store = Depends(get_store)):
    room, agents = await services.room_info(store, room)
    return {"room": _room_out(room), "agents": [_agent_out(a) for a in agents]}


# ─────────────────────────────────────────────
# Agents
# ─────────────────────────────────────────────

@router.post("/agents", status_code=201)
async def api_join_room(
    body: AgentJoin = AgentJoin(), room: Room = Depends(require_room), store: Store = Depends(get_store),
):
    agent, created = await services.join_room(store, room, body.name)
    if not created:
        return JSONResponse(status_code=200, content={"agent": asdict(agent), "message": "Agent already in room"})
    return {"agent": asdict(agent), "message": f"{agent.name} joined the room!"}


@router.get("/agents")
async def api_list_agents(room: Room = Depends(require_room), store: Store = Depends(get_store)):
    agents = await services.list_agents(store, room)
    return {"agents": [_agent_out(a) for a in agents]}


# ─────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────

@router.post("/messages", status_code=201)
async def api_send_message(
    body: MessageCreate = MessageCreate(), room: Room = Depends(require_room), store: Store = Depends(get_store),
):
    m = await services.send_message(
        store, room, from_agent=body.from_agent, content=body.content, to_agent=body.to, type=body.type,
    )
    return {"id": m.id, "message": "Message sent"}


@router.get("/messages")
async def api_list_messages(
    for_agent: Optional[str] = Query(default=None, alias="for"),
    since_id: Optional[int] = Query(default=None, ge=ID_MIN, le=ID_MAX),
    limit: Optional[int] = None,
    room: Room = Depends(require_room),
    store: Store = Depends(get_store),
):
    msgs = await services.list_messages(store, room, for_agent=for_agent, since_id=since_id, limit=limit)
    return {"messages": [asdict(m) for m in msgs]}


@router.post("/messages/read")
async def api_mark_read(
    body: ReadReceipt = ReadReceipt(), room: Room = Depends(require_room), store: Store = Depends(get_store),
):
    marked = await services.mark_read(store, room, body.agent, body.up_to_id)
    return {"marked": marked}


# ─────────────────────────────────────────────
# Tasks
# ─────────────────────────────────────────────

@router.post("/tasks", status_code=201)
async def api_create_task(
    body: TaskCreate = TaskCreate(), room: Room = Depends(require_room), store: Store = Depends(get_store),
):
    t = await services.create_task(
        store, room, title=body.title, created_by=body.created_by,
        description=body.description, assigned_to=body.assigned_to,
    )
    return {"id": t.id, "message": "Task created"}


@router.get("/tasks")
async def api_list_tasks(
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    room: Room = Depends(require_room),
    store: Store = Depends(get_store),
):
    tasks = await services.list_tasks(store, room, status=status, assigned_to=assigned_to)
    return {"tasks": [asdict(t) for t in tasks]}


@router.patch("/tasks/{task_id}")
async def api_update_task(
    task_id: int = Path(ge=ID_MIN, le=ID_MAX),
    body: TaskPatch = TaskPatch(),
    room: Room = Depends(require_room),
    store: Store = Depends(get_store),
):
    t = await services.update_task(store, room, task_id, body.model_dump())
    return {"message": "Task updated", "task": asdict(t)}


# ─────────────────────────────────────────────
# Banner, help and health
# ─────────────────────────────────────────────

@router.get("/")
async def api_banner():
    return {
        "name": "AgentMesh",
        "version": MESH_VERSION,
        "description": "Agent-to-agent communication bridge",
        "docs": "See /help for API reference",
    }


@router.get("/help")
async def api_help():
    return {
        "endpoints": {
            "POST /rooms": "Create a room -> returns api_key",
            "GET /rooms": "Room info + agents (auth required)",
            "POST /agents": "Join a room (auth required)",
            "GET /agents": "List agents in room (auth required)",
            "POST /messages": "Send a message (auth required)",
            "GET /messages": "Get messages, ?for=agent&since_id=N&limit=N (auth required)",
            "POST /messages/read": "Mark messages as read (auth required)",
            "POST /tasks": "Create a task (auth required)",
            "GET /tasks": "List tasks, ?status=pending&assigned_to=agent (auth required)",
            "PATCH /tasks/{id}": "Update task status/assignment (auth required)",
        },
        "auth": "All authenticated routes require x-api-key header",
    }


@router.get("/health")
async def health(store: Store = Depends(get_store)):
    return {"status": "ok", "service": "AgentMesh", "store": store.backend}


# ─────────────────────────────────────────────
# Error mapping: every failure is {"error": <message>}
# ─────────────────────────────────────────────

async def _mesh_error_handler(request: Request, exc: MeshError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"error": "; ".join(parts) or "Invalid request"})


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(store: Optional[Store] = None) -> FastAPI:
    """Build the application. Without a store, the configured backend is opened at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: open the store
        active = app.state.store if store is not None else build_store(STORE_BACKEND, store_path(STORE_BACKEND))
        await active.open()
        app.state.store = active
        logger.info(f"AgentMesh running at http://{HOST}:{PORT} (store={active.backend})")
        logger.debug(f"Effective config: {get_config_dict()}")
        yield
        # Shutdown: close the store
        await active.close()

    app = FastAPI(
        title="AgentMesh",
        description="Multi-tenant message and task relay for cooperating agents.",
        version=MESH_VERSION,
        lifespan=lifespan,
    )
    if store is not None:
        app.state.store = store
    app.include_router(router)
    app.add_exception_handler(MeshError, _mesh_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    return app


app = create_app()


# ─────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run("agentmesh.main:app", host=HOST, port=PORT, reload=True)
