"""
Room, agent, message and task operations for AgentMesh.

Every function receives the store from the caller, and every room-scoped
function receives the authenticated Room explicitly. Nothing here reads
request state or knows which storage backend is active.
"""
import logging
import secrets
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional

from agentmesh.config import MSG_LIST_DEFAULT_LIMIT, MSG_LIST_MAX_LIMIT
from agentmesh.db.models import Room, Agent, Message, Task, TASK_UPDATABLE_FIELDS
from agentmesh.db.store import Store
from agentmesh.errors import ValidationError, NotFound

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "amesh_"
DEFAULT_MESSAGE_TYPE = "message"
DEFAULT_TASK_STATUS = "pending"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _later_than(previous: str) -> str:
    """Current time, nudged past `previous` if the clock has not moved on."""
    now = datetime.now(timezone.utc)
    prev = datetime.fromisoformat(previous)
    if now <= prev:
        now = prev + timedelta(microseconds=1)
    return now.isoformat()


def generate_api_key() -> str:
    """Return a fresh room credential: prefix + 24 random bytes as hex."""
    return API_KEY_PREFIX + secrets.token_hex(24)


# ─────────────────────────────────────────────
# Rooms
# ─────────────────────────────────────────────

async def create_room(store: Store, name: Optional[str]) -> Room:
    if not name:
        raise ValidationError("name is required")
    room = Room(id=str(uuid.uuid4()), name=name, api_key=generate_api_key(), created_at=_now())
    await store.insert_room(room)
    logger.info(f"Room created: {room.id} '{name}'")
    return room


async def room_info(store: Store, room: Room) -> tuple[Room, list[Agent]]:
    return room, await store.list_agents(room.id)


# ─────────────────────────────────────────────
# Agents
# ─────────────────────────────────────────────

async def join_room(store: Store, room: Room, name: Optional[str]) -> tuple[Agent, bool]:
    """Register `name` in the room. Joining twice returns the original agent."""
    if not name:
        raise ValidationError("name is required")
    agent = Agent(id=str(uuid.uuid4()), room_id=room.id, name=name, joined_at=_now())
    agent, created = await store.insert_agent(agent)
    if created:
        logger.info(f"Agent joined: {agent.id} '{name}' room={room.id}")
    return agent, created


async def list_agents(store: Store, room: Room) -> list[Agent]:
    return await store.list_agents(room.id)


# ─────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────

async def send_message(
    store: Store,
    room: Room,
    from_agent: Optional[str],
    content: Optional[str],
    to_agent: Optional[str] = None,
    type: Optional[str] = None,
) -> Message:
    # Sender and recipient are free text; they need not have joined the room.
    if not from_agent or not content:
        raise ValidationError("from and content are required")
    message = Message(
        id=None,
        room_id=room.id,
        from_agent=from_agent,
        to_agent=to_agent or None,
        content=content,
        type=type or DEFAULT_MESSAGE_TYPE,
        created_at=_now(),
    )
    message = await store.insert_message(message)
    logger.debug(f"Message posted: id={message.id} from={from_agent} to={message.to_agent or '*'} room={room.id}")
    return message


def clamp_limit(limit: Optional[int]) -> int:
    """Missing or non-positive limits fall back to the default; large ones are capped."""
    if not limit or limit <= 0:
        return MSG_LIST_DEFAULT_LIMIT
    return min(limit, MSG_LIST_MAX_LIMIT)


async def list_messages(
    store: Store,
    room: Room,
    for_agent: Optional[str] = None,
    since_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> list[Message]:
    """
    Return the most recent matching messages, oldest first.

    for_agent  keep broadcasts plus messages addressed to this agent
    since_id   keep only ids strictly greater (the polling cursor)
    limit      page size, default 50, capped at 200
    """
    return await store.list_messages(
        room.id,
        for_agent=for_agent or None,
        since_id=since_id,
        limit=clamp_limit(limit),
    )


async def mark_read(store: Store, room: Room, agent: Optional[str], up_to_id: Optional[int]) -> int:
    if not agent or up_to_id is None:
        raise ValidationError("agent and up_to_id required")
    marked = await store.mark_read(room.id, agent, up_to_id)
    logger.debug(f"Read receipts: agent={agent} up_to_id={up_to_id} marked={marked} room={room.id}")
    return marked


# ─────────────────────────────────────────────
# Tasks
# ─────────────────────────────────────────────

async def create_task(
    store: Store,
    room: Room,
    title: Optional[str],
    created_by: Optional[str],
    description: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> Task:
    if not title or not created_by:
        raise ValidationError("title and created_by required")
    now = _now()
    task = Task(
        id=None,
        room_id=room.id,
        title=title,
        description=description or None,
        assigned_to=assigned_to or None,
        status=DEFAULT_TASK_STATUS,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    task = await store.insert_task(task)
    logger.info(f"Task created: {task.id} '{title}' room={room.id}")
    return task


async def list_tasks(
    store: Store,
    room: Room,
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> list[Task]:
    return await store.list_tasks(room.id, status=status or None, assigned_to=assigned_to or None)


def task_changes(patch: dict) -> dict:
    """Pick the updatable fields out of a patch.

    A field that is missing, null, or an empty string counts as not provided,
    so an update can change a field but never blank it.
    """
    return {f: patch[f] for f in TASK_UPDATABLE_FIELDS if patch.get(f)}


async def update_task(store: Store, room: Room, task_id: int, patch: dict) -> Task:
    current = await store.get_task(room.id, task_id)
    if current is None:
        raise NotFound("Task not found")
    changes = task_changes(patch)
    if not changes:
        raise ValidationError("Nothing to update")
    task = await store.update_task(room.id, task_id, changes, _later_than(current.updated_at))
    if task is None:
        raise NotFound("Task not found")
    logger.info(f"Task updated: {task_id} fields={sorted(changes)} room={room.id}")
    return task
