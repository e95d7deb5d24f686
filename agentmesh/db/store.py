"""
Storage capability interface for AgentMesh.

Two interchangeable implementations exist:
  - SqliteStore   (relational, aiosqlite, autoincrement ids)
  - JsonFileStore (whole-file JSON snapshot, rewritten atomically per write)

Every query takes the owning room id first; no method can reach rows of
another room. Mutating calls are serialized inside each implementation.
"""
import abc
from typing import Optional

from agentmesh.db.models import Room, Agent, Message, Task


class Store(abc.ABC):
    """Persistence contract shared by every backend."""

    backend: str = ""

    @abc.abstractmethod
    async def open(self) -> None:
        """Acquire resources (connection, snapshot) and prepare the schema."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources. Safe to call more than once."""

    # ── Rooms ──────────────────────────────────

    @abc.abstractmethod
    async def insert_room(self, room: Room) -> Room:
        ...

    @abc.abstractmethod
    async def get_room_by_key(self, api_key: str) -> Optional[Room]:
        ...

    # ── Agents ─────────────────────────────────

    @abc.abstractmethod
    async def insert_agent(self, agent: Agent) -> tuple[Agent, bool]:
        """Insert the agent, or return the existing one with the same (room_id, name).

        The boolean is True when a new row was created.
        """

    @abc.abstractmethod
    async def get_agent(self, room_id: str, name: str) -> Optional[Agent]:
        ...

    @abc.abstractmethod
    async def list_agents(self, room_id: str) -> list[Agent]:
        ...

    # ── Messages ───────────────────────────────

    @abc.abstractmethod
    async def insert_message(self, message: Message) -> Message:
        """Persist the message and return it with its monotonic id assigned."""

    @abc.abstractmethod
    async def list_messages(
        self,
        room_id: str,
        for_agent: Optional[str] = None,
        since_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[Message]:
        """Return the newest `limit` matching messages in ascending id order."""

    @abc.abstractmethod
    async def mark_read(self, room_id: str, agent: str, up_to_id: int) -> int:
        """Add `agent` to read_by of visible messages with id <= up_to_id.

        Returns the number of messages newly marked.
        """

    # ── Tasks ──────────────────────────────────

    @abc.abstractmethod
    async def insert_task(self, task: Task) -> Task:
        ...

    @abc.abstractmethod
    async def get_task(self, room_id: str, task_id: int) -> Optional[Task]:
        ...

    @abc.abstractmethod
    async def list_tasks(
        self,
        room_id: str,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> list[Task]:
        """Newest created first."""

    @abc.abstractmethod
    async def update_task(
        self, room_id: str, task_id: int, fields: dict, updated_at: str
    ) -> Optional[Task]:
        """Apply `fields` and `updated_at`; return the updated task or None if absent."""


def build_store(backend: str, path: str) -> Store:
    """Build (but do not open) the store for the configured backend."""
    backend = (backend or "").lower()
    if backend == "sqlite":
        from agentmesh.db.sqlite_store import SqliteStore
        return SqliteStore(path)
    if backend == "json":
        from agentmesh.db.json_store import JsonFileStore
        return JsonFileStore(path)
    raise ValueError(f"Unknown store backend '{backend}'. Must be one of {{'sqlite', 'json'}}")
