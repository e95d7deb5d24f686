"""
Whole-file JSON snapshot store.

The dataset lives in one document ``{rooms: [], agents: [], messages: [], tasks: []}``.
Every mutating call runs under a single writer lock: copy the snapshot, apply the
change, write it to a temp file, fsync, and os.replace() it over the real file.
The in-memory snapshot is only swapped after the file is durable, so a failed
write leaves both disk and memory at the previous state.
"""
import asyncio
import copy
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Optional

from agentmesh.db.models import Room, Agent, Message, Task, TASK_UPDATABLE_FIELDS
from agentmesh.db.store import Store

logger = logging.getLogger(__name__)

COLLECTIONS = ("rooms", "agents", "messages", "tasks")


def _empty() -> dict:
    return {name: [] for name in COLLECTIONS}


def _next_id(rows: list[dict]) -> int:
    # Recomputed from the data on every insert so a restart can never reuse an id.
    return max((r["id"] for r in rows), default=0) + 1


class JsonFileStore(Store):
    backend = "json"

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        self._data: dict | None = None
        self._lock = asyncio.Lock()

    @property
    def data(self) -> dict:
        if self._data is None:
            raise RuntimeError("JsonFileStore is not open")
        return self._data

    # ── File I/O (run in a worker thread) ─────────────────────────────────

    def _load_sync(self) -> dict:
        if self._tmp_path.exists():
            # os.replace() never ran for this write, so the main file is the last good state
            logger.warning(f"Discarding incomplete snapshot write: {self._tmp_path}")
            self._tmp_path.unlink()
        if not self.path.exists():
            return _empty()
        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        data = _empty()
        for name in COLLECTIONS:
            data[name] = list(raw.get(name) or [])
        return data

    def _save_sync(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(self._tmp_path, self.path)

    async def open(self) -> None:
        if self._data is not None:
            return
        async with self._lock:
            self._data = await asyncio.to_thread(self._load_sync)
        logger.info(
            f"Snapshot loaded from {self.path}: "
            + ", ".join(f"{len(self._data[n])} {n}" for n in COLLECTIONS)
        )

    async def close(self) -> None:
        if self._data is not None:
            self._data = None
            logger.info("Snapshot store closed.")

    async def _write(self, mutate: Callable[[dict], object]):
        """Run `mutate` against a copy of the snapshot and persist it atomically."""
        async with self._lock:
            draft = copy.deepcopy(self.data)
            result = mutate(draft)
            await asyncio.to_thread(self._save_sync, draft)
            self._data = draft
        return result

    # ─────────────────────────────────────────────
    # Rooms
    # ─────────────────────────────────────────────

    async def insert_room(self, room: Room) -> Room:
        def mutate(data: dict) -> None:
            if any(r["api_key"] == room.api_key for r in data["rooms"]):
                raise ValueError("api_key already issued")
            data["rooms"].append(asdict(room))

        await self._write(mutate)
        return room

    async def get_room_by_key(self, api_key: str) -> Optional[Room]:
        for r in self.data["rooms"]:
            if r["api_key"] == api_key:
                return Room(**r)
        return None

    # ─────────────────────────────────────────────
    # Agents
    # ─────────────────────────────────────────────

    async def insert_agent(self, agent: Agent) -> tuple[Agent, bool]:
        def mutate(data: dict) -> tuple[Agent, bool]:
            for a in data["agents"]:
                if a["room_id"] == agent.room_id and a["name"] == agent.name:
                    return Agent(**a), False
            data["agents"].append(asdict(agent))
            return agent, True

        return await self._write(mutate)

    async def get_agent(self, room_id: str, name: str) -> Optional[Agent]:
        for a in self.data["agents"]:
            if a["room_id"] == room_id and a["name"] == name:
                return Agent(**a)
        return None

    async def list_agents(self, room_id: str) -> list[Agent]:
        return [Agent(**a) for a in self.data["agents"] if a["room_id"] == room_id]

    # ─────────────────────────────────────────────
    # Messages
    # ─────────────────────────────────────────────

    async def insert_message(self, message: Message) -> Message:
        def mutate(data: dict) -> int:
            mid = _next_id(data["messages"])
            row = asdict(message)
            row["id"] = mid
            data["messages"].append(row)
            return mid

        message.id = await self._write(mutate)
        return message

    async def list_messages(
        self,
        room_id: str,
        for_agent: Optional[str] = None,
        since_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[Message]:
        matched = []
        for m in self.data["messages"]:
            if m["room_id"] != room_id:
                continue
            if for_agent and m["to_agent"] is not None and m["to_agent"] != for_agent:
                continue
            if since_id is not None and m["id"] <= since_id:
                continue
            matched.append(m)
        matched.sort(key=lambda m: m["id"])
        if limit <= 0:
            return []
        return [_row_to_message(m) for m in matched[-limit:]]

    async def mark_read(self, room_id: str, agent: str, up_to_id: int) -> int:
        def mutate(data: dict) -> int:
            count = 0
            for m in data["messages"]:
                if m["room_id"] != room_id or m["id"] > up_to_id:
                    continue
                if m["to_agent"] is not None and m["to_agent"] != agent:
                    continue
                read_by = m.setdefault("read_by", [])
                if agent not in read_by:
                    read_by.append(agent)
                    count += 1
            return count

        return await self._write(mutate)

    # ─────────────────────────────────────────────
    # Tasks
    # ─────────────────────────────────────────────

    async def insert_task(self, task: Task) -> Task:
        def mutate(data: dict) -> int:
            tid = _next_id(data["tasks"])
            row = asdict(task)
            row["id"] = tid
            data["tasks"].append(row)
            return tid

        task.id = await self._write(mutate)
        return task

    async def get_task(self, room_id: str, task_id: int) -> Optional[Task]:
        for t in self.data["tasks"]:
            if t["id"] == task_id and t["room_id"] == room_id:
                return Task(**t)
        return None

    async def list_tasks(
        self,
        room_id: str,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> list[Task]:
        rows = [
            t for t in self.data["tasks"]
            if t["room_id"] == room_id
            and (not status or t["status"] == status)
            and (not assigned_to or t["assigned_to"] == assigned_to)
        ]
        rows.sort(key=lambda t: (t["created_at"], t["id"]), reverse=True)
        return [Task(**t) for t in rows]

    async def update_task(
        self, room_id: str, task_id: int, fields: dict, updated_at: str
    ) -> Optional[Task]:
        unknown = set(fields) - set(TASK_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update task fields {sorted(unknown)}")

        def mutate(data: dict) -> Optional[dict]:
            for t in data["tasks"]:
                if t["id"] == task_id and t["room_id"] == room_id:
                    t.update(fields)
                    t["updated_at"] = updated_at
                    return dict(t)
            return None

        # Nothing to persist for a miss; skip the rewrite.
        if await self.get_task(room_id, task_id) is None:
            return None
        row = await self._write(mutate)
        return Task(**row) if row else None


def _row_to_message(row: dict) -> Message:
    return Message(
        id=row["id"],
        room_id=row["room_id"],
        from_agent=row["from_agent"],
        to_agent=row.get("to_agent"),
        content=row["content"],
        type=row.get("type") or "message",
        created_at=row["created_at"],
        read_by=list(row.get("read_by") or []),
    )
