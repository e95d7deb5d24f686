"""
SQLite-backed store and schema initialization.
Uses aiosqlite for fully async, non-blocking access over one shared connection.
"""
import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

from agentmesh.db.models import Room, Agent, Message, Task, TASK_UPDATABLE_FIELDS
from agentmesh.db.store import Store

logger = logging.getLogger(__name__)


async def init_schema(db: aiosqlite.Connection) -> None:
    """Create all tables if they do not already exist (idempotent)."""
    await db.executescript("""
        -- ----------------------------------------------------------------
        -- Room: tenant namespace, addressed by its secret api_key
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS rooms (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            api_key     TEXT NOT NULL UNIQUE,
            created_at  TEXT NOT NULL
        );

        -- ----------------------------------------------------------------
        -- Agent: named participant, unique per (room_id, name)
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS agents (
            id          TEXT PRIMARY KEY,
            room_id     TEXT NOT NULL REFERENCES rooms(id),
            name        TEXT NOT NULL,
            joined_at   TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_agents_room_name
            ON agents(room_id, name);

        -- ----------------------------------------------------------------
        -- Message: append-only log. AUTOINCREMENT never reuses an id,
        -- so the id doubles as the polling cursor.
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS messages (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            room_id     TEXT NOT NULL REFERENCES rooms(id),
            from_agent  TEXT NOT NULL,
            to_agent    TEXT,
            content     TEXT NOT NULL,
            type        TEXT NOT NULL DEFAULT 'message',
            read_by     TEXT NOT NULL DEFAULT '[]',
            created_at  TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_messages_room_id
            ON messages(room_id, id);

        -- ----------------------------------------------------------------
        -- Task: shared work item with a free-text status
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS tasks (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            room_id     TEXT NOT NULL REFERENCES rooms(id),
            title       TEXT NOT NULL,
            description TEXT,
            assigned_to TEXT,
            status      TEXT NOT NULL DEFAULT 'pending',
            created_by  TEXT NOT NULL,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_tasks_room_created
            ON tasks(room_id, created_at);
    """)
    await db.commit()
    logger.info("Schema initialized.")


class SqliteStore(Store):
    """Relational store. Each mutating call commits before returning."""

    backend = "sqlite"

    def __init__(self, path: str) -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SqliteStore is not open")
        return self._db

    async def open(self) -> None:
        if self._db is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.path)
        self._db.row_factory = aiosqlite.Row
        # WAL mode: allows concurrent reads while writing
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await init_schema(self._db)
        logger.info(f"Database initialized at {self.path}")

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed.")

    # ─────────────────────────────────────────────
    # Rooms
    # ─────────────────────────────────────────────

    async def insert_room(self, room: Room) -> Room:
        async with self._lock:
            await self.db.execute(
                "INSERT INTO rooms (id, name, api_key, created_at) VALUES (?, ?, ?, ?)",
                (room.id, room.name, room.api_key, room.created_at),
            )
            await self.db.commit()
        return room

    async def get_room_by_key(self, api_key: str) -> Optional[Room]:
        async with self.db.execute("SELECT * FROM rooms WHERE api_key = ?", (api_key,)) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return Room(id=row["id"], name=row["name"], api_key=row["api_key"], created_at=row["created_at"])

    # ─────────────────────────────────────────────
    # Agents
    # ─────────────────────────────────────────────

    async def insert_agent(self, agent: Agent) -> tuple[Agent, bool]:
        async with self._lock:
            existing = await self.get_agent(agent.room_id, agent.name)
            if existing is not None:
                return existing, False
            try:
                await self.db.execute(
                    "INSERT INTO agents (id, room_id, name, joined_at) VALUES (?, ?, ?, ?)",
                    (agent.id, agent.room_id, agent.name, agent.joined_at),
                )
                await self.db.commit()
            except sqlite3.IntegrityError as e:
                # Unique (room_id, name) index hit by another writer on the same file
                logger.info(f"Agent '{agent.name}' join raced (UNIQUE constraint), fetching existing: {e}")
                await self.db.rollback()
                existing = await self.get_agent(agent.room_id, agent.name)
                if existing is None:
                    raise
                return existing, False
        return agent, True

    async def get_agent(self, room_id: str, name: str) -> Optional[Agent]:
        async with self.db.execute(
            "SELECT * FROM agents WHERE room_id = ? AND name = ?", (room_id, name)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_agent(row) if row else None

    async def list_agents(self, room_id: str) -> list[Agent]:
        async with self.db.execute(
            "SELECT * FROM agents WHERE room_id = ? ORDER BY joined_at, rowid", (room_id,)
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_agent(r) for r in rows]

    # ─────────────────────────────────────────────
    # Messages
    # ─────────────────────────────────────────────

    async def insert_message(self, message: Message) -> Message:
        async with self._lock:
            async with self.db.execute(
                "INSERT INTO messages (room_id, from_agent, to_agent, content, type, read_by, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (message.room_id, message.from_agent, message.to_agent, message.content,
                 message.type, json.dumps(message.read_by), message.created_at),
            ) as cur:
                mid = cur.lastrowid
            await self.db.commit()
        message.id = mid
        return message

    async def list_messages(
        self,
        room_id: str,
        for_agent: Optional[str] = None,
        since_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[Message]:
        query = "SELECT * FROM messages WHERE room_id = ?"
        params: list = [room_id]
        if for_agent:
            query += " AND (to_agent IS NULL OR to_agent = ?)"
            params.append(for_agent)
        if since_id is not None:
            query += " AND id > ?"
            params.append(since_id)
        # Newest first so LIMIT keeps the most recent rows, then flip to ascending.
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()
        return [_row_to_message(r) for r in reversed(rows)]

    async def mark_read(self, room_id: str, agent: str, up_to_id: int) -> int:
        async with self._lock:
            async with self.db.execute(
                "SELECT id, read_by FROM messages "
                "WHERE room_id = ? AND id <= ? AND (to_agent IS NULL OR to_agent = ?)",
                (room_id, up_to_id, agent),
            ) as cur:
                rows = await cur.fetchall()

            count = 0
            for row in rows:
                read_by = json.loads(row["read_by"] or "[]")
                if agent in read_by:
                    continue
                read_by.append(agent)
                await self.db.execute(
                    "UPDATE messages SET read_by = ? WHERE id = ? AND room_id = ?",
                    (json.dumps(read_by), row["id"], room_id),
                )
                count += 1
            await self.db.commit()
        return count

    # ─────────────────────────────────────────────
    # Tasks
    # ─────────────────────────────────────────────

    async def insert_task(self, task: Task) -> Task:
        async with self._lock:
            async with self.db.execute(
                "INSERT INTO tasks (room_id, title, description, assigned_to, status, created_by, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (task.room_id, task.title, task.description, task.assigned_to, task.status,
                 task.created_by, task.created_at, task.updated_at),
            ) as cur:
                tid = cur.lastrowid
            await self.db.commit()
        task.id = tid
        return task

    async def get_task(self, room_id: str, task_id: int) -> Optional[Task]:
        async with self.db.execute(
            "SELECT * FROM tasks WHERE id = ? AND room_id = ?", (task_id, room_id)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_task(row) if row else None

    async def list_tasks(
        self,
        room_id: str,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> list[Task]:
        query = "SELECT * FROM tasks WHERE room_id = ?"
        params: list = [room_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        if assigned_to:
            query += " AND assigned_to = ?"
            params.append(assigned_to)
        query += " ORDER BY created_at DESC, id DESC"

        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()
        return [_row_to_task(r) for r in rows]

    async def update_task(
        self, room_id: str, task_id: int, fields: dict, updated_at: str
    ) -> Optional[Task]:
        unknown = set(fields) - set(TASK_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update task columns {sorted(unknown)}")

        assignments = [f"{col} = ?" for col in fields]
        assignments.append("updated_at = ?")
        params = [*fields.values(), updated_at, task_id, room_id]

        async with self._lock:
            async with self.db.execute(
                f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ? AND room_id = ?",
                params,
            ) as cur:
                updated = cur.rowcount
            await self.db.commit()
        if updated == 0:
            return None  # task does not exist in this room
        return await self.get_task(room_id, task_id)


def _row_to_agent(row: aiosqlite.Row) -> Agent:
    return Agent(id=row["id"], room_id=row["room_id"], name=row["name"], joined_at=row["joined_at"])


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        room_id=row["room_id"],
        from_agent=row["from_agent"],
        to_agent=row["to_agent"],
        content=row["content"],
        type=row["type"],
        created_at=row["created_at"],
        read_by=json.loads(row["read_by"] or "[]"),
    )


def _row_to_task(row: aiosqlite.Row) -> Task:
    return Task(
        id=row["id"],
        room_id=row["room_id"],
        title=row["title"],
        description=row["description"],
        assigned_to=row["assigned_to"],
        status=row["status"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
