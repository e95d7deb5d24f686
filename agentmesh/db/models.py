"""
Data models (dataclasses) for AgentMesh.
These are plain Python objects used across the store, service, and API layers.
"""
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Room:
    id: str
    name: str
    api_key: str         # amesh_<48 hex chars>, sole credential for the room
    created_at: str


@dataclass
class Agent:
    id: str
    room_id: str
    name: str            # unique within the room
    joined_at: str


@dataclass
class Message:
    id: Optional[int]    # assigned by the store on insert
    room_id: str
    from_agent: str
    to_agent: Optional[str]   # None = broadcast to the whole room
    content: str
    type: str
    created_at: str
    read_by: list[str] = field(default_factory=list)

    def addressed_to(self, agent: str) -> bool:
        return self.to_agent is None or self.to_agent == agent


@dataclass
class Task:
    id: Optional[int]    # assigned by the store on insert
    room_id: str
    title: str
    description: Optional[str]
    assigned_to: Optional[str]
    status: str          # free text, "pending" on creation
    created_by: str
    created_at: str
    updated_at: str


# Fields a task patch may change. Everything else on a Task is fixed at creation.
TASK_UPDATABLE_FIELDS = ("status", "assigned_to", "title", "description")
