"""
Service-layer tests: validation, defaults, idempotency and room scoping.
"""
import re
from datetime import datetime

import pytest

from agentmesh import services
from agentmesh.auth import resolve_room
from agentmesh.config import MSG_LIST_DEFAULT_LIMIT, MSG_LIST_MAX_LIMIT
from agentmesh.errors import ValidationError, NotFound, Unauthorized, Forbidden

API_KEY_RE = re.compile(r"^amesh_[0-9a-f]{48}$")


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ─────────────────────────────────────────────
# Rooms and auth
# ─────────────────────────────────────────────

def test_generated_api_keys_are_well_formed_and_unique():
    keys = {services.generate_api_key() for _ in range(10_000)}
    assert len(keys) == 10_000
    assert all(API_KEY_RE.match(k) for k in keys)


@pytest.mark.asyncio
async def test_create_room_requires_name(store):
    with pytest.raises(ValidationError, match="name is required"):
        await services.create_room(store, "")
    with pytest.raises(ValidationError):
        await services.create_room(store, None)


@pytest.mark.asyncio
async def test_create_room_issues_distinct_keys(store):
    a = await services.create_room(store, "P")
    b = await services.create_room(store, "P")
    assert a.id != b.id
    assert a.api_key != b.api_key
    assert API_KEY_RE.match(a.api_key)


@pytest.mark.asyncio
async def test_resolve_room(store, room):
    assert (await resolve_room(store, room.api_key)).id == room.id
    with pytest.raises(Unauthorized):
        await resolve_room(store, None)
    with pytest.raises(Unauthorized):
        await resolve_room(store, "")
    with pytest.raises(Forbidden):
        await resolve_room(store, "amesh_not-a-real-key")


@pytest.mark.asyncio
async def test_room_info_lists_only_own_agents(store, room, other_room):
    await services.join_room(store, room, "Keko")
    await services.join_room(store, other_room, "Mira")
    info_room, agents = await services.room_info(store, room)
    assert info_room.id == room.id
    assert [a.name for a in agents] == ["Keko"]


# ─────────────────────────────────────────────
# Agents
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_join_room_is_idempotent(store, room):
    first, created = await services.join_room(store, room, "Keko")
    assert created is True
    second, created = await services.join_room(store, room, "Keko")
    assert created is False
    assert second.id == first.id
    assert second.joined_at == first.joined_at
    assert len(await services.list_agents(store, room)) == 1


@pytest.mark.asyncio
async def test_join_room_requires_name(store, room):
    with pytest.raises(ValidationError):
        await services.join_room(store, room, "")


@pytest.mark.asyncio
async def test_list_agents_in_join_order(store, room):
    for name in ("Keko", "Mira", "Zed"):
        await services.join_room(store, room, name)
    assert [a.name for a in await services.list_agents(store, room)] == ["Keko", "Mira", "Zed"]


# ─────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_send_message_requires_from_and_content(store, room):
    with pytest.raises(ValidationError, match="from and content are required"):
        await services.send_message(store, room, from_agent="", content="hi")
    with pytest.raises(ValidationError):
        await services.send_message(store, room, from_agent="Keko", content=None)


@pytest.mark.asyncio
async def test_send_message_defaults(store, room):
    m = await services.send_message(store, room, from_agent="Keko", content="hi", to_agent="", type="")
    assert m.id == 1
    assert m.to_agent is None
    assert m.type == "message"
    assert m.read_by == []


@pytest.mark.asyncio
async def test_send_message_allows_unregistered_names(store, room):
    m = await services.send_message(store, room, from_agent="ghost", content="boo", to_agent="nobody", type="alert")
    assert (m.from_agent, m.to_agent, m.type) == ("ghost", "nobody", "alert")


def test_clamp_limit():
    assert services.clamp_limit(None) == MSG_LIST_DEFAULT_LIMIT
    assert services.clamp_limit(0) == MSG_LIST_DEFAULT_LIMIT
    assert services.clamp_limit(-3) == MSG_LIST_DEFAULT_LIMIT
    assert services.clamp_limit(7) == 7
    assert services.clamp_limit(10_000) == MSG_LIST_MAX_LIMIT


@pytest.mark.asyncio
async def test_list_messages_caps_page_size(store, room):
    for i in range(MSG_LIST_MAX_LIMIT + 5):
        await services.send_message(store, room, from_agent="Keko", content=f"m{i}")
    msgs = await services.list_messages(store, room, limit=1000)
    assert len(msgs) == MSG_LIST_MAX_LIMIT
    assert msgs[-1].id == MSG_LIST_MAX_LIMIT + 5

    default_page = await services.list_messages(store, room)
    assert len(default_page) == MSG_LIST_DEFAULT_LIMIT


@pytest.mark.asyncio
async def test_cursor_polling_sees_each_message_once(store, room):
    cursor = 0
    seen = []
    for batch in (["a", "b"], [], ["c"]):
        for content in batch:
            await services.send_message(store, room, from_agent="Mira", content=content)
        new = await services.list_messages(store, room, for_agent="Keko", since_id=cursor)
        seen.extend(m.content for m in new)
        cursor = max([cursor, *(m.id for m in new)])
    assert seen == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_mark_read_requires_agent_and_cursor(store, room):
    with pytest.raises(ValidationError, match="agent and up_to_id required"):
        await services.mark_read(store, room, agent="", up_to_id=3)
    with pytest.raises(ValidationError):
        await services.mark_read(store, room, agent="Keko", up_to_id=None)


# ─────────────────────────────────────────────
# Tasks
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_task_defaults(store, room):
    t = await services.create_task(store, room, title="Ship it", created_by="Keko", description="", assigned_to="")
    assert t.id == 1
    assert t.status == "pending"
    assert t.description is None
    assert t.assigned_to is None
    assert t.created_at == t.updated_at


@pytest.mark.asyncio
async def test_create_task_requires_title_and_creator(store, room):
    with pytest.raises(ValidationError, match="title and created_by required"):
        await services.create_task(store, room, title="Ship it", created_by="")
    with pytest.raises(ValidationError):
        await services.create_task(store, room, title=None, created_by="Keko")


@pytest.mark.asyncio
async def test_update_task_applies_fields_and_advances_updated_at(store, room):
    t = await services.create_task(store, room, title="Ship it", created_by="Keko")
    updated = await services.update_task(store, room, t.id, {"status": "in_progress", "assigned_to": "Mira"})
    assert updated.status == "in_progress"
    assert updated.assigned_to == "Mira"
    assert updated.title == "Ship it"
    assert _ts(updated.updated_at) > _ts(t.updated_at)

    again = await services.update_task(store, room, t.id, {"status": "done"})
    assert _ts(again.updated_at) > _ts(updated.updated_at)
    assert again.created_at == t.created_at


@pytest.mark.asyncio
async def test_update_task_empty_patch_is_rejected(store, room):
    t = await services.create_task(store, room, title="Ship it", created_by="Keko")
    with pytest.raises(ValidationError, match="Nothing to update"):
        await services.update_task(store, room, t.id, {})


@pytest.mark.asyncio
async def test_update_task_skips_empty_values(store, room):
    t = await services.create_task(store, room, title="Ship it", created_by="Keko",
                                   description="details", assigned_to="Mira")

    # Only blank values: nothing applicable
    with pytest.raises(ValidationError):
        await services.update_task(store, room, t.id, {"status": "", "description": None})

    # A blank field next to a real one is left untouched
    updated = await services.update_task(store, room, t.id, {"status": "done", "description": "", "assigned_to": None})
    assert updated.status == "done"
    assert updated.description == "details"
    assert updated.assigned_to == "Mira"


@pytest.mark.asyncio
async def test_update_task_ignores_unknown_fields(store, room):
    t = await services.create_task(store, room, title="Ship it", created_by="Keko")
    with pytest.raises(ValidationError):
        await services.update_task(store, room, t.id, {"created_by": "Mira", "room_id": "x"})
    assert services.task_changes({"title": "New", "created_by": "Mira"}) == {"title": "New"}


@pytest.mark.asyncio
async def test_update_task_in_other_room_is_not_found(store, room, other_room):
    t = await services.create_task(store, room, title="Ship it", created_by="Keko")
    with pytest.raises(NotFound, match="Task not found"):
        await services.update_task(store, other_room, t.id, {"status": "done"})
    with pytest.raises(NotFound):
        await services.update_task(store, room, 999, {"status": "done"})


@pytest.mark.asyncio
async def test_not_found_wins_over_empty_patch(store, room):
    with pytest.raises(NotFound):
        await services.update_task(store, room, 42, {})
