"""
MeshClient tests against the in-process app.
"""
import pytest

from agentmesh.client import MeshClientError


@pytest.mark.asyncio
async def test_create_room_adopts_api_key(mesh):
    assert mesh.api_key is None
    body = await mesh.create_room("P")
    assert mesh.api_key == body["api_key"]

    info = await mesh.room_info()
    assert info["room"]["name"] == "P"
    assert "api_key" not in info["room"]


@pytest.mark.asyncio
async def test_join_is_idempotent_through_client(mesh):
    await mesh.create_room("P")
    first = await mesh.join("Keko")
    second = await mesh.join("Keko")
    assert first["id"] == second["id"]
    assert [a["name"] for a in await mesh.agents()] == ["Keko"]


@pytest.mark.asyncio
async def test_poll_advances_cursor(mesh):
    await mesh.create_room("P")
    await mesh.join("Keko")
    await mesh.join("Mira")

    new, cursor = await mesh.poll("Keko")
    assert new == []
    assert cursor == 0

    await mesh.send("Mira", "hello all")
    await mesh.send("Mira", "psst", to="Keko")
    await mesh.send("Mira", "not for keko", to="Zed")

    new, cursor = await mesh.poll("Keko", since_id=cursor)
    assert [m["content"] for m in new] == ["hello all", "psst"]
    assert cursor == 2

    # Nothing new for Keko: the cursor stays put even though id 3 exists
    new, cursor = await mesh.poll("Keko", since_id=cursor)
    assert new == []
    assert cursor == 2

    msg_id = await mesh.send("Mira", "again", type="alert")
    new, cursor = await mesh.poll("Keko", since_id=cursor)
    assert [m["id"] for m in new] == [msg_id]
    assert new[0]["type"] == "alert"
    assert cursor == msg_id


@pytest.mark.asyncio
async def test_mark_read_through_client(mesh):
    await mesh.create_room("P")
    await mesh.send("Mira", "one")
    await mesh.send("Mira", "two", to="Keko")
    assert await mesh.mark_read("Keko", 2) == 2
    assert await mesh.mark_read("Keko", 2) == 0
    msgs = await mesh.messages(for_agent="Keko")
    assert all(m["read_by"] == ["Keko"] for m in msgs)


@pytest.mark.asyncio
async def test_task_round_trip_through_client(mesh):
    await mesh.create_room("P")
    task_id = await mesh.create_task("Write docs", created_by="Keko", assigned_to="Mira")
    assert [t["title"] for t in await mesh.tasks(assigned_to="Mira")] == ["Write docs"]

    task = await mesh.update_task(task_id, status="done")
    assert task["status"] == "done"
    assert task["assigned_to"] == "Mira"
    assert [t["id"] for t in await mesh.tasks(status="done")] == [task_id]
    assert await mesh.tasks(status="pending") == []


@pytest.mark.asyncio
async def test_errors_surface_as_mesh_client_error(mesh):
    with pytest.raises(MeshClientError) as exc:
        await mesh.agents()
    assert exc.value.status_code == 401
    assert exc.value.error == "Missing x-api-key header"

    mesh.api_key = "amesh_" + "0" * 48
    with pytest.raises(MeshClientError) as exc:
        await mesh.agents()
    assert exc.value.status_code == 403

    await mesh.create_room("P")
    with pytest.raises(MeshClientError) as exc:
        await mesh.send("Keko", "")
    assert exc.value.status_code == 400
    assert exc.value.error == "from and content are required"

    with pytest.raises(MeshClientError) as exc:
        await mesh.update_task(7, status="done")
    assert exc.value.status_code == 404
