import asyncio
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from lobby.exceptions import (
    AccessDeniedError,
    HostConflictError,
    RoomCodeTakenError,
    RoomFullError,
    RoomNotFoundError,
    StoreError,
)
from lobby.notifier import PLAYERS, ROOMS, ChangeKind
from lobby.policy import AccessPolicy
from lobby.store import RoomStore


@pytest.mark.asyncio
async def test_create_and_find_room(store):
    room = await store.create_room("abc123", "Alice", 5)
    assert room.code == "ABC123"
    assert room.max_players == 5
    assert room.created_at is not None

    found = await store.find_room_by_code("Abc123")
    assert found is not None and found.id == room.id
    assert await store.find_room_by_code("ZZZZZZ") is None
    assert (await store.get_room(room.id)).host_name == "Alice"


@pytest.mark.asyncio
async def test_duplicate_code_is_rejected(store):
    await store.create_room("ABC123", "Alice", 5)
    with pytest.raises(RoomCodeTakenError):
        await store.create_room("abc123", "Mallory", 5)


@pytest.mark.asyncio
async def test_single_host_per_room(store):
    room = await store.create_room("HOST01", "Alice", 5)
    host = await store.add_player(room.id, "Alice", is_host=True)
    assert host.is_host

    with pytest.raises(HostConflictError):
        await store.add_player(room.id, "Eve", is_host=True)

    players = await store.list_players(room.id)
    assert [(p.name, p.is_host) for p in players] == [("Alice", True)]


@pytest.mark.asyncio
async def test_add_player_to_missing_room(store):
    with pytest.raises(RoomNotFoundError):
        await store.add_player(uuid.uuid4(), "Ghost")


@pytest.mark.asyncio
async def test_join_room_enforces_capacity(store):
    room = await store.create_room("FULL02", "Alice", 2)
    await store.add_player(room.id, "Alice", is_host=True)
    bob = await store.join_room(room.id, "Bob")
    assert not bob.is_host

    with pytest.raises(RoomFullError):
        await store.join_room(room.id, "Carol")
    assert await store.count_players(room.id) == 2


@pytest.mark.asyncio
async def test_concurrent_joins_never_exceed_capacity(store):
    room = await store.create_room("RACE01", "Alice", 3)
    await store.add_player(room.id, "Alice", is_host=True)

    results = await asyncio.gather(
        *(store.join_room(room.id, f"Player {i}") for i in range(5)),
        return_exceptions=True,
    )

    joined = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, RoomFullError)]
    assert len(joined) == 2
    assert len(rejected) == 3
    assert await store.count_players(room.id) == 3


@pytest.mark.asyncio
async def test_roster_is_ordered_by_join_time(store):
    room = await store.create_room("ORDER1", "Alice", 5)
    await store.add_player(room.id, "Alice", is_host=True)
    for name in ("Bob", "Carol", "Dave"):
        await store.join_room(room.id, name)

    players = await store.list_players(room.id)
    assert [p.name for p in players] == ["Alice", "Bob", "Carol", "Dave"]
    joined = [p.joined_at for p in players]
    assert joined == sorted(joined)


@pytest.mark.asyncio
async def test_mutations_publish_change_events(store, notifier):
    room = await store.create_room("EVENTS", "Alice", 5)
    sub = notifier.subscribe(room.id, {PLAYERS: None, ROOMS: None})

    host = await store.add_player(room.id, "Alice", is_host=True)
    bob = await store.join_room(room.id, "Bob")
    removed = await store.remove_player(bob.id)

    events = sub.drain()
    assert [(e.table, e.kind) for e in events] == [
        (PLAYERS, ChangeKind.INSERT),
        (PLAYERS, ChangeKind.INSERT),
        (PLAYERS, ChangeKind.DELETE),
    ]
    assert events[0].new["id"] == str(host.id)
    # Deletes carry the full previous row
    assert events[2].new is None
    assert events[2].old == removed
    assert removed["name"] == "Bob" and removed["is_host"] is False
    sub.unsubscribe()


@pytest.mark.asyncio
async def test_remove_player_is_idempotent(store):
    room = await store.create_room("REMOVE", "Alice", 5)
    bob = await store.join_room(room.id, "Bob")

    assert (await store.remove_player(bob.id))["name"] == "Bob"
    assert await store.remove_player(bob.id) is None
    assert await store.get_room(room.id) is not None


@pytest.mark.asyncio
async def test_delete_room_cascades_to_players(store, notifier):
    room = await store.create_room("CASCAD", "Alice", 5)
    await store.add_player(room.id, "Alice", is_host=True)
    await store.join_room(room.id, "Bob")
    sub = notifier.subscribe(room.id, {PLAYERS: None, ROOMS: {ChangeKind.DELETE}})

    assert await store.delete_room(room.id) is True

    assert await store.get_room(room.id) is None
    assert await store.list_players(room.id) == []
    events = sub.drain()
    assert sorted(e.old["name"] for e in events if e.table == PLAYERS) == ["Alice", "Bob"]
    assert events[-1].table == ROOMS and events[-1].old["code"] == "CASCAD"

    assert await store.delete_room(room.id) is False
    sub.unsubscribe()


@pytest.mark.asyncio
async def test_access_policy_gates_operations(store):
    class NoDeletes(AccessPolicy):
        def allows(self, action, **context):
            return action != "delete_room"

    room = await store.create_room("POLICY", "Alice", 5)
    store.policy = NoDeletes()

    with pytest.raises(AccessDeniedError):
        await store.delete_room(room.id)
    assert await store.get_room(room.id) is not None


@pytest.mark.asyncio
async def test_database_failures_surface_as_store_error(notifier):
    session = MagicMock()
    session.__aenter__.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))
    store = RoomStore(lambda: session, notifier)

    with pytest.raises(StoreError):
        await store.find_room_by_code("ABC123")


@pytest.mark.asyncio
async def test_unknown_room_leaves_no_lock_behind(store):
    missing = uuid.uuid4()

    with pytest.raises(RoomNotFoundError):
        await store.join_room(missing, "Ghost")
    with pytest.raises(RoomNotFoundError):
        await store.add_player(missing, "Ghost")
    assert await store.delete_room(missing) is False

    assert missing not in store._room_locks
