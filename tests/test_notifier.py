import asyncio
import uuid

import pytest

from lobby.notifier import PLAYERS, ROOMS, ChangeEvent, ChangeKind, ChangeNotifier


def player_event(room_id, kind=ChangeKind.INSERT, name="Alice"):
    row = {"room_id": str(room_id), "name": name}
    if kind == ChangeKind.DELETE:
        return ChangeEvent(PLAYERS, kind, room_id, old=row)
    return ChangeEvent(PLAYERS, kind, room_id, new=row)


@pytest.mark.asyncio
async def test_events_are_scoped_to_room_and_table():
    notifier = ChangeNotifier()
    room_id, other_room = uuid.uuid4(), uuid.uuid4()
    sub = notifier.subscribe(room_id, {PLAYERS: None, ROOMS: {ChangeKind.DELETE}})

    assert notifier.publish(player_event(room_id)) == 1
    assert notifier.publish(player_event(other_room)) == 0
    # Room updates are not part of this subscription
    assert notifier.publish(ChangeEvent(ROOMS, ChangeKind.UPDATE, room_id, new={}, old={})) == 0
    assert notifier.publish(ChangeEvent(ROOMS, ChangeKind.DELETE, room_id, old={"code": "ABC123"})) == 1

    events = sub.drain()
    assert [(e.table, e.kind) for e in events] == [
        (PLAYERS, ChangeKind.INSERT),
        (ROOMS, ChangeKind.DELETE),
    ]
    assert events[1].old == {"code": "ABC123"}
    sub.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery_and_ends_iteration():
    notifier = ChangeNotifier()
    room_id = uuid.uuid4()
    sub = notifier.subscribe(room_id, {PLAYERS: None})
    received = []

    async def consume():
        async for event in sub:
            received.append(event)

    task = asyncio.create_task(consume())
    notifier.publish(player_event(room_id, name="Bob"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    sub.unsubscribe()
    await asyncio.wait_for(task, timeout=1)

    assert [e.new["name"] for e in received] == ["Bob"]
    assert notifier.publish(player_event(room_id)) == 0
    assert notifier.subscriber_count(room_id) == 0
    # Idempotent
    sub.unsubscribe()


@pytest.mark.asyncio
async def test_context_manager_releases_subscription():
    notifier = ChangeNotifier()
    room_id = uuid.uuid4()

    async with notifier.subscribe(room_id, {PLAYERS: {ChangeKind.DELETE}}) as sub:
        assert notifier.subscriber_count() == 1
        notifier.publish(player_event(room_id, ChangeKind.INSERT))
        notifier.publish(player_event(room_id, ChangeKind.DELETE))
        assert [e.kind for e in sub.drain()] == [ChangeKind.DELETE]

    assert notifier.subscriber_count() == 0
    assert sub.closed


@pytest.mark.asyncio
async def test_fan_out_to_every_subscriber_of_a_room():
    notifier = ChangeNotifier()
    room_id = uuid.uuid4()
    subs = [notifier.subscribe(room_id, {PLAYERS: None}) for _ in range(3)]

    assert notifier.publish(player_event(room_id)) == 3
    assert all(len(s.drain()) == 1 for s in subs)

    subs[0].unsubscribe()
    assert notifier.subscriber_count(room_id) == 2
    assert notifier.publish(player_event(room_id)) == 2
