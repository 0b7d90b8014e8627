"""In-process change feed for room and player rows."""

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set

logger = logging.getLogger("Lobby.Notifier")

ROOMS = "rooms"
PLAYERS = "players"


class ChangeKind(str, enum.Enum):
    """Row-level change kinds."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


ALL_KINDS: FrozenSet[ChangeKind] = frozenset(ChangeKind)


@dataclass(frozen=True)
class ChangeEvent:
    """
    One committed row change.

    `new` is the row after the change (None for deletes) and `old` the full
    previous row (None for inserts). `room_id` is the room the row belongs
    to; for the rooms table it is the room's own id.
    """
    table: str
    kind: ChangeKind
    room_id: uuid.UUID
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None


_CLOSED = object()


@dataclass(eq=False)
class Subscription:
    """Events for a single room, delivered through an asyncio queue."""
    room_id: uuid.UUID
    tables: Dict[str, FrozenSet[ChangeKind]]
    notifier: "ChangeNotifier"
    closed: bool = False
    _queue: "asyncio.Queue[Any]" = field(default_factory=asyncio.Queue, repr=False)

    def matches(self, event: ChangeEvent) -> bool:
        if event.room_id != self.room_id:
            return False
        kinds = self.tables.get(event.table)
        return kinds is not None and event.kind in kinds

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def drain(self) -> List[ChangeEvent]:
        """Return the events already queued without waiting."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if item is _CLOSED:
                # Keep the sentinel for the iterator
                self._queue.put_nowait(item)
                return events
            events.append(item)

    def unsubscribe(self) -> None:
        """Stop delivery and wake up any waiting consumer."""
        if self.closed:
            return
        self.closed = True
        self.notifier._remove(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class ChangeNotifier:
    """
    Fans committed row changes out to room-scoped subscriptions.

    Publishing never blocks: each subscription owns an unbounded queue and
    consumers pull from it at their own pace. Consumers must treat events as
    hints to re-read the store, never as deltas.
    """

    def __init__(self):
        self._subscriptions: Dict[uuid.UUID, Set[Subscription]] = {}

    def subscribe(
        self,
        room_id: uuid.UUID,
        tables: Mapping[str, Optional[Set[ChangeKind]]],
    ) -> Subscription:
        """
        Subscribe to changes of one room.

        Args:
            room_id: Room to follow
            tables: Table name -> kinds to receive (None for every kind)
        """
        subscription = Subscription(
            room_id=room_id,
            tables={
                table: ALL_KINDS if kinds is None else frozenset(kinds)
                for table, kinds in tables.items()
            },
            notifier=self,
        )
        self._subscriptions.setdefault(room_id, set()).add(subscription)
        logger.debug(f"Subscribed to room {room_id} ({', '.join(subscription.tables)})")
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription."""
        delivered = 0
        for subscription in list(self._subscriptions.get(event.room_id, ())):
            if subscription.matches(event):
                subscription.deliver(event)
                delivered += 1
        logger.debug(
            f"{event.table} {event.kind.value} in room {event.room_id} "
            f"-> {delivered} subscriber(s)"
        )
        return delivered

    def subscriber_count(self, room_id: Optional[uuid.UUID] = None) -> int:
        if room_id is not None:
            return len(self._subscriptions.get(room_id, ()))
        return sum(len(subs) for subs in self._subscriptions.values())

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.room_id)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            del self._subscriptions[subscription.room_id]
        logger.debug(f"Unsubscribed from room {subscription.room_id}")
