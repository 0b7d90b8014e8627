"""Room and player store backed by async SQLAlchemy."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lobby import policy as actions
from lobby.exceptions import (
    AccessDeniedError,
    HostConflictError,
    LobbyError,
    RoomCodeTakenError,
    RoomFullError,
    RoomNotFoundError,
    StoreError,
)
from lobby.models import Player, Room
from lobby.notifier import PLAYERS, ROOMS, ChangeEvent, ChangeKind, ChangeNotifier
from lobby.policy import AccessPolicy, OpenAccessPolicy
from lobby.utils.logging import debug_log, error_log

logger = logging.getLogger("Lobby.Store")


class RoomStore:
    """
    Durable rooms and players, with a change event per committed mutation.

    Every operation runs in its own session and is checked against the
    access policy first. Events are published only after the commit
    succeeded, so subscribers never see a change that was rolled back.

    Joins are serialized per room: an in-process lock plus a row lock on the
    room (`SELECT ... FOR UPDATE` where the database supports it) make the
    capacity check and the insert one atomic step.

    Usage:
        store = RoomStore(session_maker, notifier)
        room = await store.create_room("ABC123", "Alice", 5)
        host = await store.add_player(room.id, "Alice", is_host=True)
        roster = await store.list_players(room.id)
    """

    def __init__(
        self,
        session_maker: Callable[[], AsyncSession],
        notifier: ChangeNotifier,
        policy: Optional[AccessPolicy] = None,
    ):
        self._session_maker = session_maker
        self.notifier = notifier
        self.policy = policy or OpenAccessPolicy()
        self._room_locks: Dict[uuid.UUID, asyncio.Lock] = {}

    # --- Helpers ---

    def _authorize(self, action: str, **context) -> None:
        if not self.policy.allows(action, **context):
            logger.warning(f"Access policy refused {action} ({context})")
            raise AccessDeniedError(action)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session, turning database failures into StoreError."""
        try:
            async with self._session_maker() as session:
                yield session
        except LobbyError:
            raise
        except SQLAlchemyError as e:
            error_log(f"Store operation failed: {operation}", exc=e)
            raise StoreError(f"{operation} failed") from e

    def _room_lock(self, room_id: uuid.UUID) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock

    async def _lock_room(self, session: AsyncSession, room_id: uuid.UUID) -> Room:
        stmt = select(Room).where(Room.id == room_id).with_for_update()
        room = (await session.execute(stmt)).scalar_one_or_none()
        if room is None:
            # Unknown ids must not leave a lock behind
            self._room_locks.pop(room_id, None)
            raise RoomNotFoundError(room_id=room_id)
        return room

    def _publish(self, table: str, kind: ChangeKind, room_id: uuid.UUID, new=None, old=None) -> None:
        self.notifier.publish(ChangeEvent(table=table, kind=kind, room_id=room_id, new=new, old=old))

    # --- Rooms ---

    async def create_room(self, code: str, host_name: str, max_players: int) -> Room:
        """Create a room. Raises RoomCodeTakenError if the code exists."""
        self._authorize(actions.CREATE_ROOM, code=code)
        code = code.strip().upper()
        room = Room(code=code, host_name=host_name, max_players=max_players)

        async with self._session("create_room") as session:
            session.add(room)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info(f"Room code {code} already taken")
                raise RoomCodeTakenError(code) from e
            await session.refresh(room)

        logger.info(f"Created room {code} (host: {host_name}, max {max_players})")
        self._publish(ROOMS, ChangeKind.INSERT, room.id, new=room.as_dict())
        return room

    async def find_room_by_code(self, code: str) -> Optional[Room]:
        """Look a room up by its code (case-insensitive)."""
        self._authorize(actions.READ_ROOM, code=code)
        async with self._session("find_room_by_code") as session:
            stmt = select(Room).where(Room.code == code.strip().upper())
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_room(self, room_id: uuid.UUID) -> Optional[Room]:
        self._authorize(actions.READ_ROOM, room_id=room_id)
        async with self._session("get_room") as session:
            return await session.get(Room, room_id)

    async def delete_room(self, room_id: uuid.UUID) -> bool:
        """
        Delete a room and every player in it.

        Returns:
            True if the room was deleted, False if it didn't exist
        """
        self._authorize(actions.DELETE_ROOM, room_id=room_id)
        async with self._room_lock(room_id):
            async with self._session("delete_room") as session:
                try:
                    room = await self._lock_room(session, room_id)
                except RoomNotFoundError:
                    return False

                players = (await session.execute(
                    select(Player).where(Player.room_id == room_id)
                )).scalars().all()
                room_image = room.as_dict()
                player_images = [p.as_dict() for p in players]

                await session.execute(delete(Player).where(Player.room_id == room_id))
                await session.execute(delete(Room).where(Room.id == room_id))
                await session.commit()

        self._room_locks.pop(room_id, None)
        logger.info(f"Deleted room {room_image['code']} with {len(player_images)} player(s)")
        for image in player_images:
            self._publish(PLAYERS, ChangeKind.DELETE, room_id, old=image)
        self._publish(ROOMS, ChangeKind.DELETE, room_id, old=room_image)
        return True

    # --- Players ---

    async def add_player(self, room_id: uuid.UUID, name: str, is_host: bool = False) -> Player:
        """
        Add a player to a room without a capacity check.

        Raises:
            RoomNotFoundError: the room doesn't exist
            HostConflictError: is_host is set and the room already has a host
        """
        self._authorize(actions.ADD_PLAYER, room_id=room_id, is_host=is_host)
        async with self._room_lock(room_id):
            async with self._session("add_player") as session:
                await self._lock_room(session, room_id)

                if is_host:
                    hosts = await session.scalar(
                        select(func.count()).select_from(Player)
                        .where(Player.room_id == room_id, Player.is_host.is_(True))
                    )
                    if hosts:
                        raise HostConflictError(room_id)

                player = Player(room_id=room_id, name=name, is_host=is_host)
                session.add(player)
                await session.commit()
                await session.refresh(player)

        debug_log("Added player %s to room %s (host=%s)", name, room_id, is_host)
        self._publish(PLAYERS, ChangeKind.INSERT, room_id, new=player.as_dict())
        return player

    async def join_room(self, room_id: uuid.UUID, name: str) -> Player:
        """
        Insert a non-host player only if the room is below capacity.

        The count and the insert happen under the room lock, so concurrent
        joins can never push a room past max_players.

        Raises:
            RoomNotFoundError: the room doesn't exist (anymore)
            RoomFullError: the room already holds max_players players
        """
        self._authorize(actions.ADD_PLAYER, room_id=room_id, is_host=False)
        async with self._room_lock(room_id):
            async with self._session("join_room") as session:
                room = await self._lock_room(session, room_id)
                code, max_players = room.code, room.max_players
                count = await session.scalar(
                    select(func.count()).select_from(Player).where(Player.room_id == room_id)
                )
                if count >= max_players:
                    logger.info(f"Room {code} is full ({count}/{max_players})")
                    raise RoomFullError(room_id, max_players)

                player = Player(room_id=room_id, name=name, is_host=False)
                session.add(player)
                await session.commit()
                await session.refresh(player)

        logger.info(f"Player {name} joined room {code} ({count + 1}/{max_players})")
        self._publish(PLAYERS, ChangeKind.INSERT, room_id, new=player.as_dict())
        return player

    async def count_players(self, room_id: uuid.UUID) -> int:
        self._authorize(actions.READ_PLAYERS, room_id=room_id)
        async with self._session("count_players") as session:
            return await session.scalar(
                select(func.count()).select_from(Player).where(Player.room_id == room_id)
            )

    async def list_players(self, room_id: uuid.UUID) -> List[Player]:
        """Players of a room, ordered by join time."""
        self._authorize(actions.READ_PLAYERS, room_id=room_id)
        async with self._session("list_players") as session:
            stmt = (
                select(Player)
                .where(Player.room_id == room_id)
                .order_by(Player.joined_at, Player.id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def remove_player(self, player_id: uuid.UUID) -> Optional[dict]:
        """
        Delete a player row.

        Returns:
            The removed player's row image, or None if it was already gone
        """
        self._authorize(actions.REMOVE_PLAYER, player_id=player_id)
        async with self._session("remove_player") as session:
            player = await session.get(Player, player_id)
            if player is None:
                return None
            room_id = player.room_id
            image = player.as_dict()
            await session.delete(player)
            await session.commit()

        debug_log("Removed player %s from room %s", image["name"], room_id)
        self._publish(PLAYERS, ChangeKind.DELETE, room_id, old=image)
        return image
