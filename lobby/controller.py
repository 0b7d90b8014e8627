"""Per-client lobby state machine."""

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

from lobby.config import MAX_PLAYERS, MIN_PLAYERS_TO_START, STORE_TIMEOUT
from lobby.exceptions import (
    LobbyError,
    RoomCodeTakenError,
    RoomFullError,
    RoomNotFoundError,
    StoreError,
    ValidationError,
)
from lobby.models import Player, Room, generate_room_code
from lobby.notifier import PLAYERS, ROOMS, ChangeKind, ChangeNotifier, Subscription
from lobby.store import RoomStore
from lobby.utils.logging import debug_log, error_log

logger = logging.getLogger("Lobby.Controller")

Send = Callable[[dict], Awaitable[None]]
GameEntry = Callable[[Room, List[Player]], Awaitable[None]]
Undo = Callable[[Any], Awaitable[Any]]


class LobbyState(str, enum.Enum):
    """Where a client is in the lobby flow."""
    LANDING = "landing"    # No room, no player
    HOSTING = "hosting"    # Room creation in flight
    JOINING = "joining"    # Join in flight
    IN_ROOM = "in_room"    # Room and roster held locally


def _required(value: Optional[str], title: str, description: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(title, description)
    return value


class LobbyController:
    """
    Drives one client through host / join / leave / start.

    The controller talks to the shared store and keeps a local view of the
    room it is in. While in a room it follows the room's change feed:
    any player change triggers a full roster re-query, and the room being
    deleted sends the client back to the landing state.

    Messages for the client go through `send`:
    - {"type": "state", "data": {...}}  - Current state, room, player and roster
    - {"type": "notice", "title": "...", "description": "..."}
    - {"type": "error", "title": "...", "description": "..."}
    - {"type": "game_starting", "room_code": "...", "players": [...]}

    Failures never escape the public actions; they are reported as error
    messages and the controller stays in (or returns to) a safe state.
    """

    def __init__(
        self,
        store: RoomStore,
        notifier: ChangeNotifier,
        send: Optional[Send] = None,
        *,
        max_players: int = MAX_PLAYERS,
        min_players: int = MIN_PLAYERS_TO_START,
        timeout: float = STORE_TIMEOUT,
        code_generator: Callable[[], str] = generate_room_code,
        game_entry: Optional[GameEntry] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.max_players = max_players
        self.min_players = min_players
        self.timeout = timeout
        self.code_generator = code_generator
        self.game_entry = game_entry
        self._send_message = send

        self.state = LobbyState.LANDING
        self.room: Optional[Room] = None
        self.player: Optional[Player] = None
        self.roster: List[Player] = []

        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None
        self._late_writes: Set[asyncio.Future] = set()

    @property
    def is_host(self) -> bool:
        return self.player is not None and self.player.is_host

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "room": self.room.as_dict() if self.room else None,
            "player": self.player.as_dict() if self.player else None,
            "roster": [p.as_dict() for p in self.roster],
        }

    # --- Outgoing messages ---

    async def _send(self, message: dict) -> None:
        if self._send_message is None:
            return
        try:
            await self._send_message(message)
        except Exception as e:
            logger.warning(f"Failed to send {message.get('type')} to client: {e}")

    async def _send_state(self) -> None:
        await self._send({"type": "state", "data": self.snapshot()})

    async def _notice(self, title: str, description: str) -> None:
        await self._send({"type": "notice", "title": title, "description": description})

    async def _error(self, title: str, description: str) -> None:
        await self._send({"type": "error", "title": title, "description": description})

    async def _call(self, operation: Awaitable[Any], undo: Optional[Undo] = None) -> Any:
        """
        Await a store call, giving up after the configured timeout.

        Writes pass an `undo` callback. Their call is shielded from the
        timeout so it is never cut off mid-commit; if it still lands after
        the client was told it failed, `undo` is run on its result.
        """
        if undo is None:
            try:
                return await asyncio.wait_for(operation, self.timeout)
            except asyncio.TimeoutError as e:
                raise StoreError(f"Store call timed out after {self.timeout}s") from e

        task = asyncio.ensure_future(operation)
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.timeout)
        except asyncio.TimeoutError as e:
            self._late_writes.add(task)
            task.add_done_callback(self._late_writes.discard)
            task.add_done_callback(lambda t: self._undo_late_write(t, undo))
            raise StoreError(f"Store call timed out after {self.timeout}s") from e

    def _undo_late_write(self, task: "asyncio.Future[Any]", undo: Undo) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        pending = asyncio.ensure_future(self._run_undo(undo, task.result()))
        self._late_writes.add(pending)
        pending.add_done_callback(self._late_writes.discard)

    async def _run_undo(self, undo: Undo, result: Any) -> None:
        try:
            await asyncio.wait_for(undo(result), self.timeout)
        except (LobbyError, asyncio.TimeoutError) as e:
            error_log("Could not undo a late store write", exc=e)
        else:
            logger.info("Undid a store write that completed after its timeout")

    # --- Actions ---

    async def host(self, player_name: Optional[str]) -> bool:
        """Create a room and join it as host."""
        if self.state != LobbyState.LANDING:
            await self._error("Already in a room", "Leave the current room first.")
            return False
        try:
            name = _required(player_name, "Player name required", "Please enter your name to host a room.")
        except ValidationError as e:
            await self._error(e.title, e.description)
            return False

        self.state = LobbyState.HOSTING
        await self._send_state()
        code = self.code_generator()
        room = None
        try:
            room = await self._call(
                self.store.create_room(code, name, self.max_players),
                undo=lambda created: self.store.delete_room(created.id),
            )
            player = await self._call(
                self.store.add_player(room.id, name, is_host=True),
                undo=lambda host: self.store.delete_room(host.room_id),
            )
        except RoomCodeTakenError:
            self.state = LobbyState.LANDING
            await self._error("Error", "Room code already in use. Please try again.")
            await self._send_state()
            return False
        except LobbyError as e:
            error_log("Error creating room", exc=e, context={"code": code, "player_name": name})
            if room is not None:
                await self._discard_orphan(room)
            self.state = LobbyState.LANDING
            await self._error("Error", "Failed to create room. Please try again.")
            await self._send_state()
            return False

        await self._enter_room(room, player)
        await self._notice("Room created!", f"Room code: {room.code}")
        return True

    async def join(self, player_name: Optional[str], room_code: Optional[str]) -> bool:
        """Join an existing room by code."""
        if self.state != LobbyState.LANDING:
            await self._error("Already in a room", "Leave the current room first.")
            return False
        try:
            name = _required(player_name, "Player name required", "Please enter your name to join a room.")
            code = _required(room_code, "Room code required", "Please enter a room code to join.").upper()
        except ValidationError as e:
            await self._error(e.title, e.description)
            return False

        self.state = LobbyState.JOINING
        await self._send_state()
        try:
            room = await self._call(self.store.find_room_by_code(code))
            if room is None:
                raise RoomNotFoundError(code=code)
            player = await self._call(
                self.store.join_room(room.id, name),
                undo=lambda joined: self.store.remove_player(joined.id),
            )
        except RoomNotFoundError:
            self.state = LobbyState.LANDING
            await self._error("Room not found", "Please check the room code and try again.")
            await self._send_state()
            return False
        except RoomFullError:
            self.state = LobbyState.LANDING
            await self._error("Room full", "This room is already full.")
            await self._send_state()
            return False
        except LobbyError as e:
            error_log("Error joining room", exc=e, context={"code": code, "player_name": name})
            self.state = LobbyState.LANDING
            await self._error("Error", "Failed to join room. Please try again.")
            await self._send_state()
            return False

        await self._enter_room(room, player)
        await self._notice("Joined room!", f"Joined room: {code}")
        return True

    async def leave(self) -> bool:
        """
        Leave the current room; a leaving host deletes the room.

        The client always ends up in the landing state, even if a store call
        failed (the failure is reported).
        """
        if self.state != LobbyState.IN_ROOM or self.room is None or self.player is None:
            return False
        room, player = self.room, self.player
        # Stop following the room before our own deletions hit the feed
        self._reset()

        failed = False
        try:
            await self._call(self.store.remove_player(player.id))
        except LobbyError as e:
            failed = True
            error_log("Error removing player", exc=e, context={"code": room.code, "player_id": player.id})
        # The room goes with its host whatever happened to the host row
        if player.is_host:
            try:
                await self._call(self.store.delete_room(room.id))
            except LobbyError as e:
                failed = True
                error_log("Error closing room", exc=e, context={"code": room.code})

        if failed:
            await self._error("Error", "Failed to leave room.")
            await self._send_state()
            return False

        logger.info(f"Player {player.name} left room {room.code}{' (room closed)' if player.is_host else ''}")
        await self._notice("Left room", "You have left the room.")
        await self._send_state()
        return True

    async def refresh_roster(self) -> bool:
        """Replace the local roster with a fresh, ordered read of the store."""
        if self.state != LobbyState.IN_ROOM or self.room is None:
            return False
        room_id = self.room.id
        try:
            players = await self._call(self.store.list_players(room_id))
        except LobbyError as e:
            error_log("Error fetching players", exc=e, context={"room_id": room_id})
            await self._error("Error", "Failed to refresh players.")
            return False

        # Left or switched rooms while the query was in flight
        if self.state != LobbyState.IN_ROOM or self.room is None or self.room.id != room_id:
            return False
        self.roster = players
        await self._send_state()
        return True

    async def start_game(self) -> bool:
        """Hand the room over to the game (host only, enough players)."""
        if self.state != LobbyState.IN_ROOM or self.room is None:
            await self._error("Not in a room", "Host or join a room first.")
            return False
        if not self.is_host:
            await self._error("Not the host", "Only the host can start the game.")
            return False

        missing = self.min_players - len(self.roster)
        if missing > 0:
            await self._error(
                "Not enough players",
                f"At least {self.min_players} players are required to start the game. "
                f"Waiting for {missing} more.",
            )
            return False

        room, roster = self.room, list(self.roster)
        if self.game_entry is not None:
            try:
                await self.game_entry(room, roster)
            except Exception as e:
                error_log("Error starting game", exc=e, context={"code": room.code})
                await self._error("Error", "Failed to start the game.")
                return False

        logger.info(f"Game starting in room {room.code} with {len(roster)} players")
        await self._send({
            "type": "game_starting",
            "room_code": room.code,
            "players": [p.as_dict() for p in roster],
        })
        return True

    async def close(self) -> None:
        """Tear the controller down; rows stay except writes undone after a timeout."""
        listener = self._listener
        self._release_subscription()
        if listener is not None:
            await asyncio.gather(listener, return_exceptions=True)
        # Writes still in flight after a timeout, then their undo
        while self._late_writes:
            await asyncio.gather(*list(self._late_writes), return_exceptions=True)

    # --- Room membership ---

    async def _enter_room(self, room: Room, player: Player) -> None:
        self.room = room
        self.player = player
        self.roster = [player]
        self.state = LobbyState.IN_ROOM
        # Subscribe before the first read so no change falls in between
        self._subscription = self.notifier.subscribe(
            room.id,
            {PLAYERS: None, ROOMS: {ChangeKind.DELETE}},
        )
        self._listener = asyncio.create_task(self._listen(self._subscription))
        if not await self.refresh_roster():
            await self._send_state()

    async def _listen(self, subscription: Subscription) -> None:
        """Consume the room's change feed until unsubscribed."""
        async for event in subscription:
            # Several queued changes collapse into one re-query
            events = [event, *subscription.drain()]
            try:
                if any(e.table == ROOMS for e in events):
                    await self._room_closed(subscription)
                    return
                debug_log("Roster refresh after %d change(s) in room %s", len(events), subscription.room_id)
                await self.refresh_roster()
            except Exception:
                logger.exception(f"Error handling changes for room {subscription.room_id}")

    async def _room_closed(self, subscription: Subscription) -> None:
        if self._subscription is not subscription:
            return
        code = self.room.code if self.room else None
        self._reset()
        logger.info(f"Room {code} was closed, back to landing")
        await self._notice("Room closed", "The host has closed the room.")
        await self._send_state()

    async def _discard_orphan(self, room: Room) -> None:
        """Delete a room whose host player could not be created."""
        try:
            await self._call(self.store.delete_room(room.id))
        except LobbyError as e:
            error_log("Could not delete orphan room", exc=e, context={"code": room.code})

    def _reset(self) -> None:
        self._release_subscription()
        self.state = LobbyState.LANDING
        self.room = None
        self.player = None
        self.roster = []

    def _release_subscription(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        listener, self._listener = self._listener, None
        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
