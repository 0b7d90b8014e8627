"""Read-only room API endpoints."""

import logging
import uuid
from datetime import datetime
from typing import List

from litestar import Controller, get
from litestar.exceptions import NotFoundException
from pydantic import BaseModel

from lobby.models import Room
from lobby.store import RoomStore

logger = logging.getLogger("Lobby.rooms")


# --- Response Schemas ---

class PlayerResponse(BaseModel):
    """Player data response."""
    id: uuid.UUID
    name: str
    is_host: bool
    joined_at: datetime
    
    class Config:
        from_attributes = True


class RoomResponse(BaseModel):
    """Room data response."""
    id: uuid.UUID
    code: str
    host_name: str
    max_players: int
    created_at: datetime
    updated_at: datetime
    
    class Config:
        from_attributes = True


class LobbyResponse(BaseModel):
    """A room together with its roster."""
    room: RoomResponse
    players: List[PlayerResponse]


# --- Helper Functions ---

async def get_room_by_code(store: RoomStore, code: str) -> Room:
    """Fetch room by code or raise a 404."""
    room = await store.find_room_by_code(code)
    if not room:
        raise NotFoundException(f"Room with code '{code}' not found")
    return room


# --- Controller ---

class RoomsController(Controller):
    """API endpoints for looking rooms up."""
    
    path = "/api/rooms"
    tags = ["rooms"]
    
    @get("/{code:str}")
    async def get_room(self, code: str, store: RoomStore) -> LobbyResponse:
        """Get a room and its roster by code."""
        room = await get_room_by_code(store, code)
        players = await store.list_players(room.id)
        return LobbyResponse(
            room=RoomResponse.model_validate(room),
            players=[PlayerResponse.model_validate(p) for p in players],
        )
    
    @get("/{code:str}/players")
    async def list_players(self, code: str, store: RoomStore) -> List[PlayerResponse]:
        """Get the roster of a room, ordered by join time."""
        room = await get_room_by_code(store, code)
        players = await store.list_players(room.id)
        logger.debug(f"Roster for {room.code}: {len(players)} player(s)")
        return [PlayerResponse.model_validate(p) for p in players]
