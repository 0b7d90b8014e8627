"""Lobby error taxonomy."""

import uuid
from typing import Optional


class LobbyError(Exception):
    """Base class for every recoverable lobby error."""

    title = "Error"


class ValidationError(LobbyError):
    """Input rejected before any store call."""

    def __init__(self, title: str, description: str):
        super().__init__(description)
        self.title = title
        self.description = description


class RoomNotFoundError(LobbyError):
    """No room matches the given code or id."""

    title = "Room not found"

    def __init__(self, code: Optional[str] = None, room_id: Optional[uuid.UUID] = None):
        self.code = code
        self.room_id = room_id
        key = f"code '{code}'" if code else f"id {room_id}"
        super().__init__(f"Room with {key} not found")


class RoomFullError(LobbyError):
    """The room already holds max_players players."""

    title = "Room full"

    def __init__(self, room_id: uuid.UUID, max_players: int):
        self.room_id = room_id
        self.max_players = max_players
        super().__init__(f"Room {room_id} is full ({max_players} players)")


class RoomCodeTakenError(LobbyError):
    """Another room already uses this code."""

    title = "Room code taken"

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Room code '{code}' is already in use")


class HostConflictError(LobbyError):
    """The room already has a host player."""

    title = "Host already assigned"

    def __init__(self, room_id: uuid.UUID):
        self.room_id = room_id
        super().__init__(f"Room {room_id} already has a host")


class AccessDeniedError(LobbyError):
    """The access policy refused the operation."""

    title = "Access denied"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Not allowed to {action}")


class StoreError(LobbyError):
    """The backing store failed or did not answer in time."""

    title = "Store unavailable"
