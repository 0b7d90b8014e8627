"""Lobby database models."""

from lobby.models.base import Base
from lobby.models.room import Room, generate_room_code
from lobby.models.player import Player

__all__ = [
    "Base",
    "Room",
    "Player",
    "generate_room_code",
]
