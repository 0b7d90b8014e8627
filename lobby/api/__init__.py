"""Lobby API routes."""

from lobby.api.rooms import RoomsController
from lobby.api.websocket import websocket_handler

__all__ = ["RoomsController", "websocket_handler"]
