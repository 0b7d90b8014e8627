"""WebSocket handler driving one lobby client per connection."""

import json
import logging

from litestar import WebSocket, websocket
from litestar.exceptions import WebSocketDisconnect

from lobby.controller import LobbyController
from lobby.notifier import ChangeNotifier
from lobby.store import RoomStore

logger = logging.getLogger("Lobby.WebSocket")


async def dispatch(controller: LobbyController, socket: WebSocket, data: dict) -> None:
    """Run the action named by a client message."""
    msg_type = data.get("type")

    if msg_type == "host":
        await controller.host(data.get("player_name"))

    elif msg_type == "join":
        await controller.join(data.get("player_name"), data.get("room_code"))

    elif msg_type == "leave":
        await controller.leave()

    elif msg_type == "start_game":
        await controller.start_game()

    elif msg_type == "request_state":
        await socket.send_json({"type": "state", "data": controller.snapshot()})

    elif msg_type == "ping":
        await socket.send_json({"type": "pong"})

    else:
        await socket.send_json({"type": "error", "message": f"Unknown message type: {msg_type}"})


@websocket("/ws/lobby")
async def lobby_websocket(
    socket: WebSocket,
    store: RoomStore,
    notifier: ChangeNotifier,
) -> None:
    """
    WebSocket endpoint for the lobby.

    Each connection is one client with its own LobbyController. Actions
    arrive as messages; state, notices and errors are pushed back,
    including roster changes made by other clients.

    Message types (client -> server):
    - {"type": "host", "player_name": "..."}
    - {"type": "join", "player_name": "...", "room_code": "..."}
    - {"type": "leave"}
    - {"type": "start_game"}
    - {"type": "request_state"}
    - {"type": "ping"}

    Message types (server -> client):
    - {"type": "state", "data": {...}}  - Full client state (state, room, player, roster)
    - {"type": "notice", "title": "...", "description": "..."}
    - {"type": "error", "title": "...", "description": "..."}
    - {"type": "game_starting", "room_code": "...", "players": [...]}
    - {"type": "pong"}
    - {"type": "error", "message": "..."}  - Malformed or unknown client message
    """
    await socket.accept()

    controller = LobbyController(store, notifier, send=socket.send_json)
    logger.info("WebSocket connected to lobby")

    try:
        await socket.send_json({"type": "state", "data": controller.snapshot()})

        # Main message loop
        while True:
            try:
                data = json.loads(await socket.receive_text())
            except json.JSONDecodeError:
                await socket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            if not isinstance(data, dict):
                await socket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            await dispatch(controller, socket, data)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected from lobby")

    except Exception as e:
        logger.exception(f"WebSocket error in lobby: {e}")

    finally:
        # Release the room subscription; rows stay as they are
        await controller.close()


# Export the websocket handler for use in routes
websocket_handler = lobby_websocket
