from lobby.api import RoomsController, websocket_handler

ROUTES = [
    RoomsController,
    websocket_handler,
]
