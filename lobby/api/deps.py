"""Dependency providers for route handlers."""

from litestar.datastructures import State

from lobby.notifier import ChangeNotifier
from lobby.store import RoomStore


def provide_store(state: State) -> RoomStore:
    return state.store


def provide_notifier(state: State) -> ChangeNotifier:
    return state.notifier
