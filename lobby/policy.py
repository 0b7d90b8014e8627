"""Access policy consulted by the store before every operation."""

from typing import Any

# Actions checked by RoomStore
CREATE_ROOM = "create_room"
READ_ROOM = "read_room"
DELETE_ROOM = "delete_room"
ADD_PLAYER = "add_player"
READ_PLAYERS = "read_players"
REMOVE_PLAYER = "remove_player"


class AccessPolicy:
    """
    Authorization predicate for store operations.
    
    Subclasses override `allows`. The context carries whatever identifies
    the target row (room_id, player_id, code, ...).
    """
    
    def allows(self, action: str, **context: Any) -> bool:
        raise NotImplementedError


class OpenAccessPolicy(AccessPolicy):
    """Every caller may read, create and delete any room or player."""
    
    def allows(self, action: str, **context: Any) -> bool:
        return True
