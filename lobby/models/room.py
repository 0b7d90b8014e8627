"""Room model."""

import secrets
import string
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import String, Integer, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lobby.config import CODE_LENGTH
from lobby.models.base import Base

if TYPE_CHECKING:
    from lobby.models.player import Player


def generate_room_code(length: int = CODE_LENGTH) -> str:
    """Generate a random uppercase room code."""
    alphabet = string.ascii_uppercase + string.digits
    # Exclude ambiguous characters
    alphabet = alphabet.replace("0", "").replace("O", "").replace("I", "").replace("1", "")
    return "".join(secrets.choice(alphabet) for _ in range(length))


class Room(Base):
    """A joinable session identified by a short code."""
    
    __tablename__ = "rooms"
    
    # Join code for players to connect (e.g., "ABC123")
    code: Mapped[str] = mapped_column(
        String(10),
        unique=True,
        index=True,
        default=generate_room_code,
    )
    
    # Creator's display name, not a reference to the host Player row
    host_name: Mapped[str] = mapped_column(String(50))
    max_players: Mapped[int] = mapped_column(Integer, default=4, server_default="4")
    
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    
    # Relationships
    players: Mapped[List["Player"]] = relationship(
        "Player",
        back_populates="room",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Player.joined_at",
    )
    
    def __repr__(self) -> str:
        return f"<Room {self.code} (host: {self.host_name}, max {self.max_players})>"
