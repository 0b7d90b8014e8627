"""Player model."""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import String, Boolean, DateTime, ForeignKey, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lobby.models.base import Base

if TYPE_CHECKING:
    from lobby.models.room import Room


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Player(Base):
    """A named participant in a room."""
    
    __tablename__ = "players"
    
    # Which room this player belongs to
    room_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rooms.id", ondelete="CASCADE"),
        index=True,
    )
    
    name: Mapped[str] = mapped_column(String(50))
    is_host: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    
    # Roster order; set client side for sub-second resolution
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        index=True,
    )
    
    # Relationships
    room: Mapped["Room"] = relationship(
        "Room",
        back_populates="players",
    )
    
    def __repr__(self) -> str:
        return f"<Player {self.name} in room {self.room_id}>"
