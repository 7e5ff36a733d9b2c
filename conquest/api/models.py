"""
SQLAlchemy models for the persisted game state.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Text

from .database import Base

GAME_STATE_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameStateRecord(Base):
    """Single-row slot holding the aggregate game state, overwritten wholesale."""
    __tablename__ = "game_state"

    id = Column(Integer, primary_key=True, default=GAME_STATE_ROW_ID)
    payload = Column(Text, nullable=False)  # JSON string of GameState.to_dict()
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
