"""
Database setup for the game-state slot.
Uses a SQLite file by default; any SQLAlchemy URL works (CONQUEST_DATABASE_URL).
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    # Heroku-style postgres:// URLs; SQLAlchemy 2.x expects postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)
    # SQLite needs check_same_thread=False; in-memory databases must share one connection
    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine, reset: bool = True) -> None:
    """Create all tables. With reset, drop them first so every start begins from a fresh slot."""
    # Register models on Base.metadata
    from . import models  # noqa: F401

    if reset:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
