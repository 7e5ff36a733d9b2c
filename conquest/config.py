"""
Single place for server configuration.
Values come from CONQUEST_* environment variables or a .env file; defaults suit local play.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).parent / "data"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="CONQUEST_", env_file=".env", extra="ignore")

    # Persistence
    database_url: str = Field(
        default=f"sqlite:///{DATA_DIR / 'game-state.db'}",
        description="SQLAlchemy URL of the game-state slot",
    )
    game_state_cache_ttl_seconds: float = Field(default=5.0, description="Game-state read cache lifetime")

    # Scheduler
    tick_interval_seconds: float = Field(default=1.0, description="Simulation tick interval")
    market_sweep_interval_seconds: float = Field(default=1800.0, description="Market maintenance interval")
    opponent_interval_seconds: float = Field(default=10.0, description="Opponent decision interval")
    run_background_tasks: bool = Field(default=True, description="Start tick, market and opponent loops")

    # Rules
    worker_model: Literal["building_count", "declared"] = Field(
        default="building_count",
        description="building_count: one worker per building; declared: sum of catalog workers",
    )
    army_speed_kmh: float = Field(default=100.0, description="Army travel speed")
    transfer_min_seconds: float = Field(default=5.0, description="Shortest army transfer")
    transfer_max_seconds: float = Field(default=30.0, description="Longest army transfer")
    enemy_capital_id: int | None = Field(default=None, description="Region the opponent starts with, if any")
    market_seed: int | None = Field(default=None, description="Seed for synthetic market listings")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    cors_origins: list[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:8000"],
        description="Allowed browser origins",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["json", "console"] = Field(default="json", description="Log renderer")


@lru_cache
def get_settings() -> Settings:
    return Settings()
