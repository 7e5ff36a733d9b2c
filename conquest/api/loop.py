"""
Background scheduler: the simulation tick, the market sweep and the opponent round,
each a recurring asyncio task. Engine work is synchronous, so a step never
interleaves with a request handler; only broadcasting awaits.
"""

import asyncio
from typing import Callable

import structlog

from conquest.engine.events import GameEvent

from .services import GameServices

logger = structlog.get_logger(__name__)


class GameLoop:
    def __init__(self, services: GameServices):
        self.services = services
        self.tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self.tasks)

    def start(self) -> None:
        if self.running:
            logger.info("game_loop_already_running")
            return
        settings = self.services.settings
        self.tasks = [
            asyncio.create_task(self._every(settings.tick_interval_seconds, self.tick, "tick")),
            asyncio.create_task(self._every(settings.market_sweep_interval_seconds, self.market_sweep, "market")),
            asyncio.create_task(self._every(settings.opponent_interval_seconds, self.opponent_round, "opponent")),
        ]
        logger.info(
            "game_loop_started",
            tick_interval=settings.tick_interval_seconds,
            market_interval=settings.market_sweep_interval_seconds,
            opponent_interval=settings.opponent_interval_seconds,
        )

    async def stop(self) -> None:
        for task in self.tasks:
            task.cancel()
        for task in self.tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks = []
        logger.info("game_loop_stopped")

    async def _every(self, interval: float, step: Callable[[], list[GameEvent]], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                step_events = step()
            except Exception:
                logger.exception("scheduled_step_failed", step=name)
                continue
            await self.services.connections.broadcast(step_events)

    def tick(self) -> list[GameEvent]:
        return self.services.simulation.tick()

    def market_sweep(self) -> list[GameEvent]:
        filled = self.services.market.sweep()
        if filled:
            return self.services.snapshot_events()
        return []

    def opponent_round(self) -> list[GameEvent]:
        out = self.services.opponent.decide()
        return out + self.services.snapshot_events()
