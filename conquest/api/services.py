"""
Service container. Everything the request handlers and the scheduler share is built
once here and handed around explicitly.
"""

import random
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from conquest.config import Settings
from conquest.engine import events
from conquest.engine.actions import PlayerActions
from conquest.engine.buildings import BuildingCatalog, load_catalog
from conquest.engine.events import GameEvent
from conquest.engine.market import Market
from conquest.engine.opponent import Opponent
from conquest.engine.simulation import SimulationEngine
from conquest.engine.transfers import TransferService
from conquest.engine.utils import initialize_world, load_world

from .connections import ConnectionManager
from .database import init_db, make_engine, make_session_factory
from .storage import SettlementStore

logger = structlog.get_logger(__name__)


@dataclass
class GameServices:
    settings: Settings
    catalog: BuildingCatalog
    store: SettlementStore
    market: Market
    transfers: TransferService
    actions: PlayerActions
    simulation: SimulationEngine
    opponent: Opponent
    connections: ConnectionManager
    world: dict

    def reset_world(self) -> bool:
        """Discard every settlement, transfer and listing and start from the seed world."""
        settlements, game_state = initialize_world(
            self.catalog, self.world, enemy_capital_id=self.settings.enemy_capital_id
        )
        ok = self.store.reset(settlements, game_state)
        self.market.reset()
        self.market.create_synthetic_listings()
        logger.info("world_reset", settlements=len(settlements), persisted=ok)
        return ok

    def snapshot_events(self) -> list[GameEvent]:
        """GAME_UPDATE and CITIES_UPDATE for the current state."""
        out = []
        game_state = self.store.get_game_state()
        if game_state is not None:
            out.append(events.game_update(game_state))
        out.append(events.cities_update(self.store.list()))
        return out


def build_services(
    settings: Settings,
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
    catalog: BuildingCatalog | None = None,
    world: dict | None = None,
) -> GameServices:
    """Wire services from settings and seed a fresh world (state is reset on every start)."""
    engine = make_engine(settings.database_url)
    init_db(engine, reset=True)
    session_factory = make_session_factory(engine)

    catalog = catalog or load_catalog()
    world = world if world is not None else load_world()
    store = SettlementStore(session_factory, cache_ttl_seconds=settings.game_state_cache_ttl_seconds)
    transfers = TransferService(
        store,
        speed_kmh=settings.army_speed_kmh,
        min_seconds=settings.transfer_min_seconds,
        max_seconds=settings.transfer_max_seconds,
        clock=clock,
    )
    market = Market(store, rng=rng or random.Random(settings.market_seed), clock=clock)
    simulation = SimulationEngine(
        store,
        catalog,
        transfers,
        worker_model=settings.worker_model,
        tick_seconds=settings.tick_interval_seconds,
        clock=clock,
    )
    ticks_per_round = settings.opponent_interval_seconds / settings.tick_interval_seconds
    services = GameServices(
        settings=settings,
        catalog=catalog,
        store=store,
        market=market,
        transfers=transfers,
        actions=PlayerActions(store, catalog),
        simulation=simulation,
        opponent=Opponent(store, catalog, transfers, ticks_per_round=ticks_per_round),
        connections=ConnectionManager(),
        world=world,
    )
    services.reset_world()
    return services
