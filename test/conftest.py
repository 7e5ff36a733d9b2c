"""
Shared fixtures: in-memory store seeded with the world, a controllable clock, a seeded RNG.
"""

import random

import pytest

from conquest.api.database import init_db, make_engine, make_session_factory
from conquest.api.storage import SettlementStore
from conquest.engine.buildings import load_catalog
from conquest.engine.state import GameState, Resources, Settlement
from conquest.engine.utils import initialize_world


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture(scope="session")
def catalog():
    return load_catalog()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory, catalog, clock):
    store = SettlementStore(session_factory, cache_ttl_seconds=5.0, clock=clock)
    settlements, game_state = initialize_world(catalog)
    assert store.reset(settlements, game_state)
    return store


def make_settlement(catalog, **overrides) -> Settlement:
    fields = dict(
        id=100,
        name="Testburg",
        latitude=55.0,
        longitude=37.0,
        population=100.0,
        max_population=1000,
        owner="player",
        buildings=[],
        available_buildings=catalog.ids(),
        building_limits=catalog.default_limits(),
        military=0.0,
        satisfaction=50.0,
        tax_rate=5,
    )
    fields.update(overrides)
    return Settlement(**fields)


def make_state(**resources) -> GameState:
    return GameState(resources=Resources(**resources))
