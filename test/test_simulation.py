"""
Tick computation: tax, satisfaction, worker shortage, production chains, food, growth,
military conversion, protests, and the engine applying results through the store.
"""

from unittest.mock import patch

import pytest

from conftest import make_settlement, make_state

from conquest.engine.buildings import WORKER_MODEL_DECLARED
from conquest.engine.simulation import (
    PROTEST_DURATION_SECONDS,
    SimulationEngine,
    compute_tick,
    satisfaction_factors,
    tax_income,
)
from conquest.engine.transfers import TransferService


def test_no_player_settlements_is_idle(catalog):
    state = make_state(gold=10)
    result = compute_tick([make_settlement(catalog, owner="neutral")], state, catalog)
    assert result.idle
    assert result.updates == {}
    assert result.game_state == state


def test_tax_income():
    assert tax_income(100, 5) == 100
    assert tax_income(100, 10) == 200
    assert tax_income(100, 0) == -50


def test_zero_population_skips_satisfaction_and_production(catalog):
    s = make_settlement(catalog, population=0, buildings=["logging_camp"], satisfaction=80)
    result = compute_tick([s], make_state(food=100, wood=10), catalog)
    assert s.id not in result.updates
    assert result.game_state.resources.wood == 10
    assert result.game_state.resources.influence == 0
    assert result.reports[0].skipped


def test_zero_population_still_grows(catalog):
    s = make_settlement(catalog, population=0, buildings=["house"])
    result = compute_tick([s], make_state(food=100), catalog)
    assert result.updates[s.id]["population"] == pytest.approx(0.1)


def test_one_farm_is_staffed_and_produces(catalog):
    s = make_settlement(catalog, population=100, buildings=["farm"])
    result = compute_tick([s], make_state(food=1000), catalog)
    report = result.reports[0]
    assert not report.lacks_workers
    assert report.produced == {"food": 5}
    # +0.5 base gain at neutral tax
    assert result.updates[s.id]["satisfaction"] == 50.5
    # 1000 + 5 produced - 10 eaten
    assert result.game_state.resources.food == 995


def test_worker_starved_settlement_produces_nothing(catalog):
    s = make_settlement(catalog, population=100, buildings=["farm"] * 150)
    result = compute_tick([s], make_state(food=1000), catalog)
    report = result.reports[0]
    assert report.lacks_workers
    assert report.produced == {}
    assert result.updates[s.id]["satisfaction"] == 45.0
    assert result.game_state.resources.food == 990
    # Tax still applies
    assert result.game_state.resources.gold == 100


def test_declared_worker_model_counts_catalog_workers(catalog):
    s = make_settlement(catalog, population=20, buildings=["farm", "gold_mine"])
    assert not compute_tick([s], make_state(food=100), catalog).reports[0].lacks_workers
    declared = compute_tick([s], make_state(food=100), catalog, worker_model=WORKER_MODEL_DECLARED)
    assert declared.reports[0].lacks_workers
    assert declared.reports[0].required_workers == 25


def test_tax_rate_moves_satisfaction(catalog):
    high = make_settlement(catalog, id=1, tax_rate=10)
    low = make_settlement(catalog, id=2, tax_rate=0)
    result = compute_tick([high, low], make_state(food=1000), catalog)
    assert result.updates[1]["satisfaction"] == pytest.approx(50 + 0.5 - 1.0)
    assert result.updates[2]["satisfaction"] == pytest.approx(50 + 0.5 + 0.5)


def test_satisfaction_clamped_and_noise_not_written(catalog):
    s = make_settlement(catalog, satisfaction=100.0)
    result = compute_tick([s], make_state(food=1000), catalog)
    assert "satisfaction" not in result.updates.get(s.id, {})


def test_influence_bonus_above_seventy(catalog):
    s = make_settlement(catalog, satisfaction=90.0)
    result = compute_tick([s], make_state(food=1000), catalog)
    assert result.game_state.resources.influence == pytest.approx(1.0)


def test_food_never_goes_negative(catalog):
    s = make_settlement(catalog, population=1000, max_population=1000)
    result = compute_tick([s], make_state(food=3), catalog)
    assert result.game_state.resources.food == 0


def test_growth_needs_food(catalog):
    s = make_settlement(catalog, population=100, buildings=["house", "house"])
    fed = compute_tick([s], make_state(food=1000), catalog)
    assert fed.updates[s.id]["population"] == pytest.approx(100.2)
    starving = compute_tick([s], make_state(food=5), catalog)
    assert "population" not in starving.updates.get(s.id, {})


def test_growth_capped_at_max_population(catalog):
    s = make_settlement(catalog, population=999.95, max_population=1000, buildings=["house"])
    result = compute_tick([s], make_state(food=1000), catalog)
    assert result.updates[s.id]["population"] == 1000


def test_conversion_chain_needs_input(catalog):
    s = make_settlement(catalog, population=100, buildings=["steel_factory"])
    assert catalog.get("steel_factory").is_conversion
    assert not catalog.get("farm").is_conversion
    dry = compute_tick([s], make_state(food=1000), catalog)
    assert dry.game_state.resources.steel == 0
    wet = compute_tick([s], make_state(food=1000, metal=5), catalog)
    assert wet.game_state.resources.metal == 4
    assert wet.game_state.resources.steel == 1


def test_conversion_uses_same_tick_production(catalog):
    s = make_settlement(catalog, population=100, buildings=["metal_factory", "steel_factory"])
    result = compute_tick([s], make_state(food=1000), catalog)
    assert result.game_state.resources.metal == 1
    assert result.game_state.resources.steel == 1


def test_military_conversion(catalog):
    s = make_settlement(catalog, population=100)
    state = make_state(food=1000, weapons=3)
    result = compute_tick([s], state, catalog)
    assert result.game_state.military == 1
    assert result.game_state.resources.weapons == 2
    assert result.game_state.population == 100


def test_no_military_without_free_population(catalog):
    s = make_settlement(catalog, population=10)
    state = make_state(food=1000, weapons=3)
    state.military = 10
    result = compute_tick([s], state, catalog)
    assert result.game_state.military == 10
    assert result.game_state.resources.weapons == 3


def test_protest_starts_runs_down_and_clears(catalog):
    s = make_settlement(catalog, satisfaction=20.2, tax_rate=10, buildings=["logging_camp"])
    result = compute_tick([s], make_state(food=1000), catalog, tick_seconds=1.0)
    assert result.updates[s.id]["protest_timer"] == PROTEST_DURATION_SECONDS
    assert result.game_state.resources.wood == 3

    s.satisfaction = result.updates[s.id]["satisfaction"]
    s.protest_timer = PROTEST_DURATION_SECONDS
    protesting = compute_tick([s], make_state(food=1000), catalog, tick_seconds=1.0)
    assert protesting.updates[s.id]["protest_timer"] == PROTEST_DURATION_SECONDS - 1
    assert protesting.reports[0].protesting

    s.satisfaction = 30
    s.tax_rate = 5
    calm = compute_tick([s], make_state(food=1000), catalog, tick_seconds=1.0)
    assert calm.updates[s.id]["protest_timer"] is None


def test_protesting_settlement_keeps_producing(catalog):
    s = make_settlement(catalog, buildings=["logging_camp"], satisfaction=10, protest_timer=PROTEST_DURATION_SECONDS)
    result = compute_tick([s], make_state(food=1000), catalog)
    report = result.reports[0]
    assert report.protesting
    assert not report.lacks_workers
    assert report.produced == {"wood": 3}
    assert result.game_state.resources.wood == 3


def test_protest_never_changes_owner(catalog):
    s = make_settlement(catalog, satisfaction=0.0, tax_rate=10, protest_timer=0.0)
    result = compute_tick([s], make_state(food=1000), catalog)
    assert "owner" not in result.updates.get(s.id, {})
    assert result.updates.get(s.id, {}).get("protest_timer", 0.0) == 0.0


def test_satisfaction_factors_sum_to_tick_delta(catalog):
    s = make_settlement(catalog, tax_rate=8, buildings=["farm"])
    factors = satisfaction_factors(s, make_state(food=1000), catalog)
    total = sum(f["impact"] for f in factors if not f["isWarning"])
    result = compute_tick([s], make_state(food=1000), catalog)
    assert total == pytest.approx(result.updates[s.id]["satisfaction"] - s.satisfaction)


def test_satisfaction_factors_flag_worker_shortage(catalog):
    s = make_settlement(catalog, population=1, buildings=["farm", "house"])
    names = [f["name"] for f in satisfaction_factors(s, make_state(food=1000), catalog)]
    assert "Worker shortage" in names
    assert "Base growth" not in names


# ===== Engine against the store =====

def test_engine_tick_writes_store_and_emits_updates(store, catalog, clock):
    store.update(1, {"owner": "player", "population": 100, "buildings": ["farm", "house"]})
    engine = SimulationEngine(store, catalog, TransferService(store, clock=clock), clock=clock)
    out = engine.tick()
    assert [e.type for e in out] == ["GAME_UPDATE", "CITIES_UPDATE"]
    settlement = store.get(1)
    assert settlement.population == pytest.approx(100.1)
    assert settlement.satisfaction == 50.5
    state = store.get_game_state()
    assert state.resources.gold == 600
    assert state.population == pytest.approx(100.1)


def test_engine_tick_survives_internal_errors(store, catalog, clock):
    engine = SimulationEngine(store, catalog, TransferService(store, clock=clock), clock=clock)
    engine.catalog = None  # any failure inside the tick
    store.update(1, {"owner": "player", "population": 10})
    assert engine.tick() == []


def test_engine_leaves_settlements_alone_when_state_cannot_be_saved(store, catalog, clock):
    store.update(1, {"owner": "player", "population": 100, "buildings": ["farm", "house"]})
    engine = SimulationEngine(store, catalog, TransferService(store, clock=clock), clock=clock)
    with patch.object(store, "set_game_state", return_value=False):
        assert engine.tick() == []
    settlement = store.get(1)
    assert settlement.population == 100
    assert settlement.satisfaction == 50
    assert store.get_game_state().resources.gold == 500
