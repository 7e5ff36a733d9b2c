"""
Capture rules (costs, eligibility, all-or-nothing) and the player actions built on them.
"""

import pytest

from conftest import make_settlement

from conquest.engine.actions import PlayerActions
from conquest.engine.capture import (
    debit_proportionally,
    influence_capture_cost,
    military_capture_cost,
    plan_capture,
)
from conquest.engine.errors import (
    InsufficientResourcesError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)


@pytest.fixture
def actions(store, catalog):
    return PlayerActions(store, catalog)


def _fund(store, military=0.0, **resources):
    state = store.get_game_state()
    state.military = military
    for name, amount in resources.items():
        state.resources.set(name, amount)
    assert store.set_game_state(state)


# ===== Costs =====

def test_military_cost_is_quarter_of_max_population():
    assert military_capture_cost(1000) == 250
    assert military_capture_cost(1001) == 251
    assert military_capture_cost(0) == 0


def test_influence_cost_capped_with_fallback():
    assert influence_capture_cost(100) == 20
    assert influence_capture_cost(10000) == 100
    assert influence_capture_cost(0) == 30
    assert influence_capture_cost(None) == 30


# ===== Planning =====

def test_plan_rejects_own_settlement(catalog):
    target = make_settlement(catalog, owner="player")
    with pytest.raises(ValidationError):
        plan_capture(target, "player", "military", available=10_000)


def test_plan_influence_requires_neutral(catalog):
    target = make_settlement(catalog, owner="enemy", max_population=100)
    with pytest.raises(ValidationError):
        plan_capture(target, "player", "influence", available=1000)


def test_plan_insufficient_carries_amounts(catalog):
    target = make_settlement(catalog, owner="neutral", max_population=1000)
    with pytest.raises(InsufficientResourcesError) as exc:
        plan_capture(target, "player", "military", available=100)
    body = exc.value.to_dict()
    assert body["required"] == 250
    assert body["available"] == 100
    assert body["success"] is False


def test_plan_unknown_method(catalog):
    with pytest.raises(ValidationError):
        plan_capture(make_settlement(catalog, owner="neutral"), "player", "bribery")


def test_debit_proportionally_takes_exact_amount(catalog):
    a = make_settlement(catalog, id=1, military=30)
    b = make_settlement(catalog, id=2, military=10)
    result = debit_proportionally([a, b], 20)
    assert result == {1: 15, 2: 5}
    uneven = debit_proportionally([a, b], 7)
    assert (30 - uneven[1]) + (10 - uneven[2]) == 7
    assert debit_proportionally([a, b], 0) == {}


# ===== Player actions =====

def test_military_capture_scenario(store, actions):
    store.update(1, {"owner": "player"})
    store.update(2, {"maxPopulation": 1000, "population": 400})
    _fund(store, military=300)
    settlement, cost = actions.capture(2, "military")
    assert cost == 250
    assert settlement.owner == "player"
    assert settlement.population == 0
    assert settlement.satisfaction == 50
    assert store.get_game_state().military == 50


def test_military_capture_all_or_nothing(store, actions):
    store.update(2, {"maxPopulation": 1000})
    _fund(store, military=249)
    with pytest.raises(InsufficientResourcesError):
        actions.capture(2, "military")
    assert store.get(2).owner == "neutral"
    assert store.get_game_state().military == 249


def test_influence_capture(store, actions):
    store.update(3, {"maxPopulation": 100, "military": 12})
    _fund(store, influence=25)
    settlement, cost = actions.capture(3, "influence")
    assert cost == 20
    assert settlement.owner == "player"
    assert settlement.military == 0
    assert settlement.satisfaction == 75
    assert store.get_game_state().resources.influence == 5


def test_influence_cannot_take_enemy_settlement(store, actions):
    store.update(3, {"owner": "enemy"})
    _fund(store, influence=1000)
    with pytest.raises(ValidationError):
        actions.capture(3, "influence")
    assert store.get_game_state().resources.influence == 1000


def test_capital_is_free_once(store, actions):
    settlement, cost = actions.capture(1, is_capital=True)
    assert cost == 0
    assert settlement.owner == "player"
    with pytest.raises(ValidationError):
        actions.capture(2, is_capital=True)


def test_capture_unknown_settlement(actions):
    with pytest.raises(NotFoundError):
        actions.capture(999, "military")


def test_capture_region_garrisons_committed_troops(store, actions):
    store.update(4, {"maxPopulation": 400})
    _fund(store, military=150)
    settlement, committed = actions.capture_region(4, "military", 120)
    assert committed == 120
    assert settlement.owner == "player"
    assert settlement.military == 120
    assert store.get_game_state().military == 30


def test_capture_region_needs_enough_committed(store, actions):
    store.update(4, {"maxPopulation": 400})
    _fund(store, military=150)
    with pytest.raises(InsufficientResourcesError):
        actions.capture_region(4, "military", 50)
    with pytest.raises(InsufficientResourcesError):
        actions.capture_region(4, "military", 200)
    with pytest.raises(ValidationError):
        actions.capture_region(4, "military", 0)
    assert store.get(4).owner == "neutral"
    assert store.get_game_state().military == 150


def test_capture_region_rejects_owned_territory(store, actions):
    store.update(4, {"owner": "enemy"})
    _fund(store, military=10_000)
    with pytest.raises(ValidationError):
        actions.capture_region(4, "military", 5000)


# ===== Build and tax =====

def test_build_deducts_cost(store, actions):
    store.update(1, {"owner": "player"})
    settlement = actions.build(1, "farm")
    assert settlement.buildings == ["farm"]
    resources = store.get_game_state().resources
    assert resources.wood == 485
    assert resources.gold == 490


def test_build_rejections_leave_state_unchanged(store, actions):
    store.update(1, {"owner": "player"})
    before = store.get_game_state()
    with pytest.raises(OwnershipError):
        actions.build(2, "farm")
    with pytest.raises(ValidationError):
        actions.build(1, "castle")
    with pytest.raises(InsufficientResourcesError) as exc:
        actions.build(1, "weapons_factory")
    assert exc.value.to_dict()["resource"] == "steel"
    assert store.get_game_state() == before
    assert store.get(1).buildings == []


def test_build_limit(store, actions):
    store.update(1, {"owner": "player"})
    _fund(store, wood=10_000, gold=10_000)
    actions.build(1, "temple")
    with pytest.raises(ValidationError):
        actions.build(1, "temple")
    assert store.get(1).buildings == ["temple"]


def test_build_unavailable_building(store, actions):
    store.update(1, {"owner": "player", "availableBuildings": ["house"]})
    with pytest.raises(ValidationError):
        actions.build(1, "farm")


def test_set_tax_rate(store, actions):
    store.update(1, {"owner": "player"})
    assert actions.set_tax_rate(1, 8).tax_rate == 8
    with pytest.raises(ValidationError):
        actions.set_tax_rate(1, 11)
    with pytest.raises(ValidationError):
        actions.set_tax_rate(1, 2.5)
    with pytest.raises(OwnershipError):
        actions.set_tax_rate(2, 3)
    assert store.get(1).tax_rate == 8
