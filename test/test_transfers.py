"""
Army transfers: dispatch validation, travel time, and arrival outcomes.
"""

import pytest

from conquest.engine.errors import (
    InsufficientResourcesError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from conquest.engine.transfers import TransferService, travel_seconds
from conquest.engine.utils import haversine_km


@pytest.fixture
def transfers(store, clock):
    return TransferService(store, clock=clock)


@pytest.fixture
def garrisoned(store):
    store.update(1, {"owner": "player", "military": 100})
    store.update(2, {"military": 30})
    store.update(5, {"owner": "player", "military": 10})
    return store


def test_travel_time_clamped(store):
    moscow, nizhny = store.get(1), store.get(5)
    assert travel_seconds(moscow, nizhny) == 30
    assert travel_seconds(moscow, nizhny, speed_kmh=1e9) == 5
    km = haversine_km(moscow.latitude, moscow.longitude, nizhny.latitude, nizhny.longitude)
    assert travel_seconds(moscow, nizhny, speed_kmh=100_000) == pytest.approx(km / 100_000 * 3600, abs=1e-3)


def test_dispatch_withdraws_troops_and_queues(garrisoned, transfers, clock):
    transfer, event = transfers.dispatch(1, 2, 40, "player")
    assert garrisoned.get(1).military == 60
    assert transfer.arrival_time == clock() + 30
    assert transfers.in_flight() == [transfer]
    payload = event.to_dict()
    assert payload["type"] == "MILITARY_TRANSFER_START"
    assert payload["duration"] == 30_000
    assert payload["fromCity"]["id"] == 1
    assert payload["toCity"]["id"] == 2


def test_dispatch_validation(garrisoned, transfers):
    with pytest.raises(ValidationError):
        transfers.dispatch(1, 1, 10, "player")
    with pytest.raises(ValidationError):
        transfers.dispatch(1, 2, 0, "player")
    with pytest.raises(ValidationError):
        transfers.dispatch(1, 2, True, "player")
    with pytest.raises(NotFoundError):
        transfers.dispatch(1, 99, 10, "player")
    with pytest.raises(OwnershipError):
        transfers.dispatch(2, 1, 10, "player")
    with pytest.raises(InsufficientResourcesError):
        transfers.dispatch(1, 2, 101, "player")
    assert garrisoned.get(1).military == 100
    assert transfers.in_flight() == []


def test_not_resolved_before_arrival(garrisoned, transfers, clock):
    transfers.dispatch(1, 2, 40, "player")
    clock.advance(29)
    assert transfers.resolve_due() == []
    assert garrisoned.get(2).owner == "neutral"


def test_attack_with_surplus_captures(garrisoned, transfers, clock):
    garrisoned.update(2, {"population": 500})
    transfers.dispatch(1, 2, 50, "player")
    clock.advance(30)
    out = transfers.resolve_due()
    assert [e.payload["result"] for e in out] == ["captured"]
    target = garrisoned.get(2)
    assert target.owner == "player"
    assert target.military == 20
    assert target.population == 0
    # Resolved exactly once
    assert transfers.resolve_due() == []


def test_attack_equal_to_garrison_fails(garrisoned, transfers, clock):
    transfers.dispatch(1, 2, 30, "player")
    clock.advance(30)
    out = transfers.resolve_due()
    assert out[0].payload["result"] == "failed"
    assert out[0].payload["garrison"] == 0
    target = garrisoned.get(2)
    assert target.owner == "neutral"
    assert target.military == 0


def test_reinforcement_adds_to_garrison(garrisoned, transfers, clock):
    transfers.dispatch(1, 5, 25, "player")
    clock.advance(30)
    out = transfers.resolve_due()
    assert out[0].payload["result"] == "reinforced"
    assert garrisoned.get(5).military == 35
    assert garrisoned.get(1).military == 75


def test_enemy_capture_of_player_settlement_keeps_population(garrisoned, transfers, clock):
    garrisoned.update(2, {"owner": "enemy", "military": 80})
    garrisoned.update(5, {"population": 200})
    transfers.dispatch(2, 5, 80, "enemy")
    clock.advance(30)
    transfers.resolve_due()
    target = garrisoned.get(5)
    assert target.owner == "enemy"
    assert target.military == 70
    assert target.population == 200


def test_arrivals_resolved_in_arrival_order(garrisoned, clock):
    fast = TransferService(garrisoned, speed_kmh=1e9, clock=clock)
    slow = TransferService(garrisoned, clock=clock)
    slow.dispatch(1, 2, 20, "player")
    fast.dispatch(1, 5, 10, "player")
    clock.advance(60)
    out = slow.resolve_due()
    assert [e.payload["toCity"] for e in out] == [5, 2]
