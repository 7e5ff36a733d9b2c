"""
Settlement store: the single source of truth for settlements, the aggregate game state
and in-flight army transfers.

Settlements and transfers are memory-resident. The game state is written through to a
single database row and read back through a short-lived cache. The store never raises
on I/O: failures are logged and reported as False/None, and the cache keeps the
last-known-good state.
"""

from __future__ import annotations

import heapq
import itertools
import json
import time
from collections import Counter
from typing import Any, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from conquest.engine import (
    OWNERS,
    SATISFACTION_MAX,
    SATISFACTION_MIN,
    TAX_RATE_MAX,
    TAX_RATE_MIN,
)
from conquest.engine.errors import GameRuleError
from conquest.engine.state import (
    ArmyTransfer,
    GameState,
    Settlement,
    normalize_settlement_fields,
)

from .models import GAME_STATE_ROW_ID, GameStateRecord

logger = structlog.get_logger(__name__)

# Known bad transition: a settlement at 0 satisfaction jumping into this open range
SUSPICIOUS_SATISFACTION_RANGE = (45.0, 50.0)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SettlementStore:
    def __init__(
        self,
        session_factory,
        cache_ttl_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.cache_ttl_seconds = cache_ttl_seconds
        self.clock = clock
        self._settlements: dict[int, Settlement] = {}
        self._game_state: GameState | None = None
        self._cached_at: float | None = None
        self._transfers: list[tuple[float, int, ArmyTransfer]] = []
        self._sequence = itertools.count()

    # ===== Settlements =====

    def list(self) -> list[Settlement]:
        return [s.copy() for s in self._settlements.values()]

    def get(self, settlement_id: int) -> Settlement | None:
        settlement = self._settlements.get(settlement_id)
        return settlement.copy() if settlement else None

    def replace_all(self, settlements: list[Settlement]) -> None:
        self._settlements = {s.id: s.copy() for s in sorted(settlements, key=lambda s: s.id)}

    def update(self, settlement_id: int, updates: dict[str, Any]) -> Settlement | None:
        """
        Merge fields into a settlement. Returns the updated copy, or None if the update
        was rejected (unknown id, unknown field, bad owner, building limit exceeded).
        Out-of-range numbers are clamped rather than rejected.
        """
        current = self._settlements.get(settlement_id)
        if current is None:
            logger.warning("update_unknown_settlement", settlement_id=settlement_id)
            return None
        try:
            fields = normalize_settlement_fields(updates)
        except GameRuleError as e:
            logger.warning("update_rejected", settlement_id=settlement_id, reason=e.message)
            return None
        fields.pop("id", None)

        if "satisfaction" in fields and fields["satisfaction"] is not None:
            low, high = SUSPICIOUS_SATISFACTION_RANGE
            new_value = float(fields["satisfaction"])
            if current.satisfaction == 0 and low < new_value < high:
                logger.warning(
                    "suspicious_satisfaction_blocked",
                    settlement=current.name,
                    current=current.satisfaction,
                    attempted=new_value,
                )
                fields.pop("satisfaction")

        if "owner" in fields and fields["owner"] not in OWNERS:
            logger.warning("update_rejected", settlement_id=settlement_id, reason=f"unknown owner {fields['owner']}")
            return None

        candidate = current.copy()
        try:
            for name, value in fields.items():
                setattr(candidate, name, value)
            self._normalize(candidate)
        except (TypeError, ValueError) as e:
            logger.warning("update_rejected", settlement_id=settlement_id, reason=str(e))
            return None

        counts = Counter(candidate.buildings)
        for building_id, count in counts.items():
            limit = candidate.building_limits.get(building_id)
            if limit is not None and count > limit:
                logger.warning(
                    "building_limit_exceeded",
                    settlement=current.name,
                    building=building_id,
                    count=count,
                    limit=limit,
                )
                return None

        self._settlements[settlement_id] = candidate
        return candidate.copy()

    def _normalize(self, s: Settlement) -> None:
        """Coerce types and clamp numeric fields into their invariant ranges."""
        s.max_population = int(s.max_population)
        s.population = float(s.population)
        s.military = float(s.military)
        s.satisfaction = float(s.satisfaction)
        s.tax_rate = int(s.tax_rate)
        s.buildings = [str(b) for b in s.buildings]
        if s.protest_timer is not None:
            s.protest_timer = max(0.0, float(s.protest_timer))

        clamped = {
            "population": _clamp(s.population, 0.0, float(max(s.max_population, 0))),
            "satisfaction": _clamp(s.satisfaction, SATISFACTION_MIN, SATISFACTION_MAX),
            "tax_rate": int(_clamp(s.tax_rate, TAX_RATE_MIN, TAX_RATE_MAX)),
            "military": max(0.0, s.military),
        }
        for name, value in clamped.items():
            if getattr(s, name) != value:
                logger.debug("value_clamped", settlement=s.name, field=name, value=getattr(s, name), clamped=value)
                setattr(s, name, value)

    # ===== Game state =====

    def get_game_state(self) -> GameState | None:
        """Current aggregate state. Served from cache while fresh; None if it cannot be read."""
        now = self.clock()
        if self._game_state is not None and self._cached_at is not None:
            if now - self._cached_at < self.cache_ttl_seconds:
                return self._game_state.copy()
        try:
            with self.session_factory() as db:
                row = db.get(GameStateRecord, GAME_STATE_ROW_ID)
                payload = row.payload if row else None
        except SQLAlchemyError as e:
            logger.error("game_state_read_failed", error=str(e))
            return self._game_state.copy() if self._game_state else None
        if payload is None:
            return self._game_state.copy() if self._game_state else None
        try:
            state = GameState.from_dict(json.loads(payload))
        except (ValueError, TypeError) as e:
            logger.error("game_state_corrupt", error=str(e))
            return self._game_state.copy() if self._game_state else None
        self._game_state = state
        self._cached_at = now
        return state.copy()

    def set_game_state(self, state: GameState) -> bool:
        """Replace the whole game state. Returns False (cache untouched) if the write fails."""
        payload = json.dumps(state.to_dict())
        try:
            with self.session_factory() as db:
                row = db.get(GameStateRecord, GAME_STATE_ROW_ID)
                if row is None:
                    db.add(GameStateRecord(id=GAME_STATE_ROW_ID, payload=payload))
                else:
                    row.payload = payload
                db.commit()
        except SQLAlchemyError as e:
            logger.error("game_state_write_failed", error=str(e))
            return False
        self._game_state = state.copy()
        self._cached_at = self.clock()
        return True

    def reset(self, settlements: list[Settlement], game_state: GameState) -> bool:
        """Start a fresh session: new settlements, new game state, no transfers."""
        self.replace_all(settlements)
        self._transfers = []
        self._game_state = None
        self._cached_at = None
        return self.set_game_state(game_state)

    # ===== Army transfers =====

    def add_transfer(self, transfer: ArmyTransfer) -> None:
        heapq.heappush(self._transfers, (transfer.arrival_time, next(self._sequence), transfer))

    def pop_due_transfers(self, now: float) -> list[ArmyTransfer]:
        """Remove and return transfers with arrival_time <= now, earliest first."""
        due = []
        while self._transfers and self._transfers[0][0] <= now:
            due.append(heapq.heappop(self._transfers)[2])
        return due

    def list_transfers(self) -> list[ArmyTransfer]:
        return [entry[2] for entry in sorted(self._transfers, key=lambda e: e[:2])]
