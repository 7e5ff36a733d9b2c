"""
Autonomous opponent.
A periodic decision round over enemy-owned settlements: upkeep (growth, training),
one construction per settlement, peaceful or forced annexation of neutral land,
and attacks on the player. All changes go through the same store updates players use.
"""

import math
from dataclasses import dataclass, field

import structlog

from conquest.engine import OWNER_ENEMY, OWNER_NEUTRAL, OWNER_PLAYER
from conquest.engine.buildings import BuildingCatalog
from conquest.engine.capture import (
    METHOD_INFLUENCE,
    METHOD_MILITARY,
    debit_proportionally,
    influence_capture_cost,
    plan_capture,
)
from conquest.engine.errors import GameRuleError
from conquest.engine.events import GameEvent
from conquest.engine.state import Resources, ResourceType, Settlement

logger = structlog.get_logger(__name__)

ANNEX_MILITARY_THRESHOLD = 50
ATTACK_MILITARY_THRESHOLD = 200
ATTACK_COMMITMENT = 0.7
ATTACK_GARRISON_RATIO = 3  # attack only when military exceeds target max population / 3

LOW_STOCK = 100
MAX_FARMS = 3
MAX_LOGGING_CAMPS = 3
MAX_BARRACKS = 2
MAX_HOUSES = 3


@dataclass
class OpponentPool:
    """What the opponent can spend this round. Recomputed every round, never persisted."""
    resources: Resources = field(default_factory=Resources)
    population: float = 0.0
    military: float = 0.0


def compute_pool(settlements: list[Settlement], catalog: BuildingCatalog, ticks_per_round: float = 1.0) -> OpponentPool:
    """
    Sum regional deposits and building yields of the given settlements.
    Both are per-tick figures, scaled to the ticks one round spans.
    """
    pool = OpponentPool()
    for settlement in settlements:
        pool.population += settlement.population
        pool.military += settlement.military
        for name, amount in settlement.resources.items():
            try:
                pool.resources.add(name, amount * ticks_per_round)
            except GameRuleError:
                continue
        for building_id in settlement.buildings:
            definition = catalog.find(building_id)
            if definition and definition.production:
                amount = definition.production.yield_for(settlement.population)
                pool.resources.add(definition.production.resource, amount * ticks_per_round)
    return pool


def choose_building(
    settlement: Settlement,
    pool: OpponentPool,
    catalog: BuildingCatalog,
    player_present: bool,
) -> str | None:
    """Pick at most one building for a settlement, following a fixed priority order."""
    counts = {b: settlement.building_count(b) for b in set(settlement.buildings)}

    def ok(building_id: str) -> bool:
        if building_id not in catalog or building_id not in settlement.available_buildings:
            return False
        limit = settlement.building_limits.get(building_id, catalog.get(building_id).max_count)
        if counts.get(building_id, 0) >= limit:
            return False
        return catalog.can_afford(building_id, pool.resources)

    priorities = [
        (counts.get("farm", 0) == 0, "farm"),
        (counts.get("logging_camp", 0) == 0, "logging_camp"),
        (counts.get("house", 0) == 0, "house"),
        (player_present and counts.get("barracks", 0) == 0, "barracks"),
    ]
    for wanted, building_id in priorities:
        if wanted and ok(building_id):
            return building_id

    # Stock-driven additions once the basics exist
    secondary = [
        (pool.resources.food < LOW_STOCK and counts.get("farm", 0) < MAX_FARMS, "farm"),
        (pool.resources.wood < LOW_STOCK and counts.get("logging_camp", 0) < MAX_LOGGING_CAMPS, "logging_camp"),
        (player_present and counts.get("barracks", 0) < MAX_BARRACKS, "barracks"),
        (settlement.population < settlement.max_population * 0.5 and counts.get("house", 0) < MAX_HOUSES, "house"),
        (counts.get("gold_mine", 0) == 0, "gold_mine"),
    ]
    for wanted, building_id in secondary:
        if wanted and ok(building_id):
            return building_id
    return None


class Opponent:
    """Runs decision rounds for the enemy owner."""

    def __init__(self, store, catalog: BuildingCatalog, transfers, ticks_per_round: float = 10.0):
        self.store = store
        self.catalog = catalog
        self.transfers = transfers
        self.ticks_per_round = ticks_per_round
        self.rounds = 0

    def decide(self) -> list[GameEvent]:
        """One decision round. Returns feed events (transfer starts); never raises."""
        self.rounds += 1
        try:
            return self._decide()
        except Exception:
            logger.exception("opponent_round_failed", round=self.rounds)
            return []

    def _partition(self):
        settlements = self.store.list()
        mine = [s for s in settlements if s.owner == OWNER_ENEMY]
        neutral = [s for s in settlements if s.owner == OWNER_NEUTRAL]
        player = [s for s in settlements if s.owner == OWNER_PLAYER]
        return mine, neutral, player

    def _decide(self) -> list[GameEvent]:
        mine, neutral, player = self._partition()
        if not mine:
            logger.debug("opponent_idle", round=self.rounds)
            return []

        self._upkeep(mine)
        mine, neutral, player = self._partition()
        pool = compute_pool(mine, self.catalog, self.ticks_per_round)
        logger.info(
            "opponent_status",
            round=self.rounds,
            settlements=len(mine),
            military=pool.military,
            resources=pool.resources.to_dict(),
        )

        for settlement in mine:
            building_id = choose_building(settlement, pool, self.catalog, bool(player))
            if building_id:
                self._build(settlement, building_id, pool)

        out: list[GameEvent] = []
        if pool.military > ANNEX_MILITARY_THRESHOLD and neutral:
            self._annex(neutral[0], pool)

        mine, neutral, player = self._partition()
        military = sum(s.military for s in mine)
        if military > ATTACK_MILITARY_THRESHOLD and player:
            event = self._attack(player[0], mine, military)
            if event:
                out.append(event)
        return out

    def _upkeep(self, mine: list[Settlement]) -> None:
        """Grow population from housing and train troops in barracks."""
        for settlement in mine:
            updates = {}
            population = settlement.population
            growth = self.catalog.growth(settlement.buildings) * self.ticks_per_round
            if growth > 0 and population < settlement.max_population:
                population = min(population + growth, settlement.max_population)
                updates["population"] = population
            trained = 0.0
            for building_id in settlement.buildings:
                definition = self.catalog.find(building_id)
                if definition and definition.military:
                    trained += definition.military.production
            if trained > 0:
                free = population - settlement.military
                trained = max(0.0, min(trained, math.floor(free)))
                if trained:
                    updates["military"] = settlement.military + trained
            if updates:
                self.store.update(settlement.id, updates)

    def _build(self, settlement: Settlement, building_id: str, pool: OpponentPool) -> None:
        cost = self.catalog.cost(building_id)
        if self.store.update(settlement.id, {"buildings": settlement.buildings + [building_id]}) is None:
            logger.warning("opponent_build_rejected", settlement=settlement.name, building=building_id)
            return
        for resource, amount in cost.items():
            pool.resources.add(resource, -amount)
        logger.info("opponent_built", settlement=settlement.name, building=building_id)

    def _annex(self, target: Settlement, pool: OpponentPool) -> None:
        influence = pool.resources.get(ResourceType.INFLUENCE)
        if influence >= influence_capture_cost(target.max_population):
            plan = plan_capture(target, OWNER_ENEMY, METHOD_INFLUENCE, available=influence)
            pool.resources.add(ResourceType.INFLUENCE, -plan.cost)
        else:
            try:
                plan = plan_capture(target, OWNER_ENEMY, METHOD_MILITARY, available=pool.military)
            except GameRuleError as e:
                logger.debug("opponent_annex_skipped", target=target.name, reason=e.message)
                return
            mine = [s for s in self.store.list() if s.owner == OWNER_ENEMY]
            for settlement_id, military in debit_proportionally(mine, plan.cost).items():
                self.store.update(settlement_id, {"military": military})
            pool.military -= plan.cost
        self.store.update(target.id, plan.updates)
        logger.info("opponent_annexed", target=target.name, method=plan.method, cost=plan.cost)

    def _attack(self, target: Settlement, mine: list[Settlement], military: float) -> GameEvent | None:
        if military <= target.max_population / ATTACK_GARRISON_RATIO:
            return None
        strength = math.floor(military * ATTACK_COMMITMENT)
        if strength <= 0:
            return None
        staging = max(mine, key=lambda s: s.military)
        remaining = debit_proportionally(mine, strength)
        # Committed troops gather at the staging settlement, then march from there
        for settlement_id, value in remaining.items():
            if settlement_id == staging.id:
                value += strength
            self.store.update(settlement_id, {"military": value})
        transfer, event = self.transfers.dispatch(staging.id, target.id, strength, OWNER_ENEMY)
        logger.info("opponent_attack", target=target.name, origin=staging.name, strength=strength, transfer_id=transfer.id)
        return event
