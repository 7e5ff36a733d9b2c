"""
Tick simulation.
compute_tick is pure: it takes settlements and the aggregate game state and returns
what changes. SimulationEngine applies a TickResult through the store and resolves
army arrivals that fell due.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from conquest.engine import (
    OWNER_PLAYER,
    RESOURCE_PRECISION,
    SATISFACTION_MAX,
    SATISFACTION_MIN,
)
from conquest.engine import events
from conquest.engine.buildings import BuildingCatalog, WORKER_MODEL_BUILDING_COUNT
from conquest.engine.events import GameEvent
from conquest.engine.state import GameState, Resources, ResourceType, Settlement

logger = structlog.get_logger(__name__)

# Satisfaction dynamics (per tick)
BASE_SATISFACTION_GAIN = 0.5
WORKER_SHORTAGE_PENALTY = 5.0
HIGH_TAX_PENALTY_PER_POINT = 0.2
LOW_TAX_BONUS_PER_POINT = 0.1
NEUTRAL_TAX_RATE = 5
SATISFACTION_NOISE_FLOOR = 0.01

# Economy
SUBSIDY_PER_CAPITA = 0.5  # gold paid per inhabitant when the tax rate is 0
FOOD_PER_CAPITA = 0.1
INFLUENCE_SATISFACTION_THRESHOLD = 70.0
INFLUENCE_PER_SATISFACTION_POINT = 0.05

# Unrest
PROTEST_SATISFACTION_THRESHOLD = 20.0
PROTEST_DURATION_SECONDS = 60.0

MAX_MILITARY_PER_TICK = 1.0


def tax_income(population: float, tax_rate: int) -> float:
    """Gold from one settlement this tick. A zero rate subsidizes the population instead."""
    if tax_rate == 0:
        return -population * SUBSIDY_PER_CAPITA
    return population * (tax_rate / NEUTRAL_TAX_RATE)


def tax_satisfaction_effect(tax_rate: int) -> float:
    if tax_rate > NEUTRAL_TAX_RATE:
        return -(tax_rate - NEUTRAL_TAX_RATE) * HIGH_TAX_PENALTY_PER_POINT
    if tax_rate < NEUTRAL_TAX_RATE:
        return (NEUTRAL_TAX_RATE - tax_rate) * LOW_TAX_BONUS_PER_POINT
    return 0.0


def lacks_workers(settlement: Settlement, catalog: BuildingCatalog, worker_model: str) -> bool:
    required = catalog.required_workers(settlement.buildings, worker_model)
    return required > 0 and settlement.population - required < 0


def satisfaction_delta(settlement: Settlement, catalog: BuildingCatalog, worker_model: str) -> float:
    """Per-tick satisfaction change for a populated settlement."""
    if lacks_workers(settlement, catalog, worker_model):
        delta = -WORKER_SHORTAGE_PENALTY
    else:
        delta = BASE_SATISFACTION_GAIN
    return delta + tax_satisfaction_effect(settlement.tax_rate)


def satisfaction_factors(
    settlement: Settlement,
    game_state: GameState,
    catalog: BuildingCatalog,
    worker_model: str = WORKER_MODEL_BUILDING_COUNT,
) -> list[dict[str, Any]]:
    """
    Explain a settlement's per-tick satisfaction change.
    Each factor: {"name", "impact" (per tick), "isPositive", "isWarning"}.
    Impacts of non-warning factors sum to the delta the tick applies.
    """
    factors = []
    if settlement.population <= 0:
        factors.append({"name": "No population", "impact": 0.0, "isPositive": False, "isWarning": True})
        return factors

    required = catalog.required_workers(settlement.buildings, worker_model)
    if required > 0 and settlement.population - required < 0:
        factors.append({
            "name": "Worker shortage",
            "impact": -WORKER_SHORTAGE_PENALTY,
            "isPositive": False,
            "isWarning": False,
            "requiredWorkers": required,
            "availableWorkers": settlement.population - required,
        })
    else:
        factors.append({"name": "Base growth", "impact": BASE_SATISFACTION_GAIN, "isPositive": True, "isWarning": False})

    tax_effect = tax_satisfaction_effect(settlement.tax_rate)
    if tax_effect:
        factors.append({
            "name": "Tax rate",
            "impact": round(tax_effect, 2),
            "isPositive": tax_effect > 0,
            "isWarning": False,
        })

    food_needed = settlement.population * FOOD_PER_CAPITA
    if game_state.resources.food < food_needed:
        factors.append({"name": "Food shortage", "impact": 0.0, "isPositive": False, "isWarning": True})

    if settlement.protest_timer is not None:
        factors.append({
            "name": "Protests",
            "impact": 0.0,
            "isPositive": False,
            "isWarning": True,
            "secondsLeft": int(settlement.protest_timer),
        })
    return factors


def next_protest_timer(current: float | None, satisfaction: float, tick_seconds: float) -> float | None:
    """Start, run down or clear the protest countdown for the new satisfaction value."""
    if satisfaction >= PROTEST_SATISFACTION_THRESHOLD:
        return None
    if current is None:
        return PROTEST_DURATION_SECONDS
    return max(0.0, current - tick_seconds)


@dataclass
class SettlementReport:
    """What the tick did to one settlement; used for logging and the admin feed."""
    id: int
    name: str
    skipped: bool = False
    lacks_workers: bool = False
    protesting: bool = False
    required_workers: int = 0
    satisfaction_delta: float = 0.0
    produced: dict[str, float] = field(default_factory=dict)


@dataclass
class TickResult:
    # settlement id -> attribute updates to merge through the store
    updates: dict[int, dict[str, Any]]
    game_state: GameState
    produced: dict[str, float] = field(default_factory=dict)
    consumed: dict[str, float] = field(default_factory=dict)
    reports: list[SettlementReport] = field(default_factory=list)
    idle: bool = False  # no player settlements


def _add(bucket: dict[str, float], resource: ResourceType, amount: float) -> None:
    bucket[resource.value] = bucket.get(resource.value, 0.0) + amount


def _produce(
    settlement: Settlement,
    catalog: BuildingCatalog,
    stock: Resources,
    delta: Resources,
    produced: dict[str, float],
    consumed: dict[str, float],
) -> dict[str, float]:
    """Run every building's production for one settlement into delta. Returns this settlement's yield."""
    local: dict[str, float] = {}
    for building_id in settlement.buildings:
        definition = catalog.find(building_id)
        if definition is None or definition.production is None:
            continue
        rule = definition.production
        if definition.is_conversion:
            # Conversion: only when every input is on hand (stock plus what was produced so far)
            if not all(stock.get(r) + delta.get(r) >= amount for r, amount in definition.consumption.items()):
                continue
            for r, amount in definition.consumption.items():
                delta.add(r, -amount)
                _add(consumed, ResourceType(r), amount)
        amount = rule.yield_for(settlement.population)
        delta.add(rule.resource, amount)
        _add(produced, rule.resource, amount)
        local[rule.resource.value] = local.get(rule.resource.value, 0.0) + amount
    return local


def compute_tick(
    settlements: list[Settlement],
    game_state: GameState,
    catalog: BuildingCatalog,
    worker_model: str = WORKER_MODEL_BUILDING_COUNT,
    tick_seconds: float = 1.0,
) -> TickResult:
    """
    Advance the economy by one tick for player-owned settlements.

    Order: tax, satisfaction, production, influence bonus, food balance,
    population growth, military conversion. Stocks are floored at zero and
    rounded to RESOURCE_PRECISION.

    Args:
        settlements: Current settlements (not mutated)
        game_state: Current aggregate state (not mutated)
        catalog: Building catalog
        worker_model: How required workers are counted
        tick_seconds: Tick length, used by protest countdowns

    Returns:
        TickResult with per-settlement updates and the new game state
    """
    owned = [s for s in settlements if s.owner == OWNER_PLAYER]
    if not owned:
        return TickResult(updates={}, game_state=game_state.copy(), idle=True)

    stock = game_state.resources
    delta = Resources()
    produced: dict[str, float] = {}
    consumed: dict[str, float] = {}
    updates: dict[int, dict[str, Any]] = {}
    reports: list[SettlementReport] = []
    total_population = 0.0

    for settlement in owned:
        report = SettlementReport(id=settlement.id, name=settlement.name)
        reports.append(report)
        changes: dict[str, Any] = {}
        total_population += settlement.population

        delta.add(ResourceType.GOLD, tax_income(settlement.population, settlement.tax_rate))

        if settlement.population <= 0:
            report.skipped = True
            continue

        report.required_workers = catalog.required_workers(settlement.buildings, worker_model)
        report.lacks_workers = lacks_workers(settlement, catalog, worker_model)
        report.protesting = settlement.protest_timer is not None

        change = satisfaction_delta(settlement, catalog, worker_model)
        new_satisfaction = max(SATISFACTION_MIN, min(SATISFACTION_MAX, settlement.satisfaction + change))
        report.satisfaction_delta = new_satisfaction - settlement.satisfaction
        if abs(new_satisfaction - settlement.satisfaction) > SATISFACTION_NOISE_FLOOR:
            changes["satisfaction"] = new_satisfaction

        timer = next_protest_timer(settlement.protest_timer, new_satisfaction, tick_seconds)
        if timer != settlement.protest_timer:
            changes["protest_timer"] = timer

        if not report.lacks_workers:
            report.produced = _produce(settlement, catalog, stock, delta, produced, consumed)

        # Bonus uses the satisfaction the settlement entered the tick with
        if settlement.satisfaction > INFLUENCE_SATISFACTION_THRESHOLD:
            bonus = (settlement.satisfaction - INFLUENCE_SATISFACTION_THRESHOLD) * INFLUENCE_PER_SATISFACTION_POINT
            delta.add(ResourceType.INFLUENCE, bonus)
            _add(produced, ResourceType.INFLUENCE, bonus)

        if changes:
            updates[settlement.id] = changes

    food_consumption = total_population * FOOD_PER_CAPITA
    delta.add(ResourceType.FOOD, -food_consumption)
    if food_consumption:
        _add(consumed, ResourceType.FOOD, food_consumption)

    merged = Resources(**{r.value: stock.get(r) + delta.get(r) for r in ResourceType})
    resources = merged.clamped()

    aggregate_population = 0.0
    for settlement in owned:
        population = settlement.population
        growth = catalog.growth(settlement.buildings)
        if resources.food > 0 and population < settlement.max_population and growth > 0:
            population = min(population + growth, settlement.max_population)
            updates.setdefault(settlement.id, {})["population"] = population
        aggregate_population += population

    military = game_state.military
    if resources.weapons > 0:
        available = aggregate_population - military
        if available > 0:
            trained = min(MAX_MILITARY_PER_TICK, available, resources.weapons)
            resources.weapons = round(resources.weapons - trained, RESOURCE_PRECISION)
            military += trained

    new_state = GameState(resources=resources, population=aggregate_population, military=military)
    return TickResult(
        updates=updates,
        game_state=new_state,
        produced={k: round(v, RESOURCE_PRECISION) for k, v in produced.items()},
        consumed={k: round(v, RESOURCE_PRECISION) for k, v in consumed.items()},
        reports=reports,
    )


class SimulationEngine:
    """
    Runs ticks against the store. One instance per process, wired at startup.
    tick() returns the feed events to broadcast; it never raises.
    """

    def __init__(self, store, catalog: BuildingCatalog, transfers, worker_model: str = WORKER_MODEL_BUILDING_COUNT,
                 tick_seconds: float = 1.0, clock: Callable[[], float] = time.time):
        self.store = store
        self.catalog = catalog
        self.transfers = transfers
        self.worker_model = worker_model
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.tick_count = 0

    def tick(self) -> list[GameEvent]:
        try:
            return self._tick()
        except Exception:
            logger.exception("tick_failed", tick=self.tick_count)
            return []

    def _tick(self) -> list[GameEvent]:
        self.tick_count += 1
        out: list[GameEvent] = []

        # Army arrivals first, so this tick's economy sees the new owners
        out.extend(self.transfers.resolve_due(self.clock()))

        game_state = self.store.get_game_state()
        if game_state is None:
            logger.error("tick_skipped_no_game_state", tick=self.tick_count)
            return out
        settlements = self.store.list()

        result = compute_tick(settlements, game_state, self.catalog, self.worker_model, self.tick_seconds)
        if result.idle:
            logger.debug("tick_idle", tick=self.tick_count, resources=game_state.resources.to_dict())
        else:
            for report in result.reports:
                if report.skipped:
                    logger.debug("settlement_skipped_no_population", settlement=report.name)
                elif report.lacks_workers:
                    logger.info(
                        "settlement_lacks_workers",
                        settlement=report.name,
                        required_workers=report.required_workers,
                    )
                elif report.protesting:
                    logger.info("settlement_protesting", settlement=report.name)
            # Game state first: if it cannot be saved, settlements stay as they were
            if not self.store.set_game_state(result.game_state):
                logger.error("tick_persist_failed", tick=self.tick_count, settlements_skipped=len(result.updates))
                return out
            for settlement_id, changes in result.updates.items():
                self.store.update(settlement_id, changes)
            logger.debug(
                "tick_completed",
                tick=self.tick_count,
                produced=result.produced,
                consumed=result.consumed,
                population=result.game_state.population,
                military=result.game_state.military,
            )

        out.append(events.game_update(self.store.get_game_state() or result.game_state))
        out.append(events.cities_update(self.store.list()))
        return out
