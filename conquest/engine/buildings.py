"""
Building catalog.
One canonical definition per building id, loaded from data/buildings.json.
Effects are explicit optional sub-records; a building without production has production=None.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from conquest.engine.errors import ValidationError
from conquest.engine.state import Resources, ResourceType

DATA_DIR = Path(__file__).parent.parent / "data"

# How required workers are counted for a settlement
WORKER_MODEL_BUILDING_COUNT = "building_count"  # one worker slot per building
WORKER_MODEL_DECLARED = "declared"  # sum of each building's declared workers
WORKER_MODELS = (WORKER_MODEL_BUILDING_COUNT, WORKER_MODEL_DECLARED)


@dataclass(frozen=True)
class ProductionRule:
    """Per-tick yield of one resource."""
    resource: ResourceType
    amount: float
    # Scale the yield by population / 100 (farms feed proportionally to who works them)
    per_100_population: bool = False

    def yield_for(self, population: float) -> float:
        if self.per_100_population:
            return self.amount * population / 100
        return self.amount


@dataclass(frozen=True)
class PopulationEffect:
    housing: int = 0
    growth: float = 0.0  # population added per tick


@dataclass(frozen=True)
class MilitaryEffect:
    production: float = 0.0  # troops trained per round
    population_use: float = 0.0  # population consumed per troop


@dataclass(frozen=True)
class BuildingDefinition:
    """Defines immutable properties of a building type."""
    id: str
    display_name: str
    cost: dict[str, float]  # e.g., {"wood": 10, "gold": 5}
    workers: int = 0
    max_count: int = 1
    production: Optional[ProductionRule] = None
    # Inputs converted into production each tick (e.g., {"metal": 1} for steel)
    consumption: dict[str, float] = field(default_factory=dict)
    population: Optional[PopulationEffect] = None
    military: Optional[MilitaryEffect] = None
    satisfaction_bonus: float = 0.0

    @property
    def is_conversion(self) -> bool:
        return self.production is not None and bool(self.consumption)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.display_name,
            "cost": dict(self.cost),
            "workers": self.workers,
            "maxCount": self.max_count,
            "satisfactionBonus": self.satisfaction_bonus,
        }
        if self.production:
            out["production"] = {
                "type": self.production.resource.value,
                "amount": self.production.amount,
                "per100Population": self.production.per_100_population,
            }
        if self.consumption:
            out["consumption"] = dict(self.consumption)
        if self.population:
            out["population"] = {"housing": self.population.housing, "growth": self.population.growth}
        if self.military:
            out["military"] = {
                "production": self.military.production,
                "populationUse": self.military.population_use,
            }
        return out


def _parse_cost(raw: dict[str, Any], building_id: str) -> dict[str, float]:
    cost = {}
    for resource, amount in (raw or {}).items():
        try:
            cost[ResourceType.parse(resource).value] = float(amount)
        except ValidationError:
            raise ValueError(f"Building {building_id}: unknown resource in cost: {resource}") from None
    return cost


def building_from_dict(data: dict[str, Any]) -> BuildingDefinition:
    building_id = data["id"]
    production = None
    if data.get("production"):
        p = data["production"]
        production = ProductionRule(
            resource=ResourceType.parse(p["resource"]),
            amount=float(p["amount"]),
            per_100_population=bool(p.get("per_100_population", False)),
        )
    population = None
    if data.get("population"):
        population = PopulationEffect(
            housing=int(data["population"].get("housing", 0)),
            growth=float(data["population"].get("growth", 0.0)),
        )
    military = None
    if data.get("military"):
        military = MilitaryEffect(
            production=float(data["military"].get("production", 0.0)),
            population_use=float(data["military"].get("population_use", 0.0)),
        )
    return BuildingDefinition(
        id=building_id,
        display_name=data.get("display_name", building_id),
        cost=_parse_cost(data.get("cost"), building_id),
        workers=int(data.get("workers", 0)),
        max_count=int(data.get("max_count", 1)),
        production=production,
        consumption=_parse_cost(data.get("consumption"), building_id),
        population=population,
        military=military,
        satisfaction_bonus=float(data.get("satisfaction_bonus", 0.0)),
    )


class BuildingCatalog:
    """Lookup over building definitions. Immutable after load."""

    def __init__(self, definitions: dict[str, BuildingDefinition]):
        self._definitions = dict(definitions)

    def __contains__(self, building_id: str) -> bool:
        return building_id in self._definitions

    def __iter__(self):
        return iter(self._definitions.values())

    def ids(self) -> list[str]:
        return list(self._definitions)

    def find(self, building_id: str) -> BuildingDefinition | None:
        return self._definitions.get(building_id)

    def get(self, building_id: str) -> BuildingDefinition:
        definition = self._definitions.get(building_id)
        if definition is None:
            raise ValidationError(f"Unknown building: {building_id}")
        return definition

    def cost(self, building_id: str) -> dict[str, float]:
        return dict(self.get(building_id).cost)

    def default_limits(self) -> dict[str, int]:
        return {d.id: d.max_count for d in self._definitions.values()}

    def can_afford(self, building_id: str, resources: Resources) -> bool:
        return resources.covers(self.get(building_id).cost)

    def required_workers(self, buildings: list[str], model: str = WORKER_MODEL_BUILDING_COUNT) -> int:
        """
        Workers a settlement needs to run its buildings.
        building_count: one per building (unknown ids included).
        declared: sum of declared workers; unknown ids count zero.
        """
        if model == WORKER_MODEL_BUILDING_COUNT:
            return len(buildings)
        if model == WORKER_MODEL_DECLARED:
            total = 0
            for building_id in buildings:
                definition = self._definitions.get(building_id)
                if definition:
                    total += definition.workers
            return total
        raise ValidationError(f"Unknown worker model: {model}")

    def growth(self, buildings: list[str]) -> float:
        """Sum of population growth of the constructed buildings."""
        total = 0.0
        for building_id in buildings:
            definition = self._definitions.get(building_id)
            if definition and definition.population:
                total += definition.population.growth
        return total

    def to_dict(self) -> dict[str, Any]:
        return {d.id: d.to_dict() for d in self._definitions.values()}


def load_catalog(path: Path | str | None = None) -> BuildingCatalog:
    """Load the building catalog from JSON (defaults to data/buildings.json)."""
    path = Path(path) if path is not None else DATA_DIR / "buildings.json"
    with open(path, "r") as f:
        raw = json.load(f)
    definitions = {}
    for building_id, data in raw.items():
        definitions[building_id] = building_from_dict(data)
    return BuildingCatalog(definitions)
