"""
Game state representation.
Settlements, the aggregate game state, market records and in-flight army transfers.
Includes JSON serialization (camelCase keys, the wire format viewers consume).
"""

from copy import deepcopy
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from conquest.engine import (
    DEFAULT_TAX_RATE,
    OWNER_NEUTRAL,
    RESOURCE_PRECISION,
)
from conquest.engine.errors import ValidationError


class ResourceType(str, Enum):
    """Closed set of resource kinds held in the aggregate pool."""
    GOLD = "gold"
    WOOD = "wood"
    FOOD = "food"
    OIL = "oil"
    METAL = "metal"
    STEEL = "steel"
    WEAPONS = "weapons"
    INFLUENCE = "influence"

    @classmethod
    def parse(cls, value: Any) -> "ResourceType":
        """Resolve a resource name, rejecting anything outside the enumeration."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise ValidationError(f"Unknown resource: {value}") from None


@dataclass
class Resources:
    """Fixed record of resource quantities. Stocks are conceptually non-negative."""
    gold: float = 0.0
    wood: float = 0.0
    food: float = 0.0
    oil: float = 0.0
    metal: float = 0.0
    steel: float = 0.0
    weapons: float = 0.0
    influence: float = 0.0

    def get(self, resource: ResourceType | str) -> float:
        return getattr(self, ResourceType.parse(resource).value)

    def set(self, resource: ResourceType | str, amount: float) -> None:
        setattr(self, ResourceType.parse(resource).value, amount)

    def add(self, resource: ResourceType | str, amount: float) -> None:
        rt = ResourceType.parse(resource)
        setattr(self, rt.value, getattr(self, rt.value) + amount)

    def covers(self, cost: dict[str, float]) -> bool:
        """True if every resource in cost is available."""
        return all(self.get(r) >= amount for r, amount in cost.items())

    def clamped(self) -> "Resources":
        """Copy with negatives floored to zero and values rounded to avoid float drift."""
        return Resources(**{
            f.name: round(max(0.0, getattr(self, f.name)), RESOURCE_PRECISION)
            for f in fields(self)
        })

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Resources":
        """Build from a name -> amount map. Unknown names are rejected; missing ones default to 0."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("Resources must be an object of name -> amount")
        values: dict[str, float] = {}
        for key, amount in data.items():
            rt = ResourceType.parse(key)
            try:
                values[rt.value] = float(amount)
            except (TypeError, ValueError):
                raise ValidationError(f"Resource {key} must be numeric, got {amount!r}") from None
        return cls(**values)


@dataclass
class Settlement:
    """A capturable territory (region/city) with population, buildings and an owner."""
    id: int
    name: str
    latitude: float
    longitude: float
    population: float = 0.0
    max_population: int = 0
    owner: str = OWNER_NEUTRAL  # "player", "enemy" or "neutral"
    # Multiset of building ids; duplicates are separate instances
    buildings: list[str] = field(default_factory=list)
    available_buildings: list[str] = field(default_factory=list)
    building_limits: dict[str, int] = field(default_factory=dict)
    military: float = 0.0
    satisfaction: float = 50.0
    tax_rate: int = DEFAULT_TAX_RATE
    # Seconds of unrest left; None when there is no protest
    protest_timer: float | None = None
    # Closed polygon [[lat, lng], ...], supplied by the boundary provider
    boundaries: list[list[float]] = field(default_factory=list)
    # Regional deposits (base yields), used by the opponent's planning
    resources: dict[str, float] = field(default_factory=dict)

    def copy(self) -> "Settlement":
        return deepcopy(self)

    def building_count(self, building_id: str) -> int:
        return sum(1 for b in self.buildings if b == building_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "population": self.population,
            "maxPopulation": self.max_population,
            "owner": self.owner,
            "buildings": list(self.buildings),
            "availableBuildings": list(self.available_buildings),
            "buildingLimits": dict(self.building_limits),
            "military": self.military,
            "satisfaction": self.satisfaction,
            "taxRate": self.tax_rate,
            "protestTimer": self.protest_timer,
            "boundaries": [list(p) for p in self.boundaries],
            "resources": dict(self.resources),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settlement":
        if not isinstance(data, dict):
            data = {}
        limits = data.get("buildingLimits") or {}
        return cls(
            id=int(data.get("id", 0)),
            name=str(data.get("name") or ""),
            latitude=float(data.get("latitude", 0.0)),
            longitude=float(data.get("longitude", 0.0)),
            population=float(data.get("population", 0.0)),
            max_population=int(data.get("maxPopulation", 0)),
            owner=str(data.get("owner") or OWNER_NEUTRAL),
            buildings=[str(b) for b in data.get("buildings") or []],
            available_buildings=[str(b) for b in data.get("availableBuildings") or []],
            building_limits={str(k): int(v) for k, v in limits.items()},
            military=float(data.get("military", 0.0)),
            satisfaction=float(data.get("satisfaction", 50.0)),
            tax_rate=int(data.get("taxRate", DEFAULT_TAX_RATE)),
            protest_timer=data.get("protestTimer"),
            boundaries=[list(p) for p in data.get("boundaries") or []],
            resources={str(k): float(v) for k, v in (data.get("resources") or {}).items()},
        )


# Wire names accepted by partial updates, mapped to Settlement attributes.
SETTLEMENT_FIELD_ALIASES = {
    "maxPopulation": "max_population",
    "availableBuildings": "available_buildings",
    "buildingLimits": "building_limits",
    "taxRate": "tax_rate",
    "protestTimer": "protest_timer",
}
SETTLEMENT_FIELDS = frozenset(f.name for f in fields(Settlement))


def normalize_settlement_fields(updates: dict[str, Any]) -> dict[str, Any]:
    """Translate camelCase keys to attribute names. Raises ValidationError on unknown fields."""
    out = {}
    for key, value in updates.items():
        name = SETTLEMENT_FIELD_ALIASES.get(key, key)
        if name not in SETTLEMENT_FIELDS:
            raise ValidationError(f"Unknown settlement field: {key}")
        out[name] = value
    return out


@dataclass
class GameState:
    """Aggregate state for the session: the player's resource pool, population and army."""
    resources: Resources = field(default_factory=Resources)
    population: float = 0.0
    military: float = 0.0

    def copy(self) -> "GameState":
        return deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resources": self.resources.to_dict(),
            "population": self.population,
            "military": self.military,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameState":
        if not isinstance(data, dict):
            raise ValidationError("Game state must be an object")
        try:
            return cls(
                resources=Resources.from_dict(data.get("resources")),
                population=float(data.get("population", 0.0)),
                military=float(data.get("military", 0.0)),
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Invalid game state: {e}") from None


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat()


@dataclass
class Listing:
    """An open buy or sell order. Escrow was taken from the owner at creation."""
    id: int
    resource_type: ResourceType
    amount: float
    price_per_unit: float
    side: str  # "buy" or "sell"
    created_at: datetime
    owner: str  # "player" or "ai"

    @property
    def total_price(self) -> float:
        return self.amount * self.price_per_unit

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resourceType": self.resource_type.value,
            "amount": self.amount,
            "pricePerUnit": self.price_per_unit,
            "type": self.side,
            "createdAt": _iso(self.created_at),
            "owner": self.owner,
        }


@dataclass
class Transaction:
    """A settled fill of exactly one listing."""
    id: int
    listing_id: int
    resource_type: ResourceType
    amount: float
    price_per_unit: float
    total_price: float
    timestamp: datetime
    seller: str
    buyer: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "listingId": self.listing_id,
            "resourceType": self.resource_type.value,
            "amount": self.amount,
            "pricePerUnit": self.price_per_unit,
            "totalPrice": self.total_price,
            "timestamp": _iso(self.timestamp),
            "seller": self.seller,
            "buyer": self.buyer,
        }


@dataclass
class PricePoint:
    timestamp: float  # epoch seconds
    price: float

    def to_dict(self) -> dict[str, Any]:
        # Milliseconds since epoch, as charting clients expect
        return {"timestamp": int(self.timestamp * 1000), "price": self.price}


@dataclass
class SettlementRef:
    """Snapshot of the settlement fields a transfer needs."""
    id: int
    name: str
    latitude: float
    longitude: float
    owner: str

    @classmethod
    def of(cls, settlement: Settlement) -> "SettlementRef":
        return cls(
            id=settlement.id,
            name=settlement.name,
            latitude=settlement.latitude,
            longitude=settlement.longitude,
            owner=settlement.owner,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass
class ArmyTransfer:
    """Troops in flight. Resolved exactly once when arrival_time is reached."""
    id: int
    from_city: SettlementRef
    to_city: SettlementRef
    amount: float
    start_time: float  # epoch seconds
    arrival_time: float  # epoch seconds
    owner: str

    @property
    def duration(self) -> float:
        return self.arrival_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fromCity": self.from_city.to_dict(),
            "toCity": self.to_city.to_dict(),
            "amount": self.amount,
            "startTime": int(self.start_time * 1000),
            "arrivalTime": int(self.arrival_time * 1000),
            "owner": self.owner,
        }
