"""
Utility functions for the game engine.
"""

import json
import math
from pathlib import Path

from conquest.engine import DEFAULT_TAX_RATE, OWNER_ENEMY, OWNER_NEUTRAL
from conquest.engine.buildings import BuildingCatalog
from conquest.engine.state import GameState, Settlement

DATA_DIR = Path(__file__).parent.parent / "data"
EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def synthetic_boundary(settlement_id: int, latitude: float, longitude: float, points: int = 12) -> list[list[float]]:
    """
    Deterministic fallback polygon around a settlement's anchor.
    Shape varies with the id so neighbouring regions do not look identical.
    Returns a closed ring of [lat, lng] pairs (first point repeated at the end).
    """
    base_delta = 0.05
    shape_offset = (settlement_id % 5) * 0.2
    radius_variation = (settlement_id % 3) * 0.15
    ring = []
    for i in range(points):
        angle = (i / points) * math.pi * 2
        radius = base_delta * (1 + math.sin(angle * (2 + settlement_id % 3)) * radius_variation)
        ring.append([
            latitude + math.sin(angle + shape_offset) * radius,
            longitude + math.cos(angle + shape_offset) * radius,
        ])
    ring.append(list(ring[0]))
    return ring


def load_world(path: Path | str | None = None) -> dict:
    path = Path(path) if path is not None else DATA_DIR / "world.json"
    with open(path, "r") as f:
        return json.load(f)


def initialize_world(
    catalog: BuildingCatalog,
    world: dict | None = None,
    enemy_capital_id: int | None = None,
) -> tuple[list[Settlement], GameState]:
    """
    Create the seed settlements and the starting game state.

    Every region starts neutral with no population, no buildings and the catalog's
    default limits. If enemy_capital_id is given, that region starts owned by the opponent.

    Returns: (settlements, game_state)
    """
    if world is None:
        world = load_world()
    limits = catalog.default_limits()
    settlements = []
    for region in world.get("regions", []):
        settlement_id = int(region["id"])
        latitude = float(region["latitude"])
        longitude = float(region["longitude"])
        settlements.append(Settlement(
            id=settlement_id,
            name=region["name"],
            latitude=latitude,
            longitude=longitude,
            population=0.0,
            max_population=int(region["max_population"]),
            owner=OWNER_NEUTRAL,
            buildings=[],
            available_buildings=list(region.get("available_buildings") or catalog.ids()),
            building_limits=dict(limits),
            military=0.0,
            satisfaction=50.0,
            tax_rate=DEFAULT_TAX_RATE,
            protest_timer=None,
            boundaries=region.get("boundaries") or synthetic_boundary(settlement_id, latitude, longitude),
            resources={k: float(v) for k, v in (region.get("resources") or {}).items()},
        ))
    if enemy_capital_id is not None:
        for settlement in settlements:
            if settlement.id == enemy_capital_id:
                settlement.owner = OWNER_ENEMY
    game_state = GameState.from_dict(world.get("game_state") or {})
    return settlements, game_state
