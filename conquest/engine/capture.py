"""
Territory capture rules.
Pure functions shared by player actions and the opponent: costs, eligibility and
the settlement fields a successful capture writes.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from conquest.engine import OWNER_NEUTRAL
from conquest.engine.errors import InsufficientResourcesError, ValidationError
from conquest.engine.state import Settlement

METHOD_CAPITAL = "capital"
METHOD_MILITARY = "military"
METHOD_INFLUENCE = "influence"
METHODS = (METHOD_CAPITAL, METHOD_MILITARY, METHOD_INFLUENCE)

INFLUENCE_COST_RATIO = 0.2
INFLUENCE_COST_CAP = 100
INFLUENCE_COST_FALLBACK = 30  # when max population is unknown
MILITARY_COST_DIVISOR = 4

MILITARY_CAPTURE_SATISFACTION = 50.0
INFLUENCE_CAPTURE_SATISFACTION = 75.0


def military_capture_cost(max_population: int | None) -> int:
    return math.ceil((max_population or 0) / MILITARY_COST_DIVISOR)


def influence_capture_cost(max_population: int | None) -> int:
    if not max_population:
        return INFLUENCE_COST_FALLBACK
    return min(math.ceil(max_population * INFLUENCE_COST_RATIO), INFLUENCE_COST_CAP)


@dataclass
class CapturePlan:
    """A validated capture: what to debit and what to write to the settlement."""
    method: str
    resource: str | None  # "military", "influence", or None for a capital claim
    cost: int
    updates: dict[str, Any] = field(default_factory=dict)


def plan_capture(
    target: Settlement,
    claimant: str,
    method: str,
    available: float = 0.0,
    owned_count: int = 0,
) -> CapturePlan:
    """
    Validate a capture attempt and describe its effect. Nothing is mutated.

    Args:
        target: Settlement to take
        claimant: Owner taking it ("player" or "enemy")
        method: capital, military or influence
        available: Claimant's military (military method) or influence (influence method)
        owned_count: Settlements the claimant already owns (capital claims need 0)

    Raises:
        ValidationError: method not allowed for this target
        InsufficientResourcesError: cost not covered (carries required/available)
    """
    if method not in METHODS:
        raise ValidationError(f"Unknown capture method: {method}")
    if target.owner == claimant:
        raise ValidationError(f"{target.name} is already yours")

    if method == METHOD_CAPITAL:
        if owned_count > 0:
            raise ValidationError("A capital can only be chosen before owning any territory")
        return CapturePlan(
            method=method,
            resource=None,
            cost=0,
            updates={"owner": claimant, "population": 0.0, "protest_timer": None},
        )

    if method == METHOD_INFLUENCE:
        if target.owner != OWNER_NEUTRAL:
            raise ValidationError("Influence can only annex neutral territory")
        cost = influence_capture_cost(target.max_population)
        if available < cost:
            raise InsufficientResourcesError(
                "influence", cost, available,
                message=f"Not enough influence to annex {target.name}: need {cost}, have {available}",
            )
        return CapturePlan(
            method=method,
            resource="influence",
            cost=cost,
            updates={
                "owner": claimant,
                "military": 0.0,
                "satisfaction": INFLUENCE_CAPTURE_SATISFACTION,
                "protest_timer": None,
            },
        )

    cost = military_capture_cost(target.max_population)
    if available < cost:
        raise InsufficientResourcesError(
            "military", cost, available,
            message=f"Not enough military to capture {target.name}: need {cost}, have {available}",
        )
    return CapturePlan(
        method=method,
        resource="military",
        cost=cost,
        updates={
            "owner": claimant,
            "population": 0.0,
            "satisfaction": MILITARY_CAPTURE_SATISFACTION,
            "protest_timer": None,
        },
    )


def debit_proportionally(settlements: list[Settlement], amount: float) -> dict[int, float]:
    """
    Spread a troop cost over settlements in proportion to their garrisons.
    Returns settlement id -> new military. Rounding remainder is taken from the largest garrisons.
    """
    total = sum(s.military for s in settlements)
    if amount <= 0 or total <= 0:
        return {}
    amount = min(amount, total)
    new_military: dict[int, float] = {}
    taken = 0.0
    for s in settlements:
        share = math.floor(amount * s.military / total)
        new_military[s.id] = s.military - share
        taken += share
    remainder = amount - taken
    for s in sorted(settlements, key=lambda x: new_military[x.id], reverse=True):
        if remainder <= 0:
            break
        step = min(remainder, new_military[s.id])
        new_military[s.id] -= step
        remainder -= step
    return {sid: m for sid, m in new_military.items()}
