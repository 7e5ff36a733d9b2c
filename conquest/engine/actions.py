"""
Player actions against the settlement store: build, set tax rate, capture.
Each action validates first and raises a GameRuleError with nothing changed,
or applies all of its effects.
"""

import structlog

from conquest.engine import OWNER_NEUTRAL, OWNER_PLAYER, TAX_RATE_MAX, TAX_RATE_MIN
from conquest.engine.buildings import BuildingCatalog
from conquest.engine.capture import METHOD_CAPITAL, METHOD_INFLUENCE, METHOD_MILITARY, plan_capture
from conquest.engine.errors import (
    InsufficientResourcesError,
    NotFoundError,
    OwnershipError,
    PersistenceError,
    ValidationError,
)
from conquest.engine.state import GameState, ResourceType, Settlement

logger = structlog.get_logger(__name__)

# Limit assumed for a building id missing from a settlement's limits map
UNLISTED_BUILDING_LIMIT = 999


class PlayerActions:
    def __init__(self, store, catalog: BuildingCatalog):
        self.store = store
        self.catalog = catalog

    def _settlement(self, settlement_id: int) -> Settlement:
        settlement = self.store.get(settlement_id)
        if settlement is None:
            raise NotFoundError(f"City {settlement_id} not found")
        return settlement

    def _game_state(self) -> GameState:
        state = self.store.get_game_state()
        if state is None:
            raise PersistenceError("Game state is unavailable")
        return state

    def _save(self, state: GameState) -> None:
        if not self.store.set_game_state(state):
            raise PersistenceError("Failed to save game state")

    def build(self, settlement_id: int, building_id: str) -> Settlement:
        settlement = self._settlement(settlement_id)
        if settlement.owner != OWNER_PLAYER:
            raise OwnershipError(f"You do not own {settlement.name}")
        definition = self.catalog.get(building_id)
        if building_id not in settlement.available_buildings:
            raise ValidationError(f"{definition.display_name} cannot be built in {settlement.name}")
        limit = settlement.building_limits.get(building_id, UNLISTED_BUILDING_LIMIT)
        count = settlement.building_count(building_id)
        if count >= limit:
            raise ValidationError(
                f"Building limit reached for {definition.display_name} ({count}/{limit})",
                limit=limit,
                count=count,
            )

        state = self._game_state()
        for resource, amount in definition.cost.items():
            available = state.resources.get(resource)
            if available < amount:
                raise InsufficientResourcesError(resource, amount, available)
        previous = state.copy()
        for resource, amount in definition.cost.items():
            state.resources.add(resource, -amount)
        self._save(state)

        updated = self.store.update(settlement_id, {"buildings": settlement.buildings + [building_id]})
        if updated is None:
            self.store.set_game_state(previous)
            raise ValidationError(f"Could not add {definition.display_name} to {settlement.name}")
        logger.info("building_constructed", settlement=settlement.name, building=building_id, cost=definition.cost)
        return updated

    def set_tax_rate(self, settlement_id: int, tax_rate) -> Settlement:
        if isinstance(tax_rate, bool) or not isinstance(tax_rate, int):
            raise ValidationError("Tax rate must be an integer")
        if not TAX_RATE_MIN <= tax_rate <= TAX_RATE_MAX:
            raise ValidationError(f"Tax rate must be between {TAX_RATE_MIN} and {TAX_RATE_MAX}")
        settlement = self._settlement(settlement_id)
        if settlement.owner != OWNER_PLAYER:
            raise OwnershipError(f"You do not own {settlement.name}")
        updated = self.store.update(settlement_id, {"tax_rate": tax_rate})
        if updated is None:
            raise PersistenceError(f"Could not update {settlement.name}")
        logger.info("tax_rate_changed", settlement=settlement.name, tax_rate=tax_rate)
        return updated

    def capture(self, settlement_id: int, method: str | None = None, is_capital: bool = False) -> tuple[Settlement, int]:
        """
        Take a settlement for the player. Returns (settlement, cost paid).
        is_capital selects the free first claim; otherwise method is military or influence.
        """
        target = self._settlement(settlement_id)
        if is_capital:
            method = METHOD_CAPITAL
        elif method is None:
            method = METHOD_MILITARY
        owned = [s for s in self.store.list() if s.owner == OWNER_PLAYER]
        state = self._game_state()

        if method == METHOD_INFLUENCE:
            available = state.resources.influence
        elif method == METHOD_MILITARY:
            available = state.military
        else:
            available = 0.0
        try:
            plan = plan_capture(target, OWNER_PLAYER, method, available=available, owned_count=len(owned))
        except (ValidationError, InsufficientResourcesError) as e:
            logger.info("capture_rejected", settlement=target.name, method=method, reason=e.message)
            raise

        previous = state.copy()
        if plan.resource == "military":
            state.military -= plan.cost
        elif plan.resource == "influence":
            state.resources.add(ResourceType.INFLUENCE, -plan.cost)
        if plan.cost:
            self._save(state)

        updated = self.store.update(settlement_id, plan.updates)
        if updated is None:
            if plan.cost:
                self.store.set_game_state(previous)
            raise PersistenceError(f"Could not capture {target.name}")
        logger.info("settlement_captured", settlement=target.name, method=method, cost=plan.cost)
        return updated, plan.cost

    def capture_region(self, settlement_id: int, method: str, military_amount: float | None = None) -> tuple[Settlement, float]:
        """
        Take a neutral region and, for a military capture, station the committed troops there.
        The committed amount must cover the capture cost and becomes the region's garrison.
        """
        target = self._settlement(settlement_id)
        if target.owner != OWNER_NEUTRAL:
            raise ValidationError("Only neutral territory can be captured this way")
        if method == METHOD_INFLUENCE:
            return self.capture(settlement_id, METHOD_INFLUENCE)
        if method != METHOD_MILITARY:
            raise ValidationError(f"Unknown capture method: {method}")
        if military_amount is None or isinstance(military_amount, bool) or military_amount <= 0:
            raise ValidationError("A positive military amount is required")

        state = self._game_state()
        if state.military < military_amount:
            raise InsufficientResourcesError("military", military_amount, state.military)
        plan = plan_capture(target, OWNER_PLAYER, METHOD_MILITARY, available=military_amount)

        previous = state.copy()
        state.military -= military_amount
        self._save(state)
        updated = self.store.update(settlement_id, {**plan.updates, "military": military_amount})
        if updated is None:
            self.store.set_game_state(previous)
            raise PersistenceError(f"Could not capture {target.name}")
        logger.info("region_captured", settlement=target.name, garrison=military_amount)
        return updated, military_amount
