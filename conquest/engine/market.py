"""
Market engine.
Open buy/sell listings per resource, settled against the shared aggregate resource pool.
Escrow is taken when a player listing is created and released on fill or cancel.
Synthetic ("ai") listings provide liquidity and are refreshed by a periodic sweep.
"""

import itertools
import random
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable

import structlog

from conquest.engine.errors import (
    InsufficientResourcesError,
    NotFoundError,
    OwnershipError,
    PersistenceError,
    ValidationError,
)
from conquest.engine.state import GameState, Listing, PricePoint, ResourceType, Transaction

logger = structlog.get_logger(__name__)

MARKET_PLAYER = "player"
MARKET_AI = "ai"
SIDE_BUY = "buy"
SIDE_SELL = "sell"
SIDES = (SIDE_BUY, SIDE_SELL)

TRADABLE_RESOURCES = (
    ResourceType.FOOD,
    ResourceType.WOOD,
    ResourceType.OIL,
    ResourceType.METAL,
    ResourceType.STEEL,
    ResourceType.WEAPONS,
)
BASE_PRICES = {
    ResourceType.FOOD: 2.0,
    ResourceType.WOOD: 3.0,
    ResourceType.OIL: 5.0,
    ResourceType.METAL: 7.0,
    ResourceType.STEEL: 12.0,
    ResourceType.WEAPONS: 20.0,
}

PRICE_HISTORY_LIMIT = 100
SYNTHETIC_MAX_AGE_SECONDS = 24 * 60 * 60
SYNTHETIC_MIN_LISTINGS = 5
SELL_PRICE_SPREAD = 0.2  # synthetic asks within base +/- 20%
BUY_PRICE_DISCOUNT = 0.3  # synthetic bids within base -0..30%


def parse_tradable(resource) -> ResourceType:
    rt = ResourceType.parse(resource)
    if rt not in TRADABLE_RESOURCES:
        raise ValidationError(f"Resource {rt.value} cannot be traded")
    return rt


class Market:
    """Order book, transaction log and price history for one session."""

    def __init__(self, store, rng: random.Random | None = None, clock: Callable[[], float] = time.time):
        self.store = store
        self.rng = rng or random.Random()
        self.clock = clock
        self.listings: list[Listing] = []
        self.transactions: list[Transaction] = []
        self.price_history: dict[ResourceType, deque[PricePoint]] = {
            rt: deque(maxlen=PRICE_HISTORY_LIMIT) for rt in TRADABLE_RESOURCES
        }
        self._listing_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def _load_state(self) -> GameState:
        state = self.store.get_game_state()
        if state is None:
            raise PersistenceError("Game state is unavailable")
        return state

    def _save_state(self, state: GameState) -> None:
        if not self.store.set_game_state(state):
            raise PersistenceError("Failed to save game state")

    def _record_price(self, resource: ResourceType, price: float) -> None:
        self.price_history[resource].append(PricePoint(timestamp=self.clock(), price=price))

    def _find(self, listing_id: int) -> Listing:
        for listing in self.listings:
            if listing.id == listing_id:
                return listing
        raise NotFoundError(f"Listing {listing_id} not found")

    # ===== Queries =====

    def get_listings(self) -> list[Listing]:
        return list(self.listings)

    def get_transactions(self, limit: int | None = None) -> list[Transaction]:
        if limit is None:
            return list(self.transactions)
        if limit <= 0:
            return []
        return self.transactions[-limit:]

    def get_price_history(self, resource, days: float | None = None) -> list[PricePoint]:
        rt = parse_tradable(resource)
        history = list(self.price_history[rt])
        if not days:
            return history
        cutoff = self.clock() - days * 24 * 60 * 60
        return [p for p in history if p.timestamp >= cutoff]

    # ===== Player actions =====

    def create_listing(self, resource, amount: float, price_per_unit: float, side: str) -> Listing:
        """
        Post a player listing. A sell escrows the resource, a buy escrows amount x price gold.
        Raises ValidationError or InsufficientResourcesError with state unchanged.
        """
        rt = parse_tradable(resource)
        if side not in SIDES:
            raise ValidationError(f"Listing type must be one of {', '.join(SIDES)}")
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        if price_per_unit <= 0:
            raise ValidationError("Price per unit must be positive")

        state = self._load_state()
        if side == SIDE_SELL:
            available = state.resources.get(rt)
            if available < amount:
                raise InsufficientResourcesError(rt.value, amount, available)
            state.resources.add(rt, -amount)
        else:
            total = amount * price_per_unit
            available = state.resources.gold
            if available < total:
                raise InsufficientResourcesError(ResourceType.GOLD.value, total, available)
            state.resources.add(ResourceType.GOLD, -total)
        self._save_state(state)

        listing = Listing(
            id=next(self._listing_ids),
            resource_type=rt,
            amount=amount,
            price_per_unit=price_per_unit,
            side=side,
            created_at=self._now(),
            owner=MARKET_PLAYER,
        )
        self.listings.append(listing)
        self._record_price(rt, price_per_unit)
        logger.info(
            "listing_created",
            listing_id=listing.id,
            resource=rt.value,
            side=side,
            amount=amount,
            price_per_unit=price_per_unit,
        )
        return listing

    def purchase(self, listing_id: int, buyer: str = MARKET_PLAYER) -> Transaction:
        """
        Fill one listing in full. Buying a sell listing pays gold for the resource;
        filling a buy listing delivers the resource for gold.
        """
        listing = self._find(listing_id)
        if listing.owner == buyer:
            raise OwnershipError("Cannot fill your own listing")

        total = listing.total_price
        rt = listing.resource_type
        state = self._load_state()
        if listing.side == SIDE_SELL:
            if state.resources.gold < total:
                raise InsufficientResourcesError(ResourceType.GOLD.value, total, state.resources.gold)
            state.resources.add(ResourceType.GOLD, -total)
            state.resources.add(rt, listing.amount)
        else:
            if state.resources.get(rt) < listing.amount:
                raise InsufficientResourcesError(rt.value, listing.amount, state.resources.get(rt))
            state.resources.add(rt, -listing.amount)
            state.resources.add(ResourceType.GOLD, total)
        self._save_state(state)
        return self._settle(listing, counterparty=buyer)

    def cancel(self, listing_id: int, owner: str = MARKET_PLAYER) -> Listing:
        """Withdraw a listing and refund its escrow in full. Only the owner may cancel."""
        listing = self._find(listing_id)
        if listing.owner != owner:
            raise OwnershipError("Only the listing owner can cancel it")

        state = self._load_state()
        if listing.side == SIDE_SELL:
            state.resources.add(listing.resource_type, listing.amount)
        else:
            state.resources.add(ResourceType.GOLD, listing.total_price)
        self._save_state(state)

        self.listings.remove(listing)
        logger.info("listing_cancelled", listing_id=listing.id, resource=listing.resource_type.value)
        return listing

    def _settle(self, listing: Listing, counterparty: str) -> Transaction:
        """Remove a listing and log its transaction. Balances were already moved."""
        transaction = Transaction(
            id=next(self._transaction_ids),
            listing_id=listing.id,
            resource_type=listing.resource_type,
            amount=listing.amount,
            price_per_unit=listing.price_per_unit,
            total_price=listing.total_price,
            timestamp=self._now(),
            seller=listing.owner if listing.side == SIDE_SELL else counterparty,
            buyer=counterparty if listing.side == SIDE_SELL else listing.owner,
        )
        self.listings.remove(listing)
        self.transactions.append(transaction)
        self._record_price(listing.resource_type, listing.price_per_unit)
        logger.info(
            "listing_filled",
            listing_id=listing.id,
            transaction_id=transaction.id,
            resource=listing.resource_type.value,
            amount=listing.amount,
            total_price=transaction.total_price,
            seller=transaction.seller,
            buyer=transaction.buyer,
        )
        return transaction

    # ===== Synthetic liquidity =====

    def synthetic_count(self) -> int:
        return sum(1 for listing in self.listings if listing.owner != MARKET_PLAYER)

    def create_synthetic_listings(self) -> list[Listing]:
        """One ask and one bid per tradable resource around its base price."""
        created = []
        now = self._now()
        for rt in TRADABLE_RESOURCES:
            base = BASE_PRICES[rt]
            sell_price = round(base * (1 + self.rng.uniform(-SELL_PRICE_SPREAD, SELL_PRICE_SPREAD)), 2)
            buy_price = round(base * (1 - self.rng.uniform(0, BUY_PRICE_DISCOUNT)), 2)
            sell = Listing(
                id=next(self._listing_ids),
                resource_type=rt,
                amount=float(self.rng.randint(5, 14)),
                price_per_unit=sell_price,
                side=SIDE_SELL,
                created_at=now,
                owner=MARKET_AI,
            )
            buy = Listing(
                id=next(self._listing_ids),
                resource_type=rt,
                amount=float(self.rng.randint(10, 24)),
                price_per_unit=buy_price,
                side=SIDE_BUY,
                created_at=now,
                owner=MARKET_AI,
            )
            self.listings.extend([sell, buy])
            self._record_price(rt, (sell_price + buy_price) / 2)
            created.extend([sell, buy])
        logger.info("synthetic_listings_created", count=len(created))
        return created

    def purge_stale(self) -> int:
        """Drop synthetic listings older than a day. Player listings never expire."""
        cutoff = self.clock() - SYNTHETIC_MAX_AGE_SECONDS
        before = len(self.listings)
        self.listings = [
            listing for listing in self.listings
            if listing.owner == MARKET_PLAYER or listing.created_at.timestamp() > cutoff
        ]
        removed = before - len(self.listings)
        if removed:
            logger.info("synthetic_listings_purged", count=removed)
        return removed

    def match_player_listings(self) -> list[Transaction]:
        """
        Fill player listings whose price crosses a synthetic quote on the other side.
        Only the player listing is consumed; the synthetic quote stays on the book.
        """
        filled = []
        for listing in [l for l in self.listings if l.owner == MARKET_PLAYER]:
            quotes = [
                q for q in self.listings
                if q.owner != MARKET_PLAYER and q.resource_type == listing.resource_type and q.side != listing.side
            ]
            if listing.side == SIDE_SELL:
                crosses = any(listing.price_per_unit <= q.price_per_unit for q in quotes)
            else:
                crosses = any(listing.price_per_unit >= q.price_per_unit for q in quotes)
            if not crosses:
                continue

            state = self._load_state()
            if listing.side == SIDE_SELL:
                state.resources.add(ResourceType.GOLD, listing.total_price)
            else:
                state.resources.add(listing.resource_type, listing.amount)
            self._save_state(state)
            filled.append(self._settle(listing, counterparty=MARKET_AI))
        return filled

    def sweep(self) -> list[Transaction]:
        """Maintenance pass: purge, replenish, then match player listings against synthetic quotes."""
        self.purge_stale()
        if self.synthetic_count() < SYNTHETIC_MIN_LISTINGS:
            self.create_synthetic_listings()
        return self.match_player_listings()

    def reset(self) -> None:
        self.listings.clear()
        self.transactions.clear()
        for history in self.price_history.values():
            history.clear()
