"""
Army transfers between settlements.
Troops leave the source immediately and arrive after a travel time derived from
great-circle distance. Arrivals are queued by arrival time and resolved once per tick:
same owner reinforces, anything else is an attack.
"""

import itertools
import time
from typing import Callable

import structlog

from conquest.engine import OWNER_NEUTRAL
from conquest.engine import events
from conquest.engine.errors import InsufficientResourcesError, NotFoundError, OwnershipError, ValidationError
from conquest.engine.events import GameEvent
from conquest.engine.state import ArmyTransfer, Settlement, SettlementRef
from conquest.engine.utils import haversine_km

logger = structlog.get_logger(__name__)

DEFAULT_SPEED_KMH = 100.0
DEFAULT_MIN_SECONDS = 5.0
DEFAULT_MAX_SECONDS = 30.0


def travel_seconds(
    origin: Settlement | SettlementRef,
    destination: Settlement | SettlementRef,
    speed_kmh: float = DEFAULT_SPEED_KMH,
    min_seconds: float = DEFAULT_MIN_SECONDS,
    max_seconds: float = DEFAULT_MAX_SECONDS,
) -> float:
    """Travel time in seconds, rounded to the millisecond and clamped to [min_seconds, max_seconds]."""
    km = haversine_km(origin.latitude, origin.longitude, destination.latitude, destination.longitude)
    seconds = round(km / speed_kmh * 3600 * 1000) / 1000
    return min(max(seconds, min_seconds), max_seconds)


def resolve_arrival(transfer: ArmyTransfer, destination: Settlement) -> tuple[str, dict]:
    """
    Outcome of troops reaching a settlement, as (result, field updates).
    The attacker wins only by strictly exceeding the garrison; the surplus becomes the new garrison.
    """
    if destination.owner == transfer.owner:
        return events.TRANSFER_REINFORCED, {"military": destination.military + transfer.amount}
    defense = destination.military
    if transfer.amount > defense:
        updates = {
            "owner": transfer.owner,
            "military": transfer.amount - defense,
            "protest_timer": None,
        }
        if destination.owner == OWNER_NEUTRAL:
            updates["population"] = 0.0
        return events.TRANSFER_CAPTURED, updates
    return events.TRANSFER_FAILED, {"military": defense - transfer.amount}


class TransferService:
    """Dispatches and resolves army transfers. The queue itself lives in the store."""

    def __init__(
        self,
        store,
        speed_kmh: float = DEFAULT_SPEED_KMH,
        min_seconds: float = DEFAULT_MIN_SECONDS,
        max_seconds: float = DEFAULT_MAX_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.speed_kmh = speed_kmh
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self.clock = clock
        self._ids = itertools.count(1)

    def dispatch(self, from_id: int, to_id: int, amount: float, owner: str) -> tuple[ArmyTransfer, GameEvent]:
        """
        Send troops from one settlement to another.
        The source must belong to owner and hold at least amount troops.
        Returns the queued transfer and its MILITARY_TRANSFER_START event.
        """
        if from_id == to_id:
            raise ValidationError("Source and destination must differ")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
            raise ValidationError("Amount must be a positive number")
        origin = self.store.get(from_id)
        destination = self.store.get(to_id)
        if origin is None or destination is None:
            raise NotFoundError("City not found")
        if origin.owner != owner:
            raise OwnershipError(f"You do not own {origin.name}")
        if origin.military < amount:
            raise InsufficientResourcesError(
                "military", amount, origin.military,
                message=f"Insufficient military units in {origin.name}",
            )

        if self.store.update(from_id, {"military": origin.military - amount}) is None:
            raise ValidationError(f"Could not withdraw troops from {origin.name}")

        now = self.clock()
        duration = travel_seconds(origin, destination, self.speed_kmh, self.min_seconds, self.max_seconds)
        transfer = ArmyTransfer(
            id=next(self._ids),
            from_city=SettlementRef.of(origin),
            to_city=SettlementRef.of(destination),
            amount=amount,
            start_time=now,
            arrival_time=now + duration,
            owner=owner,
        )
        self.store.add_transfer(transfer)
        logger.info(
            "transfer_dispatched",
            transfer_id=transfer.id,
            origin=origin.name,
            destination=destination.name,
            amount=amount,
            duration=duration,
            owner=owner,
        )
        return transfer, events.military_transfer_start(transfer)

    def resolve_due(self, now: float | None = None) -> list[GameEvent]:
        """Resolve every transfer whose arrival time has passed. Each resolves exactly once."""
        now = self.clock() if now is None else now
        out = []
        for transfer in self.store.pop_due_transfers(now):
            destination = self.store.get(transfer.to_city.id)
            if destination is None:
                logger.warning("transfer_destination_missing", transfer_id=transfer.id)
                continue
            result, updates = resolve_arrival(transfer, destination)
            self.store.update(destination.id, updates)
            logger.info(
                "transfer_arrived",
                transfer_id=transfer.id,
                destination=destination.name,
                result=result,
                amount=transfer.amount,
                defense=destination.military,
            )
            out.append(events.military_transfer_complete(transfer, result, updates["military"]))
        return out

    def in_flight(self) -> list[ArmyTransfer]:
        return self.store.list_transfers()
