"""
Feed events pushed to connected viewers.
Events describe what changed; the API layer serializes and broadcasts them.
"""

from dataclasses import dataclass
from typing import Any

from conquest.engine.state import ArmyTransfer, GameState, Settlement


@dataclass
class GameEvent:
    """Base event class. All events have a type and payload."""
    type: str
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        # Wire format is flat: {"type": ..., <payload keys>}
        return {"type": self.type, **self.payload}


# ===== Event Type Constants =====

GAME_UPDATE = "GAME_UPDATE"
CITIES_UPDATE = "CITIES_UPDATE"
MILITARY_TRANSFER_START = "MILITARY_TRANSFER_START"
MILITARY_TRANSFER_COMPLETE = "MILITARY_TRANSFER_COMPLETE"

# Transfer outcomes
TRANSFER_REINFORCED = "reinforced"
TRANSFER_CAPTURED = "captured"
TRANSFER_FAILED = "failed"


# ===== Event Factory Functions =====

def game_update(game_state: GameState) -> GameEvent:
    return GameEvent(GAME_UPDATE, {"gameState": game_state.to_dict()})


def cities_update(settlements: list[Settlement]) -> GameEvent:
    return GameEvent(CITIES_UPDATE, {"cities": [s.to_dict() for s in settlements]})


def military_transfer_start(transfer: ArmyTransfer) -> GameEvent:
    return GameEvent(MILITARY_TRANSFER_START, {
        "id": transfer.id,
        "fromCity": transfer.from_city.to_dict(),
        "toCity": transfer.to_city.to_dict(),
        "amount": transfer.amount,
        "duration": int(round(transfer.duration * 1000)),
        "startTime": int(transfer.start_time * 1000),
        "owner": transfer.owner,
    })


def military_transfer_complete(transfer: ArmyTransfer, result: str, garrison: float) -> GameEvent:
    return GameEvent(MILITARY_TRANSFER_COMPLETE, {
        "id": transfer.id,
        "toCity": transfer.to_city.id,
        "result": result,
        "amount": transfer.amount,
        "garrison": garrison,
    })
