"""
Rule errors raised by the engine services.
All derive from ValueError so callers can treat any rejected action uniformly;
the API layer maps each class to an HTTP status.
"""

from typing import Any


class GameRuleError(ValueError):
    """Base class for a rejected action. No state was changed."""

    kind = "rule"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out = {"success": False, "error": self.kind, "message": self.message}
        out.update(self.details)
        return out


class ValidationError(GameRuleError):
    """Bad id, out-of-range value, unknown building or resource."""

    kind = "validation"


class OwnershipError(ValidationError):
    """Acting on a settlement or listing owned by someone else."""

    kind = "ownership"


class NotFoundError(GameRuleError):
    """Settlement or listing does not exist."""

    kind = "not_found"


class InsufficientResourcesError(GameRuleError):
    """Cost, capture threshold or transfer amount not covered."""

    kind = "insufficient_resources"

    def __init__(self, resource: str, required: float, available: float, message: str | None = None):
        super().__init__(
            message or f"Insufficient {resource}: have {available}, need {required}",
            resource=resource,
            required=required,
            available=available,
        )
        self.resource = resource
        self.required = required
        self.available = available


class PersistenceError(GameRuleError):
    """The game-state slot could not be written; in-memory state is unchanged."""

    kind = "persistence"
