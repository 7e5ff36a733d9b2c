"""
Conquest real-time strategy engine.
Pure game rules over dataclass state: no web framework, database, or timers.
"""

# Owners of settlements. Market listings use "player" and "ai".
OWNER_PLAYER = "player"
OWNER_ENEMY = "enemy"
OWNER_NEUTRAL = "neutral"
OWNERS = (OWNER_PLAYER, OWNER_ENEMY, OWNER_NEUTRAL)

TAX_RATE_MIN = 0
TAX_RATE_MAX = 10
DEFAULT_TAX_RATE = 5

SATISFACTION_MIN = 0.0
SATISFACTION_MAX = 100.0

# Resource stocks are rounded to this many decimals after every tick.
RESOURCE_PRECISION = 4
