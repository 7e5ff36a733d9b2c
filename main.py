"""
Main entry point for the Conquest game engine.
Demonstrates core functionality with a short scripted session against an in-memory store.
"""

from conquest.api.services import build_services
from conquest.config import Settings
from conquest.engine.errors import GameRuleError
from conquest.logconfig import configure_logging


def print_status(services, title: str) -> None:
    state = services.store.get_game_state()
    print(f"\n[{title}]")
    print(f"Resources: {state.resources.to_dict()}")
    print(f"Population: {state.population:.1f}  Military: {state.military:.1f}")
    for s in services.store.list():
        if s.owner == "neutral":
            continue
        print(
            f"  {s.name} ({s.owner}): pop {s.population:.1f}/{s.max_population}, "
            f"satisfaction {s.satisfaction:.1f}, tax {s.tax_rate}, buildings {s.buildings}"
        )


def main():
    print("Conquest - Real-Time Territory Strategy Engine")
    print("=" * 60)
    configure_logging("WARNING", "console")

    settings = Settings(database_url="sqlite://", run_background_tasks=False, market_seed=7)
    services = build_services(settings)
    print_status(services, "INITIAL STATE")

    # ===== SCENARIO 1: Capital and construction =====
    print("\n[SCENARIO 1: Capital selection + construction]")
    services.actions.capture(1, is_capital=True)
    for building_id in ("house", "house", "farm", "logging_camp"):
        services.actions.build(1, building_id)
        print(f"Built {building_id} in Moscow Oblast")
    for _ in range(30):
        services.simulation.tick()
    print_status(services, "AFTER 30 TICKS")

    # ===== SCENARIO 2: Taxation =====
    print("\n[SCENARIO 2: Raising taxes]")
    services.actions.set_tax_rate(1, 8)
    for _ in range(10):
        services.simulation.tick()
    print_status(services, "AFTER 10 TICKS AT TAX 8")

    # ===== SCENARIO 3: Market =====
    print("\n[SCENARIO 3: Market]")
    listing = services.market.create_listing("wood", 50, 4.0, "sell")
    print(f"Listed {listing.amount} wood at {listing.price_per_unit}/unit (id {listing.id})")
    services.market.cancel(listing.id)
    print("Cancelled listing; escrow refunded")
    ask = next(l for l in services.market.get_listings() if l.owner == "ai" and l.side == "sell")
    transaction = services.market.purchase(ask.id)
    print(f"Bought {transaction.amount} {transaction.resource_type.value} for {transaction.total_price} gold")

    # ===== SCENARIO 4: Capture attempts =====
    print("\n[SCENARIO 4: Capture]")
    try:
        services.actions.capture(2, "military")
    except GameRuleError as e:
        print(f"Military capture rejected: {e.to_dict()}")
    try:
        services.actions.capture(3, "influence")
    except GameRuleError as e:
        print(f"Influence capture rejected: {e.to_dict()}")

    print_status(services, "FINAL STATE")


if __name__ == "__main__":
    main()
