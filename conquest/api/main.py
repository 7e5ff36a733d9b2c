"""
FastAPI application for the Conquest strategy game.
REST endpoints for settlements, the market and army transfers, plus a WebSocket feed
that pushes game and city updates after every tick and every mutating request.
"""

from typing import Any

import structlog
from fastapi import Body, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from conquest.config import Settings, get_settings
from conquest.engine import OWNER_PLAYER
from conquest.engine.errors import (
    GameRuleError,
    NotFoundError,
    OwnershipError,
    PersistenceError,
)
from conquest.engine.simulation import satisfaction_factors
from conquest.engine.state import GameState
from conquest.logconfig import configure_logging

from .loop import GameLoop
from .services import GameServices, build_services

logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"


# ===== Pydantic Models =====

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BuildRequest(CamelModel):
    building_id: str = Field(alias="buildingId")


class TaxRequest(CamelModel):
    tax_rate: int = Field(alias="taxRate")


class CaptureRequest(CamelModel):
    is_capital: bool = Field(default=False, alias="isCapital")
    capture_method: str = Field(default="military", alias="captureMethod")


class CaptureRegionRequest(CamelModel):
    region_id: int = Field(alias="regionId")
    capture_method: str = Field(default="military", alias="captureMethod")
    military_amount: float | None = Field(default=None, alias="militaryAmount")


class TransferRequest(CamelModel):
    from_city_id: int = Field(alias="fromCityId")
    to_city_id: int = Field(alias="toCityId")
    amount: float


class CreateListingRequest(CamelModel):
    resource_type: str = Field(alias="resourceType")
    amount: float
    price_per_unit: float = Field(alias="pricePerUnit")
    type: str


class ListingRequest(CamelModel):
    listing_id: int = Field(alias="listingId")


# ===== Error mapping =====

def status_for(error: GameRuleError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, OwnershipError):
        return 403
    if isinstance(error, PersistenceError):
        return 500
    return 400


def create_app(settings: Settings | None = None, services: GameServices | None = None) -> FastAPI:
    """Build the application. Services are wired once and kept on app.state."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)
    services = services or build_services(settings)
    game_loop = GameLoop(services)

    app = FastAPI(
        title="Conquest API",
        description="Backend API for Conquest - a real-time territory strategy game",
        version=API_VERSION,
    )
    app.state.services = services
    app.state.game_loop = game_loop

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log method and path so 500s can be traced to the failing endpoint."""
        try:
            response = await call_next(request)
        except Exception:
            logger.error("request_failed", method=request.method, path=request.url.path)
            raise
        if response.status_code >= 500:
            logger.error("request_failed", method=request.method, path=request.url.path, status=response.status_code)
        return response

    @app.exception_handler(GameRuleError)
    async def game_rule_error_handler(request: Request, exc: GameRuleError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", path=request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": "internal", "message": str(exc)})

    @app.on_event("startup")
    async def on_startup():
        if settings.run_background_tasks:
            game_loop.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        await game_loop.stop()

    async def publish(extra: list | None = None) -> None:
        await services.connections.broadcast((extra or []) + services.snapshot_events())

    def current_state() -> GameState:
        state = services.store.get_game_state()
        if state is None:
            raise PersistenceError("Game state is unavailable")
        return state

    # ===== API Endpoints =====

    @app.get("/")
    async def root():
        return {"message": "Conquest API", "version": API_VERSION}

    # ----- Cities -----

    @app.get("/api/cities")
    async def list_cities():
        return [s.to_dict() for s in services.store.list()]

    @app.get("/api/cities/{city_id}")
    async def get_city(city_id: int):
        settlement = services.store.get(city_id)
        if settlement is None:
            raise NotFoundError(f"City {city_id} not found")
        return settlement.to_dict()

    @app.get("/api/cities/{city_id}/satisfaction")
    async def get_city_satisfaction(city_id: int):
        settlement = services.store.get(city_id)
        if settlement is None:
            raise NotFoundError(f"City {city_id} not found")
        factors = satisfaction_factors(settlement, current_state(), services.catalog, settings.worker_model)
        return {
            "cityId": settlement.id,
            "satisfaction": settlement.satisfaction,
            "protestTimer": settlement.protest_timer,
            "factors": factors,
        }

    @app.get("/api/buildings")
    async def list_buildings():
        return services.catalog.to_dict()

    @app.post("/api/cities/{city_id}/build")
    async def build(city_id: int, request: BuildRequest):
        settlement = services.actions.build(city_id, request.building_id)
        await publish()
        return settlement.to_dict()

    @app.post("/api/cities/{city_id}/tax")
    async def set_tax(city_id: int, request: TaxRequest):
        settlement = services.actions.set_tax_rate(city_id, request.tax_rate)
        await publish()
        return settlement.to_dict()

    @app.patch("/api/cities/{city_id}/capture")
    async def capture(city_id: int, request: CaptureRequest):
        settlement, cost = services.actions.capture(city_id, request.capture_method, request.is_capital)
        await publish()
        return {
            "success": True,
            "city": settlement.to_dict(),
            "cost": cost,
            "gameState": current_state().to_dict(),
        }

    @app.post("/api/capture-region")
    async def capture_region(request: CaptureRegionRequest):
        settlement, committed = services.actions.capture_region(
            request.region_id, request.capture_method, request.military_amount
        )
        await publish()
        return {
            "success": True,
            "region": settlement.to_dict(),
            "cost": committed,
            "gameState": current_state().to_dict(),
        }

    # ----- Game state -----

    @app.get("/api/game-state")
    async def get_game_state():
        return current_state().to_dict()

    @app.post("/api/game-state")
    async def replace_game_state(payload: dict[str, Any] = Body(...)):
        state = GameState.from_dict(payload)
        if not services.store.set_game_state(state):
            raise PersistenceError("Failed to save game state")
        await publish()
        return state.to_dict()

    @app.post("/api/game/reset")
    async def reset_game():
        if not services.reset_world():
            raise PersistenceError("Failed to reset game state")
        await publish()
        return {"success": True, "gameState": current_state().to_dict()}

    # ----- Military -----

    @app.post("/api/military/transfer")
    async def transfer_military(request: TransferRequest):
        transfer, event = services.transfers.dispatch(
            request.from_city_id, request.to_city_id, request.amount, owner=OWNER_PLAYER
        )
        await publish([event])
        return {
            "success": True,
            "travelTime": int(round(transfer.duration * 1000)),
            "transfer": transfer.to_dict(),
        }

    @app.get("/api/military/transfers")
    async def list_transfers():
        return [t.to_dict() for t in services.transfers.in_flight()]

    # ----- Market -----

    @app.get("/api/market/listings")
    async def market_listings():
        return [listing.to_dict() for listing in services.market.get_listings()]

    @app.get("/api/market/prices/{resource}")
    async def market_prices(resource: str, days: float | None = Query(default=None, ge=0)):
        return [p.to_dict() for p in services.market.get_price_history(resource, days)]

    @app.get("/api/market/transactions")
    async def market_transactions(limit: int | None = Query(default=None, ge=0)):
        return [t.to_dict() for t in services.market.get_transactions(limit)]

    @app.post("/api/market/create-listing")
    async def create_listing(request: CreateListingRequest):
        listing = services.market.create_listing(
            request.resource_type, request.amount, request.price_per_unit, request.type
        )
        await publish()
        return {"success": True, "listing": listing.to_dict()}

    @app.post("/api/market/purchase")
    async def purchase_listing(request: ListingRequest):
        transaction = services.market.purchase(request.listing_id)
        await publish()
        return {"success": True, "transaction": transaction.to_dict()}

    @app.post("/api/market/cancel")
    async def cancel_listing(request: ListingRequest):
        listing = services.market.cancel(request.listing_id)
        await publish()
        return {"success": True, "listing": listing.to_dict()}

    # ----- Feed -----

    @app.websocket("/ws")
    async def feed(websocket: WebSocket):
        manager = services.connections
        await manager.connect(websocket)
        if not await manager.send(websocket, services.snapshot_events()):
            return
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(create_app(_settings), host=_settings.api_host, port=_settings.api_port)
