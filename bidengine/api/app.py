"""
FastAPI application factory.

- Engine errors render as {"error": code, "message": ..., **details}
  with their status code (429 adds Retry-After).
- Request validation failures render as 400 VALIDATION_ERROR.
- WebSocket /auctions: clients send {"event": "join_auction" |
  "leave_auction", "auctionId": ...} and receive {"event", "data"} frames
  for bid_accepted, outbid, auction_extended and auction_finalized.
  A ?token= query parameter identifies the bidder for outbid delivery.
"""

import asyncio
import json
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bidengine import __version__
from bidengine.api.deps import StaticTokenResolver, TokenResolver
from bidengine.api.rate_limit import RateLimiter
from bidengine.api.routes import admin_router, auctions_router, risk_router
from bidengine.core.config import EngineConfig
from bidengine.core.engine import MarketEngine
from bidengine.core.errors import EngineError, RateLimitError
from bidengine.crypto import new_id
from bidengine.network.realtime import AsyncQueueSink, auction_room, bidder_room
from bidengine.utils.logger import get_logger

logger = get_logger("api")


def create_app(
    engine: Optional[MarketEngine] = None,
    config: Optional[EngineConfig] = None,
    token_resolver: Optional[TokenResolver] = None,
    rate_limiter: Optional[RateLimiter] = None,
    run_ticker: bool = False,
) -> FastAPI:
    """
    Build the API around an engine.

    Args:
        engine: Engine instance (built from config when omitted)
        config: Configuration used when engine is omitted
        token_resolver: Bearer token resolver (static table from config by default)
        rate_limiter: Bid rate limiter (a fresh in-memory one by default)
        run_ticker: Run the auction ticker in a background thread
    """
    engine = engine or MarketEngine(config or EngineConfig())
    token_resolver = token_resolver or StaticTokenResolver(engine.config.token_table())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = threading.Event()
        worker = None
        if run_ticker:
            worker = threading.Thread(
                target=engine.ticker.run_forever,
                args=(
                    engine.config.tick_interval_seconds,
                    stop,
                    engine.config.extension_threshold_seconds,
                    engine.config.extension_seconds,
                ),
                name="auction-ticker",
                daemon=True,
            )
            worker.start()
        yield
        stop.set()
        if worker is not None:
            worker.join(timeout=engine.config.tick_interval_seconds + 1)

    app = FastAPI(title="Bidding Engine API", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.token_resolver = token_resolver
    app.state.rate_limiter = rate_limiter or RateLimiter()

    app.include_router(auctions_router)
    app.include_router(admin_router)
    app.include_router(risk_router)

    # =========================================================================
    # Error mapping
    # =========================================================================

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        headers = None
        if isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(exc.retry_after)}
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    # =========================================================================
    # Realtime
    # =========================================================================

    @app.websocket("/auctions")
    async def auctions_socket(websocket: WebSocket):
        await websocket.accept()

        token = websocket.query_params.get("token")
        principal = token_resolver.resolve(token) if token else None

        broker = engine.broker
        subscriber_id = new_id()
        sink = AsyncQueueSink(asyncio.get_running_loop())

        async def forward():
            while True:
                message = await sink.queue.get()
                await websocket.send_json(message)

        sender = asyncio.create_task(forward())
        logger.debug(f"Socket {subscriber_id[:8]} connected (user={principal.user_id if principal else '-'})")

        def reply(event: str, data: dict):
            sink.queue.put_nowait({"event": event, "data": data})

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    reply("error", {"message": "invalid JSON"})
                    continue

                event = message.get("event") if isinstance(message, dict) else None
                auction_id = message.get("auctionId") if isinstance(message, dict) else None
                if not isinstance(auction_id, str) or not auction_id:
                    reply("error", {"message": "auctionId is required"})
                    continue

                if event == "join_auction":
                    broker.join(auction_room(auction_id), subscriber_id, sink)
                    if principal is not None:
                        broker.join(bidder_room(auction_id, principal.user_id), subscriber_id, sink)
                    reply("joined_auction", {"auctionId": auction_id})
                elif event == "leave_auction":
                    broker.leave(auction_room(auction_id), subscriber_id)
                    if principal is not None:
                        broker.leave(bidder_room(auction_id, principal.user_id), subscriber_id)
                    reply("left_auction", {"auctionId": auction_id})
                else:
                    reply("error", {"message": f"unknown event {event!r}"})
        except WebSocketDisconnect:
            pass
        finally:
            broker.leave_all(subscriber_id)
            sender.cancel()
            logger.debug(f"Socket {subscriber_id[:8]} disconnected")

    return app
