"""
FastAPI application for order submission and live status.
"""
import json
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from swap_engine import __version__
from swap_engine.api.routes import orders_router, system_router
from swap_engine.api.dependencies import app_state, get_config, get_relay
from swap_engine.logging import logger, setup_logging
from swap_engine.pubsub import ORDER_UPDATE_EVENT

# Create FastAPI app
app = FastAPI(
    title="Swap Engine API",
    description="Order execution engine for token swaps across DEX venues",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(orders_router)
app.include_router(system_router)


# ============ Startup/Shutdown ============

@app.on_event("startup")
async def startup_event():
    """Connect services and start relaying status updates."""
    config = get_config()
    setup_logging(config)
    if not app_state.ready:
        await app_state.initialize(config)
    app_state.start_listener()
    logger.info(f"Swap Engine API started (env={config.env})")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    await app_state.close()
    logger.info("Swap Engine API shut down")


# ============ WebSocket Endpoints ============

@app.websocket("/ws/orders")
async def orders_websocket(websocket: WebSocket):
    """
    Live order status.

    Client messages:
    - {"action": "subscribe", "orderId": "..."}
    - {"action": "unsubscribe", "orderId": "..."}

    Server messages:
    - {"event": "order:update", "data": {...}}
    - {"event": "subscribed" | "unsubscribed", "orderId": "..."}
    - {"event": "error", "message": "..."}
    """
    relay = get_relay()
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                message = None
            action = message.get("action") if isinstance(message, dict) else None
            order_id = message.get("orderId") if isinstance(message, dict) else None

            if action not in ("subscribe", "unsubscribe") or not order_id:
                await websocket.send_json({"event": "error", "message": "Expected {action, orderId}"})
                continue

            if action == "subscribe":
                relay.subscribe(order_id, websocket)
                await websocket.send_json({"event": "subscribed", "orderId": order_id})
            else:
                relay.unsubscribe(order_id, websocket)
                await websocket.send_json({"event": "unsubscribed", "orderId": order_id})
    except WebSocketDisconnect:
        relay.disconnect(websocket)


# ============ Root ============

@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Swap Engine API",
        "version": __version__,
        "docs": "/docs",
        "event": ORDER_UPDATE_EVENT,
    }
