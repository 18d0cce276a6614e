"""REST API module for the auction engine.

This module provides HTTP endpoints for:
- Creating, editing and deleting auctions
- Placing bids and reading bid history
- Reading and clearing notifications
- Real-time notification delivery via WebSocket
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings
from database import create_repository, close as db_close
from engine import Engine, build_engine

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup unless one was supplied, and run its sweep loop."""
    if app.state.engine is not None:
        yield
        return

    logger.info("Initializing API...")
    settings = get_settings()
    engine = build_engine(await create_repository(settings), settings)
    app.state.engine = engine

    sweep_loop = engine.sweep_loop()
    sweep_task = asyncio.create_task(sweep_loop.run())
    logger.info(f"Started settlement sweep every {settings['sweep_interval_seconds']}s")

    try:
        yield
    finally:
        logger.info("Shutting down API...")
        sweep_loop.stop()
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
        app.state.engine = None
        await db_close()

def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Engine to serve. When omitted the application builds one
            from settings.conf at startup and runs the settlement sweep.
    """
    app = FastAPI(
        title="Auction Engine API",
        description="Bidding, settlement and notifications for timed auctions",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        current = app.state.engine
        return {
            "name": "Auction Engine API",
            "version": "1.0.0",
            "status": "running" if current is not None else "starting",
            "live_connections": current.hub.total_connections() if current is not None else 0
        }

    from .auctions import router as auctions_router
    from .bids import router as bids_router
    from .notifications import router as notifications_router

    app.include_router(auctions_router)
    app.include_router(bids_router)
    app.include_router(notifications_router)

    return app

app = create_app()

__all__ = ['app', 'create_app']
