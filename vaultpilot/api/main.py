"""
VaultPilot API

FastAPI application exposing the control loop:
- health
- pools ranked as of now
- run one automation cycle now / latest automation records

The app is built around a ContinuousScheduler (create_app). With
run_scheduler=True the periodic loop runs inside the API process.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vaultpilot import __version__
from vaultpilot.scheduler import ContinuousScheduler
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


def create_app(
    scheduler: ContinuousScheduler,
    rpc: Optional[Any] = None,
    run_scheduler: bool = False,
    cors_origins: Optional[list] = None
) -> FastAPI:
    """
    Build the API application

    Args:
        scheduler: Scheduler owning store, tracker and automation
        rpc: Anything with is_connected() for the health check (optional)
        run_scheduler: Run the periodic loop in the API process
        cors_origins: Allowed CORS origins (defaults to local dev servers)

    Returns:
        FastAPI app
    """
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        logger.info("VaultPilot API starting...")

        loop_task = None
        if run_scheduler:
            loop_task = asyncio.create_task(scheduler.run_continuous())

        yield

        if loop_task:
            scheduler.shutdown_event.set()
            loop_task.cancel()
            try:
                await loop_task
            except asyncio.CancelledError:
                pass

        logger.info("VaultPilot API shutting down...")

    app = FastAPI(
        title="VaultPilot",
        description="Yield pool ranking and vault reallocation API",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.scheduler = scheduler
    app.state.rpc = rpc
    app.state.uptime = lambda: int(time.time() - start_time)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # ROUTES
    # =========================================================================

    from vaultpilot.api.routes import automation_router, pools_router, status_router

    app.include_router(status_router, prefix="/api", tags=["Status"])
    app.include_router(pools_router, prefix="/api", tags=["Pools"])
    app.include_router(automation_router, prefix="/api", tags=["Automation"])

    @app.get("/")
    async def root():
        """API root"""
        return {
            "name": "VaultPilot API",
            "version": __version__,
            "status": "running",
            "uptime_seconds": app.state.uptime(),
        }

    return app
