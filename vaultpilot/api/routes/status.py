"""
Status API routes

GET /api/health - Database / RPC / scheduler health
"""
from fastapi import APIRouter, Depends, Request

from vaultpilot.api.deps import get_scheduler
from vaultpilot.api.schemas import HealthResponse
from vaultpilot.monitor import HealthChecker
from vaultpilot.scheduler import ContinuousScheduler
from vaultpilot.utils import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def get_health(request: Request, scheduler: ContinuousScheduler = Depends(get_scheduler)):
    """System health (database, RPC, last tick)"""
    checker = HealthChecker(
        store=scheduler.store,
        rpc=getattr(request.app.state, 'rpc', None),
        scheduler=scheduler,
        tracked_pools=len(scheduler.tracker.pools),
    )
    status = checker.check_all()

    uptime_fn = getattr(request.app.state, 'uptime', None)
    return HealthResponse(
        **status.to_dict(),
        uptime_seconds=uptime_fn() if uptime_fn else 0,
    )
