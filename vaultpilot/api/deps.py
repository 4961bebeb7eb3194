"""
Request dependencies

The running ContinuousScheduler (and everything it owns) is attached to
app.state by create_app(); routes reach it through these helpers.
"""
from fastapi import HTTPException, Request

from vaultpilot.scheduler import ContinuousScheduler


def get_scheduler(request: Request) -> ContinuousScheduler:
    scheduler = getattr(request.app.state, 'scheduler', None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler
