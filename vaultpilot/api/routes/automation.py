"""
Automation API routes

POST /api/automation/run     - Run one cycle in the background
GET  /api/automation/latest  - Latest automation record
GET  /api/automation/history - Recent automation records
"""
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from vaultpilot.api.deps import get_scheduler
from vaultpilot.api.schemas import AutomationRecordResponse, AutomationRunResponse
from vaultpilot.scheduler import ContinuousScheduler
from vaultpilot.utils import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/automation/run", response_model=AutomationRunResponse, status_code=202)
async def run_automation(
    background_tasks: BackgroundTasks,
    scheduler: ContinuousScheduler = Depends(get_scheduler),
):
    """
    Trigger one refresh + automation cycle

    Returns immediately; the cycle runs in the background through the same
    non-overlap guard as scheduled ticks.
    """
    if scheduler.tick.is_running:
        return AutomationRunResponse(
            status="already_running",
            message="An automation cycle is already in progress",
        )

    background_tasks.add_task(scheduler.run_once, 'api', 'manual')
    logger.info("Automation cycle triggered via API")
    return AutomationRunResponse(status="started", message="Automation cycle started")


@router.get("/automation/latest", response_model=AutomationRecordResponse)
def get_latest_automation(scheduler: ContinuousScheduler = Depends(get_scheduler)):
    """Latest automation record"""
    record = scheduler.store.latest_automation_record()
    if record is None:
        raise HTTPException(status_code=404, detail="No automation records yet")
    return AutomationRecordResponse(**record.to_dict())


@router.get("/automation/history", response_model=List[AutomationRecordResponse])
def get_automation_history(
    limit: int = Query(50, ge=1, le=500),
    scheduler: ContinuousScheduler = Depends(get_scheduler),
):
    """Recent automation records, newest first"""
    records = scheduler.store.automation_history(limit=limit)
    return [AutomationRecordResponse(**r.to_dict()) for r in records]
