"""
Pool API routes

GET /api/pools/ranked               - Pools ranked as of now
GET /api/pools/{pool_address}/stats - Trailing APY statistics
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from vaultpilot.api.deps import get_scheduler
from vaultpilot.api.schemas import PoolStatsResponse, RankedPoolResponse, RankedPoolsResponse
from vaultpilot.scheduler import ContinuousScheduler
from vaultpilot.utils import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/pools/ranked", response_model=RankedPoolsResponse)
def get_ranked_pools(
    asset_size: Optional[float] = Query(None, gt=0, description="Capital to score for (USD)"),
    input_token: Optional[str] = Query(None, description="Only pools accepting this token"),
    scheduler: ContinuousScheduler = Depends(get_scheduler),
):
    """Ranked pools, re-scored when asset_size differs from the stored score"""
    tracker = scheduler.tracker
    size = asset_size or tracker.asset_size

    try:
        ranked = tracker.ranked_pools(asset_size=size, input_token=input_token)
    except Exception as e:
        logger.error(f"Failed to rank pools: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to rank pools")

    pools = [
        RankedPoolResponse(
            rank=i + 1,
            pool_address=p.pool_address,
            description=p.description,
            chain=p.chain,
            url=p.url,
            input_token=p.input_token,
            total_apy=p.total_apy,
            historic_apy=p.historic_apy,
            rewards_apy=p.rewards_apy,
            tvl_usd=p.tvl_usd,
            opportunity_score=p.opportunity_score,
            score_details=p.score_details,
            asset_size=p.asset_size,
            timestamp=p.timestamp,
        )
        for i, p in enumerate(ranked)
    ]
    return RankedPoolsResponse(asset_size=size, count=len(pools), pools=pools)


@router.get("/pools/{pool_address}/stats", response_model=PoolStatsResponse)
def get_pool_stats(
    pool_address: str,
    hours: float = Query(24, gt=0, le=24 * 90),
    scheduler: ContinuousScheduler = Depends(get_scheduler),
):
    """Trailing APY statistics of one pool"""
    stats = scheduler.tracker.trailing_stats(pool_address, timedelta(hours=hours))
    if stats is None:
        return PoolStatsResponse(pool_address=pool_address.lower(), window_hours=hours)

    return PoolStatsResponse(
        pool_address=pool_address.lower(),
        window_hours=hours,
        **stats.to_dict(),
    )
