"""
Pydantic schemas for API request/response models
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


# =============================================================================
# HEALTH
# =============================================================================

class HealthResponse(BaseModel):
    """Health endpoint response"""
    healthy: bool
    database: str  # OK, ERROR, UNKNOWN
    rpc: str  # OK, ERROR, UNKNOWN
    tracked_pools: int
    last_tick: Optional[Dict[str, Any]] = None
    last_decision: Optional[str] = None
    message: str = ""
    uptime_seconds: int = 0


# =============================================================================
# POOLS
# =============================================================================

class RankedPoolResponse(BaseModel):
    """Pool in the ranking"""
    rank: int
    pool_address: str
    description: str
    chain: str
    url: str = ""
    input_token: Optional[str] = None
    total_apy: float
    historic_apy: float = 0.0
    rewards_apy: float = 0.0
    tvl_usd: Optional[float] = None
    opportunity_score: Optional[float] = None
    score_details: Optional[Dict[str, float]] = None
    asset_size: Optional[float] = None
    timestamp: datetime


class RankedPoolsResponse(BaseModel):
    asset_size: float
    count: int
    pools: List[RankedPoolResponse]


class PoolStatsResponse(BaseModel):
    """Trailing APY statistics of a pool"""
    pool_address: str
    window_hours: float
    current: Optional[float] = None
    mean: Optional[float] = None
    std: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    count: int = 0


# =============================================================================
# AUTOMATION
# =============================================================================

class AutomationRunResponse(BaseModel):
    """POST /automation/run response"""
    status: str  # started, already_running
    message: str


class AutomationRecordResponse(BaseModel):
    """One automation cycle"""
    id: int
    vault_address: str
    timestamp: Optional[str] = None
    decision: str
    reason: Optional[str] = None
    best_pool: Optional[Dict[str, Any]] = None
    current_pool: Optional[Dict[str, Any]] = None
    available_pools: List[Dict[str, Any]] = []
    vault_state: Optional[Dict[str, Any]] = None
    action: Optional[Dict[str, Any]] = None
    better_pool_found: bool = False
    opportunity_score_difference: float = 0.0
    success: bool = False
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
