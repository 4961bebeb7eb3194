"""
SQLAlchemy Models for VaultPilot

Database schema for:
- Pool snapshots (append-only APY/TVL time series)
- Automation records (one audit row per automation cycle)
- Market averages (TVL-weighted APY per refresh)
- Vault snapshots (idle/allocated distribution per cycle)
- Scheduled task executions

All timestamps are naive UTC. On-chain amounts are stored as decimal strings
(uint256 does not fit a BIGINT).
"""

from datetime import datetime, UTC

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Boolean, Text, JSON,
    Enum, Index
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Current time as naive UTC (the storage convention for every table)"""
    return datetime.now(UTC).replace(tzinfo=None)


DECISIONS = ("no_action", "deposit_idle", "reallocate_to_better_pool", "error")


# ==============================================================================
# POOL SNAPSHOTS
# ==============================================================================

class PoolSnapshot(Base):
    """
    One APY/TVL observation of a tracked pool

    Written once per pool per refresh by the snapshot tracker, never updated.
    total_apy == historic_apy + rewards_apy at write time.
    """
    __tablename__ = "pool_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Pool identity (denormalized from static config)
    pool_address = Column(String(42), nullable=False, index=True)
    chain = Column(String(50), nullable=False)
    description = Column(String(255))
    url = Column(String(500))
    input_token = Column(String(42), index=True)

    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)

    # Yield (percent, e.g. 8.5 = 8.5%)
    historic_apy = Column(Float, nullable=False, default=0.0)
    rewards_apy = Column(Float, nullable=False, default=0.0)
    total_apy = Column(Float, nullable=False, default=0.0)

    # Capacity
    tvl = Column(Float, nullable=True)  # Native units
    tvl_usd = Column(Float, nullable=True)

    # Opportunity score annotation (null = insufficient history or no TVL)
    opportunity_score = Column(Float, nullable=True)
    opportunity_score_details = Column(JSON, nullable=True)
    # Example: {"stability_adjusted_apy": 7.0, "tvl_confidence_factor": 1.0,
    #           "apy_avg_24h": 8.0, "apy_std_24h": 1.0, ...}
    opportunity_score_asset_size = Column(Float, nullable=True)

    raw_response = Column(JSON, nullable=True)

    success = Column(Boolean, nullable=False, default=True, index=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_snapshot_pool_time', 'pool_address', 'timestamp'),
        Index('idx_snapshot_success_time', 'success', 'timestamp'),
    )

    def __repr__(self):
        return (
            f"<PoolSnapshot(pool={self.pool_address}, apy={self.total_apy}, "
            f"success={self.success})>"
        )


# ==============================================================================
# AUTOMATION RECORDS
# ==============================================================================

class AutomationRecord(Base):
    """
    Audit record of one automation cycle

    Exactly one row is written per executed cycle, including failed cycles.

    JSON payloads:
        best_pool / current_pool: {pool_address, description, opportunity_score, apy, tvl_usd}
        available_pools: ranked list of the above
        vault_state: {idle_balance, total_assets, allocated_amount, allocations: [...]}
        action: {type, from_pool, to_pool, amount, tx_hash, tx_hashes, success, error_message}
    """
    __tablename__ = "automation_records"

    id = Column(Integer, primary_key=True, autoincrement=True)

    vault_address = Column(String(42), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)

    best_pool = Column(JSON, nullable=True)
    current_pool = Column(JSON, nullable=True)
    available_pools = Column(JSON, nullable=True)
    vault_state = Column(JSON, nullable=True)

    decision = Column(
        Enum(*DECISIONS, name="automation_decision"),
        nullable=False,
        default="error",
        index=True
    )
    reason = Column(Text, nullable=True)

    action = Column(JSON, nullable=True)

    better_pool_found = Column(Boolean, nullable=False, default=False)
    opportunity_score_difference = Column(Float, nullable=False, default=0.0)

    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    __table_args__ = (
        Index('idx_automation_vault_time', 'vault_address', 'timestamp'),
        Index('idx_automation_decision_time', 'decision', 'timestamp'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'vault_address': self.vault_address,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'best_pool': self.best_pool,
            'current_pool': self.current_pool,
            'available_pools': self.available_pools or [],
            'vault_state': self.vault_state,
            'decision': self.decision,
            'reason': self.reason,
            'action': self.action,
            'better_pool_found': self.better_pool_found,
            'opportunity_score_difference': self.opportunity_score_difference,
            'success': self.success,
            'error_message': self.error_message,
            'duration_seconds': self.duration_seconds,
        }

    def __repr__(self):
        return (
            f"<AutomationRecord(vault={self.vault_address}, decision={self.decision}, "
            f"success={self.success})>"
        )


# ==============================================================================
# MARKET AVERAGES
# ==============================================================================

class MarketAverage(Base):
    """
    TVL-weighted average APY across the latest pool snapshots

    token_address is NULL for the all-pools average, otherwise the input token.
    """
    __tablename__ = "market_averages"

    id = Column(Integer, primary_key=True, autoincrement=True)

    token_address = Column(String(42), nullable=True, index=True)
    market_avg_apy = Column(Float, nullable=False)
    total_tvl = Column(Float, nullable=False, default=0.0)
    total_tvl_usd = Column(Float, nullable=False, default=0.0)
    pool_count = Column(Integer, nullable=False, default=0)
    pool_breakdown = Column(JSON, nullable=True)

    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)

    __table_args__ = (
        Index('idx_market_avg_token_time', 'token_address', 'timestamp'),
    )

    def __repr__(self):
        return f"<MarketAverage(token={self.token_address}, apy={self.market_avg_apy:.2f})>"


# ==============================================================================
# VAULT SNAPSHOTS
# ==============================================================================

class VaultSnapshot(Base):
    """
    Vault capital distribution as read at the start of an automation cycle
    """
    __tablename__ = "vault_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)

    vault_address = Column(String(42), nullable=False, index=True)

    # Base units as decimal strings
    idle_balance = Column(String(80), nullable=False)
    total_allocated = Column(String(80), nullable=False)
    total_assets = Column(String(80), nullable=False)

    # Token units (for charts)
    total_tvl = Column(Float, nullable=False, default=0.0)

    allocations = Column(JSON, nullable=True)
    # Example: [{"pool_address": "0x..", "pool_description": "..", "amount": 300.0, "percentage": 30.0}]

    tvl_mismatch = Column(Boolean, nullable=False, default=False)

    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)

    def __repr__(self):
        return f"<VaultSnapshot(vault={self.vault_address}, tvl={self.total_tvl})>"


# ==============================================================================
# SCHEDULED TASK EXECUTIONS
# ==============================================================================

class ScheduledTaskExecution(Base):
    """One run of a scheduled task (automation tick, warm-up, manual trigger)"""
    __tablename__ = "scheduled_task_executions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    task_name = Column(String(100), nullable=False, index=True)
    task_type = Column(String(50), nullable=False, default='scheduler')
    status = Column(String(20), nullable=False, index=True)  # RUNNING, SUCCESS, FAILED, SKIPPED
    triggered_by = Column(String(100), nullable=True)

    started_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    error_message = Column(Text, nullable=True)
    task_metadata = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<ScheduledTaskExecution(task={self.task_name}, status={self.status})>"
