"""
Database module for VaultPilot

Provides SQLAlchemy models, connection management and the injectable Store.
"""

from .models import (
    Base,
    PoolSnapshot,
    AutomationRecord,
    MarketAverage,
    VaultSnapshot,
    ScheduledTaskExecution,
    DECISIONS,
    utc_now,
)
from .connection import build_database_url, create_db_engine, get_engine, get_session_factory, init_db
from .store import Store, StoreUnavailableError

__all__ = [
    'Base',
    'PoolSnapshot',
    'AutomationRecord',
    'MarketAverage',
    'VaultSnapshot',
    'ScheduledTaskExecution',
    'DECISIONS',
    'utc_now',
    'get_engine',
    'build_database_url',
    'create_db_engine',
    'get_session_factory',
    'init_db',
    'Store',
    'StoreUnavailableError',
]
