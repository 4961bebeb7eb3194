"""Pool snapshot tracking and ranking"""

from .snapshot_tracker import (
    RankedPool,
    SnapshotTracker,
    build_market_average,
    sort_ranked,
)

__all__ = ['RankedPool', 'SnapshotTracker', 'build_market_average', 'sort_ranked']
