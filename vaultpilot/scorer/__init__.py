"""
Opportunity scoring

Pure scoring functions and trailing statistics used to rank pools.
"""

from .opportunity_score import (
    DEFAULT_ASSET_SIZE,
    OpportunityScore,
    TrailingStats,
    calculate_opportunity_score,
    compute_trailing_stats,
    score_from_stats,
    stability_adjusted_apy,
    tvl_confidence_factor,
)

__all__ = [
    'DEFAULT_ASSET_SIZE',
    'OpportunityScore',
    'TrailingStats',
    'calculate_opportunity_score',
    'compute_trailing_stats',
    'score_from_stats',
    'stability_adjusted_apy',
    'tvl_confidence_factor',
]
