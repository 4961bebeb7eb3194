"""
Opportunity Score

Risk-adjusted ranking metric for a yield pool:

    stability_adjusted_apy = apy_avg - risk_penalty * apy_std
    tvl_confidence_factor  = sigmoid(k * (tvl_current / asset_size - m))
    score                  = max(0, stability_adjusted_apy * tvl_confidence_factor)

The confidence factor discounts pools that are small relative to the capital
we would bring: with the defaults (k=20, m=0.1) a pool whose TVL equals 10% of
our asset size scores at half confidence.

All APY values are percentages (8.5 = 8.5%). Pure functions, no I/O.
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Sequence

import numpy as np

DEFAULT_RISK_PENALTY = 1.0
DEFAULT_TVL_K = 20.0
DEFAULT_TVL_M = 0.1
DEFAULT_ASSET_SIZE = 100_000.0


@dataclass(frozen=True)
class TrailingStats:
    """Total-APY statistics over a trailing window (successful snapshots only)"""
    current: float
    mean: float
    std: float
    min: float
    max: float
    count: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class OpportunityScore:
    """Score result plus the inputs it was computed from"""
    score: float
    stability_adjusted_apy: float
    tvl_confidence_factor: float
    apy_avg: float
    apy_std: float
    tvl_current: float
    asset_size: float

    def to_details(self) -> Dict[str, float]:
        """Snapshot annotation payload (opportunity_score_details column)"""
        return {
            'stability_adjusted_apy': self.stability_adjusted_apy,
            'tvl_confidence_factor': self.tvl_confidence_factor,
            'apy_avg_24h': self.apy_avg,
            'apy_std_24h': self.apy_std,
            'tvl_current': self.tvl_current,
            'my_asset_size': self.asset_size,
        }


def compute_trailing_stats(values: Sequence[float]) -> Optional[TrailingStats]:
    """
    Trailing statistics of a chronological APY series

    Standard deviation is the population std (divide by n), so a single
    sample has zero variance.

    Args:
        values: Total APY values, oldest first

    Returns:
        TrailingStats, or None when there are no samples
    """
    if len(values) == 0:
        return None

    arr = np.asarray(values, dtype=float)
    std = float(arr.std()) if len(arr) >= 2 else 0.0

    return TrailingStats(
        current=float(arr[-1]),
        mean=float(arr.mean()),
        std=std,
        min=float(arr.min()),
        max=float(arr.max()),
        count=int(len(arr)),
    )


def stability_adjusted_apy(
    apy_avg: float,
    apy_std: float,
    risk_penalty: float = DEFAULT_RISK_PENALTY
) -> float:
    return apy_avg - risk_penalty * apy_std


def _sigmoid(x: float) -> float:
    # Numerically stable for large |x|
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def tvl_confidence_factor(
    tvl_current: float,
    asset_size: float,
    k: float = DEFAULT_TVL_K,
    m: float = DEFAULT_TVL_M
) -> float:
    """
    Confidence in [0, 1] that the pool can absorb asset_size

    Returns 0 when tvl_current <= 0 or asset_size <= 0. Monotone
    non-decreasing in tvl_current, tends to 1 as TVL grows.
    """
    if tvl_current <= 0 or asset_size <= 0:
        return 0.0
    return _sigmoid(k * (tvl_current / asset_size - m))


def calculate_opportunity_score(
    apy_avg: float,
    apy_std: float,
    tvl_current: float,
    asset_size: float = DEFAULT_ASSET_SIZE,
    risk_penalty: float = DEFAULT_RISK_PENALTY,
    k: float = DEFAULT_TVL_K,
    m: float = DEFAULT_TVL_M
) -> OpportunityScore:
    """
    Calculate the opportunity score of a pool

    Args:
        apy_avg: Mean total APY over the trailing window (percent)
        apy_std: Std of total APY over the trailing window (percent)
        tvl_current: Current pool TVL (USD)
        asset_size: Capital we would deploy (USD)
        risk_penalty: Weight of volatility against the average
        k: Sigmoid steepness
        m: TVL/asset ratio at which confidence is 0.5

    Returns:
        OpportunityScore (score is never negative)
    """
    adjusted = stability_adjusted_apy(apy_avg, apy_std, risk_penalty)
    confidence = tvl_confidence_factor(tvl_current, asset_size, k, m)

    return OpportunityScore(
        score=max(0.0, adjusted * confidence),
        stability_adjusted_apy=adjusted,
        tvl_confidence_factor=confidence,
        apy_avg=apy_avg,
        apy_std=apy_std,
        tvl_current=tvl_current,
        asset_size=asset_size,
    )


def score_from_stats(
    stats: Optional[TrailingStats],
    tvl_usd: Optional[float],
    asset_size: float = DEFAULT_ASSET_SIZE,
    risk_penalty: float = DEFAULT_RISK_PENALTY,
    k: float = DEFAULT_TVL_K,
    m: float = DEFAULT_TVL_M
) -> Optional[OpportunityScore]:
    """Score from trailing stats, None when history or TVL is missing"""
    if stats is None or stats.count == 0 or not tvl_usd:
        return None
    return calculate_opportunity_score(
        apy_avg=stats.mean,
        apy_std=stats.std,
        tvl_current=tvl_usd,
        asset_size=asset_size,
        risk_penalty=risk_penalty,
        k=k,
        m=m,
    )
