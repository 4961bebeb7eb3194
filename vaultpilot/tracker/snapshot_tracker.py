"""
Pool Snapshot Tracker

Polls the yield provider for every tracked pool, persists one timestamped
snapshot per pool per refresh, and serves trailing-window aggregates and the
current pool ranking.

Refresh flow:
1. Fan out APY + TVL fetches for all pools (thread pool, bounded by pool count)
2. Fan in; for each pool compute the opportunity score from the trailing
   window of stored history plus the fresh reading
3. Write one snapshot per pool (success or failure), sequentially
4. Store TVL-weighted market averages (all pools + per input token)

A failure on one pool never blocks the others.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from vaultpilot.data.yield_client import ApyReading, TvlReading, YieldProviderClient
from vaultpilot.database import MarketAverage, PoolSnapshot, Store, utc_now
from vaultpilot.pools import PoolIdentity
from vaultpilot.scorer import (
    DEFAULT_ASSET_SIZE,
    TrailingStats,
    compute_trailing_stats,
    score_from_stats,
)
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


@dataclass
class RankedPool:
    """A pool as seen by the ranking (latest successful snapshot, possibly re-scored)"""
    pool_address: str
    description: str
    chain: str
    input_token: Optional[str]
    total_apy: float
    tvl_usd: Optional[float]
    opportunity_score: Optional[float]
    timestamp: datetime
    url: str = ""
    historic_apy: float = 0.0
    rewards_apy: float = 0.0
    score_details: Optional[Dict] = None
    asset_size: Optional[float] = None

    def to_summary(self) -> Dict:
        """Compact form stored on automation records"""
        return {
            'pool_address': self.pool_address,
            'description': self.description,
            'opportunity_score': self.opportunity_score,
            'apy': self.total_apy,
            'tvl_usd': self.tvl_usd,
        }


def sort_ranked(pools: Sequence[RankedPool]) -> List[RankedPool]:
    """Scored pools first by score desc, then unscored pools by APY desc"""
    return sorted(
        pools,
        key=lambda p: (
            p.opportunity_score is not None,
            p.opportunity_score if p.opportunity_score is not None else p.total_apy,
            p.total_apy,
        ),
        reverse=True
    )


@dataclass
class _PoolFetch:
    pool: PoolIdentity
    apy: Optional[ApyReading] = None
    tvl: Optional[TvlReading] = None
    error: Optional[str] = None


class SnapshotTracker:
    """
    Snapshot tracker over an injected Store and yield provider

    Example:
        >>> tracker = SnapshotTracker(store, client, pools)
        >>> tracker.refresh_all()
        >>> for pool in tracker.ranked_pools():
        ...     print(pool.description, pool.opportunity_score)
    """

    def __init__(
        self,
        store: Store,
        provider: YieldProviderClient,
        pools: Sequence[PoolIdentity],
        asset_size: float = DEFAULT_ASSET_SIZE,
        window_hours: float = 24,
        risk_penalty: float = 1.0,
        tvl_k: float = 20.0,
        tvl_m: float = 0.1,
        max_snapshot_age_minutes: Optional[float] = None,
        max_workers: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.provider = provider
        self.pools = list(pools)
        self.asset_size = asset_size
        self.window = timedelta(hours=window_hours)
        self.risk_penalty = risk_penalty
        self.tvl_k = tvl_k
        self.tvl_m = tvl_m
        self.max_snapshot_age_minutes = max_snapshot_age_minutes
        self.max_workers = max_workers
        self._clock = clock

    @classmethod
    def from_config(cls, config, store: Store, pools: Sequence[PoolIdentity]) -> "SnapshotTracker":
        return cls(
            store=store,
            provider=YieldProviderClient.from_config(config),
            pools=pools,
            asset_size=config.get('scoring.asset_size', DEFAULT_ASSET_SIZE),
            window_hours=config.get('scoring.window_hours', 24),
            risk_penalty=config.get('scoring.risk_penalty', 1.0),
            tvl_k=config.get('scoring.tvl_k', 20.0),
            tvl_m=config.get('scoring.tvl_m', 0.1),
            max_snapshot_age_minutes=config.get('ranking.max_snapshot_age_minutes'),
            max_workers=config.get('tracker.max_workers'),
        )

    # =========================================================================
    # REFRESH
    # =========================================================================

    def refresh_all(self, pools: Optional[Sequence[PoolIdentity]] = None) -> List[PoolSnapshot]:
        """
        Fetch and persist a snapshot for every pool

        Args:
            pools: Pools to refresh (defaults to the tracked set)

        Returns:
            Snapshots written this refresh (failed fetches included)
        """
        pools = list(pools) if pools is not None else self.pools
        if not pools:
            return []

        logger.info(f"Refreshing {len(pools)} pools")
        fetches = self._fetch_all(pools)

        written: List[PoolSnapshot] = []
        for fetch in fetches:
            snapshot = self._build_snapshot(fetch)
            try:
                self.store.add_pool_snapshot(snapshot)
                written.append(snapshot)
            except Exception as e:
                logger.error(f"Failed to save snapshot for {fetch.pool.label}: {e}", exc_info=True)

        ok = sum(1 for s in written if s.success)
        logger.info(f"Refresh complete: {ok}/{len(pools)} pools succeeded")

        try:
            self.store_market_averages()
        except Exception as e:
            logger.error(f"Failed to store market averages: {e}", exc_info=True)

        return written

    def _fetch_all(self, pools: Sequence[PoolIdentity]) -> List[_PoolFetch]:
        workers = self.max_workers or min(32, 2 * len(pools))
        fetches = [_PoolFetch(pool=pool) for pool in pools]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pool-fetch") as executor:
            futures = [
                (
                    fetch,
                    executor.submit(self.provider.fetch_historic_apy, fetch.pool.address, fetch.pool.chain),
                    executor.submit(self.provider.fetch_tvl, fetch.pool.address, fetch.pool.chain),
                )
                for fetch in fetches
            ]

            for fetch, apy_future, tvl_future in futures:
                try:
                    fetch.apy = apy_future.result()
                except Exception as e:
                    fetch.error = f"APY fetch raised: {e}"
                    logger.error(f"APY fetch failed for {fetch.pool.label}: {e}", exc_info=True)

                try:
                    fetch.tvl = tvl_future.result()
                except Exception as e:
                    logger.error(f"TVL fetch failed for {fetch.pool.label}: {e}", exc_info=True)

                if fetch.apy is None and fetch.error is None:
                    fetch.error = "Historic APY unavailable from yield provider"

        return fetches

    def _build_snapshot(self, fetch: _PoolFetch) -> PoolSnapshot:
        pool = fetch.pool
        now = self._clock()

        if fetch.apy is None:
            logger.warning(f"No APY for {pool.label}: {fetch.error}")
            return PoolSnapshot(
                pool_address=pool.address,
                chain=pool.chain,
                description=pool.description,
                url=pool.url,
                input_token=pool.input_token,
                timestamp=now,
                historic_apy=0.0,
                rewards_apy=0.0,
                total_apy=0.0,
                success=False,
                error_message=fetch.error,
            )

        total_apy = fetch.apy.total_apy
        tvl_native = fetch.tvl.tvl_native if fetch.tvl else None
        tvl_usd = fetch.tvl.tvl_usd if fetch.tvl else None

        history = self.store.pool_history(pool.address, since=now - self.window)
        stats = compute_trailing_stats([s.total_apy for s in history] + [total_apy])
        score = score_from_stats(
            stats, tvl_usd, self.asset_size, self.risk_penalty, self.tvl_k, self.tvl_m
        )

        if score is not None:
            logger.info(
                f"{pool.label}: APY {total_apy:.2f}% "
                f"(avg {stats.mean:.2f}%, std {stats.std:.2f}%) "
                f"TVL ${tvl_usd:,.0f} -> score {score.score:.2f} "
                f"[stability {score.stability_adjusted_apy:.2f}% x confidence "
                f"{score.tvl_confidence_factor * 100:.1f}%]"
            )
        else:
            logger.info(f"{pool.label}: APY {total_apy:.2f}% (no score: TVL unavailable)")

        return PoolSnapshot(
            pool_address=pool.address,
            chain=pool.chain,
            description=pool.description,
            url=pool.url,
            input_token=fetch.apy.input_token or pool.input_token,
            timestamp=now,
            historic_apy=fetch.apy.historic_apy,
            rewards_apy=fetch.apy.rewards_apy,
            total_apy=total_apy,
            tvl=tvl_native,
            tvl_usd=tvl_usd,
            opportunity_score=score.score if score else None,
            opportunity_score_details=score.to_details() if score else None,
            opportunity_score_asset_size=self.asset_size if score else None,
            raw_response=fetch.apy.raw,
            success=True,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def latest(self, pool_address: str) -> Optional[PoolSnapshot]:
        """Most recent successful snapshot of a pool"""
        return self.store.latest_successful_snapshot(pool_address)

    def history(self, pool_address: str, window: Optional[timedelta] = None) -> List[PoolSnapshot]:
        """Successful snapshots within the trailing window, oldest first"""
        window = window or self.window
        return self.store.pool_history(pool_address, since=self._clock() - window)

    def trailing_stats(
        self,
        pool_address: str,
        window: Optional[timedelta] = None
    ) -> Optional[TrailingStats]:
        """
        Total-APY statistics over the trailing window

        Returns:
            TrailingStats, or None when the window holds no successful snapshot
        """
        return compute_trailing_stats([s.total_apy for s in self.history(pool_address, window)])

    # =========================================================================
    # RANKING
    # =========================================================================

    def ranked_pools(
        self,
        asset_size: Optional[float] = None,
        input_token: Optional[str] = None
    ) -> List[RankedPool]:
        """
        Pools ranked as of now

        Uses the latest successful snapshot per tracked pool. Snapshots older
        than ranking.max_snapshot_age_minutes are ignored. When asset_size
        differs from the size a snapshot was scored with, the pool is
        re-scored from its trailing stats.

        Args:
            asset_size: Capital to score for (defaults to scoring.asset_size)
            input_token: Keep only pools accepting this token

        Returns:
            Pools sorted best first
        """
        asset_size = asset_size or self.asset_size
        since = None
        if self.max_snapshot_age_minutes:
            since = self._clock() - timedelta(minutes=self.max_snapshot_age_minutes)

        tracked = {p.address for p in self.pools}
        ranked: List[RankedPool] = []

        for snap in self.store.latest_successful_snapshots(since=since):
            if tracked and snap.pool_address not in tracked:
                continue
            if input_token and (snap.input_token or '').lower() != input_token.lower():
                continue

            score = snap.opportunity_score
            details = snap.opportunity_score_details
            scored_size = snap.opportunity_score_asset_size

            if snap.tvl_usd and scored_size != asset_size:
                rescored = score_from_stats(
                    self.trailing_stats(snap.pool_address),
                    snap.tvl_usd,
                    asset_size,
                    self.risk_penalty,
                    self.tvl_k,
                    self.tvl_m,
                )
                if rescored is not None:
                    score = rescored.score
                    details = rescored.to_details()
                    scored_size = asset_size

            ranked.append(RankedPool(
                pool_address=snap.pool_address,
                description=snap.description or '',
                chain=snap.chain,
                input_token=snap.input_token,
                total_apy=snap.total_apy,
                tvl_usd=snap.tvl_usd,
                opportunity_score=score,
                timestamp=snap.timestamp,
                url=snap.url or '',
                historic_apy=snap.historic_apy,
                rewards_apy=snap.rewards_apy,
                score_details=details,
                asset_size=scored_size,
            ))

        return sort_ranked(ranked)

    # =========================================================================
    # MARKET AVERAGE
    # =========================================================================

    def store_market_averages(self) -> List[MarketAverage]:
        """
        Store TVL-weighted average APY for all pools and per input token

        Market Average = sum(APY_i * TVL_i) / sum(TVL_i) over the latest
        successful snapshots with a positive USD TVL.
        """
        pools = [p for p in self.ranked_pools() if p.tvl_usd and p.tvl_usd > 0]
        if not pools:
            logger.debug("No pools with TVL - market average skipped")
            return []

        groups: Dict[Optional[str], List[RankedPool]] = {None: pools}
        for pool in pools:
            if pool.input_token:
                groups.setdefault(pool.input_token, []).append(pool)

        averages = []
        for token, members in groups.items():
            average = build_market_average(members, token, self._clock())
            self.store.add_market_average(average)
            averages.append(average)

            logger.info(
                f"Market average ({token or 'all pools'}): "
                f"{average.market_avg_apy:.2f}% over {average.pool_count} pools, "
                f"TVL ${average.total_tvl_usd:,.0f}"
            )

        return averages


def build_market_average(
    pools: Sequence[RankedPool],
    token_address: Optional[str],
    timestamp: datetime
) -> MarketAverage:
    """TVL-weighted market average of the given pools"""
    total_tvl_usd = sum(p.tvl_usd for p in pools)
    weighted = sum(p.total_apy * p.tvl_usd for p in pools)

    return MarketAverage(
        token_address=token_address,
        market_avg_apy=weighted / total_tvl_usd if total_tvl_usd > 0 else 0.0,
        total_tvl=total_tvl_usd,
        total_tvl_usd=total_tvl_usd,
        pool_count=len(pools),
        pool_breakdown=[
            {
                'pool_address': p.pool_address,
                'description': p.description,
                'apy': p.total_apy,
                'tvl_usd': p.tvl_usd,
                'weight': p.tvl_usd / total_tvl_usd if total_tvl_usd > 0 else 0.0,
            }
            for p in pools
        ],
        timestamp=timestamp,
    )
