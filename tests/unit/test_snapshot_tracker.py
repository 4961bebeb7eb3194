"""
Tests for the pool snapshot tracker

Covers:
1. refresh_all: one snapshot per pool, failures isolated
2. Opportunity score from stored history + fresh reading
3. Ranking: freshness filter, tracked-only, re-scoring by asset size
4. Market averages (all pools + per token)
5. Provider rate limiting on one pool does not affect the others
"""
import json
import threading
from collections import defaultdict
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import requests

from vaultpilot.data import YieldProviderClient
from vaultpilot.database import PoolSnapshot
from vaultpilot.tracker import SnapshotTracker, build_market_average, sort_ranked

from tests.conftest import NOW, POOL_A, POOL_B, POOL_C, POOL_D, USDT0, USDXL


class MutableClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def make_tracker(store, pools, clock):
    def _create(provider, **kwargs):
        kwargs.setdefault('asset_size', 100_000)
        return SnapshotTracker(store, provider, pools, clock=clock, **kwargs)
    return _create


def _seed(store, pool_address, apy, at, tvl_usd=1e7, token=USDT0, success=True):
    store.add_pool_snapshot(PoolSnapshot(
        pool_address=pool_address,
        chain='hyperevm',
        description=f"seed {pool_address[2:4]}",
        input_token=token,
        timestamp=at,
        historic_apy=apy,
        rewards_apy=0.0,
        total_apy=apy,
        tvl=tvl_usd,
        tvl_usd=tvl_usd,
        success=success,
    ))


# =============================================================================
# REFRESH
# =============================================================================

class TestRefreshAll:
    """Tests for refresh_all."""

    def test_one_snapshot_per_pool(self, make_tracker, fake_provider, store):
        """Every tracked pool gets exactly one snapshot."""
        provider = fake_provider({POOL_A: (8.0, 1e7), POOL_B: (6.0, 5e6), POOL_C: (4.0, 2e6)})
        tracker = make_tracker(provider)

        written = tracker.refresh_all()

        assert len(written) == 3
        assert all(s.success for s in written)
        assert {s.pool_address for s in written} == {POOL_A, POOL_B, POOL_C}
        assert len(store.pool_history(POOL_A)) == 1

    def test_failed_pool_recorded_and_isolated(self, make_tracker, fake_provider, store):
        """A provider failure on one pool writes a failed snapshot, others succeed."""
        provider = fake_provider({POOL_A: (8.0, 1e7), POOL_B: None, POOL_C: (4.0, 2e6)})
        tracker = make_tracker(provider)

        written = {s.pool_address: s for s in tracker.refresh_all()}

        assert written[POOL_B].success is False
        assert written[POOL_B].error_message == "Historic APY unavailable from yield provider"
        assert written[POOL_B].opportunity_score is None
        assert written[POOL_A].success and written[POOL_C].success
        assert store.pool_history(POOL_B) == []
        assert len(store.pool_history(POOL_B, success_only=False)) == 1

    def test_provider_exception_does_not_abort_refresh(self, make_tracker, fake_provider):
        """An exception from the provider is contained to its pool."""
        provider = fake_provider({POOL_A: (8.0, 1e7), POOL_B: (6.0, 5e6), POOL_C: (4.0, 2e6)})
        original = provider.fetch_historic_apy

        def flaky(pool_address, chain):
            if pool_address == POOL_C:
                raise RuntimeError("boom")
            return original(pool_address, chain)

        provider.fetch_historic_apy = flaky
        written = {s.pool_address: s for s in make_tracker(provider).refresh_all()}

        assert written[POOL_C].success is False
        assert "boom" in written[POOL_C].error_message
        assert written[POOL_A].success

    def test_score_uses_trailing_window(self, make_tracker, fake_provider, store):
        """Score is computed from history inside the window plus the fresh value."""
        _seed(store, POOL_A, 6.0, NOW - timedelta(hours=2))
        _seed(store, POOL_A, 100.0, NOW - timedelta(hours=30))  # outside 24h window
        provider = fake_provider({POOL_A: (10.0, 1e9), POOL_B: None, POOL_C: None})

        written = {s.pool_address: s for s in make_tracker(provider).refresh_all()}
        snap = written[POOL_A]

        # mean 8, population std 2 -> stability 6, confidence ~1
        assert snap.opportunity_score_details['apy_avg_24h'] == pytest.approx(8.0)
        assert snap.opportunity_score_details['apy_std_24h'] == pytest.approx(2.0)
        assert snap.opportunity_score == pytest.approx(6.0, rel=1e-6)
        assert snap.opportunity_score_asset_size == 100_000

    def test_missing_tvl_leaves_score_empty(self, make_tracker, fake_provider):
        """A pool without TVL is tracked but not scored."""
        provider = fake_provider({POOL_A: (8.0, None), POOL_B: None, POOL_C: None})

        snap = {s.pool_address: s for s in make_tracker(provider).refresh_all()}[POOL_A]

        assert snap.success is True
        assert snap.opportunity_score is None

    def test_input_token_from_provider(self, store, fake_provider, clock):
        """Input token is filled from the provider when not configured."""
        from vaultpilot.pools import PoolIdentity

        provider = fake_provider({POOL_D: (5.0, 1e6)}, input_token=USDXL)
        tracker = SnapshotTracker(store, provider, [PoolIdentity(POOL_D, 'hyperevm')], clock=clock)

        snap = tracker.refresh_all()[0]

        assert snap.input_token == USDXL


class TestRateLimitedPool:
    """Rate limiting on one pool, real client over a mocked session."""

    def test_retries_only_affect_limited_pool(self, make_tracker, store):
        """POOL_A gets 429 twice on APY and still succeeds; others unaffected."""
        lock = threading.Lock()
        attempts = defaultdict(int)
        sleeps = []

        def post(url, json=None, timeout=None):
            key = (url.rsplit('/', 1)[-1], json['pool_address'])
            with lock:
                attempts[key] += 1
                n = attempts[key]

            resp = requests.Response()
            resp.url = url
            if key == ('historical-apy', POOL_A) and n <= 2:
                resp.status_code = 429
                resp._content = b''
                return resp

            resp.status_code = 200
            if url.endswith('historical-apy'):
                body = {'historic_yield': {'apy': {'apy': 5.0}, 'input_token': USDT0}}
            else:
                body = {'tvl': {'tvl': 1e7, 'tvl_usd': 1e7}}
            resp._content = _json_bytes(body)
            return resp

        session = MagicMock()
        session.headers = {}
        session.post.side_effect = post

        provider = YieldProviderClient(session=session, sleep=sleeps.append)
        written = {s.pool_address: s for s in make_tracker(provider).refresh_all()}

        assert all(s.success for s in written.values())
        assert attempts[('historical-apy', POOL_A)] == 3
        assert attempts[('historical-apy', POOL_B)] == 1
        assert attempts[('historical-apy', POOL_C)] == 1
        assert sleeps == [1.0, 2.0]
        assert len(written) == 3


def _json_bytes(body) -> bytes:
    return json.dumps(body).encode()


# =============================================================================
# QUERIES & RANKING
# =============================================================================

class TestQueries:
    """Tests for history and trailing stats."""

    def test_trailing_stats_window(self, make_tracker, fake_provider, store):
        """Only successful snapshots inside the window count."""
        _seed(store, POOL_A, 4.0, NOW - timedelta(hours=1))
        _seed(store, POOL_A, 6.0, NOW - timedelta(minutes=5))
        _seed(store, POOL_A, 50.0, NOW - timedelta(minutes=1), success=False)
        _seed(store, POOL_A, 99.0, NOW - timedelta(days=3))

        stats = make_tracker(fake_provider({})).trailing_stats(POOL_A)

        assert stats.count == 2
        assert stats.mean == pytest.approx(5.0)
        assert stats.current == 6.0

    def test_trailing_stats_empty(self, make_tracker, fake_provider):
        """No history gives None."""
        assert make_tracker(fake_provider({})).trailing_stats(POOL_B) is None


class TestRanking:
    """Tests for ranked_pools."""

    def test_sorted_by_score(self, make_tracker, fake_provider):
        """Best score first."""
        provider = fake_provider({POOL_A: (4.0, 1e9), POOL_B: (9.0, 1e9), POOL_C: (6.0, 1e9)})
        tracker = make_tracker(provider)
        tracker.refresh_all()

        ranked = tracker.ranked_pools()

        assert [p.pool_address for p in ranked] == [POOL_B, POOL_C, POOL_A]

    def test_stale_snapshots_excluded(self, make_tracker, fake_provider, store):
        """Pools whose latest data is older than the freshness bound are dropped."""
        _seed(store, POOL_A, 5.0, NOW - timedelta(minutes=10))
        _seed(store, POOL_B, 9.0, NOW - timedelta(hours=3))

        ranked = make_tracker(fake_provider({}), max_snapshot_age_minutes=60).ranked_pools()

        assert [p.pool_address for p in ranked] == [POOL_A]

    def test_untracked_pools_excluded(self, make_tracker, fake_provider, store):
        """Snapshots of pools no longer configured are ignored."""
        _seed(store, POOL_D, 20.0, NOW)
        _seed(store, POOL_A, 5.0, NOW)

        ranked = make_tracker(fake_provider({})).ranked_pools()

        assert [p.pool_address for p in ranked] == [POOL_A]

    def test_input_token_filter(self, make_tracker, fake_provider, store):
        """Only pools accepting the requested token."""
        _seed(store, POOL_A, 5.0, NOW, token=USDT0)
        _seed(store, POOL_B, 9.0, NOW, token=USDXL)

        ranked = make_tracker(fake_provider({})).ranked_pools(input_token=USDXL.upper().replace('0X', '0x'))

        assert [p.pool_address for p in ranked] == [POOL_B]

    def test_rescored_for_other_asset_size(self, make_tracker, fake_provider):
        """A larger asset size lowers the confidence on a shallow pool."""
        provider = fake_provider({POOL_A: (8.0, 200_000), POOL_B: None, POOL_C: None})
        tracker = make_tracker(provider)
        tracker.refresh_all()

        default = tracker.ranked_pools()[0]
        large = tracker.ranked_pools(asset_size=2_000_000)[0]

        assert default.asset_size == 100_000
        assert large.asset_size == 2_000_000
        assert large.opportunity_score < default.opportunity_score

    def test_unscored_pools_after_scored(self, ranked_pool):
        """Pools without a score rank after scored ones, by APY."""
        ranked = sort_ranked([
            ranked_pool(POOL_A, score=None, apy=20.0),
            ranked_pool(POOL_B, score=2.0, apy=3.0),
            ranked_pool(POOL_C, score=None, apy=25.0),
        ])

        assert [p.pool_address for p in ranked] == [POOL_B, POOL_C, POOL_A]


# =============================================================================
# MARKET AVERAGE
# =============================================================================

class TestMarketAverage:
    """Tests for TVL-weighted market averages."""

    def test_weighted_average(self, ranked_pool):
        """APY weighted by USD TVL."""
        average = build_market_average(
            [ranked_pool(POOL_A, apy=10.0, tvl_usd=3e6), ranked_pool(POOL_B, apy=2.0, tvl_usd=1e6)],
            None,
            NOW,
        )

        assert average.market_avg_apy == pytest.approx(8.0)
        assert average.total_tvl_usd == 4e6
        assert average.pool_count == 2
        assert sum(p['weight'] for p in average.pool_breakdown) == pytest.approx(1.0)

    def test_refresh_stores_all_and_per_token(self, make_tracker, fake_provider, store):
        """Refresh writes an all-pools row and one per input token."""
        provider = fake_provider({POOL_A: (8.0, 1e7), POOL_B: (6.0, 1e7), POOL_C: None})
        make_tracker(provider).refresh_all()

        overall = store.market_average_history()
        per_token = store.market_average_history(USDT0)

        assert len(overall) == 1
        assert overall[0].market_avg_apy == pytest.approx(7.0)
        assert len(per_token) == 1
        assert per_token[0].pool_count == 2
