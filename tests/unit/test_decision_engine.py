"""
Tests for the decision engine

Covers every regime:
1. Unallocated (deposit idle / nothing to deposit)
2. Allocated to the best pool (no action / optional idle sweep)
3. Allocated elsewhere (reallocate above the gap threshold, else no action)
4. Eligibility, metric fallback, idempotence
"""
import pytest

from vaultpilot.executor import (
    DEPOSIT_IDLE,
    NO_ACTION,
    REALLOCATE,
    DecisionEngine,
    compare_metric,
)
from vaultpilot.scorer import calculate_opportunity_score

from tests.conftest import POOL_A, POOL_B, POOL_C, POOL_D, TOKEN, USDT0, USDXL


@pytest.fixture
def engine():
    return DecisionEngine(asset_address=USDT0, min_gap=0.5)


@pytest.fixture
def ranked(ranked_pool):
    """C best, then B, then A"""
    return [
        ranked_pool(POOL_A, score=4.0, apy=5.0),
        ranked_pool(POOL_B, score=6.0, apy=7.0),
        ranked_pool(POOL_C, score=9.0, apy=10.0),
    ]


# =============================================================================
# UNALLOCATED
# =============================================================================

class TestUnallocated:
    """Vault holds only idle funds."""

    def test_deposit_idle_into_best(self, engine, ranked, allocation_state):
        """Idle above buffer is deposited into the best pool, minus buffer."""
        decision = engine.decide(ranked, allocation_state(idle=1000))

        assert decision.decision == DEPOSIT_IDLE
        assert decision.reason == "unallocated_idle_funds"
        assert decision.target_pool == POOL_C
        assert decision.amount == 999 * TOKEN
        assert decision.is_write

    def test_no_funds(self, engine, ranked, allocation_state):
        """Empty vault does nothing."""
        decision = engine.decide(ranked, allocation_state(idle=0))

        assert decision.decision == NO_ACTION
        assert decision.reason == "no_funds"
        assert not decision.is_write

    def test_dust_below_buffer(self, engine, ranked, allocation_state):
        """Idle smaller than the buffer is left alone."""
        decision = engine.decide(ranked, allocation_state(idle=0.005))

        assert decision.decision == NO_ACTION
        assert decision.reason == "idle_below_buffer"


# =============================================================================
# ALLOCATED TO BEST
# =============================================================================

class TestAllocatedToBest:
    """Capital already sits in the best pool."""

    def test_no_action(self, engine, ranked, allocation_state):
        """Current pool is the best pool."""
        decision = engine.decide(ranked, allocation_state(idle=50, allocations={POOL_C: 1000}))

        assert decision.decision == NO_ACTION
        assert decision.reason == "allocated_to_best_pool"
        assert decision.current_pool.pool_address == POOL_C

    def test_sweep_idle_when_enabled(self, ranked, allocation_state):
        """With sweeping on, leftover idle is deposited into the best pool."""
        engine = DecisionEngine(asset_address=USDT0, sweep_idle_when_allocated=True)

        decision = engine.decide(ranked, allocation_state(idle=50, allocations={POOL_C: 1000}))

        assert decision.decision == DEPOSIT_IDLE
        assert decision.reason == "sweep_idle_into_best_pool"
        assert decision.amount == 50 * TOKEN - TOKEN // 10


# =============================================================================
# ALLOCATED ELSEWHERE
# =============================================================================

class TestAllocatedSuboptimal:
    """Capital sits in pools other than the best."""

    def test_reallocate_from_all_allocated_pools(self, engine, ranked, allocation_state):
        """Gap above threshold withdraws from every allocated pool."""
        state = allocation_state(idle=0, allocations={POOL_A: 300, POOL_B: 700})

        decision = engine.decide(ranked, state)

        assert decision.decision == REALLOCATE
        assert decision.reason == "better_pool_found"
        assert decision.target_pool == POOL_C
        assert set(decision.source_pools) == {POOL_A, POOL_B}
        assert decision.current_pool.pool_address == POOL_B
        assert decision.score_gap == pytest.approx(3.0)
        assert decision.better_pool_found
        assert decision.metric == "opportunity_score"
        assert decision.amount == 999 * TOKEN

    def test_gap_exactly_at_threshold_reallocates(self, ranked_pool, allocation_state):
        """Threshold is inclusive."""
        engine = DecisionEngine(asset_address=USDT0, min_gap=2.0)
        ranked = [ranked_pool(POOL_A, score=5.0), ranked_pool(POOL_B, score=7.0)]

        decision = engine.decide(ranked, allocation_state(allocations={POOL_A: 100}))

        assert decision.decision == REALLOCATE

    def test_gap_below_threshold(self, engine, ranked_pool, allocation_state):
        """A marginally better pool is not worth moving for."""
        ranked = [ranked_pool(POOL_A, score=5.0), ranked_pool(POOL_B, score=5.3)]

        decision = engine.decide(ranked, allocation_state(allocations={POOL_A: 100}))

        assert decision.decision == NO_ACTION
        assert decision.reason == "gap_below_threshold"
        assert decision.better_pool_found
        assert decision.score_gap == pytest.approx(0.3)

    def test_current_pool_unranked(self, engine, ranked, allocation_state):
        """Allocated pool missing from this cycle's data is left alone."""
        decision = engine.decide(ranked, allocation_state(allocations={POOL_D: 100}))

        assert decision.decision == NO_ACTION
        assert decision.reason == "current_pool_unranked"

    def test_apy_fallback_when_unscored(self, engine, ranked_pool, allocation_state):
        """Without both scores the comparison uses total APY."""
        ranked = [ranked_pool(POOL_A, score=None, apy=4.0), ranked_pool(POOL_B, score=3.0, apy=6.0)]

        decision = engine.decide(ranked, allocation_state(allocations={POOL_A: 100}))

        assert decision.metric == "total_apy"
        assert decision.score_gap == pytest.approx(2.0)
        assert decision.decision == REALLOCATE


# =============================================================================
# GENERAL
# =============================================================================

class TestGeneral:
    """Eligibility, determinism and metric helpers."""

    def test_only_asset_pools_eligible(self, engine, ranked_pool, allocation_state):
        """A higher-scoring pool for another token is ignored."""
        ranked = [
            ranked_pool(POOL_D, score=50.0, token=USDXL),
            ranked_pool(POOL_A, score=4.0),
        ]

        decision = engine.decide(ranked, allocation_state(idle=1000))

        assert decision.target_pool == POOL_A
        assert [p.pool_address for p in decision.ranked] == [POOL_A]

    def test_no_eligible_pools(self, engine, ranked_pool, allocation_state):
        """Nothing to rank means no action."""
        decision = engine.decide([ranked_pool(POOL_D, score=5.0, token=USDXL)], allocation_state(idle=1000))

        assert decision.decision == NO_ACTION
        assert decision.reason == "no_eligible_pools"

    def test_idempotent(self, engine, ranked, allocation_state):
        """Same inputs, same decision."""
        state = allocation_state(idle=10, allocations={POOL_A: 300, POOL_B: 700})

        assert engine.decide(ranked, state) == engine.decide(ranked, state)

    def test_input_order_irrelevant(self, engine, ranked, allocation_state):
        """Ranking order is recomputed from scores."""
        state = allocation_state(idle=1000)

        assert engine.decide(list(reversed(ranked)), state) == engine.decide(ranked, state)

    def test_stable_pool_preferred_over_volatile(self, engine, ranked_pool, allocation_state):
        """8% +/- 1 beats 9% +/- 6 when both pools are deep."""
        p1 = calculate_opportunity_score(8.0, 1.0, tvl_current=1e9, asset_size=100_000)
        p2 = calculate_opportunity_score(9.0, 6.0, tvl_current=1e9, asset_size=100_000)
        ranked = [
            ranked_pool(POOL_B, score=p2.score, apy=9.0),
            ranked_pool(POOL_A, score=p1.score, apy=8.0),
        ]

        decision = engine.decide(ranked, allocation_state(idle=1000))

        assert decision.target_pool == POOL_A

    def test_compare_metric(self, ranked_pool):
        """Score gap when both are scored."""
        metric, gap = compare_metric(ranked_pool(POOL_A, score=7.0), ranked_pool(POOL_B, score=5.5))

        assert metric == "opportunity_score"
        assert gap == pytest.approx(1.5)

    def test_from_config(self, config):
        """Threshold and decimals come from config."""
        engine = DecisionEngine.from_config(config, USDT0)

        assert engine.min_gap == 0.5
        assert engine.decimals == 6
        assert engine.sweep_idle_when_allocated is False
