"""
Decision Engine

Maps (ranked pools, allocation state) to exactly one action. The regime is
determined fresh every cycle from the on-chain state:

- Unallocated + idle funds      -> deposit_idle (idle - buffer into the best pool)
- Allocated to the best pool    -> no_action (or deposit_idle when sweeping idle)
- Allocated elsewhere, gap >= threshold
                                -> reallocate_to_better_pool
- Anything else                 -> no_action, with a reason

Ranking compares opportunity scores when both sides have one, otherwise
total APY. Only pools accepting the vault asset are eligible.

decide() is pure: no I/O, equal inputs give equal decisions.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from vaultpilot.executor.allocation_reader import AllocationState
from vaultpilot.executor.buffer_policy import DEFAULT_DECIMALS, deployable_amount
from vaultpilot.tracker import RankedPool, sort_ranked

NO_ACTION = "no_action"
DEPOSIT_IDLE = "deposit_idle"
REALLOCATE = "reallocate_to_better_pool"
ERROR = "error"

DEFAULT_MIN_GAP = 0.5  # Percentage points (score and APY share the same scale)


@dataclass(frozen=True)
class Decision:
    """One cycle's decision"""
    decision: str
    reason: str
    best_pool: Optional[RankedPool] = None
    current_pool: Optional[RankedPool] = None
    target_pool: Optional[str] = None
    source_pools: Tuple[str, ...] = ()
    amount: int = 0  # Planned deposit (base units); reallocation re-computes after settlement
    score_gap: float = 0.0
    better_pool_found: bool = False
    metric: str = "opportunity_score"
    ranked: Tuple[RankedPool, ...] = field(default_factory=tuple)

    @property
    def is_write(self) -> bool:
        return self.decision in (DEPOSIT_IDLE, REALLOCATE)


def compare_metric(best: RankedPool, current: RankedPool) -> Tuple[str, float]:
    """
    Gap between two pools on the shared metric

    Returns:
        (metric name, best - current)
    """
    if best.opportunity_score is not None and current.opportunity_score is not None:
        return "opportunity_score", best.opportunity_score - current.opportunity_score
    return "total_apy", best.total_apy - current.total_apy


class DecisionEngine:
    """
    Stateless allocation decision maker

    Example:
        >>> engine = DecisionEngine(asset_address="0xb8ce...", min_gap=0.5)
        >>> decision = engine.decide(ranked_pools, allocation_state)
        >>> decision.decision
        'deposit_idle'
    """

    def __init__(
        self,
        asset_address: str,
        min_gap: float = DEFAULT_MIN_GAP,
        sweep_idle_when_allocated: bool = False,
        decimals: int = DEFAULT_DECIMALS
    ):
        self.asset_address = asset_address.lower()
        self.min_gap = min_gap
        self.sweep_idle_when_allocated = sweep_idle_when_allocated
        self.decimals = decimals

    @classmethod
    def from_config(cls, config, asset_address: str) -> "DecisionEngine":
        return cls(
            asset_address=asset_address,
            min_gap=config.get('automation.min_score_gap', DEFAULT_MIN_GAP),
            sweep_idle_when_allocated=config.get('automation.sweep_idle_when_allocated', False),
            decimals=config.get('chain.asset_decimals', DEFAULT_DECIMALS),
        )

    def eligible(self, ranked: Sequence[RankedPool]) -> List[RankedPool]:
        """Pools accepting the vault asset, best first"""
        return sort_ranked([
            p for p in ranked
            if p.input_token and p.input_token.lower() == self.asset_address
        ])

    def decide(self, ranked: Sequence[RankedPool], state: AllocationState) -> Decision:
        """
        Decide the action for this cycle

        Args:
            ranked: Pools with data this cycle (any order)
            state: Fresh allocation state

        Returns:
            Decision (never raises for well-formed inputs)
        """
        pools = tuple(self.eligible(ranked))
        if not pools:
            return Decision(NO_ACTION, "no_eligible_pools", ranked=pools)

        best = pools[0]
        deployable = deployable_amount(state.idle_balance, self.decimals)

        # ---------------------------------------------------------------------
        # Unallocated
        # ---------------------------------------------------------------------
        if not state.allocations:
            if deployable > 0:
                return Decision(
                    DEPOSIT_IDLE, "unallocated_idle_funds",
                    best_pool=best,
                    target_pool=best.pool_address,
                    amount=deployable,
                    ranked=pools,
                )
            reason = "idle_below_buffer" if state.idle_balance > 0 else "no_funds"
            return Decision(NO_ACTION, reason, best_pool=best, ranked=pools)

        allocated = set(state.allocated_pools)
        current = next((p for p in pools if p.pool_address in allocated), None)

        if current is None:
            return Decision(NO_ACTION, "current_pool_unranked", best_pool=best, ranked=pools)

        # ---------------------------------------------------------------------
        # Allocated to the best pool
        # ---------------------------------------------------------------------
        if current.pool_address == best.pool_address:
            if self.sweep_idle_when_allocated and deployable > 0:
                return Decision(
                    DEPOSIT_IDLE, "sweep_idle_into_best_pool",
                    best_pool=best,
                    current_pool=current,
                    target_pool=best.pool_address,
                    amount=deployable,
                    ranked=pools,
                )
            return Decision(
                NO_ACTION, "allocated_to_best_pool",
                best_pool=best, current_pool=current, ranked=pools,
            )

        # ---------------------------------------------------------------------
        # Allocated elsewhere
        # ---------------------------------------------------------------------
        metric, gap = compare_metric(best, current)
        better = gap > 0

        if better and gap >= self.min_gap:
            consolidated = state.idle_balance + state.allocated_amount
            return Decision(
                REALLOCATE, "better_pool_found",
                best_pool=best,
                current_pool=current,
                target_pool=best.pool_address,
                source_pools=tuple(state.allocated_pools),
                amount=deployable_amount(consolidated, self.decimals),
                score_gap=gap,
                better_pool_found=True,
                metric=metric,
                ranked=pools,
            )

        return Decision(
            NO_ACTION, "gap_below_threshold" if better else "current_pool_not_worse",
            best_pool=best,
            current_pool=current,
            score_gap=gap,
            better_pool_found=better,
            metric=metric,
            ranked=pools,
        )
