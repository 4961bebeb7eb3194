"""
Vault Automation - one automation cycle

    store guard -> vault client (config) -> asset decimals check -> rank pools
    -> read allocation state -> vault snapshot -> decide -> execute
    -> AutomationRecord

Skipped cycles (store unreachable, automation credentials missing) write
nothing. Every cycle that gets past those guards writes exactly one
AutomationRecord, including cycles that fail before a decision is made.
"""

import dataclasses
import time
from typing import Callable, Dict, List, Optional, Sequence

from vaultpilot.config import ConfigurationError
from vaultpilot.database import AutomationRecord, PoolSnapshot, Store, VaultSnapshot, utc_now
from vaultpilot.executor.allocation_reader import AllocationState, AllocationStateReader
from vaultpilot.executor.buffer_policy import DEFAULT_DECIMALS
from vaultpilot.executor.decision_engine import ERROR, DecisionEngine
from vaultpilot.executor.orchestrator import ActionOutcome, ExecutionOrchestrator
from vaultpilot.pools import PoolIdentity
from vaultpilot.tracker import RankedPool, SnapshotTracker
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


def resolve_input_tokens(
    pools: Sequence[PoolIdentity],
    snapshots: Sequence[PoolSnapshot]
) -> List[PoolIdentity]:
    """
    Fill missing input tokens from the latest successful snapshot of each pool

    Pass snapshots without an age limit: a pool whose data went stale may still
    hold vault funds, so its allocation must keep being read.
    """
    tokens = {s.pool_address: s.input_token for s in snapshots if s.input_token}
    return [
        pool if pool.input_token else dataclasses.replace(pool, input_token=tokens.get(pool.address))
        for pool in pools
    ]


def verify_decimals(client, configured: int) -> None:
    """
    Raises:
        ConfigurationError: If the asset token's on-chain decimals differ
            from chain.asset_decimals (buffers would be sized in the wrong unit)
    """
    onchain = client.decimals()
    if onchain != configured:
        raise ConfigurationError(
            f"Asset {client.asset_address} has {onchain} decimals, "
            f"chain.asset_decimals is {configured}"
        )


def build_vault_snapshot(
    vault_address: str,
    state: AllocationState,
    ranked: Sequence[RankedPool],
    decimals: int = DEFAULT_DECIMALS
) -> VaultSnapshot:
    """
    Vault distribution snapshot, idle funds included as their own line

    Percentages are computed over idle + allocated so they sum to 100.
    """
    unit = 10 ** decimals
    descriptions: Dict[str, str] = {p.pool_address: p.description for p in ranked}
    base = state.idle_balance + state.allocated_amount

    def pct(amount: int) -> float:
        return amount / base * 100 if base > 0 else 0.0

    lines = [
        {
            'pool_address': a.pool_address,
            'pool_description': descriptions.get(a.pool_address, a.pool_address),
            'amount': a.amount / unit,
            'percentage': pct(a.amount),
        }
        for a in state.allocations
    ]
    if state.idle_balance > 0:
        lines.append({
            'pool_address': vault_address.lower(),
            'pool_description': "Idle Funds (Vault)",
            'amount': state.idle_balance / unit,
            'percentage': pct(state.idle_balance),
        })

    return VaultSnapshot(
        vault_address=vault_address.lower(),
        idle_balance=str(state.idle_balance),
        total_allocated=str(state.allocated_amount),
        total_assets=str(state.total_assets),
        total_tvl=base / unit,
        allocations=lines,
        tvl_mismatch=state.has_anomaly,
        timestamp=utc_now(),
    )


class VaultAutomation:
    """
    Runs automation cycles

    Example:
        >>> automation = VaultAutomation.from_config(config, store, tracker, dry_run=True)
        >>> record = automation.run_cycle()
        >>> record.decision if record else 'skipped'
    """

    def __init__(
        self,
        store: Store,
        tracker: SnapshotTracker,
        client_factory: Callable[[], object],
        engine_factory: Callable[[str], DecisionEngine],
        orchestrator_factory: Callable[[object], ExecutionOrchestrator],
        decimals: int = DEFAULT_DECIMALS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            store: Store handle (liveness guard + persistence)
            tracker: Snapshot tracker (ranking source)
            client_factory: Builds the vault client; raises ConfigurationError
                when automation credentials are missing
            engine_factory: Builds the decision engine for an asset address
            orchestrator_factory: Builds the orchestrator for a vault client
            decimals: Asset token decimals
            clock: Monotonic clock for cycle durations
        """
        self.store = store
        self.tracker = tracker
        self.client_factory = client_factory
        self.engine_factory = engine_factory
        self.orchestrator_factory = orchestrator_factory
        self.decimals = decimals
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config,
        store: Store,
        tracker: SnapshotTracker,
        dry_run: bool = True
    ) -> "VaultAutomation":
        from vaultpilot.executor.vault_client import VaultClient

        return cls(
            store=store,
            tracker=tracker,
            client_factory=lambda: VaultClient.from_config(config, dry_run=dry_run),
            engine_factory=lambda asset: DecisionEngine.from_config(config, asset),
            orchestrator_factory=lambda client: ExecutionOrchestrator.from_config(config, client, store),
            decimals=config.get('chain.asset_decimals', DEFAULT_DECIMALS),
        )

    def run_cycle(self) -> Optional[AutomationRecord]:
        """
        Run one automation cycle now

        Returns:
            The cycle's AutomationRecord, or None if the cycle was skipped
        """
        started = self._clock()

        if not self.store.is_connected():
            logger.error("Skipping automation - database not connected")
            return None

        try:
            client = self.client_factory()
        except ConfigurationError as e:
            logger.error(f"Skipping automation - missing configuration: {e}")
            return None

        orchestrator = self.orchestrator_factory(client)
        mode = "DRY RUN" if getattr(client, 'dry_run', False) else "LIVE"
        logger.info(f"Automation cycle started [{mode}] for vault {client.vault_address}")

        decision = None
        state = None
        try:
            engine = self.engine_factory(client.asset_address)
            verify_decimals(client, self.decimals)

            ranked = self.tracker.ranked_pools()
            pools = resolve_input_tokens(self.tracker.pools, self.store.latest_successful_snapshots())

            state = AllocationStateReader(client, self.decimals).read(pools)
            self._save_vault_snapshot(client.vault_address, state, ranked)

            decision = engine.decide(ranked, state)
            logger.info(
                f"Decision: {decision.decision} ({decision.reason}) - "
                f"best={decision.best_pool.description if decision.best_pool else None}, "
                f"current={decision.current_pool.description if decision.current_pool else None}, "
                f"gap={decision.score_gap:.2f} [{decision.metric}]"
            )

        except Exception as e:
            logger.error(f"Automation cycle failed before execution: {e}", exc_info=True)
            record = orchestrator.build_record(
                decision,
                state,
                decision_name=ERROR,
                outcome=ActionOutcome(success=False, error_message=str(e)),
                success=False,
                error_message=str(e),
                duration=self._clock() - started,
            )
            orchestrator.save_record(record)
            return record

        record = orchestrator.execute(decision, state, started_at=started)
        logger.info(
            f"Automation cycle finished: {record.decision} "
            f"(success={record.success}, {record.duration_seconds or 0:.1f}s)"
        )
        return record

    def _save_vault_snapshot(
        self,
        vault_address: str,
        state: AllocationState,
        ranked: Sequence[RankedPool]
    ) -> None:
        try:
            snapshot = build_vault_snapshot(vault_address, state, ranked, self.decimals)
            self.store.add_vault_snapshot(snapshot)
        except Exception as e:
            logger.error(f"Failed to save vault snapshot: {e}", exc_info=True)
