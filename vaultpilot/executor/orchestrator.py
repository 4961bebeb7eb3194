"""
Execution Orchestrator

Carries out a Decision against the vault and writes exactly one
AutomationRecord for it.

- deposit_idle: one reallocate tx for idle - buffer, wait for confirmation
- reallocate:   withdraw from every allocated pool (each confirmed before the
                next), poll until idle reaches prior idle + withdrawn (or the
                settlement timeout), then deposit post-wait idle - buffer
- no_action:    no writes

Ownership is checked before anything is sent. Execution errors never
propagate: they end up in the record with success=False, and the next cycle
starts from whatever state the chain is in.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from vaultpilot.config import ConfigurationError
from vaultpilot.database import AutomationRecord, Store, utc_now
from vaultpilot.executor.allocation_reader import AllocationState
from vaultpilot.executor.buffer_policy import DEFAULT_DECIMALS, compute_buffer
from vaultpilot.executor.decision_engine import (
    DEPOSIT_IDLE,
    ERROR,
    REALLOCATE,
    Decision,
)
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


@dataclass
class ActionOutcome:
    """Result of the chain writes for one decision"""
    type: str = "none"  # deposit, reallocate, none
    from_pools: List[str] = field(default_factory=list)
    to_pool: Optional[str] = None
    amount: int = 0
    tx_hashes: List[str] = field(default_factory=list)
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'type': self.type,
            'from_pool': ",".join(self.from_pools) if self.from_pools else None,
            'to_pool': self.to_pool,
            'amount': str(self.amount),
            'tx_hash': self.tx_hashes[-1] if self.tx_hashes else None,
            'tx_hashes': list(self.tx_hashes),
            'success': self.success,
            'error_message': self.error_message,
        }


class ExecutionOrchestrator:
    """
    Executes decisions through a vault client and records the outcome

    The vault client needs: signer_address, owner(), idle_balance(),
    withdraw_from_vault(), reallocate(), dry_run, vault_address.
    """

    def __init__(
        self,
        vault_client,
        store: Store,
        decimals: int = DEFAULT_DECIMALS,
        settlement_timeout: float = 60.0,
        poll_interval: float = 3.0,
        receipt_timeout: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = vault_client
        self.store = store
        self.decimals = decimals
        self.settlement_timeout = settlement_timeout
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config, vault_client, store: Store) -> "ExecutionOrchestrator":
        return cls(
            vault_client=vault_client,
            store=store,
            decimals=config.get('chain.asset_decimals', DEFAULT_DECIMALS),
            settlement_timeout=config.get('automation.settlement.timeout_seconds', 60),
            poll_interval=config.get('automation.settlement.poll_interval_seconds', 3),
            receipt_timeout=config.get('chain.receipt_timeout_seconds', 120),
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def verify_owner(self) -> None:
        """
        Raises:
            ConfigurationError: If the signer is not the vault owner
        """
        owner = self.client.owner().lower()
        signer = (self.client.signer_address or "").lower()
        if signer != owner:
            raise ConfigurationError(
                f"Signer {signer or '<none>'} is not the vault owner {owner}"
            )

    def execute(
        self,
        decision: Decision,
        state: AllocationState,
        started_at: Optional[float] = None
    ) -> AutomationRecord:
        """
        Execute a decision and persist its AutomationRecord

        Args:
            decision: Decision for this cycle
            state: Allocation state the decision was made from
            started_at: Cycle start (clock value) for the duration field

        Returns:
            The AutomationRecord (persisted unless the store failed)
        """
        started_at = started_at if started_at is not None else self._clock()
        outcome = self._new_outcome(decision)
        decision_name = decision.decision

        try:
            self.verify_owner()
        except ConfigurationError as e:
            logger.error(f"Automation aborted: {e}")
            decision_name = ERROR
            outcome = ActionOutcome(success=False, error_message=str(e))
        except Exception as e:
            logger.error(f"Ownership check failed: {e}", exc_info=True)
            decision_name = ERROR
            outcome = ActionOutcome(success=False, error_message=str(e))
        else:
            # Actions fill outcome in place: an interruption keeps the writes already sent
            try:
                if decision.decision == DEPOSIT_IDLE:
                    self._deposit_idle(decision, outcome)
                elif decision.decision == REALLOCATE:
                    self._reallocate(decision, state, outcome)
                else:
                    logger.info(f"No action: {decision.reason}")
            except Exception as e:
                logger.error(
                    f"Execution interrupted after {len(outcome.tx_hashes)} transaction(s): {e}",
                    exc_info=True
                )
                outcome.success = False
                outcome.error_message = outcome.error_message or str(e)

        record = self.build_record(
            decision,
            state,
            decision_name=decision_name,
            outcome=outcome,
            success=outcome.success and decision_name != ERROR,
            error_message=outcome.error_message,
            duration=self._clock() - started_at,
        )
        self.save_record(record)
        return record

    def build_record(
        self,
        decision: Optional[Decision],
        state: Optional[AllocationState],
        decision_name: str,
        outcome: Optional[ActionOutcome] = None,
        success: bool = False,
        error_message: Optional[str] = None,
        duration: Optional[float] = None
    ) -> AutomationRecord:
        """Assemble the audit record (does not persist it)"""
        current = None
        if decision is not None and decision.current_pool is not None:
            current = decision.current_pool.to_summary()
            if state is not None:
                current['allocated_amount'] = str(state.amount_in(decision.current_pool.pool_address))

        return AutomationRecord(
            vault_address=self.client.vault_address.lower(),
            timestamp=utc_now(),
            best_pool=decision.best_pool.to_summary() if decision and decision.best_pool else None,
            current_pool=current,
            available_pools=[p.to_summary() for p in decision.ranked] if decision else [],
            vault_state=state.to_dict() if state is not None else None,
            decision=decision_name,
            reason=decision.reason if decision else None,
            action=(outcome or ActionOutcome()).to_dict(),
            better_pool_found=decision.better_pool_found if decision else False,
            opportunity_score_difference=decision.score_gap if decision else 0.0,
            success=success,
            error_message=error_message,
            duration_seconds=duration,
        )

    def save_record(self, record: AutomationRecord) -> None:
        """Persist a record; a store failure is logged, never raised"""
        try:
            self.store.add_automation_record(record)
        except Exception as e:
            logger.error(f"Failed to save automation record: {e}", exc_info=True)
            return

        logger.info(
            f"Automation record saved: decision={record.decision}, "
            f"success={record.success}, gap={record.opportunity_score_difference:.2f}"
        )

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def _new_outcome(self, decision: Decision) -> ActionOutcome:
        if decision.decision == DEPOSIT_IDLE:
            return ActionOutcome(type="deposit", to_pool=decision.target_pool, amount=decision.amount)
        if decision.decision == REALLOCATE:
            return ActionOutcome(
                type="reallocate",
                from_pools=list(decision.source_pools),
                to_pool=decision.target_pool,
            )
        return ActionOutcome()

    def _deposit_idle(self, decision: Decision, outcome: ActionOutcome) -> None:
        logger.info(
            f"Depositing {decision.amount} idle into "
            f"{decision.best_pool.description if decision.best_pool else decision.target_pool}"
        )
        try:
            tx = self.client.reallocate(decision.target_pool, decision.amount)
            outcome.tx_hashes.append(tx.tx_hash)
            tx.wait(self.receipt_timeout)
        except Exception as e:
            logger.error(f"Deposit failed: {e}", exc_info=True)
            outcome.success = False
            outcome.error_message = str(e)

    def _reallocate(self, decision: Decision, state: AllocationState, outcome: ActionOutcome) -> None:
        prior_idle = self.client.idle_balance()
        withdrawn = 0

        # Sequential withdrawals, each confirmed before the next
        for pool_address in decision.source_pools:
            amount = state.amount_in(pool_address)
            if amount <= 0:
                continue

            logger.info(f"Withdrawing {amount} from {pool_address}")
            try:
                tx = self.client.withdraw_from_vault(pool_address, amount)
                outcome.tx_hashes.append(tx.tx_hash)
                tx.wait(self.receipt_timeout)
            except Exception as e:
                logger.error(f"Withdrawal from {pool_address} failed: {e}", exc_info=True)
                outcome.success = False
                outcome.error_message = f"Withdrawal from {pool_address} failed: {e}"
                return

            withdrawn += amount

        expected_idle = prior_idle + withdrawn
        if self.client.dry_run:
            idle = expected_idle
        else:
            idle = self.wait_for_idle(expected_idle)

        amount = max(0, idle - compute_buffer(idle, self.decimals))
        outcome.amount = amount

        if amount <= 0:
            outcome.success = False
            outcome.error_message = f"Nothing to deposit after withdrawals (idle {idle})"
            logger.error(outcome.error_message)
            return

        logger.info(f"Depositing {amount} into {decision.target_pool} (idle {idle})")
        try:
            tx = self.client.reallocate(decision.target_pool, amount)
            outcome.tx_hashes.append(tx.tx_hash)
            tx.wait(self.receipt_timeout)
        except Exception as e:
            logger.error(f"Deposit after withdrawals failed: {e}", exc_info=True)
            outcome.success = False
            outcome.error_message = f"Deposit into {decision.target_pool} failed: {e}"

    def wait_for_idle(self, expected: int) -> int:
        """
        Poll the idle balance until it reaches expected

        Returns:
            Last observed idle balance (returned as-is on timeout)
        """
        start = self._clock()

        while True:
            idle = self.client.idle_balance()
            if idle >= expected:
                return idle

            if self._clock() - start >= self.settlement_timeout:
                logger.warning(
                    f"Settlement wait timed out after {self.settlement_timeout:.0f}s: "
                    f"idle {idle} < expected {expected}, proceeding with observed balance"
                )
                return idle

            self._sleep(self.poll_interval)
