"""
Executor module

Allocation reads, decisions, and on-chain execution for the managed vault.
"""

from .allocation_reader import Allocation, AllocationState, AllocationStateReader, eligible_pools
from .automation import VaultAutomation, build_vault_snapshot, resolve_input_tokens
from .buffer_policy import compute_buffer, deployable_amount
from .decision_engine import (
    DEPOSIT_IDLE,
    ERROR,
    NO_ACTION,
    REALLOCATE,
    Decision,
    DecisionEngine,
    compare_metric,
)
from .errors import TransactionFailedError
from .orchestrator import ActionOutcome, ExecutionOrchestrator

__all__ = [
    'Allocation',
    'AllocationState',
    'AllocationStateReader',
    'eligible_pools',
    'VaultAutomation',
    'build_vault_snapshot',
    'resolve_input_tokens',
    'compute_buffer',
    'deployable_amount',
    'DEPOSIT_IDLE',
    'ERROR',
    'NO_ACTION',
    'REALLOCATE',
    'Decision',
    'DecisionEngine',
    'compare_metric',
    'TransactionFailedError',
    'ActionOutcome',
    'ExecutionOrchestrator',
]
