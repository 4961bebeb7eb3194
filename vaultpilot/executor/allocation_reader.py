"""
Allocation State Reader

Point-in-time read of where the vault's capital sits: idle balance in the
vault, plus the amount allocated to each tracked pool that accepts the vault's
asset. Re-read at every cycle, never cached.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from vaultpilot.pools import PoolIdentity
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Allocation:
    pool_address: str
    amount: int


@dataclass
class AllocationState:
    """Vault capital distribution (base units)"""
    idle_balance: int
    total_assets: int
    allocations: List[Allocation] = field(default_factory=list)
    decimals: int = 6

    @property
    def allocated_amount(self) -> int:
        return sum(a.amount for a in self.allocations)

    @property
    def allocated_pools(self) -> List[str]:
        return [a.pool_address for a in self.allocations]

    @property
    def mismatch(self) -> int:
        """idle + allocated - total_assets (base units)"""
        return self.idle_balance + self.allocated_amount - self.total_assets

    @property
    def has_anomaly(self) -> bool:
        """idle + allocated differs from total assets by more than 0.01 token"""
        tolerance = 10 ** self.decimals // 100
        return abs(self.mismatch) > tolerance

    def amount_in(self, pool_address: str) -> int:
        pool_address = pool_address.lower()
        return sum(a.amount for a in self.allocations if a.pool_address == pool_address)

    def to_dict(self) -> Dict:
        """Audit form: amounts as decimal strings"""
        return {
            'idle_balance': str(self.idle_balance),
            'total_assets': str(self.total_assets),
            'allocated_amount': str(self.allocated_amount),
            'allocations': [
                {'pool_address': a.pool_address, 'amount': str(a.amount)}
                for a in self.allocations
            ],
        }


def eligible_pools(pools: Sequence[PoolIdentity], asset_address: str) -> List[PoolIdentity]:
    """Pools whose input token is the vault asset"""
    asset_address = asset_address.lower()
    return [p for p in pools if p.input_token and p.input_token.lower() == asset_address]


class AllocationStateReader:
    """Reads AllocationState through a vault client"""

    def __init__(self, vault_client, decimals: int = 6):
        self.client = vault_client
        self.decimals = decimals

    def read(self, tracked_pools: Sequence[PoolIdentity]) -> AllocationState:
        """
        Read idle balance, total assets and non-zero allocations

        Args:
            tracked_pools: Tracked pools (filtered to the vault asset here)

        Returns:
            AllocationState (zero allocations excluded)
        """
        idle = self.client.idle_balance()
        total_assets = self.client.total_assets()

        allocations = []
        for pool in eligible_pools(tracked_pools, self.client.asset_address):
            amount = self.client.allocation_of(pool.address)
            if amount > 0:
                allocations.append(Allocation(pool.address, amount))

        state = AllocationState(
            idle_balance=idle,
            total_assets=total_assets,
            allocations=allocations,
            decimals=self.decimals,
        )

        if state.has_anomaly:
            logger.warning(
                f"Vault TVL mismatch: idle {idle} + allocated {state.allocated_amount} "
                f"!= total assets {total_assets} (diff {state.mismatch})"
            )

        logger.info(
            f"Vault state: idle={idle}, allocated={state.allocated_amount} "
            f"across {len(allocations)} pools, total_assets={total_assets}"
        )
        return state
