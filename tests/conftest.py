"""
Global test fixtures for VaultPilot

Provides reusable fixtures for all test modules: an in-memory store, a
scripted yield provider, a scripted vault client and a fake clock.
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vaultpilot.config.loader import Config
from vaultpilot.data.yield_client import ApyReading, TvlReading
from vaultpilot.database import Store
from vaultpilot.executor.allocation_reader import Allocation, AllocationState
from vaultpilot.executor.errors import TransactionFailedError
from vaultpilot.pools import PoolIdentity
from vaultpilot.tracker import RankedPool

TOKEN = 10 ** 6

USDT0 = "0xb8ce59fc3717ada4c02eadf9682a9e934f625ebb"
USDXL = "0xca79db4b49f608ef54a5cb813fbed3a6387bc645"
VAULT = "0x" + "11" * 20
OWNER = "0x" + "22" * 20
STRANGER = "0x" + "33" * 20

POOL_A = "0x" + "aa" * 20
POOL_B = "0x" + "bb" * 20
POOL_C = "0x" + "cc" * 20
POOL_D = "0x" + "dd" * 20

NOW = datetime(2026, 1, 15, 12, 0, 0)


# =============================================================================
# STORE
# =============================================================================

@pytest.fixture
def store():
    """Fresh in-memory SQLite store with all tables"""
    return Store.from_url("sqlite://", create_tables=True)


# =============================================================================
# CONFIG
# =============================================================================

@pytest.fixture
def config_dict():
    """Minimal valid config dictionary"""
    return {
        'database': {'url': 'sqlite://'},
        'pools': [
            {'address': POOL_A, 'chain': 'hyperevm', 'description': 'Pool A', 'input_token': USDT0},
            {'address': POOL_B, 'chain': 'hyperevm', 'description': 'Pool B', 'input_token': USDT0},
            {'address': POOL_C, 'chain': 'hyperevm', 'description': 'Pool C', 'input_token': USDT0},
        ],
        'yield_provider': {'base_url': 'https://api.example.test', 'max_retries': 2},
        'scoring': {'asset_size': 100000, 'window_hours': 24},
        'chain': {'asset_decimals': 6},
        'automation': {
            'min_score_gap': 0.5,
            'settlement': {'timeout_seconds': 60, 'poll_interval_seconds': 3},
        },
        'scheduler': {'interval_minutes': 5, 'warmup_delay_seconds': 0},
    }


@pytest.fixture
def config(config_dict):
    return Config(**config_dict)


# =============================================================================
# POOLS
# =============================================================================

@pytest.fixture
def pools():
    return [
        PoolIdentity(POOL_A, 'hyperevm', 'Pool A', input_token=USDT0),
        PoolIdentity(POOL_B, 'hyperevm', 'Pool B', input_token=USDT0),
        PoolIdentity(POOL_C, 'hyperevm', 'Pool C', input_token=USDT0),
    ]


@pytest.fixture
def ranked_pool():
    """
    RankedPool factory

    Usage:
        pool = ranked_pool(POOL_A, score=7.0, apy=8.0)
    """
    def _create(address, score=None, apy=5.0, token=USDT0, tvl_usd=10_000_000.0, description=None):
        return RankedPool(
            pool_address=address,
            description=description or f"Pool {address[2:4]}",
            chain='hyperevm',
            input_token=token,
            total_apy=apy,
            tvl_usd=tvl_usd,
            opportunity_score=score,
            timestamp=NOW,
        )

    return _create


@pytest.fixture
def allocation_state():
    """
    AllocationState factory (amounts in whole tokens)

    Usage:
        state = allocation_state(idle=0, allocations={POOL_A: 300, POOL_B: 700})
    """
    def _create(idle=0, allocations=None, total_assets=None):
        allocs = [Allocation(addr, int(amount * TOKEN)) for addr, amount in (allocations or {}).items()]
        idle_units = int(idle * TOKEN)
        if total_assets is None:
            total = idle_units + sum(a.amount for a in allocs)
        else:
            total = int(total_assets * TOKEN)
        return AllocationState(idle_balance=idle_units, total_assets=total, allocations=allocs)

    return _create


# =============================================================================
# YIELD PROVIDER
# =============================================================================

class FakeYieldProvider:
    """Scripted provider: pool -> (total apy, tvl_usd) or None for failure"""

    def __init__(self, readings: Dict[str, Optional[tuple]], input_token: str = USDT0):
        self.readings = {k.lower(): v for k, v in readings.items()}
        self.input_token = input_token
        self.calls: List[tuple] = []

    def fetch_historic_apy(self, pool_address, chain):
        self.calls.append(('apy', pool_address))
        reading = self.readings.get(pool_address.lower())
        if reading is None:
            return None
        apy, _ = reading
        return ApyReading(
            historic_apy=apy,
            rewards_apy=0.0,
            input_token=self.input_token,
            raw={'historic_yield': {'apy': {'apy': apy}}},
        )

    def fetch_tvl(self, pool_address, chain):
        self.calls.append(('tvl', pool_address))
        reading = self.readings.get(pool_address.lower())
        if reading is None:
            return None
        _, tvl = reading
        return TvlReading(tvl_native=tvl, tvl_usd=tvl)


@pytest.fixture
def fake_provider():
    """FakeYieldProvider factory"""
    return FakeYieldProvider


# =============================================================================
# VAULT CLIENT
# =============================================================================

class FakeTx:
    def __init__(self, tx_hash: str, fail: bool = False):
        self.tx_hash = tx_hash
        self.fail = fail
        self.waited = False

    def wait(self, timeout=None):
        self.waited = True
        if self.fail:
            raise TransactionFailedError(f"Transaction {self.tx_hash} reverted", self.tx_hash)


class FakeVaultClient:
    """
    Scripted vault client

    idle_sequence: successive idle_balance() results (last value repeats)
    fail_on:       set of (function, pool_address) whose tx reverts
    """

    def __init__(
        self,
        idle: int = 0,
        allocations: Optional[Dict[str, int]] = None,
        total_assets: Optional[int] = None,
        owner: str = OWNER,
        signer: Optional[str] = OWNER,
        idle_sequence: Optional[List[int]] = None,
        fail_on: Optional[set] = None,
        dry_run: bool = False,
        decimals: int = 6,
    ):
        self.vault_address = VAULT
        self.asset_address = USDT0
        self._decimals = decimals
        self.dry_run = dry_run
        self._owner = owner
        self._signer = signer
        self._idle = idle
        self._idle_sequence = list(idle_sequence or [])
        self._allocations = {k.lower(): v for k, v in (allocations or {}).items()}
        self._total_assets = total_assets
        self.fail_on = fail_on or set()
        self.calls: List[tuple] = []
        self.txs: List[FakeTx] = []

    @property
    def signer_address(self):
        return self._signer

    def owner(self):
        return self._owner

    def idle_balance(self):
        if self._idle_sequence:
            value = self._idle_sequence.pop(0) if len(self._idle_sequence) > 1 else self._idle_sequence[0]
            return value
        return self._idle

    def decimals(self):
        return self._decimals

    def total_assets(self):
        if self._total_assets is not None:
            return self._total_assets
        return self._idle + sum(self._allocations.values())

    def allocation_of(self, pool_address):
        return self._allocations.get(pool_address.lower(), 0)

    def is_connected(self):
        return True

    def reallocate(self, pool_address, amount):
        return self._send('reallocate', pool_address, amount)

    def withdraw_from_vault(self, pool_address, amount):
        return self._send('withdrawFromVault', pool_address, amount)

    def _send(self, function_name, pool_address, amount):
        self.calls.append((function_name, pool_address, amount))
        tx = FakeTx(f"0x{len(self.calls):064x}", fail=(function_name, pool_address) in self.fail_on)
        self.txs.append(tx)
        return tx


@pytest.fixture
def fake_vault_client():
    """FakeVaultClient factory"""
    return FakeVaultClient


# =============================================================================
# TIME
# =============================================================================

class FakeClock:
    """Monotonic clock advanced only by sleep()"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()
