"""
Vault Client - on-chain integration (web3.py)

Reads and writes the managed vault contract and its ERC20 asset token.

CRITICAL:
- dry_run=True: Reads are real, writes are logged only (NO fake state)
- dry_run=False: Real signed transactions (production)

Writes return a TransactionHandle; callers must wait() on it before the
next write so chain writes stay strictly sequential.
"""

import time
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from vaultpilot.config import (
    ConfigurationError,
    get_asset_address,
    get_signer_private_key,
    get_vault_address,
)
from vaultpilot.executor.errors import TransactionFailedError
from vaultpilot.utils import get_logger

logger = get_logger(__name__)

DEFAULT_RPC_URL = "https://rpc.hypurrscan.io"

VAULT_ABI = [
    {
        "name": "reallocate", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "vault", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "withdrawFromVault", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "vault", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "totalAssets", "type": "function", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "vaultAllocations", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "OWNER", "type": "function", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "ASSET", "type": "function", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]

ERC20_ABI = [
    {
        "name": "balanceOf", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals", "type": "function", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]


class TransactionHandle:
    """Awaitable submitted transaction"""

    def __init__(self, w3: Optional[Web3], tx_hash: str, dry_run: bool = False):
        self._w3 = w3
        self.tx_hash = tx_hash
        self.dry_run = dry_run

    def wait(self, timeout: float = 120) -> None:
        """
        Block until the transaction is mined

        Raises:
            TransactionFailedError: Reverted (status 0) or not mined within timeout
        """
        if self.dry_run:
            return

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(self.tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise TransactionFailedError(
                f"Transaction {self.tx_hash} not mined within {timeout}s", self.tx_hash
            ) from e

        if receipt['status'] != 1:
            raise TransactionFailedError(f"Transaction {self.tx_hash} reverted", self.tx_hash)

        logger.info(f"Transaction confirmed: {self.tx_hash} (block {receipt['blockNumber']})")


class VaultClient:
    """
    Client for the managed vault

    Features:
    - Point-in-time reads (idle balance, allocations, total assets, owner)
    - Signed writes (reallocate, withdrawFromVault)
    - dry_run mode: writes logged only
    """

    def __init__(
        self,
        w3: Web3,
        vault_address: str,
        asset_address: str,
        private_key: Optional[str] = None,
        dry_run: bool = True,
        receipt_timeout: float = 120,
        gas_limit: Optional[int] = None
    ):
        """
        Initialize vault client

        Args:
            w3: Connected Web3 instance
            vault_address: Vault contract address
            asset_address: Underlying ERC20 asset address
            private_key: Signer key (required for live writes)
            dry_run: If True, log writes without sending them
            receipt_timeout: Seconds to wait for a receipt
            gas_limit: Fixed gas limit (estimated when None)

        Raises:
            ConfigurationError: If live mode without a signer key
        """
        self.w3 = w3
        self.vault_address = vault_address.lower()
        self.asset_address = asset_address.lower()
        self.dry_run = dry_run
        self.receipt_timeout = receipt_timeout
        self.gas_limit = gas_limit

        self.vault = w3.eth.contract(address=Web3.to_checksum_address(vault_address), abi=VAULT_ABI)
        self.asset = w3.eth.contract(address=Web3.to_checksum_address(asset_address), abi=ERC20_ABI)

        self.account = Account.from_key(private_key) if private_key else None

        if not self.dry_run:
            if self.account is None:
                raise ConfigurationError("Live mode requires the vault owner private key")
            logger.warning("LIVE MODE - Real transactions will be sent!")
        else:
            logger.info("Dry-run mode enabled - Vault writes will be logged only")

    @classmethod
    def from_config(cls, config, dry_run: bool = True) -> "VaultClient":
        """
        Build a client from config + environment

        Raises:
            ConfigurationError: If vault, asset or signer is missing
        """
        rpc_url = config.get('chain.rpc_url') or DEFAULT_RPC_URL
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': config.get('chain.timeout_seconds', 30)}))

        return cls(
            w3=w3,
            vault_address=get_vault_address(),
            asset_address=get_asset_address(),
            private_key=get_signer_private_key(),
            dry_run=dry_run,
            receipt_timeout=config.get('chain.receipt_timeout_seconds', 120),
            gas_limit=config.get('chain.gas_limit'),
        )

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def signer_address(self) -> Optional[str]:
        return self.account.address.lower() if self.account else None

    def is_connected(self) -> bool:
        return bool(self.w3.is_connected())

    def owner(self) -> str:
        return self.vault.functions.OWNER().call().lower()

    def idle_balance(self) -> int:
        """Asset balance held by the vault itself (base units)"""
        return self.asset.functions.balanceOf(Web3.to_checksum_address(self.vault_address)).call()

    def total_assets(self) -> int:
        return self.vault.functions.totalAssets().call()

    def allocation_of(self, pool_address: str) -> int:
        return self.vault.functions.vaultAllocations(Web3.to_checksum_address(pool_address)).call()

    def decimals(self) -> int:
        return self.asset.functions.decimals().call()

    # =========================================================================
    # WRITES
    # =========================================================================

    def reallocate(self, pool_address: str, amount: int) -> TransactionHandle:
        """Deposit amount of idle funds into pool_address"""
        return self._send('reallocate', pool_address, amount)

    def withdraw_from_vault(self, pool_address: str, amount: int) -> TransactionHandle:
        """Withdraw amount from pool_address back to idle"""
        return self._send('withdrawFromVault', pool_address, amount)

    def _send(self, function_name: str, pool_address: str, amount: int) -> TransactionHandle:
        if amount <= 0:
            raise ValueError(f"Invalid amount: {amount}. Must be positive")

        if self.dry_run:
            logger.info(f"[DRY RUN] Would call {function_name}({pool_address}, {amount})")
            return TransactionHandle(None, f"dry_run_{int(time.time())}", dry_run=True)

        call = getattr(self.vault.functions, function_name)(
            Web3.to_checksum_address(pool_address), amount
        )
        tx_params = {
            'from': self.account.address,
            'nonce': self.w3.eth.get_transaction_count(self.account.address, 'pending'),
            'chainId': self.w3.eth.chain_id,
        }
        if self.gas_limit:
            tx_params['gas'] = self.gas_limit

        tx = call.build_transaction(tx_params)
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = Web3.to_hex(tx_hash)

        logger.info(f"Sent {function_name}({pool_address}, {amount}): {tx_hex}")
        return TransactionHandle(self.w3, tx_hex)
