"""
Tests for the vault client (web3 layer mocked)
"""
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from vaultpilot.config import ConfigurationError
from vaultpilot.executor import TransactionFailedError
from vaultpilot.executor.vault_client import TransactionHandle, VaultClient

from tests.conftest import POOL_A, USDT0, VAULT

TEST_KEY = "0x" + "01" * 32


@pytest.fixture
def w3():
    """MagicMock web3 whose contracts build a signable transaction"""
    w3 = MagicMock()
    w3.eth.chain_id = 999
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = b'\x12' * 32

    contract = w3.eth.contract.return_value
    tx = {
        'to': Web3.to_checksum_address(VAULT),
        'data': '0x',
        'value': 0,
        'gas': 200_000,
        'gasPrice': 1_000_000_000,
        'nonce': 7,
        'chainId': 999,
    }
    contract.functions.reallocate.return_value.build_transaction.return_value = tx
    contract.functions.withdrawFromVault.return_value.build_transaction.return_value = tx
    return w3


class TestDryRun:
    """Dry-run writes are logged only."""

    def test_write_not_sent(self):
        """No key needed, no network touched, handle waits instantly."""
        client = VaultClient(Web3(Web3.HTTPProvider("http://127.0.0.1:1")), VAULT, USDT0, dry_run=True)

        handle = client.reallocate(POOL_A, 5_000_000)
        handle.wait()

        assert handle.dry_run is True
        assert handle.tx_hash.startswith("dry_run_")
        assert client.signer_address is None

    def test_invalid_amount(self):
        """Zero or negative amounts are rejected before anything else."""
        client = VaultClient(Web3(Web3.HTTPProvider("http://127.0.0.1:1")), VAULT, USDT0, dry_run=True)

        with pytest.raises(ValueError, match="Invalid amount"):
            client.withdraw_from_vault(POOL_A, 0)


class TestLive:
    """Live mode with a mocked chain."""

    def test_live_requires_key(self, w3):
        """Live mode without a signer is a configuration error."""
        with pytest.raises(ConfigurationError):
            VaultClient(w3, VAULT, USDT0, private_key=None, dry_run=False)

    def test_signed_and_sent(self, w3):
        """Writes are built with nonce and chain id, signed, and sent raw."""
        client = VaultClient(w3, VAULT, USDT0, private_key=TEST_KEY, dry_run=False, gas_limit=300_000)

        handle = client.reallocate(POOL_A, 5_000_000)

        build = w3.eth.contract.return_value.functions.reallocate.return_value.build_transaction
        params = build.call_args[0][0]
        assert params['nonce'] == 7
        assert params['chainId'] == 999
        assert params['gas'] == 300_000
        assert params['from'] == Account.from_key(TEST_KEY).address
        w3.eth.send_raw_transaction.assert_called_once()
        assert handle.tx_hash == "0x" + "12" * 32
        assert client.signer_address == Account.from_key(TEST_KEY).address.lower()

    def test_owner_lowercased(self, w3):
        """Owner address is canonicalised."""
        w3.eth.contract.return_value.functions.OWNER.return_value.call.return_value = "0xABCDEF0000000000000000000000000000000001"
        client = VaultClient(w3, VAULT, USDT0, dry_run=True)

        assert client.owner() == "0xabcdef0000000000000000000000000000000001"

    def test_asset_decimals_read_from_token(self, w3):
        """decimals() asks the asset token contract."""
        w3.eth.contract.return_value.functions.decimals.return_value.call.return_value = 6
        client = VaultClient(w3, VAULT, USDT0, dry_run=True)

        assert client.decimals() == 6


class TestTransactionHandle:
    """Receipt handling."""

    def test_confirmed(self):
        """status 1 returns normally."""
        w3 = MagicMock()
        w3.eth.wait_for_transaction_receipt.return_value = {'status': 1, 'blockNumber': 10}

        TransactionHandle(w3, "0xabc").wait(timeout=5)

        w3.eth.wait_for_transaction_receipt.assert_called_once_with("0xabc", timeout=5)

    def test_reverted(self):
        """status 0 raises TransactionFailedError."""
        w3 = MagicMock()
        w3.eth.wait_for_transaction_receipt.return_value = {'status': 0, 'blockNumber': 10}

        with pytest.raises(TransactionFailedError, match="reverted") as exc:
            TransactionHandle(w3, "0xabc").wait()
        assert exc.value.tx_hash == "0xabc"

    def test_not_mined_in_time(self):
        """Receipt timeout raises TransactionFailedError."""
        w3 = MagicMock()
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("timeout")

        with pytest.raises(TransactionFailedError, match="not mined"):
            TransactionHandle(w3, "0xabc").wait(timeout=1)
