"""
Tests for the idle buffer policy
"""
import pytest

from vaultpilot.executor import compute_buffer, deployable_amount

TOKEN = 10 ** 6


class TestComputeBuffer:
    """Tests for compute_buffer."""

    def test_one_thousand_tokens_keeps_one(self):
        """1,000 tokens idle -> 1 token buffer, 999 deployable."""
        assert compute_buffer(1000 * TOKEN) == 1 * TOKEN
        assert deployable_amount(1000 * TOKEN) == 999 * TOKEN

    def test_floor_above_ten_tokens(self):
        """Between 10 and 100 tokens the 0.1 token floor wins."""
        assert compute_buffer(50 * TOKEN) == TOKEN // 10

    def test_floor_at_or_below_ten_tokens(self):
        """Small balances keep 0.01 token."""
        assert compute_buffer(10 * TOKEN) == TOKEN // 100
        assert compute_buffer(2 * TOKEN) == TOKEN // 100

    def test_proportional_for_large_balances(self):
        """0.1% once it exceeds the floor."""
        assert compute_buffer(1_000_000 * TOKEN) == 1000 * TOKEN

    @pytest.mark.parametrize("balance", [0, -5])
    def test_non_positive_balance(self, balance):
        """No balance, no buffer."""
        assert compute_buffer(balance) == 0
        assert deployable_amount(balance) == 0

    def test_dust_not_deployable(self):
        """A balance below the floor deploys nothing."""
        assert deployable_amount(TOKEN // 200) == 0

    def test_other_decimals(self):
        """Floors scale with token decimals."""
        assert compute_buffer(50 * 10 ** 18, decimals=18) == 10 ** 17
