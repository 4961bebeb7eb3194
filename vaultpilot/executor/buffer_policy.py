"""
Idle buffer policy

A small slice of idle funds is always left unallocated, to absorb rounding
in the pools' share math:

    buffer = max(balance / 1000, floor)
    floor  = 0.1 token  if balance > 10 tokens
             0.01 token otherwise

All amounts are integer base units of the asset token.
"""

DEFAULT_DECIMALS = 6


def compute_buffer(balance: int, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Buffer to keep idle for a given idle balance

    Args:
        balance: Idle balance (base units)
        decimals: Asset token decimals

    Returns:
        Buffer in base units (never negative)

    Example:
        >>> compute_buffer(1000 * 10**6)  # 1000 tokens -> 1 token
        1000000
    """
    if balance <= 0:
        return 0

    one_token = 10 ** decimals
    floor = one_token // 10 if balance > 10 * one_token else one_token // 100
    return max(balance // 1000, floor)


def deployable_amount(balance: int, decimals: int = DEFAULT_DECIMALS) -> int:
    """Idle balance minus buffer, floored at 0"""
    return max(0, balance - compute_buffer(balance, decimals))
