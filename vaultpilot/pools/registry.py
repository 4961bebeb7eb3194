"""
Tracked pool registry

The tracked pool set is static configuration: a short list of pools loaded
from the 'pools' section of config.yaml. Addresses are canonicalised to
lower-case so every lookup (store, chain reads, ranking) compares equal.
"""

from dataclasses import dataclass
from typing import List, Optional

from vaultpilot.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PoolIdentity:
    """Static identity of a tracked pool"""
    address: str
    chain: str
    description: str = ""
    url: str = ""
    input_token: Optional[str] = None  # Filled from the latest snapshot when not configured

    def __post_init__(self):
        object.__setattr__(self, 'address', self.address.lower())
        if self.input_token:
            object.__setattr__(self, 'input_token', self.input_token.lower())

    @property
    def label(self) -> str:
        return self.description or self.address


def load_tracked_pools(config) -> List[PoolIdentity]:
    """
    Load tracked pools from config

    Args:
        config: Loaded Config (reads 'pools')

    Returns:
        List of PoolIdentity, duplicates (same address) dropped
    """
    pools: List[PoolIdentity] = []
    seen = set()

    for entry in config.get('pools', []):
        pool = PoolIdentity(
            address=entry['address'],
            chain=entry['chain'],
            description=entry.get('description', ''),
            url=entry.get('url', ''),
            input_token=entry.get('input_token'),
        )
        if pool.address in seen:
            logger.warning(f"Duplicate pool in config ignored: {pool.address}")
            continue
        seen.add(pool.address)
        pools.append(pool)

    logger.debug(f"Loaded {len(pools)} tracked pools")
    return pools
