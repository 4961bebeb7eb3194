"""Tracked pool registry"""

from .registry import PoolIdentity, load_tracked_pools

__all__ = ['PoolIdentity', 'load_tracked_pools']
