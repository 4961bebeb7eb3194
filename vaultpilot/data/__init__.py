"""External data sources (yield provider)"""

from .yield_client import (
    ApyReading,
    TransientFetchError,
    TvlReading,
    YieldProviderClient,
)

__all__ = ['ApyReading', 'TransientFetchError', 'TvlReading', 'YieldProviderClient']
