"""
Yield Provider Client

HTTP/JSON client for the GlueX yield API:
- POST {base_url}/yield/historical-apy  {pool_address, chain}
- POST {base_url}/yield/tvl             {pool_address, chain}

Transient failures (HTTP 429, 5xx, timeouts, connection errors) are retried
with exponential backoff. Anything else (400/404, malformed body) fails
immediately. Both paths end in a None result: callers degrade, they never
see an exception from this module.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from vaultpilot.utils import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.gluex.xyz"


class TransientFetchError(Exception):
    """Retryable provider failure (rate limit, server error, network)"""


@dataclass
class ApyReading:
    """Historic + rewards APY of a pool (percent)"""
    historic_apy: float
    rewards_apy: float
    input_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_apy(self) -> float:
        return self.historic_apy + self.rewards_apy


@dataclass
class TvlReading:
    """Pool TVL in native units and USD"""
    tvl_native: Optional[float]
    tvl_usd: Optional[float]


def _dig(payload: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


class YieldProviderClient:
    """
    Client for pool APY/TVL with bounded retries

    Example:
        >>> client = YieldProviderClient.from_config(config)
        >>> reading = client.fetch_historic_apy("0xabc...", "hyperevm")
        >>> if reading is not None:
        ...     print(reading.total_apy)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff_base_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize client

        Args:
            base_url: Provider base URL
            api_key: Sent as x-api-key header when set
            timeout: Per-request timeout (seconds)
            max_retries: Retries after the first attempt for transient errors
            backoff_base_seconds: Delay before retry n is base * 2**(n-1)
            session: requests.Session (injectable for tests)
            sleep: Sleep function (injectable for tests)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.session = session or requests.Session()
        self._sleep = sleep

        self.session.headers.update({'Content-Type': 'application/json'})
        if api_key:
            self.session.headers.update({'x-api-key': api_key})

    @classmethod
    def from_config(cls, config) -> "YieldProviderClient":
        return cls(
            base_url=config.get('yield_provider.base_url', DEFAULT_BASE_URL),
            api_key=config.get('yield_provider.api_key') or None,
            timeout=config.get('yield_provider.timeout_seconds', 10),
            max_retries=config.get('yield_provider.max_retries', 2),
            backoff_base_seconds=config.get('yield_provider.backoff_base_seconds', 1.0),
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def fetch_historic_apy(self, pool_address: str, chain: str) -> Optional[ApyReading]:
        """
        Fetch historic and rewards APY of a pool

        Returns:
            ApyReading, or None if the provider failed
        """
        payload = self._post_with_retry('/yield/historical-apy', pool_address, chain)
        if payload is None:
            return None

        try:
            historic = _as_float(_dig(payload, 'historic_yield', 'apy', 'apy'))
            rewards = _as_float(_dig(payload, 'rewards_status', 'rewards_yield', 'apy')) or 0.0
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed APY response for {pool_address}: {e}")
            return None

        if historic is None:
            logger.error(f"Malformed APY response for {pool_address}: historic_yield.apy missing")
            return None

        input_token = _dig(payload, 'historic_yield', 'input_token')

        return ApyReading(
            historic_apy=historic,
            rewards_apy=rewards,
            input_token=input_token.lower() if isinstance(input_token, str) else None,
            raw=payload,
        )

    def fetch_tvl(self, pool_address: str, chain: str) -> Optional[TvlReading]:
        """
        Fetch pool TVL

        Returns:
            TvlReading, or None if the provider failed
        """
        payload = self._post_with_retry('/yield/tvl', pool_address, chain)
        if payload is None:
            return None

        try:
            return TvlReading(
                tvl_native=_as_float(_dig(payload, 'tvl', 'tvl')),
                tvl_usd=_as_float(_dig(payload, 'tvl', 'tvl_usd')),
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed TVL response for {pool_address}: {e}")
            return None

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _post(self, path: str, pool_address: str, chain: str) -> Dict[str, Any]:
        """
        Single POST attempt

        Raises:
            TransientFetchError: 429 / 5xx / timeout / connection error
            requests.HTTPError: Other non-2xx status
            ValueError: Body is not a JSON object
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(
                url,
                json={'pool_address': pool_address, 'chain': chain},
                timeout=self.timeout
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientFetchError(f"{type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFetchError(f"HTTP {response.status_code} from {path}")

        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Expected JSON object from {path}, got {type(payload).__name__}")
        return payload

    def _post_with_retry(
        self,
        path: str,
        pool_address: str,
        chain: str
    ) -> Optional[Dict[str, Any]]:
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                return self._post(path, pool_address, chain)

            except TransientFetchError as e:
                if attempt < attempts - 1:
                    delay = self.backoff_base_seconds * (2 ** attempt)
                    logger.warning(
                        f"Transient error on {path} for {pool_address} "
                        f"(attempt {attempt + 1}/{attempts}): {e} - retrying in {delay:.1f}s"
                    )
                    self._sleep(delay)
                else:
                    logger.error(
                        f"{path} failed for {pool_address} after {attempts} attempts: {e}"
                    )

            except (requests.RequestException, ValueError) as e:
                logger.error(f"{path} failed for {pool_address} (not retried): {e}")
                return None

        return None
