"""
Health Check System

Provides health status for monitoring (Docker, K8s, etc.).
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from vaultpilot.utils import get_logger

logger = get_logger(__name__)


@dataclass
class HealthStatus:
    """Health check status"""
    healthy: bool
    database: str  # 'OK', 'ERROR', 'UNKNOWN'
    rpc: str  # 'OK', 'ERROR', 'UNKNOWN'
    tracked_pools: int
    last_tick: Optional[Dict[str, Any]] = None
    last_decision: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return asdict(self)


class HealthChecker:
    """
    System health checker

    Checks:
    - Database connection (store liveness)
    - RPC connection
    - Last scheduler tick and last automation decision
    """

    def __init__(
        self,
        store: Optional[Any] = None,
        rpc: Optional[Any] = None,
        scheduler: Optional[Any] = None,
        tracked_pools: int = 0
    ):
        """
        Initialize health checker

        Args:
            store: Store handle (optional)
            rpc: Anything with is_connected(), e.g. Web3 or VaultClient (optional)
            scheduler: ContinuousScheduler, for the last tick (optional)
            tracked_pools: Number of configured pools
        """
        self.store = store
        self.rpc = rpc
        self.scheduler = scheduler
        self.tracked_pools = tracked_pools

    def check_all(self) -> HealthStatus:
        """
        Check all system components

        Returns:
            HealthStatus object
        """
        database = self._check_component('Database', self.store)
        rpc = self._check_component('RPC', self.rpc)

        # RPC is optional (tracker-only deployments have no vault)
        healthy = database == 'OK' and rpc != 'ERROR'
        message = "All systems operational" if healthy else "System degraded"

        return HealthStatus(
            healthy=healthy,
            database=database,
            rpc=rpc,
            tracked_pools=self.tracked_pools,
            last_tick=self._last_tick(),
            last_decision=self._last_decision() if database == 'OK' else None,
            message=message
        )

    def _check_component(self, label: str, component: Optional[Any]) -> str:
        if component is None or not hasattr(component, 'is_connected'):
            return 'UNKNOWN'

        try:
            return 'OK' if component.is_connected() else 'ERROR'
        except Exception as e:
            logger.error(f"{label} health check failed: {e}")
            return 'ERROR'

    def _last_tick(self) -> Optional[Dict[str, Any]]:
        if self.scheduler is None:
            return None
        result = self.scheduler.tick.last_result
        return result.to_dict() if result else None

    def _last_decision(self) -> Optional[str]:
        try:
            record = self.store.latest_automation_record()
        except Exception as e:
            logger.error(f"Failed to read last automation record: {e}")
            return None
        return record.decision if record else None
