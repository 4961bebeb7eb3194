"""
Monitoring Module - Health Checks
"""

from vaultpilot.monitor.health_check import HealthChecker, HealthStatus

__all__ = ['HealthChecker', 'HealthStatus']
