"""
Hospital Wait Monitor - Health Package

Modules:
    checker: Component health aggregation
    server: FastAPI health and metrics endpoint
"""

from health.checker import HealthChecker, HealthReport, HealthStatus
from health.server import HealthServer, create_health_app

__all__ = [
    "HealthChecker",
    "HealthReport",
    "HealthStatus",
    "HealthServer",
    "create_health_app",
]
