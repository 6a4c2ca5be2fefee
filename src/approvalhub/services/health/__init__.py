"""Health check service module."""

from approvalhub.services.health.checker import (
    ComponentHealth,
    HealthChecker,
    HealthStatus,
    SystemHealth,
    get_health_checker,
)

__all__ = [
    "ComponentHealth",
    "HealthChecker",
    "HealthStatus",
    "SystemHealth",
    "get_health_checker",
]
