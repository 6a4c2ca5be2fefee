"""System health checker service."""

import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import psutil
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.core.config import get_settings
from approvalhub.infrastructure.database import AsyncSessionLocal
from approvalhub.repositories.service import ServiceIdentityRepository

logger = logging.getLogger(__name__)

MEMORY_WARNING_MB = 500


class HealthStatus(str, Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Health status of a component."""

    name: str = Field(..., description="Component name")
    status: HealthStatus = Field(..., description="Health status")
    message: str | None = Field(None, description="Status message")
    latency_ms: float | None = Field(None, description="Check latency in ms")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional details")


class SystemHealth(BaseModel):
    """Overall system health."""

    status: HealthStatus = Field(..., description="Overall status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Deployment environment")
    uptime_seconds: float = Field(..., description="Uptime in seconds")
    timestamp: datetime = Field(..., description="Check timestamp")
    components: list[ComponentHealth] = Field(..., description="Component statuses")


CheckFn = Callable[[], Awaitable[ComponentHealth]]


class HealthChecker:
    """Runs component checks and folds them into one status.

    Any unhealthy component makes the system unhealthy; otherwise any
    warning makes it a warning.
    """

    def __init__(
        self,
        version: str = "0.0.0",
        session_factory: Callable[[], AsyncSession] | None = None,
    ):
        """Initialize health checker.

        Args:
            version: Application version
            session_factory: Async session factory (defaults to AsyncSessionLocal)
        """
        self.version = version
        self._session_factory = session_factory or AsyncSessionLocal
        self._start_time = time.time()
        self._health_checks: dict[str, CheckFn] = {
            "database": self._check_database,
            "service_identities": self._check_service_identities,
            "memory": self._check_memory,
        }

    def register_check(self, name: str, check_fn: CheckFn) -> None:
        """Register an additional async health check."""
        self._health_checks[name] = check_fn

    async def check_all(self) -> SystemHealth:
        """Run all health checks.

        Returns:
            System health status
        """
        components: list[ComponentHealth] = []
        for name, check_fn in self._health_checks.items():
            start = time.time()
            try:
                result = await check_fn()
            except Exception as e:
                logger.error(f"Health check {name} failed: {e}")
                result = ComponentHealth(
                    name=name, status=HealthStatus.UNHEALTHY, message=str(e)
                )
            result.latency_ms = round((time.time() - start) * 1000, 2)
            components.append(result)

        statuses = {c.status for c in components}
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.WARNING in statuses:
            overall = HealthStatus.WARNING
        else:
            overall = HealthStatus.HEALTHY

        return SystemHealth(
            status=overall,
            version=self.version,
            environment=get_settings().environment,
            uptime_seconds=round(time.time() - self._start_time, 3),
            timestamp=datetime.now(timezone.utc),
            components=components,
        )

    async def _check_database(self) -> ComponentHealth:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return ComponentHealth(name="database", status=HealthStatus.HEALTHY)

    async def _check_service_identities(self) -> ComponentHealth:
        async with self._session_factory() as session:
            count = await ServiceIdentityRepository(session).count(is_active=True)
        return ComponentHealth(
            name="service_identities",
            status=HealthStatus.HEALTHY if count > 0 else HealthStatus.WARNING,
            details={"active": count},
        )

    async def _check_memory(self) -> ComponentHealth:
        """Resident memory of this process."""
        process = psutil.Process(os.getpid())
        rss_mb = round(process.memory_info().rss / 1024 / 1024, 1)
        system = psutil.virtual_memory()
        return ComponentHealth(
            name="memory",
            status=HealthStatus.WARNING if rss_mb > MEMORY_WARNING_MB else HealthStatus.HEALTHY,
            details={
                "rss_mb": rss_mb,
                "system_percent": system.percent,
            },
        )


# Singleton instance
_health_checker: HealthChecker | None = None


def get_health_checker() -> HealthChecker:
    """Get singleton health checker instance.

    Returns:
        The health checker
    """
    global _health_checker
    if _health_checker is None:
        from approvalhub import __version__

        _health_checker = HealthChecker(version=__version__)
    return _health_checker
