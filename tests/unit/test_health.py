"""Tests for health checker service."""

import pytest

from approvalhub.services.health import ComponentHealth, HealthChecker, HealthStatus


class TestHealthChecker:
    """Tests for health checker."""

    @pytest.fixture
    def checker(self, session_factory):
        """Create fresh health checker."""
        return HealthChecker(version="1.0.0-test", session_factory=session_factory)

    @pytest.mark.asyncio
    async def test_check_all(self, checker):
        health = await checker.check_all()

        assert health.version == "1.0.0-test"
        assert health.uptime_seconds >= 0
        assert [c.name for c in health.components] == [
            "database",
            "service_identities",
            "memory",
        ]
        assert all(c.latency_ms is not None for c in health.components)

    @pytest.mark.asyncio
    async def test_active_identities_counted(self, checker):
        health = await checker.check_all()

        identities = next(c for c in health.components if c.name == "service_identities")
        assert identities.status == HealthStatus.HEALTHY
        assert identities.details == {"active": 3}

    @pytest.mark.asyncio
    async def test_warning_folds_into_overall(self, checker):
        async def degraded() -> ComponentHealth:
            return ComponentHealth(name="queue", status=HealthStatus.WARNING)

        checker.register_check("queue", degraded)
        health = await checker.check_all()

        assert health.status in (HealthStatus.WARNING, HealthStatus.UNHEALTHY)
        assert health.status != HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_failing_check_is_unhealthy(self, checker):
        async def broken() -> ComponentHealth:
            raise ConnectionError("redis down")

        checker.register_check("redis", broken)
        health = await checker.check_all()

        assert health.status == HealthStatus.UNHEALTHY
        redis = next(c for c in health.components if c.name == "redis")
        assert redis.message == "redis down"
