"""Pytest configuration and fixtures."""

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from approvalhub.models import Base, ServiceIdentity
from approvalhub.services.auth import ServiceAuthContext

PRIMARY_KEY = "svc-key-primary"
OTHER_KEY = "svc-key-other"
READONLY_KEY = "svc-key-readonly"
INACTIVE_KEY = "svc-key-inactive"


class RecordingSink:
    """Event sink that remembers the ids it was handed."""

    def __init__(self):
        self.event_ids: list[str] = []

    def __call__(self, event_id: str) -> None:
        self.event_ids.append(event_id)


@pytest.fixture
def db_path(tmp_path):
    """SQLite file with the full schema and seeded service identities."""
    path = tmp_path / "approvalhub.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as session:
        session.add_all([
            ServiceIdentity(
                id="svc-primary",
                name="Primary Service",
                service_key=PRIMARY_KEY,
                permissions=["*"],
                rate_limit=100,
                is_active=True,
            ),
            ServiceIdentity(
                id="svc-other",
                name="Other Service",
                service_key=OTHER_KEY,
                permissions=["*"],
                rate_limit=100,
                is_active=True,
            ),
            ServiceIdentity(
                id="svc-readonly",
                name="Readonly Service",
                service_key=READONLY_KEY,
                permissions=["approvals:read", "webhooks:read"],
                rate_limit=3,
                is_active=True,
            ),
            ServiceIdentity(
                id="svc-inactive",
                name="Inactive Service",
                service_key=INACTIVE_KEY,
                permissions=["*"],
                rate_limit=100,
                is_active=False,
            ),
        ])
        session.commit()
    sync_engine.dispose()
    return path


@pytest.fixture
def session_factory(db_path):
    """Async session factory bound to the test database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def sink():
    """Recording event sink."""
    return RecordingSink()


@pytest.fixture
def service():
    """Auth context of the primary service."""
    return ServiceAuthContext(
        service_id="svc-primary",
        service_name="Primary Service",
        permissions=("*",),
        rate_limit=100,
    )


@pytest.fixture
def other_service():
    """Auth context of a second, unrelated service."""
    return ServiceAuthContext(
        service_id="svc-other",
        service_name="Other Service",
        permissions=("*",),
        rate_limit=100,
    )


@pytest.fixture
def receiver():
    """Webhook receiver backed by httpx.MockTransport.

    ``receiver.status`` sets the response code; requests are collected in
    ``receiver.requests``.
    """

    class Receiver:
        def __init__(self):
            self.status = 200
            self.requests: list[httpx.Request] = []

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(self.status, text="ok" if self.status < 300 else "nope")

    return Receiver()


@pytest.fixture
def http_client(receiver):
    """Async HTTP client routed to the mock receiver."""
    return httpx.AsyncClient(transport=httpx.MockTransport(receiver.handler))


@pytest.fixture
def app(session_factory, sink, http_client):
    """FastAPI application wired to the test database."""
    from approvalhub.main import create_app
    from approvalhub.services.approval import (
        ApprovalWorkflowEngine,
        get_approval_workflow_engine,
    )
    from approvalhub.services.auth import ServiceAuthGate, get_auth_gate
    from approvalhub.services.health import HealthChecker, get_health_checker
    from approvalhub.services.security import RateLimiter, get_rate_limiter
    from approvalhub.services.stats import ApprovalStatsService, get_approval_stats_service
    from approvalhub.services.webhook import (
        WebhookDispatcher,
        WebhookService,
        get_webhook_dispatcher,
        get_webhook_service,
    )

    application = create_app()
    gate = ServiceAuthGate(session_factory=session_factory, cache_ttl=0)
    limiter = RateLimiter(window_seconds=3600)
    engine = ApprovalWorkflowEngine(session_factory=session_factory, event_sink=sink)
    webhooks = WebhookService(session_factory=session_factory, event_sink=sink)
    dispatcher = WebhookDispatcher(session_factory=session_factory, client=http_client)
    stats = ApprovalStatsService(session_factory=session_factory)
    checker = HealthChecker(version="0.1.0-test", session_factory=session_factory)

    application.dependency_overrides.update({
        get_auth_gate: lambda: gate,
        get_rate_limiter: lambda: limiter,
        get_approval_workflow_engine: lambda: engine,
        get_webhook_service: lambda: webhooks,
        get_webhook_dispatcher: lambda: dispatcher,
        get_approval_stats_service: lambda: stats,
        get_health_checker: lambda: checker,
    })
    return application


@pytest.fixture
def client(app):
    """Create test client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth():
    """Build a bearer header for a seeded service key."""

    def build(key: str = PRIMARY_KEY) -> dict[str, str]:
        return {"Authorization": f"Bearer {key}"}

    return build


@pytest.fixture
def settings():
    """Create settings instance for testing."""
    from approvalhub.core.config import Settings

    return Settings(environment="testing")
