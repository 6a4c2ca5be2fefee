"""Service credential authentication and permission checks."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.core.config import get_settings
from approvalhub.infrastructure.database import AsyncSessionLocal
from approvalhub.repositories.service import ServiceIdentityRepository

logger = logging.getLogger(__name__)

WILDCARD_PERMISSION = "*"


@dataclass(frozen=True)
class ServiceAuthContext:
    """Authenticated service identity attached to a request."""

    service_id: str
    service_name: str
    permissions: tuple[str, ...] = field(default_factory=tuple)
    rate_limit: int = 100

    def has_permission(self, permission: str) -> bool:
        """Check if the service holds a permission (or the wildcard)."""
        return has_permission(self.permissions, permission)


def has_permission(permissions: tuple[str, ...] | list[str], permission: str) -> bool:
    """Exact-match permission check with ``*`` granting everything."""
    return WILDCARD_PERMISSION in permissions or permission in permissions


class ServiceAuthGate:
    """Resolves bearer credentials to service identities.

    Successful lookups are cached in-process for ``cache_ttl`` seconds, so
    deactivating an identity takes effect once its entry expires or is
    invalidated.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        cache_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the gate.

        Args:
            session_factory: Async session factory (defaults to AsyncSessionLocal)
            cache_ttl: Cache lifetime in seconds (defaults to settings)
            clock: Monotonic time source
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self.cache_ttl = (
            cache_ttl if cache_ttl is not None else get_settings().auth_cache_ttl_seconds
        )
        self._clock = clock
        self._cache: dict[str, tuple[ServiceAuthContext, float]] = {}

    async def authenticate(self, credential: str | None) -> ServiceAuthContext | None:
        """Resolve a credential to an active service identity.

        Args:
            credential: Raw bearer value

        Returns:
            ServiceAuthContext, or None for a missing, unknown or inactive key
        """
        if not credential or not credential.strip():
            return None

        now = self._clock()
        cached = self._cache.get(credential)
        if cached is not None:
            context, expires_at = cached
            if expires_at > now:
                return context
            del self._cache[credential]

        async with self._session_factory() as session:
            identity = await ServiceIdentityRepository(session).get_active_by_key(
                credential
            )

        if identity is None:
            logger.info("Rejected unknown or inactive service credential")
            return None

        context = ServiceAuthContext(
            service_id=identity.id,
            service_name=identity.name,
            permissions=tuple(identity.permissions or ()),
            rate_limit=identity.rate_limit,
        )
        if self.cache_ttl > 0:
            self._cache[credential] = (context, now + self.cache_ttl)
        return context

    def authorize(self, context: ServiceAuthContext, permission: str) -> bool:
        """Check whether a context holds a permission."""
        return context.has_permission(permission)

    def invalidate(self, credential: str | None = None) -> None:
        """Drop one cached credential, or the whole cache."""
        if credential is None:
            self._cache.clear()
        else:
            self._cache.pop(credential, None)


_auth_gate: ServiceAuthGate | None = None


def get_auth_gate() -> ServiceAuthGate:
    """Get singleton auth gate instance."""
    global _auth_gate
    if _auth_gate is None:
        _auth_gate = ServiceAuthGate()
    return _auth_gate


def reset_auth_gate() -> None:
    """Drop the singleton (tests)."""
    global _auth_gate
    _auth_gate = None
