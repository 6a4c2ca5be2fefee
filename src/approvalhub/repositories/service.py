"""Repository for service identities."""

from approvalhub.models.service import ServiceIdentity
from approvalhub.repositories.base import BaseRepository


class ServiceIdentityRepository(BaseRepository[ServiceIdentity]):
    """Lookups of registered service callers."""

    model = ServiceIdentity

    async def get_active_by_key(self, service_key: str) -> ServiceIdentity | None:
        """Get the active identity holding a key.

        @param service_key - Bearer credential value
        @returns ServiceIdentity or None when unknown or inactive
        """
        return await self.get_one_by_filter(service_key=service_key, is_active=True)
