"""Approver directory lookups.

The user directory lives outside this service; the workflow engine only
needs to know whether an approver id refers to a real user.
"""

from abc import ABC, abstractmethod
from typing import Iterable


class ApproverDirectory(ABC):
    """Resolves approver user ids."""

    @abstractmethod
    async def missing(self, user_ids: Iterable[str]) -> list[str]:
        """Return the ids that do not resolve to a known user, in input order."""


class AllowAllDirectory(ApproverDirectory):
    """Directory that accepts every non-empty id.

    Used when no directory integration is configured.
    """

    async def missing(self, user_ids: Iterable[str]) -> list[str]:
        return [uid for uid in user_ids if not uid]


class StaticApproverDirectory(ApproverDirectory):
    """Directory backed by a fixed set of user ids."""

    def __init__(self, user_ids: Iterable[str]):
        self.user_ids = set(user_ids)

    async def missing(self, user_ids: Iterable[str]) -> list[str]:
        return [uid for uid in user_ids if uid not in self.user_ids]
