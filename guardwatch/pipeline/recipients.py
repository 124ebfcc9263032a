"""
Guardian contact lookup for the delivery worker.

Example:
    >>> directory = StaticRecipientDirectory([
    ...     Recipient(user_id="user-1", email="parent@example.com"),
    ... ])
    >>> recipient = await directory.get_recipient("user-1")
"""

from typing import Dict, Iterable, List, Optional, Protocol

import structlog

from guardwatch.models.delivery import Recipient
from guardwatch.storage.postgres_client import PostgresClient

logger = structlog.get_logger(__name__)


class RecipientDirectory(Protocol):
    """Protocol for guardian contact lookup."""

    async def get_recipient(self, user_id: str) -> Optional[Recipient]:
        """Contact addresses of the guardian of a monitored user."""
        ...

    async def list_user_ids(self) -> List[str]:
        """Every monitored user that has a guardian on file."""
        ...


class StaticRecipientDirectory:
    """In-memory directory, keyed by monitored user id."""

    def __init__(self, recipients: Iterable[Recipient] = ()) -> None:
        self._recipients: Dict[str, Recipient] = {r.user_id: r for r in recipients}

    def add(self, recipient: Recipient) -> None:
        self._recipients[recipient.user_id] = recipient

    async def get_recipient(self, user_id: str) -> Optional[Recipient]:
        return self._recipients.get(user_id)

    async def list_user_ids(self) -> List[str]:
        return sorted(self._recipients)


class PostgresRecipientDirectory:
    """
    Directory backed by the guardians table.

    Lookups are cached for the lifetime of the directory; guardians change
    rarely and the service restarts on deploys.
    """

    def __init__(self, postgres_client: PostgresClient) -> None:
        self.postgres_client = postgres_client
        self._cache: Dict[str, Recipient] = {}

    async def get_recipient(self, user_id: str) -> Optional[Recipient]:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        recipient = await self.postgres_client.get_recipient(user_id)
        if recipient is not None:
            self._cache[user_id] = recipient
        else:
            logger.warning("recipient_not_found", user_id=user_id)
        return recipient

    async def list_user_ids(self) -> List[str]:
        return await self.postgres_client.list_recipient_user_ids()

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop one cached entry, or all of them."""
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)
