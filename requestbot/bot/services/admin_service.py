"""Archive rule administration and request statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import hikari
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requestbot.bot.services.base import BaseService
from requestbot.bot.services.exceptions import ChannelNotFound
from requestbot.bot.services.exceptions import ValidationError
from requestbot.db.crud import ArchiveRuleOperations
from requestbot.db.crud import ConflictError
from requestbot.db.crud import StatsOperations
from requestbot.db.models import ArchiveRule

logger = logging.getLogger(__name__)


@dataclass
class Leaderboards:
    """Per-user request counts over a time window."""

    since: datetime
    created: list[dict[str, Any]] = field(default_factory=list)
    completed: list[dict[str, Any]] = field(default_factory=list)


class AdminService(BaseService):
    """Channel archive routing and request statistics."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
    ):
        super().__init__(session_factory, rest, "AdminService")

    async def set_archive_rule(self, from_channel: str, to_channel: str) -> ArchiveRule:
        """Route archived requests from one channel to another.

        The destination is resolved first so rules never point at a channel
        the bot cannot see.

        Raises:
            ValidationError: If both channels are the same
            ChannelNotFound: If the destination cannot be resolved
        """
        try:
            await self.rest.fetch_channel(int(to_channel))
        except hikari.NotFoundError:
            raise ChannelNotFound(to_channel) from None

        async with self.session_factory() as session:
            try:
                return await ArchiveRuleOperations(session).set_rule(from_channel, to_channel)
            except ConflictError as e:
                raise ValidationError(str(e)) from e

    async def clear_archive_rule(self, from_channel: str) -> bool:
        async with self.session_factory() as session:
            removed = await ArchiveRuleOperations(session).delete_rule(from_channel)
        if removed:
            logger.info(f"Archive rule for channel {from_channel} removed")
        return removed

    async def get_archive_rule(self, from_channel: str) -> Optional[ArchiveRule]:
        async with self.session_factory() as session:
            return await ArchiveRuleOperations(session).get_rule_by_source_channel(from_channel)

    async def leaderboards(self, days: int, now: Optional[datetime] = None) -> Leaderboards:
        """Count created and completed requests per user over the last ``days`` days."""
        if days <= 0:
            raise ValidationError("The number of days must be positive")
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)

        async with self.session_factory() as session:
            stats = StatsOperations(session)
            return Leaderboards(
                since=since,
                created=await stats.requests_created_by_user(since),
                completed=await stats.requests_completed_by_user(since),
            )
