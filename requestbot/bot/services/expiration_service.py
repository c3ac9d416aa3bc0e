"""Background sweep archiving expired requests."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import hikari
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requestbot.bot.services.base import BaseService
from requestbot.bot.services.lifecycle import ArchiveOutcome
from requestbot.bot.services.lifecycle import LifecycleService
from requestbot.bot.services.lifecycle import SweepTrigger
from requestbot.db.crud import RequestOperations

logger = logging.getLogger(__name__)


class ExpirationService(BaseService):
    """Periodically archives open requests whose expiration time has passed."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
        lifecycle: LifecycleService,
        interval_seconds: float = 10.0,
    ):
        super().__init__(session_factory, rest, "ExpirationService")
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def run_turn(self, now: Optional[datetime] = None) -> dict[ArchiveOutcome, int]:
        """Archive every expired request once.

        Failures are logged per request and do not stop the sweep.

        Returns:
            Count of outcomes for the requests processed this turn
        """
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as session:
            expired = await RequestOperations(session).get_expired_requests(now)

        outcomes: dict[ArchiveOutcome, int] = {}
        for request in expired:
            try:
                outcome = await self.lifecycle.maybe_archive(
                    request.id,
                    SweepTrigger(self.rest, request),
                    now=now,
                )
                outcomes[outcome] = outcomes.get(outcome, 0) + 1
            except Exception as e:
                logger.error(f"Failed to archive expired request {request.id}: {e}")
        if expired:
            logger.debug(f"Expiration sweep processed {len(expired)} request(s): {outcomes}")
        return outcomes

    async def start(self) -> None:
        """Start the sweep loop as a background task."""

        async def sweep():
            while True:
                try:
                    await self.run_turn()
                except Exception as e:
                    logger.error(f"Error in expiration sweep: {e}")
                await asyncio.sleep(self.interval_seconds)

        self._task = asyncio.create_task(sweep())
        logger.info(f"Started expiration sweep ({self.interval_seconds:g}s intervals)")

    async def cleanup(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        await super().cleanup()
