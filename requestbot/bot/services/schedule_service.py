"""Recurring request schedules.

Creating a schedule posts a tracking message in the channel. The background
loop posts a new request from the schedule's template whenever its cadence
has elapsed, and disables the schedule for good once the tracking message
has been deleted.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import hikari
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requestbot.bot.services.base import BaseService
from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.services.lifecycle import load_rendered
from requestbot.bot.services.parsing import parse_duration
from requestbot.bot.services.parsing import parse_tasks
from requestbot.bot.services.rendering import to_message_kwargs
from requestbot.db.crud import RequestOperations
from requestbot.db.crud import ScheduleOperations
from requestbot.db.crud import UserOperations
from requestbot.db.models import Request, RequestSchedule

logger = logging.getLogger(__name__)

MIN_CADENCE = timedelta(minutes=1)


class ScheduleService(BaseService):
    """Creates schedules and posts their requests when due."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
        interval_seconds: float = 10.0,
    ):
        super().__init__(session_factory, rest, "ScheduleService")
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def create_schedule(
        self,
        discord_user_id: str,
        channel_id: str,
        title: str,
        tasks_spec: str,
        every: str,
        thumbnail_url: Optional[str] = None,
    ) -> RequestSchedule:
        """Validate command arguments and store a new schedule.

        Raises:
            ValidationError: On a bad title, task list or cadence
        """
        title = title.strip()
        if not title:
            raise ValidationError("A schedule needs a title")
        tasks = parse_tasks(tasks_spec)
        cadence = parse_duration(every)
        if cadence < MIN_CADENCE:
            raise ValidationError("Schedules cannot repeat more often than once a minute")

        async with self.session_factory() as session:
            user = await UserOperations(session).get_or_create_user(discord_user_id)
            return await ScheduleOperations(session).create_schedule(
                created_by=user.id,
                discord_channel_id=channel_id,
                title=title,
                tasks=tasks,
                seconds_between_requests=int(cadence.total_seconds()),
                thumbnail_url=thumbnail_url,
            )

    async def attach_message(self, schedule_id: UUID, message_id: str) -> None:
        async with self.session_factory() as session:
            await ScheduleOperations(session).update_schedule(
                schedule_id, discord_message_id=message_id
            )

    async def run_turn(self, now: Optional[datetime] = None) -> list[Request]:
        """Post a request for every due schedule.

        Returns:
            Requests posted this turn
        """
        async with self.session_factory() as session:
            due = await ScheduleOperations(session).get_due_schedules(now)

        posted = []
        for schedule in due:
            try:
                request = await self._post_schedule(schedule)
            except Exception as e:
                logger.error(f"Failed to post request for schedule {schedule.id}: {e}")
                continue
            if request is not None:
                posted.append(request)
        return posted

    async def _tracking_message_exists(self, schedule: RequestSchedule) -> bool:
        try:
            await self.rest.fetch_message(
                int(schedule.discord_channel_id),
                int(schedule.discord_message_id),
            )
        except hikari.NotFoundError:
            return False
        except hikari.HTTPError as e:
            logger.warning(f"Could not check tracking message of schedule {schedule.id}: {e}")
        return True

    async def _post_schedule(self, schedule: RequestSchedule) -> Optional[Request]:
        if schedule.discord_message_id is not None and not await self._tracking_message_exists(schedule):
            logger.info(
                f"Tracking message {schedule.discord_message_id} of schedule {schedule.id} "
                "could not be found, assuming the schedule is deleted"
            )
            async with self.session_factory() as session:
                await ScheduleOperations(session).disable_schedule(schedule.id)
            return None

        async with self.session_factory() as session:
            ops = RequestOperations(session)
            request = await ops.create_request_with_tasks(
                title=schedule.title,
                created_by=schedule.created_by,
                tasks=list(enumerate(schedule.tasks, start=1)),
                discord_channel_id=schedule.discord_channel_id,
                thumbnail_url=schedule.thumbnail_url,
                created_by_schedule=schedule.id,
            )
            request, rendered = await load_rendered(ops, request.id)

        message = await self.rest.create_message(
            int(schedule.discord_channel_id),
            **to_message_kwargs(rendered),
        )
        async with self.session_factory() as session:
            await RequestOperations(session).update_request(
                request.id, discord_message_id=str(message.id)
            )

        logger.info(f"Posted request {request.id} for schedule {schedule.id}")
        return request

    async def start(self) -> None:
        """Start the schedule loop as a background task."""

        async def post_due():
            while True:
                try:
                    await self.run_turn()
                except Exception as e:
                    logger.error(f"Error in schedule loop: {e}")
                await asyncio.sleep(self.interval_seconds)

        self._task = asyncio.create_task(post_due())
        logger.info(f"Started request schedules ({self.interval_seconds:g}s intervals)")

    async def cleanup(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        await super().cleanup()
