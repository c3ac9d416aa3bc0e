"""Database operations for the request bot.

This module provides the persistence gateway used by the bot services. Every
operations class wraps a single ``AsyncSession``; callers open a fresh session
per unit of work so each operation re-reads current state.
"""

from __future__ import annotations

import logging
from typing import Optional, List, Dict, Any, Iterable, Sequence, Tuple
from uuid import UUID
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update, delete, func, desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from requestbot.db.models import (
    User,
    Request,
    Task,
    ArchiveRule,
    RequestSchedule,
    Delivery,
    DeliveryItem,
)

logger = logging.getLogger(__name__)


class DatabaseOperationError(Exception):
    """Base exception for database operations."""
    pass


class ConflictError(DatabaseOperationError):
    """Raised when a database constraint is violated."""
    pass


class UserOperations:
    """Database operations for Discord members."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_user(self, discord_user_id: str) -> User:
        """Return the user for a Discord id, creating it on first sight.

        Args:
            discord_user_id: Discord user snowflake ID

        Returns:
            User: Existing or newly inserted user

        Raises:
            DatabaseOperationError: If the upsert fails
        """
        try:
            stmt = select(User).where(User.discord_user_id == discord_user_id)
            user = (await self.session.execute(stmt)).scalar_one_or_none()
            if user is not None:
                return user

            user = User(discord_user_id=discord_user_id)
            self.session.add(user)
            try:
                await self.session.commit()
            except IntegrityError:
                # Another interaction inserted the same member concurrently.
                await self.session.rollback()
                user = (await self.session.execute(stmt)).scalar_one()

            return user

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to upsert user: {e}") from e


class RequestOperations:
    """Database operations for requests and their tasks.

    Handles creation of requests together with their tasks, task state
    changes and the archive transition. The archive transition is a
    conditional update so concurrent callers cannot both win it.
    """

    def __init__(self, session: AsyncSession):
        """Initialize with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def create_request_with_tasks(
        self,
        title: str,
        created_by: UUID,
        tasks: Sequence[Tuple[int, str]],
        discord_channel_id: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        expires_on: Optional[datetime] = None,
        created_by_schedule: Optional[UUID] = None,
    ) -> Request:
        """Insert a request and its tasks in one transaction.

        Args:
            title: Request title
            created_by: Internal id of the requesting user
            tasks: ``(weight, text)`` pairs
            discord_channel_id: Channel the request is posted in, if public
            thumbnail_url: Optional thumbnail URL
            expires_on: Optional expiration time
            created_by_schedule: Schedule that generated the request

        Returns:
            Request: The created request

        Raises:
            DatabaseOperationError: For database errors
        """
        try:
            request = Request(
                title=title,
                created_by=created_by,
                discord_channel_id=discord_channel_id,
                thumbnail_url=thumbnail_url,
                expires_on=expires_on,
                created_by_schedule=created_by_schedule,
            )
            self.session.add(request)
            await self.session.flush()

            self.session.add_all(
                Task(request_id=request.id, weight=weight, task=text)
                for weight, text in tasks
            )
            await self.session.commit()
            await self.session.refresh(request)

            logger.info(f"Created request {request.id} with {len(tasks)} tasks")
            return request

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to create request: {e}") from e

    async def get_request(self, request_id: UUID) -> Optional[Request]:
        """Get a request by ID.

        Args:
            request_id: Request UUID

        Returns:
            Request if found, None otherwise
        """
        try:
            stmt = (
                select(Request)
                .where(Request.id == request_id)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get request: {e}") from e

    async def get_request_by_message_id(self, discord_message_id: str) -> Optional[Request]:
        """Get the request currently displayed by a Discord message."""
        try:
            stmt = select(Request).where(Request.discord_message_id == discord_message_id)
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get request by message: {e}") from e

    async def update_request(self, request_id: UUID, **updates: Any) -> bool:
        """Partially update a request.

        Args:
            request_id: Request UUID
            **updates: Fields to update

        Returns:
            True if the request was updated, False if not found
        """
        try:
            stmt = (
                update(Request)
                .where(Request.id == request_id)
                .values(**updates)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            await self.session.commit()

            return result.rowcount > 0

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to update request: {e}") from e

    async def archive_request(self, request_id: UUID, archived_on: datetime) -> bool:
        """Stamp ``archived_on`` only if the request is still open.

        Returns:
            True if this call archived the request, False if it was already
            archived (or does not exist)
        """
        try:
            stmt = (
                update(Request)
                .where(Request.id == request_id, Request.archived_on.is_(None))
                .values(archived_on=archived_on)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            await self.session.commit()

            return result.rowcount > 0

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to archive request: {e}") from e

    async def get_request_tasks(self, request_id: UUID) -> List[Task]:
        """Get all tasks of a request ordered by weight, with assignees loaded."""
        try:
            stmt = (
                select(Task)
                .where(Task.request_id == request_id)
                .order_by(Task.weight, Task.id)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().unique().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get request tasks: {e}") from e

    async def get_tasks_by_ids(self, task_ids: Iterable[UUID]) -> List[Task]:
        try:
            stmt = (
                select(Task)
                .where(Task.id.in_(list(task_ids)))
                .order_by(Task.weight)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().unique().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get tasks: {e}") from e

    async def update_tasks_by_ids(
        self,
        task_ids: Iterable[UUID],
        only_uncompleted: bool = True,
        **values: Any
    ) -> List[Task]:
        """Apply the same field values to a batch of tasks.

        Tasks of archived requests are never touched, so a stale component
        cannot change a request after it was archived.

        Args:
            task_ids: Tasks to update
            only_uncompleted: Skip tasks that already have ``completed_at``
            **values: Fields to set

        Returns:
            List of the updated tasks as stored after the update
        """
        try:
            open_requests = select(Request.id).where(Request.archived_on.is_(None))
            conditions = [Task.id.in_(list(task_ids)), Task.request_id.in_(open_requests)]
            if only_uncompleted:
                conditions.append(Task.completed_at.is_(None))

            matched_ids = list((await self.session.execute(select(Task.id).where(*conditions))).scalars().all())
            if not matched_ids:
                return []

            # The request may have been archived since the select.
            result = await self.session.execute(
                update(Task)
                .where(Task.id.in_(matched_ids), *conditions[1:])
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            if result.rowcount == 0:
                return []

            return await self.get_tasks_by_ids(matched_ids)

        except DatabaseOperationError:
            raise
        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to update tasks: {e}") from e

    async def get_expired_requests(self, now: Optional[datetime] = None) -> List[Request]:
        """Get open requests whose expiration time has passed."""
        try:
            current_time = now or datetime.now(timezone.utc)
            stmt = (
                select(Request)
                .where(
                    Request.archived_on.is_(None),
                    Request.expires_on.is_not(None),
                    Request.expires_on < current_time,
                )
                .order_by(Request.expires_on)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get expired requests: {e}") from e


class ArchiveRuleOperations:
    """Database operations for channel archive routing."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rule_by_source_channel(self, from_channel: str) -> Optional[ArchiveRule]:
        try:
            result = await self.session.execute(
                select(ArchiveRule).where(ArchiveRule.from_channel == from_channel)
            )
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get archive rule: {e}") from e

    async def set_rule(self, from_channel: str, to_channel: str) -> ArchiveRule:
        """Create or replace the archive rule for a source channel."""
        if from_channel == to_channel:
            raise ConflictError("Archive destination must differ from the source channel")
        try:
            rule = await self.session.merge(
                ArchiveRule(from_channel=from_channel, to_channel=to_channel)
            )
            await self.session.commit()

            logger.info(f"Archive rule set: {from_channel} -> {to_channel}")
            return rule

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to set archive rule: {e}") from e

    async def delete_rule(self, from_channel: str) -> bool:
        try:
            result = await self.session.execute(
                delete(ArchiveRule).where(ArchiveRule.from_channel == from_channel)
            )
            await self.session.commit()

            return result.rowcount > 0

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to delete archive rule: {e}") from e


class ScheduleOperations:
    """Database operations for recurring request schedules."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_schedule(
        self,
        created_by: UUID,
        discord_channel_id: str,
        title: str,
        tasks: List[str],
        seconds_between_requests: int,
        thumbnail_url: Optional[str] = None,
    ) -> RequestSchedule:
        """Create a new schedule.

        Raises:
            DatabaseOperationError: For database errors
        """
        try:
            schedule = RequestSchedule(
                created_by=created_by,
                discord_channel_id=discord_channel_id,
                title=title,
                tasks=list(tasks),
                seconds_between_requests=seconds_between_requests,
                thumbnail_url=thumbnail_url,
            )
            self.session.add(schedule)
            await self.session.commit()
            await self.session.refresh(schedule)

            logger.info(f"Created request schedule {schedule.id} for channel {discord_channel_id}")
            return schedule

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to create schedule: {e}") from e

    async def get_schedule(self, schedule_id: UUID) -> Optional[RequestSchedule]:
        try:
            result = await self.session.execute(
                select(RequestSchedule)
                .where(RequestSchedule.id == schedule_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get schedule: {e}") from e

    async def update_schedule(self, schedule_id: UUID, **updates: Any) -> bool:
        try:
            result = await self.session.execute(
                update(RequestSchedule)
                .where(RequestSchedule.id == schedule_id)
                .values(**updates)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

            return result.rowcount > 0

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to update schedule: {e}") from e

    async def disable_schedule(self, schedule_id: UUID, disabled_at: Optional[datetime] = None) -> bool:
        """Permanently disable a schedule."""
        return await self.update_schedule(
            schedule_id,
            disabled_at=disabled_at or datetime.now(timezone.utc),
        )

    async def get_due_schedules(self, now: Optional[datetime] = None) -> List[RequestSchedule]:
        """Get active schedules whose cadence has elapsed.

        A schedule is due once ``seconds_between_requests`` have passed since
        the later of its creation and the newest request it generated.

        Returns:
            List of schedules due for posting
        """
        try:
            current_time = now or datetime.now(timezone.utc)
            last_request_at = func.max(Request.created_at)
            stmt = (
                select(RequestSchedule, last_request_at)
                .outerjoin(Request, Request.created_by_schedule == RequestSchedule.id)
                .where(RequestSchedule.disabled_at.is_(None))
                .group_by(RequestSchedule.id)
            )
            result = await self.session.execute(stmt)

            due = []
            for schedule, last_created in result.all():
                reference = schedule.created_at
                if last_created is not None and last_created > reference:
                    reference = last_created
                cadence = timedelta(seconds=schedule.seconds_between_requests)
                if current_time - reference >= cadence:
                    due.append(schedule)
            return due

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get due schedules: {e}") from e


class DeliveryOperations:
    """Database operations for delivery records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_delivery(
        self,
        created_by: UUID,
        items: Sequence[Tuple[str, int]],
    ) -> Delivery:
        """Insert a delivery with its items.

        Args:
            created_by: Internal id of the delivering user
            items: ``(item_name, amount)`` pairs in display order

        Returns:
            Delivery: The created delivery with items loaded
        """
        try:
            delivery = Delivery(created_by=created_by)
            self.session.add(delivery)
            await self.session.flush()

            self.session.add_all(
                DeliveryItem(
                    delivery_id=delivery.id,
                    position=position,
                    item_name=name,
                    amount=amount,
                )
                for position, (name, amount) in enumerate(items, start=1)
            )
            await self.session.commit()
            await self.session.refresh(delivery, attribute_names=["items", "creator"])

            logger.info(f"Created delivery {delivery.id} with {len(items)} items")
            return delivery

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to create delivery: {e}") from e

    async def update_delivery(self, delivery_id: UUID, **updates: Any) -> bool:
        try:
            result = await self.session.execute(
                update(Delivery)
                .where(Delivery.id == delivery_id)
                .values(**updates)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

            return result.rowcount > 0

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to update delivery: {e}") from e


class StatsOperations:
    """Aggregate queries over requests and tasks."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def requests_created_by_user(self, since: datetime) -> List[Dict[str, Any]]:
        """Count requests made per user since a point in time, most first."""
        try:
            count = func.count(Request.id).label("count")
            stmt = (
                select(User.discord_user_id, count)
                .select_from(Request)
                .join(User, Request.created_by == User.id)
                .where(Request.created_at > since)
                .group_by(User.discord_user_id)
                .order_by(desc(count), User.discord_user_id)
            )
            result = await self.session.execute(stmt)
            return [
                {"discord_user_id": row.discord_user_id, "count": row.count}
                for row in result.all()
            ]

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count created requests: {e}") from e

    async def requests_completed_by_user(self, since: datetime) -> List[Dict[str, Any]]:
        """Count distinct requests per user with at least one task they completed."""
        try:
            count = func.count(func.distinct(Request.id)).label("count")
            stmt = (
                select(User.discord_user_id, count)
                .select_from(Request)
                .join(Task, Task.request_id == Request.id)
                .join(User, Task.assigned_to == User.id)
                .where(
                    Request.created_at > since,
                    Task.completed_at.is_not(None),
                )
                .group_by(User.discord_user_id)
                .order_by(desc(count), User.discord_user_id)
            )
            result = await self.session.execute(stmt)
            return [
                {"discord_user_id": row.discord_user_id, "count": row.count}
                for row in result.all()
            ]

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count completed requests: {e}") from e
