"""Request management service for the Discord bot.

This module implements making, repeating and updating requests. Discord
specifics are limited to the interaction and REST objects handed in, which
keeps every operation testable with mocks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

import hikari
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requestbot.bot.services.base import BaseService
from requestbot.bot.services.exceptions import RequestNotFound
from requestbot.bot.services.exceptions import TaskNotFound
from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.services.lifecycle import ArchiveOutcome
from requestbot.bot.services.lifecycle import InteractionTrigger
from requestbot.bot.services.lifecycle import LifecycleService
from requestbot.bot.services.lifecycle import load_rendered
from requestbot.bot.services.parsing import parse_duration
from requestbot.bot.services.parsing import parse_tasks
from requestbot.bot.services.rendering import RenderedRequest
from requestbot.bot.services.rendering import to_message_kwargs
from requestbot.db.crud import RequestOperations
from requestbot.db.crud import UserOperations
from requestbot.db.models import Request

logger = logging.getLogger(__name__)


class RequestKind(str, Enum):
    """Visibility of a new request."""

    PUBLIC = "public"
    PRIVATE = "private"


class TaskAction(str, Enum):
    CLAIM = "claim"
    UNCLAIM = "unclaim"
    COMPLETE = "complete"


@dataclass
class NewRequest:
    request: Request
    rendered: RenderedRequest


class RequestsService(BaseService):
    """Request management service."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
        lifecycle: LifecycleService,
    ):
        super().__init__(session_factory, rest, "RequestsService")
        self.lifecycle = lifecycle

    async def make_request(
        self,
        discord_user_id: str,
        title: str,
        tasks_spec: str,
        kind: RequestKind = RequestKind.PUBLIC,
        channel_id: Optional[str] = None,
        expires: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> NewRequest:
        """Create a request from command arguments.

        Private requests are shown only to their creator, so no channel is
        stored for them and they cannot be repeated.

        Raises:
            ValidationError: On a malformed task list, duration or title
        """
        title = title.strip()
        if not title:
            raise ValidationError("A request needs a title")
        tasks = parse_tasks(tasks_spec)

        expires_on = None
        if expires:
            expires_on = (now or datetime.now(timezone.utc)) + parse_duration(expires)

        async with self.session_factory() as session:
            user = await UserOperations(session).get_or_create_user(discord_user_id)
            ops = RequestOperations(session)
            request = await ops.create_request_with_tasks(
                title=title,
                created_by=user.id,
                tasks=list(enumerate(tasks, start=1)),
                discord_channel_id=channel_id if kind is RequestKind.PUBLIC else None,
                thumbnail_url=thumbnail_url,
                expires_on=expires_on,
            )
            request, rendered = await load_rendered(ops, request.id)

        return NewRequest(request, rendered)

    async def attach_message(self, request_id: UUID, message_id: str) -> None:
        """Record the Discord message a request was posted as."""
        async with self.session_factory() as session:
            if not await RequestOperations(session).update_request(
                request_id, discord_message_id=message_id
            ):
                raise RequestNotFound(request_id)

    async def change_task_status(
        self,
        interaction: hikari.ComponentInteraction,
        action: TaskAction,
    ) -> ArchiveOutcome:
        """Claim, unclaim or complete the tasks selected in a component.

        After the update the request is archived if it is done; otherwise the
        message is re-rendered in place. Tasks of an archived request are left
        as they are and the message is brought back in line with the archive.

        Returns:
            ArchiveOutcome: Result of the archive attempt

        Raises:
            TaskNotFound: If none of the selected tasks exist
            RequestNotFound: If the tasks belong to no known request
            ArchiveError: If archiving or updating the message fails
        """
        task_ids = _parse_task_ids(interaction.values)
        now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            user = await UserOperations(session).get_or_create_user(str(interaction.user.id))
            ops = RequestOperations(session)

            selected = await ops.get_tasks_by_ids(task_ids)
            if not selected:
                raise TaskNotFound(", ".join(str(task_id) for task_id in task_ids))
            request_id = selected[0].request_id
            request = await ops.get_request(request_id)
            if request is None:
                raise RequestNotFound(request_id)
            archived = request.is_archived

            if archived:
                logger.info(f"Ignoring {action.value} on archived request {request_id}")
            else:
                if action is TaskAction.CLAIM:
                    values = {"assigned_to": user.id, "started_at": now}
                elif action is TaskAction.COMPLETE:
                    values = {"assigned_to": user.id, "completed_at": now}
                else:
                    values = {"assigned_to": None, "started_at": None}

                updated = await ops.update_tasks_by_ids(
                    [task.id for task in selected if task.request_id == request_id],
                    **values,
                )
                logger.info(
                    f"User {interaction.user.id} {action.value}: {len(updated)} task(s) of request {request_id}"
                )

        trigger = InteractionTrigger(interaction)
        if archived:
            await self.lifecycle.resync_message(request_id, trigger)
            return ArchiveOutcome.ALREADY_ARCHIVED

        outcome = await self.lifecycle.maybe_archive(request_id, trigger, now=now)
        if outcome is not ArchiveOutcome.ARCHIVED:
            await self.lifecycle.resync_message(request_id, trigger)
        return outcome

    async def repeat_request(self, interaction: hikari.ComponentInteraction) -> Request:
        """Post a fresh copy of the request behind a component's message.

        The copy belongs to the member who pressed the button and goes to the
        channel the original request was posted in.

        Raises:
            RequestNotFound: If the message does not display a known request
            ValidationError: If the original request has no channel
        """
        async with self.session_factory() as session:
            user = await UserOperations(session).get_or_create_user(str(interaction.user.id))
            ops = RequestOperations(session)

            original = await ops.get_request_by_message_id(str(interaction.message.id))
            if original is None:
                raise RequestNotFound(f"message {interaction.message.id}")
            if original.discord_channel_id is None:
                raise ValidationError("Private requests cannot be repeated")

            original_tasks = await ops.get_request_tasks(original.id)
            request = await ops.create_request_with_tasks(
                title=original.title,
                created_by=user.id,
                tasks=[(task.weight, task.task) for task in original_tasks],
                discord_channel_id=original.discord_channel_id,
                thumbnail_url=original.thumbnail_url,
            )
            request, rendered = await load_rendered(ops, request.id)

        message = await self.rest.create_message(
            int(request.discord_channel_id),
            **to_message_kwargs(rendered),
        )
        await interaction.create_initial_response(
            hikari.ResponseType.MESSAGE_CREATE,
            f"Request has been repeated, see {message.make_link(interaction.guild_id)}",
            flags=hikari.MessageFlag.EPHEMERAL,
        )
        await self.attach_message(request.id, str(message.id))

        logger.info(f"Request {original.id} repeated as {request.id} by user {interaction.user.id}")
        return request


def _parse_task_ids(values: Iterable[str]) -> list[UUID]:
    task_ids = []
    for value in values:
        try:
            task_ids.append(UUID(value))
        except ValueError:
            raise TaskNotFound(value) from None
    if not task_ids:
        raise ValidationError("No tasks selected")
    return task_ids
