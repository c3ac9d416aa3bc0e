"""Request lifecycle and archival.

A request is ``Open`` until it is archived, which happens once every task is
completed or its expiration time has passed. Archiving either moves the
request message to the channel named by the archive rule of the triggering
channel, or re-renders it in place when no rule exists.

The same transition is driven by member interactions and by the background
expiration sweep. Both go through ``LifecycleService.maybe_archive`` with an
``ArchiveTrigger`` describing how to talk back to Discord.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence
from uuid import UUID

import hikari
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requestbot.bot.services.base import BaseService
from requestbot.bot.services.exceptions import ArchiveError
from requestbot.bot.services.exceptions import ArchiveStep
from requestbot.bot.services.exceptions import RequestNotFound
from requestbot.bot.services.rendering import RenderedRequest
from requestbot.bot.services.rendering import render_request
from requestbot.bot.services.rendering import to_message_kwargs
from requestbot.db.crud import ArchiveRuleOperations
from requestbot.db.crud import DatabaseOperationError
from requestbot.db.crud import RequestOperations
from requestbot.db.models import Request, Task

logger = logging.getLogger(__name__)


class ArchiveOutcome(str, Enum):
    ARCHIVED = "archived"
    ALREADY_ARCHIVED = "already_archived"
    NOT_READY = "not_ready"


def is_ready(request: Request, tasks: Sequence[Task], now: datetime) -> bool:
    """Whether a request should be archived: expired, or every task completed."""
    if request.expires_on is not None and request.expires_on <= now:
        return True
    return all(task.completed_at is not None for task in tasks)


async def load_rendered(ops: RequestOperations, request_id: UUID) -> tuple[Request, RenderedRequest]:
    """Read a request and its tasks and render the stored state."""
    request = await ops.get_request(request_id)
    if request is None:
        raise RequestNotFound(request_id)
    tasks = await ops.get_request_tasks(request_id)
    return request, render_request(request, tasks)


class ArchiveTrigger(ABC):
    """Where an archive attempt came from and how to update Discord for it."""

    @property
    @abstractmethod
    def channel_id(self) -> Optional[str]:
        """Channel whose archive rule decides the destination."""

    @abstractmethod
    async def acknowledge_archive(self, archived_message: hikari.Message) -> None:
        """Tell the member where the archived request went."""

    @abstractmethod
    async def remove_original(self, request: Request) -> None:
        """Remove the message the request was displayed in before archiving."""

    @abstractmethod
    async def update_in_place(self, request: Request, payload: dict[str, Any]) -> None:
        """Replace the request message with a freshly rendered payload."""


class InteractionTrigger(ArchiveTrigger):
    """Archive attempt caused by a member using a component on the request."""

    def __init__(self, interaction: hikari.ComponentInteraction):
        self.interaction = interaction
        self.responded = False

    @property
    def channel_id(self) -> Optional[str]:
        return str(self.interaction.channel_id)

    async def acknowledge_archive(self, archived_message: hikari.Message) -> None:
        link = archived_message.make_link(self.interaction.guild_id)
        await self.interaction.create_initial_response(
            hikari.ResponseType.MESSAGE_CREATE,
            f"Request has been archived, see {link}",
            flags=hikari.MessageFlag.EPHEMERAL,
        )
        self.responded = True

    async def remove_original(self, request: Request) -> None:
        # The component's message counts as an interaction follow-up, so it can
        # be deleted without permission to manage messages in the channel.
        await self.interaction.delete_message(self.interaction.message)

    async def update_in_place(self, request: Request, payload: dict[str, Any]) -> None:
        if self.responded:
            await self.interaction.edit_message(self.interaction.message, **payload)
            return
        await self.interaction.create_initial_response(
            hikari.ResponseType.MESSAGE_UPDATE,
            **payload,
        )
        self.responded = True


class SweepTrigger(ArchiveTrigger):
    """Archive attempt made by a background job without a live interaction."""

    def __init__(self, rest: hikari.api.RESTClient, request: Request):
        self.rest = rest
        self._channel_id = request.discord_channel_id

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel_id

    async def acknowledge_archive(self, archived_message: hikari.Message) -> None:
        logger.debug(f"Archived message {archived_message.id} posted without an interaction to answer")

    async def remove_original(self, request: Request) -> None:
        if request.discord_channel_id is None or request.discord_message_id is None:
            logger.warning(f"Request {request.id} has no stored message to remove")
            return
        await self.rest.delete_message(
            int(request.discord_channel_id),
            int(request.discord_message_id),
        )

    async def update_in_place(self, request: Request, payload: dict[str, Any]) -> None:
        if request.discord_channel_id is None or request.discord_message_id is None:
            logger.warning(f"Request {request.id} has no stored message to edit")
            return
        await self.rest.edit_message(
            int(request.discord_channel_id),
            int(request.discord_message_id),
            **payload,
        )


class LifecycleService(BaseService):
    """Decides when requests are done and performs the archive transition."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
    ):
        super().__init__(session_factory, rest, "LifecycleService")

    async def maybe_archive(
        self,
        request_id: UUID,
        trigger: ArchiveTrigger,
        now: Optional[datetime] = None,
    ) -> ArchiveOutcome:
        """Archive a request if it is done.

        Args:
            request_id: Request to check
            trigger: Source of the attempt; its channel picks the archive rule
            now: Reference time, defaults to the current UTC time

        Returns:
            ArchiveOutcome: ``ARCHIVED`` if this call archived the request,
            ``ALREADY_ARCHIVED`` if it was archived before (possibly by a
            concurrent call), ``NOT_READY`` if it is not done yet

        Raises:
            RequestNotFound: If the request does not exist
            ArchiveError: If a database or Discord call fails
        """
        now = now or datetime.now(timezone.utc)

        try:
            async with self.session_factory() as session:
                ops = RequestOperations(session)
                request = await ops.get_request(request_id)
                if request is None:
                    raise RequestNotFound(request_id)
                if request.is_archived:
                    return ArchiveOutcome.ALREADY_ARCHIVED

                tasks = await ops.get_request_tasks(request_id)
                if not is_ready(request, tasks, now):
                    return ArchiveOutcome.NOT_READY

                rule = None
                if trigger.channel_id is not None:
                    rule = await ArchiveRuleOperations(session).get_rule_by_source_channel(
                        trigger.channel_id
                    )

                if not await ops.archive_request(request_id, now):
                    logger.info(f"Request {request_id} was archived concurrently")
                    return ArchiveOutcome.ALREADY_ARCHIVED

                request, rendered = await load_rendered(ops, request_id)
        except DatabaseOperationError as e:
            raise ArchiveError(request_id, ArchiveStep.DATABASE, e) from e

        payload = to_message_kwargs(rendered)
        if rule is None:
            await self._run_step(request_id, ArchiveStep.EDIT_MESSAGE, trigger.update_in_place(request, payload))
            logger.info(f"Archived request {request_id} in place")
            return ArchiveOutcome.ARCHIVED

        channel = await self._run_step(
            request_id,
            ArchiveStep.RESOLVE_CHANNEL,
            self.rest.fetch_channel(int(rule.to_channel)),
        )
        archived_message = await self._run_step(
            request_id,
            ArchiveStep.SEND_MESSAGE,
            self.rest.create_message(channel, **payload),
        )
        await self._run_step(request_id, ArchiveStep.SEND_MESSAGE, trigger.acknowledge_archive(archived_message))
        await self._run_step(request_id, ArchiveStep.DELETE_MESSAGE, trigger.remove_original(request))

        try:
            async with self.session_factory() as session:
                await RequestOperations(session).update_request(
                    request_id,
                    discord_message_id=str(archived_message.id),
                )
        except DatabaseOperationError as e:
            raise ArchiveError(request_id, ArchiveStep.DATABASE, e) from e

        logger.info(f"Archived request {request_id} to channel {rule.to_channel}")
        return ArchiveOutcome.ARCHIVED

    async def resync_message(self, request_id: UUID, trigger: ArchiveTrigger) -> None:
        """Re-render the stored state of a request over its current message."""
        try:
            async with self.session_factory() as session:
                request, rendered = await load_rendered(RequestOperations(session), request_id)
        except DatabaseOperationError as e:
            raise ArchiveError(request_id, ArchiveStep.DATABASE, e) from e

        await self._run_step(
            request_id,
            ArchiveStep.EDIT_MESSAGE,
            trigger.update_in_place(request, to_message_kwargs(rendered)),
        )

    async def _run_step(self, request_id: UUID, step: ArchiveStep, call: Any) -> Any:
        try:
            return await call
        except Exception as e:
            raise ArchiveError(request_id, step, e) from e
