"""End-to-end tests for making, updating and repeating requests."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import hikari
import pytest

from requestbot.bot.services.exceptions import MalformedDuration
from requestbot.bot.services.exceptions import MalformedTaskSpec
from requestbot.bot.services.exceptions import RequestNotFound
from requestbot.bot.services.exceptions import TaskNotFound
from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.services.lifecycle import ArchiveOutcome
from requestbot.bot.services.lifecycle import LifecycleService
from requestbot.bot.services.lifecycle import SweepTrigger
from requestbot.bot.services.lifecycle import load_rendered
from requestbot.bot.services.rendering import CLAIM_TASK
from requestbot.bot.services.rendering import COMPLETE_TASK
from requestbot.bot.services.rendering import REPEAT_REQUEST
from requestbot.bot.services.rendering import UNCLAIM_TASK
from requestbot.bot.services.requests_service import RequestKind
from requestbot.bot.services.requests_service import RequestsService
from requestbot.bot.services.requests_service import TaskAction
from requestbot.db.crud import RequestOperations

from .fakes import make_interaction


@pytest.fixture
def service(session_factory, rest):
    return RequestsService(session_factory, rest, LifecycleService(session_factory, rest))


async def post_request(service, tasks_spec="a;b", **kwargs):
    kwargs.setdefault("channel_id", "555")
    new = await service.make_request("100", "Supplies", tasks_spec, **kwargs)
    await service.attach_message(new.request.id, "1000")
    return new


async def current(session_factory, request_id):
    async with session_factory() as session:
        ops = RequestOperations(session)
        request, rendered = await load_rendered(ops, request_id)
        tasks = await ops.get_request_tasks(request_id)
    return request, rendered, tasks


class TestMakeRequest:
    @pytest.mark.asyncio
    async def test_public_request(self, service, session_factory):
        new = await post_request(service, "a;{2x}b")

        request, rendered, tasks = await current(session_factory, new.request.id)
        assert request.discord_channel_id == "555"
        assert request.discord_message_id == "1000"
        assert [(t.weight, t.task) for t in tasks] == [(1, "a"), (2, "b"), (3, "b")]
        assert [c.custom_id for c in new.rendered.controls] == [CLAIM_TASK, COMPLETE_TASK]
        assert new.rendered == rendered

    @pytest.mark.asyncio
    async def test_private_request_has_no_channel(self, service):
        new = await service.make_request("100", "Secret", "a", kind=RequestKind.PRIVATE, channel_id="555")
        assert new.request.discord_channel_id is None

    @pytest.mark.asyncio
    async def test_expiration(self, service):
        now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
        new = await service.make_request("100", "Supplies", "a", channel_id="555", expires="2 hours", now=now)
        assert new.request.expires_on == now + timedelta(hours=2)
        assert new.rendered.content.startswith("## Supplies\nExpires <t:")

    @pytest.mark.asyncio
    async def test_invalid_input(self, service):
        with pytest.raises(MalformedTaskSpec):
            await service.make_request("100", "Supplies", "{x}a", channel_id="555")
        with pytest.raises(MalformedDuration):
            await service.make_request("100", "Supplies", "a", channel_id="555", expires="whenever")
        with pytest.raises(ValidationError):
            await service.make_request("100", "   ", "a", channel_id="555")

    @pytest.mark.asyncio
    async def test_attach_message_to_missing_request(self, service):
        with pytest.raises(RequestNotFound):
            await service.attach_message(uuid4(), "1000")


class TestChangeTaskStatus:
    @pytest.mark.asyncio
    async def test_complete_tasks_until_archived(self, service, session_factory):
        new = await post_request(service)
        _, _, (a, b) = await current(session_factory, new.request.id)

        interaction = make_interaction(values=[str(a.id)])
        outcome = await service.change_task_status(interaction, TaskAction.COMPLETE)

        assert outcome is ArchiveOutcome.NOT_READY
        interaction.create_initial_response.assert_awaited_once()
        response_type = interaction.create_initial_response.await_args.args[0]
        assert response_type is hikari.ResponseType.MESSAGE_UPDATE
        request, rendered, _ = await current(session_factory, new.request.id)
        assert "1. ~~a~~, completed at" in rendered.description
        assert "by <@200>" in rendered.description
        assert [o.value for o in rendered.control(COMPLETE_TASK).options] == [str(b.id)]
        assert request.archived_on is None

        interaction = make_interaction(values=[str(b.id)])
        outcome = await service.change_task_status(interaction, TaskAction.COMPLETE)

        assert outcome is ArchiveOutcome.ARCHIVED
        response_type = interaction.create_initial_response.await_args.args[0]
        assert response_type is hikari.ResponseType.MESSAGE_UPDATE
        request, rendered, _ = await current(session_factory, new.request.id)
        assert request.archived_on is not None
        assert [c.custom_id for c in rendered.controls] == [REPEAT_REQUEST]
        payload = interaction.create_initial_response.await_args.kwargs
        assert len(payload["components"]) == 1
        assert payload["content"] == rendered.content

    @pytest.mark.asyncio
    async def test_claim_and_unclaim(self, service, session_factory):
        new = await post_request(service)
        _, _, (a, _) = await current(session_factory, new.request.id)

        await service.change_task_status(make_interaction(values=[str(a.id)]), TaskAction.CLAIM)
        _, rendered, (a, _) = await current(session_factory, new.request.id)
        assert a.is_claimed
        assert a.assignee.discord_user_id == "200"
        assert "1. a, claimed at" in rendered.description
        assert [o.value for o in rendered.control(UNCLAIM_TASK).options] == [str(a.id)]

        await service.change_task_status(make_interaction(values=[str(a.id)], user_id=300), TaskAction.UNCLAIM)
        _, rendered, (a, _) = await current(session_factory, new.request.id)
        assert not a.is_claimed
        assert a.assigned_to is None
        assert rendered.control(UNCLAIM_TASK) is None

    @pytest.mark.asyncio
    async def test_interaction_on_archived_request_resyncs(self, service, session_factory):
        new = await post_request(service, "a")
        _, _, (a,) = await current(session_factory, new.request.id)
        await service.change_task_status(make_interaction(values=[str(a.id)]), TaskAction.COMPLETE)

        stale = make_interaction(values=[str(a.id)], user_id=300)
        outcome = await service.change_task_status(stale, TaskAction.CLAIM)

        assert outcome is ArchiveOutcome.ALREADY_ARCHIVED
        stale.create_initial_response.assert_awaited_once()
        _, _, (a,) = await current(session_factory, new.request.id)
        assert a.assignee.discord_user_id == "200"

    @pytest.mark.asyncio
    async def test_stale_component_cannot_change_expired_archived_request(self, service, session_factory, rest):
        created = datetime.now(timezone.utc) - timedelta(seconds=5)
        new = await post_request(service, "a;b", expires="1s", now=created)
        _, _, (a, b) = await current(session_factory, new.request.id)
        outcome = await service.lifecycle.maybe_archive(new.request.id, SweepTrigger(rest, new.request))
        assert outcome is ArchiveOutcome.ARCHIVED

        stale = make_interaction(values=[str(a.id), str(b.id)], user_id=300)
        outcome = await service.change_task_status(stale, TaskAction.COMPLETE)

        assert outcome is ArchiveOutcome.ALREADY_ARCHIVED
        _, rendered, (a, b) = await current(session_factory, new.request.id)
        assert a.completed_at is None
        assert b.assigned_to is None
        assert [c.custom_id for c in rendered.controls] == [REPEAT_REQUEST]
        payload = stale.create_initial_response.await_args.kwargs
        assert payload["content"] == rendered.content

    @pytest.mark.asyncio
    async def test_unknown_tasks(self, service):
        with pytest.raises(TaskNotFound):
            await service.change_task_status(make_interaction(values=[str(uuid4())]), TaskAction.CLAIM)
        with pytest.raises(TaskNotFound):
            await service.change_task_status(make_interaction(values=["not-a-uuid"]), TaskAction.CLAIM)
        with pytest.raises(ValidationError):
            await service.change_task_status(make_interaction(values=[]), TaskAction.CLAIM)


class TestRepeatRequest:
    @pytest.mark.asyncio
    async def test_repeat_posts_copy_to_original_channel(self, service, session_factory, rest):
        original = await post_request(service, "a;b", thumbnail_url="https://example.com/box.png")
        interaction = make_interaction(user_id=300, channel_id=777)

        copy = await service.repeat_request(interaction)

        assert copy.id != original.request.id
        assert rest.create_message.await_args.args == (555,)
        interaction.create_initial_response.assert_awaited_once_with(
            hikari.ResponseType.MESSAGE_CREATE,
            "Request has been repeated, see https://discord.com/channels/1/2/9000",
            flags=hikari.MessageFlag.EPHEMERAL,
        )
        request, _, tasks = await current(session_factory, copy.id)
        assert request.creator.discord_user_id == "300"
        assert request.discord_message_id == "9000"
        assert request.discord_channel_id == "555"
        assert request.thumbnail_url == "https://example.com/box.png"
        assert [(t.weight, t.task, t.completed_at) for t in tasks] == [(1, "a", None), (2, "b", None)]

    @pytest.mark.asyncio
    async def test_repeat_unknown_message(self, service):
        with pytest.raises(RequestNotFound):
            await service.repeat_request(make_interaction(message_id=4242))

    @pytest.mark.asyncio
    async def test_private_request_cannot_be_repeated(self, service, rest):
        await post_request(service, "a", kind=RequestKind.PRIVATE)

        with pytest.raises(ValidationError):
            await service.repeat_request(make_interaction())
        rest.create_message.assert_not_awaited()
