"""Tests for the archive decision engine."""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import hikari
import pytest

from requestbot.bot.services.exceptions import ArchiveError
from requestbot.bot.services.exceptions import ArchiveStep
from requestbot.bot.services.exceptions import RequestNotFound
from requestbot.bot.services.lifecycle import ArchiveOutcome
from requestbot.bot.services.lifecycle import InteractionTrigger
from requestbot.bot.services.lifecycle import LifecycleService
from requestbot.bot.services.lifecycle import SweepTrigger
from requestbot.bot.services.lifecycle import is_ready
from requestbot.db.crud import ArchiveRuleOperations
from requestbot.db.crud import RequestOperations
from requestbot.db.crud import UserOperations
from requestbot.db.models import Request, Task

from .fakes import RecordingTrigger, make_interaction, make_message

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


async def seed_request(session_factory, tasks=((1, "a"),), completed=True, **kwargs):
    kwargs.setdefault("discord_channel_id", "555")
    async with session_factory() as session:
        user = await UserOperations(session).get_or_create_user("100")
        ops = RequestOperations(session)
        request = await ops.create_request_with_tasks(
            title="Supplies", created_by=user.id, tasks=list(tasks), **kwargs
        )
        await ops.update_request(request.id, discord_message_id="1000")
        if completed:
            task_ids = [task.id for task in await ops.get_request_tasks(request.id)]
            await ops.update_tasks_by_ids(task_ids, assigned_to=user.id, completed_at=NOW)
    return request


async def load(session_factory, request_id):
    async with session_factory() as session:
        return await RequestOperations(session).get_request(request_id)


class TestIsReady:
    def make(self, expires_on=None, completed=(None,)):
        request = Request(id=uuid4(), title="t", expires_on=expires_on)
        tasks = [Task(weight=i, task="x", completed_at=c) for i, c in enumerate(completed, start=1)]
        return request, tasks

    def test_uncompleted_without_expiration(self):
        assert not is_ready(*self.make(), NOW)

    def test_uncompleted_with_future_expiration(self):
        assert not is_ready(*self.make(expires_on=NOW + timedelta(seconds=1)), NOW)

    def test_expired(self):
        assert is_ready(*self.make(expires_on=NOW), NOW)

    def test_all_completed(self):
        assert is_ready(*self.make(completed=(NOW, NOW)), NOW)

    def test_no_tasks(self):
        assert is_ready(*self.make(completed=()), NOW)


class TestMaybeArchive:
    @pytest.mark.asyncio
    async def test_second_call_is_already_archived(self, session_factory, rest):
        request = await seed_request(session_factory)
        lifecycle = LifecycleService(session_factory, rest)
        trigger = RecordingTrigger()

        assert await lifecycle.maybe_archive(request.id, trigger, now=NOW) is ArchiveOutcome.ARCHIVED
        assert await lifecycle.maybe_archive(request.id, trigger, now=NOW) is ArchiveOutcome.ALREADY_ARCHIVED

        assert len(trigger.updates) == 1
        assert (await load(session_factory, request.id)).archived_on == NOW

    @pytest.mark.asyncio
    async def test_not_ready_writes_nothing(self, session_factory, rest):
        request = await seed_request(session_factory, completed=False, expires_on=NOW + timedelta(hours=1))
        trigger = RecordingTrigger()

        outcome = await LifecycleService(session_factory, rest).maybe_archive(request.id, trigger, now=NOW)

        assert outcome is ArchiveOutcome.NOT_READY
        assert trigger.updates == []
        assert (await load(session_factory, request.id)).archived_on is None

    @pytest.mark.asyncio
    async def test_expired_request_archives_with_open_tasks(self, session_factory, rest):
        request = await seed_request(session_factory, completed=False, expires_on=NOW - timedelta(seconds=1))

        outcome = await LifecycleService(session_factory, rest).maybe_archive(
            request.id, RecordingTrigger(), now=NOW
        )

        assert outcome is ArchiveOutcome.ARCHIVED

    @pytest.mark.asyncio
    async def test_missing_request(self, session_factory, rest):
        with pytest.raises(RequestNotFound):
            await LifecycleService(session_factory, rest).maybe_archive(uuid4(), RecordingTrigger())

    @pytest.mark.asyncio
    async def test_in_place_archive_leaves_repeat(self, session_factory, rest):
        request = await seed_request(session_factory)
        trigger = RecordingTrigger()

        await LifecycleService(session_factory, rest).maybe_archive(request.id, trigger, now=NOW)

        payload = trigger.updates[0]
        assert "Archived <t:" in payload["content"]
        assert len(payload["components"]) == 1
        rest.create_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_archive_rule_moves_message(self, session_factory, rest):
        request = await seed_request(session_factory)
        async with session_factory() as session:
            await ArchiveRuleOperations(session).set_rule("555", "777")
        trigger = RecordingTrigger(channel_id="555")

        outcome = await LifecycleService(session_factory, rest).maybe_archive(request.id, trigger, now=NOW)

        assert outcome is ArchiveOutcome.ARCHIVED
        rest.fetch_channel.assert_awaited_once_with(777)
        channel = rest.fetch_channel.return_value
        assert rest.create_message.await_args.args == (channel,)
        assert trigger.acknowledged == [rest.create_message.return_value]
        assert trigger.removed == [request.id]
        assert trigger.updates == []

        stored = await load(session_factory, request.id)
        assert stored.discord_message_id == "9000"
        assert stored.discord_channel_id == "555"

    @pytest.mark.asyncio
    async def test_rule_is_looked_up_by_trigger_channel(self, session_factory, rest):
        request = await seed_request(session_factory)
        async with session_factory() as session:
            await ArchiveRuleOperations(session).set_rule("555", "777")
        trigger = RecordingTrigger(channel_id="556")

        await LifecycleService(session_factory, rest).maybe_archive(request.id, trigger, now=NOW)

        rest.create_message.assert_not_awaited()
        assert len(trigger.updates) == 1

    @pytest.mark.asyncio
    async def test_failed_step_is_reported(self, session_factory, rest):
        request = await seed_request(session_factory)
        async with session_factory() as session:
            await ArchiveRuleOperations(session).set_rule("555", "777")
        rest.fetch_channel.side_effect = RuntimeError("gone")
        lifecycle = LifecycleService(session_factory, rest)

        with pytest.raises(ArchiveError) as exc_info:
            await lifecycle.maybe_archive(request.id, RecordingTrigger(), now=NOW)

        assert exc_info.value.step is ArchiveStep.RESOLVE_CHANNEL
        assert exc_info.value.request_id == request.id
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        # The commit happened before the failure, so the next trigger sees it.
        assert await lifecycle.maybe_archive(request.id, RecordingTrigger(), now=NOW) is ArchiveOutcome.ALREADY_ARCHIVED

    @pytest.mark.asyncio
    async def test_concurrent_triggers_archive_once(self, session_factory, rest):
        request = await seed_request(session_factory)
        lifecycle = LifecycleService(session_factory, rest)
        triggers = [RecordingTrigger() for _ in range(5)]

        outcomes = await asyncio.gather(
            *(lifecycle.maybe_archive(request.id, trigger, now=NOW) for trigger in triggers)
        )

        assert outcomes.count(ArchiveOutcome.ARCHIVED) == 1
        assert outcomes.count(ArchiveOutcome.ALREADY_ARCHIVED) == 4
        assert sum(len(trigger.updates) for trigger in triggers) == 1

    @pytest.mark.asyncio
    async def test_resync_renders_current_state(self, session_factory, rest):
        request = await seed_request(session_factory)
        trigger = RecordingTrigger()

        await LifecycleService(session_factory, rest).resync_message(request.id, trigger)

        assert trigger.updates[0]["components"]
        assert "Archived" not in trigger.updates[0]["content"]


class TestInteractionTrigger:
    @pytest.mark.asyncio
    async def test_acknowledge_is_ephemeral_link(self):
        interaction = make_interaction()
        trigger = InteractionTrigger(interaction)

        await trigger.acknowledge_archive(make_message(9000))

        interaction.create_initial_response.assert_awaited_once_with(
            hikari.ResponseType.MESSAGE_CREATE,
            "Request has been archived, see https://discord.com/channels/1/2/9000",
            flags=hikari.MessageFlag.EPHEMERAL,
        )
        assert trigger.channel_id == "555"

    @pytest.mark.asyncio
    async def test_remove_deletes_component_message(self):
        interaction = make_interaction()
        await InteractionTrigger(interaction).remove_original(None)
        interaction.delete_message.assert_awaited_once_with(interaction.message)

    @pytest.mark.asyncio
    async def test_update_uses_response_then_edit(self):
        interaction = make_interaction()
        trigger = InteractionTrigger(interaction)

        await trigger.update_in_place(None, {"content": "one"})
        await trigger.update_in_place(None, {"content": "two"})

        interaction.create_initial_response.assert_awaited_once_with(
            hikari.ResponseType.MESSAGE_UPDATE, content="one"
        )
        interaction.edit_message.assert_awaited_once_with(interaction.message, content="two")


class TestSweepTrigger:
    @pytest.mark.asyncio
    async def test_uses_stored_message(self, rest):
        request = Request(id=uuid4(), title="t", discord_channel_id="555", discord_message_id="1000")
        trigger = SweepTrigger(rest, request)

        await trigger.update_in_place(request, {"content": "x"})
        await trigger.remove_original(request)

        assert trigger.channel_id == "555"
        rest.edit_message.assert_awaited_once_with(555, 1000, content="x")
        rest.delete_message.assert_awaited_once_with(555, 1000)

    @pytest.mark.asyncio
    async def test_skips_request_without_message(self, rest):
        request = Request(id=uuid4(), title="t", discord_channel_id=None)
        trigger = SweepTrigger(rest, request)

        await trigger.update_in_place(request, {"content": "x"})
        await trigger.remove_original(request)

        rest.edit_message.assert_not_awaited()
        rest.delete_message.assert_not_awaited()
