"""Tests for deliveries, archive rule administration and statistics."""

from datetime import datetime, timedelta, timezone

import hikari
import pytest

from requestbot.bot.services.admin_service import AdminService
from requestbot.bot.services.delivery_service import DeliveryService
from requestbot.bot.services.exceptions import ChannelNotFound
from requestbot.bot.services.exceptions import MalformedDeliverySpec
from requestbot.bot.services.exceptions import ValidationError
from requestbot.db.crud import RequestOperations
from requestbot.db.crud import UserOperations
from requestbot.db.models import Delivery


class TestDeliveryService:
    @pytest.mark.asyncio
    async def test_create_and_attach(self, session_factory, rest):
        service = DeliveryService(session_factory, rest)

        new = await service.create_delivery("100", "10x iron; copper")
        await service.attach_message(new.delivery.id, "1000")

        assert [(i.position, i.item_name, i.amount) for i in new.delivery.items] == [
            (1, "iron", 10),
            (2, "copper", 1),
        ]
        assert new.payload["content"] == "Delivery by <@100>"
        assert new.payload["embed"].description == "- 10x iron\n- 1x copper"
        async with session_factory() as session:
            stored = await session.get(Delivery, new.delivery.id)
        assert stored.discord_message_id == "1000"

    @pytest.mark.asyncio
    async def test_invalid_items(self, session_factory, rest):
        with pytest.raises(MalformedDeliverySpec):
            await DeliveryService(session_factory, rest).create_delivery("100", "0x iron")


class TestAdminService:
    @pytest.mark.asyncio
    async def test_archive_rule_round_trip(self, session_factory, rest):
        service = AdminService(session_factory, rest)

        rule = await service.set_archive_rule("555", "777")

        assert rule.to_channel == "777"
        rest.fetch_channel.assert_awaited_once_with(777)
        assert (await service.get_archive_rule("555")).to_channel == "777"
        assert await service.clear_archive_rule("555")
        assert not await service.clear_archive_rule("555")
        assert await service.get_archive_rule("555") is None

    @pytest.mark.asyncio
    async def test_rule_to_same_channel(self, session_factory, rest):
        with pytest.raises(ValidationError):
            await AdminService(session_factory, rest).set_archive_rule("555", "555")

    @pytest.mark.asyncio
    async def test_rule_to_unknown_channel(self, session_factory, rest):
        rest.fetch_channel.side_effect = hikari.NotFoundError(url="", headers={}, raw_body="")

        with pytest.raises(ChannelNotFound):
            await AdminService(session_factory, rest).set_archive_rule("555", "778")
        assert await AdminService(session_factory, rest).get_archive_rule("555") is None

    @pytest.mark.asyncio
    async def test_leaderboards(self, session_factory, rest):
        now = datetime.now(timezone.utc)
        async with session_factory() as session:
            alice = await UserOperations(session).get_or_create_user("100")
            bob = await UserOperations(session).get_or_create_user("200")
            ops = RequestOperations(session)
            request = await ops.create_request_with_tasks("Supplies", alice.id, [(1, "a")])
            await ops.create_request_with_tasks("More supplies", bob.id, [(1, "b")])
            (task,) = await ops.get_request_tasks(request.id)
            await ops.update_tasks_by_ids([task.id], assigned_to=bob.id, completed_at=now)

        boards = await AdminService(session_factory, rest).leaderboards(7, now=now + timedelta(seconds=1))

        assert boards.since == now + timedelta(seconds=1) - timedelta(days=7)
        assert sorted(row["discord_user_id"] for row in boards.created) == ["100", "200"]
        assert boards.completed == [{"discord_user_id": "200", "count": 1}]

    @pytest.mark.asyncio
    async def test_leaderboards_need_positive_days(self, session_factory, rest):
        with pytest.raises(ValidationError):
            await AdminService(session_factory, rest).leaderboards(0)
