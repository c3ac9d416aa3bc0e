"""Delivery logging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import hikari
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requestbot.bot.services.base import BaseService
from requestbot.bot.services.parsing import parse_delivery_items
from requestbot.bot.services.rendering import render_delivery
from requestbot.db.crud import DeliveryOperations
from requestbot.db.crud import UserOperations
from requestbot.db.models import Delivery

logger = logging.getLogger(__name__)


@dataclass
class NewDelivery:
    delivery: Delivery
    payload: dict[str, Any]


class DeliveryService(BaseService):
    """Records item deliveries made by members."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
    ):
        super().__init__(session_factory, rest, "DeliveryService")

    async def create_delivery(self, discord_user_id: str, items_spec: str) -> NewDelivery:
        """Parse and store a delivery.

        Raises:
            MalformedDeliverySpec: If the item list is empty or has a bad amount
        """
        items = parse_delivery_items(items_spec)

        async with self.session_factory() as session:
            user = await UserOperations(session).get_or_create_user(discord_user_id)
            delivery = await DeliveryOperations(session).create_delivery(user.id, items)

        return NewDelivery(delivery, render_delivery(delivery))

    async def attach_message(self, delivery_id: UUID, message_id: str) -> None:
        async with self.session_factory() as session:
            await DeliveryOperations(session).update_delivery(
                delivery_id, discord_message_id=message_id
            )
        logger.debug(f"Delivery {delivery_id} posted as message {message_id}")
