"""Shared plumbing for bot services."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import hikari
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass
class ServiceHealth:
    service_name: str
    is_healthy: bool
    details: dict[str, Any] = field(default_factory=dict)


class BaseService:
    """Base class for services backed by the database and the Discord REST API.

    Every unit of work opens its own session from ``session_factory`` so
    services never hold request or task state between operations.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rest: hikari.api.RESTClient | None,
        service_name: str,
    ):
        self.session_factory = session_factory
        self.rest = rest
        self.service_name = service_name
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True
        logger.debug(f"{self.service_name} initialized")

    async def health_check(self) -> ServiceHealth:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            return ServiceHealth(self.service_name, False, {"database": str(e)})
        return ServiceHealth(self.service_name, self._initialized, {"database": "ok"})

    async def cleanup(self) -> None:
        self._initialized = False
        logger.debug(f"{self.service_name} cleaned up")
