"""Discord bot bootstrap.

Builds the lightbulb bot, wires the database-backed services into ``bot.d``,
loads the command plugins and starts the background sweeps once the gateway
is up.
"""

from __future__ import annotations

import asyncio
import logging

import hikari
import lightbulb

from requestbot.shared.config import Settings, get_settings
from requestbot.shared.database import close_database, init_database

logger = logging.getLogger(__name__)

PLUGINS = [
    "requestbot.bot.plugins.requests",
    "requestbot.bot.plugins.schedules",
    "requestbot.bot.plugins.deliveries",
    "requestbot.bot.plugins.archive_rules",
    "requestbot.bot.plugins.stats",
]


def create_bot(settings: Settings | None = None) -> lightbulb.BotApp:
    """Create and configure the Discord bot.

    Returns:
        BotApp instance
    """
    if settings is None:
        settings = get_settings()

    # Slash commands and components only need guild events.
    intents = hikari.Intents.GUILDS

    bot = lightbulb.BotApp(
        token=settings.discord_bot_token,
        intents=intents,
        default_enabled_guilds=settings.default_guild_ids,
        logs={
            "version": 1,
            "incremental": True,
            "loggers": {
                "hikari": {"level": "INFO"},
                "lightbulb": {"level": "INFO"},
                "requestbot": {"level": settings.log_level.upper()},
            },
        },
        banner=None,
    )

    return bot


async def setup_bot_services(bot: lightbulb.BotApp, settings: Settings | None = None) -> None:
    """Set up the database and bot services."""
    logger.info("Setting up bot services...")
    if settings is None:
        settings = get_settings()

    from requestbot.bot.services.admin_service import AdminService
    from requestbot.bot.services.delivery_service import DeliveryService
    from requestbot.bot.services.expiration_service import ExpirationService
    from requestbot.bot.services.lifecycle import LifecycleService
    from requestbot.bot.services.requests_service import RequestsService
    from requestbot.bot.services.schedule_service import ScheduleService

    session_factory = await init_database(settings.database_url, echo=settings.database_echo)
    rest = bot.rest

    lifecycle = LifecycleService(session_factory, rest)
    services = {
        "lifecycle_service": lifecycle,
        "requests_service": RequestsService(session_factory, rest, lifecycle),
        "expiration_service": ExpirationService(
            session_factory, rest, lifecycle, interval_seconds=settings.sweep_interval_seconds
        ),
        "schedule_service": ScheduleService(
            session_factory, rest, interval_seconds=settings.sweep_interval_seconds
        ),
        "delivery_service": DeliveryService(session_factory, rest),
        "admin_service": AdminService(session_factory, rest),
    }

    for service in services.values():
        await service.initialize()
        logger.info(f"✓ {service.service_name} initialized")

    logger.info("Verifying service health...")
    for service in services.values():
        health = await service.health_check()
        if health.is_healthy:
            logger.info(f"{service.service_name} health: healthy")
        else:
            logger.warning(f"{service.service_name} not healthy: {health.details}")

    for name, service in services.items():
        bot.d[name] = service
    bot.d["_services"] = services

    logger.info("✓ Bot services setup complete")
    logger.info(f"Plugin services: {list(services.keys())}")


async def start_background_tasks(bot: lightbulb.BotApp) -> None:
    """Start the expiration sweep and the schedule loop."""
    await bot.d["expiration_service"].start()
    await bot.d["schedule_service"].start()


async def cleanup_bot_services(bot: lightbulb.BotApp) -> None:
    """Stop background tasks and close database connections."""
    logger.info("Cleaning up bot services...")

    for service in bot.d.get("_services", {}).values():
        try:
            await service.cleanup()
        except Exception as e:
            logger.error(f"Error cleaning up {service.service_name}: {e}")

    await close_database()
    logger.info("Bot services cleanup complete")


def load_plugins(bot: lightbulb.BotApp) -> None:
    """Load the command plugins."""
    if "_services" not in bot.d:
        logger.warning("No services found in bot.d - plugins may not work correctly")

    for extension in PLUGINS:
        logger.info(f"Loading {extension}...")
        bot.load_extensions(extension)
        logger.info(f"✓ Loaded {extension}")

    logger.info("✓ All plugins loaded successfully")


async def run_bot() -> None:
    """Run the Discord bot until interrupted."""
    settings = get_settings()

    if not settings.discord_bot_token:
        logger.error("Discord bot token not provided")
        return

    bot = create_bot(settings)

    @bot.listen()
    async def on_starting(event: hikari.StartingEvent) -> None:
        logger.info("Bot is starting...")

    @bot.listen()
    async def on_started(event: hikari.StartedEvent) -> None:
        bot_user = event.app.get_me()
        if bot_user:
            logger.info(f"Bot started as {bot_user.username}")
        else:
            logger.info("Bot started")

        await start_background_tasks(bot)
        logger.info("Bot is now fully ready")

    @bot.listen()
    async def on_stopping(event: hikari.StoppingEvent) -> None:
        logger.info("Bot is stopping...")
        await cleanup_bot_services(bot)

    try:
        await setup_bot_services(bot, settings)
        load_plugins(bot)

        await bot.start()
        logger.info("Bot is now running. Press Ctrl+C to stop.")

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            logger.info("Bot shutdown requested")

    except KeyboardInterrupt:
        logger.info("Bot shutdown requested via keyboard interrupt")
    except Exception as e:
        logger.error(f"Bot crashed: {e}")
        raise
    finally:
        logger.info("Shutting down bot...")
        await bot.close()


def main() -> None:
    """Console entry point."""
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
