from __future__ import annotations

import logging
from typing import Any

import hikari
import lightbulb

from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.utils.responses import GENERIC_ERROR
from requestbot.bot.utils.responses import respond_error
from requestbot.shared.config import get_settings

logger = logging.getLogger(__name__)

plugin = lightbulb.Plugin("stats")

LEADERBOARD_SIZE = 10


def format_leaderboard(rows: list[dict[str, Any]]) -> str:
    if not rows:
        return "Nobody yet"
    return "\n".join(
        f"{position}. <@{row['discord_user_id']}>: {row['count']}"
        for position, row in enumerate(rows[:LEADERBOARD_SIZE], start=1)
    )


@plugin.command
@lightbulb.option("days", "How many days back to count", type=int, required=False, min_value=1)
@lightbulb.command("request-stats", "Show who made and completed the most requests")
@lightbulb.implements(lightbulb.SlashCommand)
async def request_stats_command(ctx: lightbulb.SlashContext) -> None:
    days = ctx.options.days or get_settings().stats_default_days
    try:
        boards = await plugin.bot.d["admin_service"].leaderboards(days)
    except ValidationError as e:
        await respond_error(ctx, e.message)
        return
    except Exception:
        logger.exception("Failed to compute request statistics")
        await respond_error(ctx, GENERIC_ERROR)
        return

    embed = hikari.Embed(title=f"Requests in the last {days} day(s)")
    embed.add_field("Requests made", format_leaderboard(boards.created))
    embed.add_field("Requests completed", format_leaderboard(boards.completed))
    await ctx.respond(embed=embed)


def load(bot: lightbulb.BotApp) -> None:
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    bot.remove_plugin(plugin)
