from __future__ import annotations

import logging

import lightbulb

from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.utils.responses import GENERIC_ERROR
from requestbot.bot.utils.responses import respond_error

logger = logging.getLogger(__name__)

plugin = lightbulb.Plugin("deliveries")


@plugin.command
@lightbulb.option("items", "Items separated by ';' with optional amounts, e.g. '10x iron; copper'", type=str)
@lightbulb.command("delivery", "Log a delivery of items")
@lightbulb.implements(lightbulb.SlashCommand)
async def delivery_command(ctx: lightbulb.SlashContext) -> None:
    service = plugin.bot.d["delivery_service"]
    try:
        new = await service.create_delivery(str(ctx.author.id), ctx.options.items)
    except ValidationError as e:
        await respond_error(ctx, e.message)
        return
    except Exception:
        logger.exception(f"Failed to record delivery for user {ctx.author.id}")
        await respond_error(ctx, GENERIC_ERROR)
        return

    response = await ctx.respond(**new.payload)
    message = await response.message()
    await service.attach_message(new.delivery.id, str(message.id))


def load(bot: lightbulb.BotApp) -> None:
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    bot.remove_plugin(plugin)
