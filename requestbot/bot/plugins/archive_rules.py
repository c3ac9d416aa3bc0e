"""Archive rule administration.

An archive rule sends requests archived in one channel to another channel.
Without a rule, archived requests stay where they are.
"""

from __future__ import annotations

import logging

import hikari
import lightbulb

from requestbot.bot.services.exceptions import ResourceNotFoundError
from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.utils.responses import GENERIC_ERROR
from requestbot.bot.utils.responses import respond_error

logger = logging.getLogger(__name__)

plugin = lightbulb.Plugin("archive_rules")


@plugin.set_error_handler()
async def on_command_error(event: lightbulb.CommandErrorEvent) -> bool:
    if isinstance(event.exception, lightbulb.CheckFailure):
        await respond_error(event.context, "You need the Manage Channels permission to change archive rules.")
        return True
    return False


@plugin.command
@lightbulb.add_checks(lightbulb.guild_only)
@lightbulb.command("archive-rule", "Configure where requests from this channel are archived")
@lightbulb.implements(lightbulb.SlashCommandGroup)
async def archive_rule_group(ctx: lightbulb.SlashContext) -> None:
    pass


@archive_rule_group.child
@lightbulb.add_checks(lightbulb.has_guild_permissions(hikari.Permissions.MANAGE_CHANNELS))
@lightbulb.option(
    "destination",
    "Channel that archived requests are moved to",
    type=hikari.TextableGuildChannel,
    channel_types=[hikari.ChannelType.GUILD_TEXT],
)
@lightbulb.command("set", "Move requests archived in this channel to another channel")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def set_command(ctx: lightbulb.SlashContext) -> None:
    destination = ctx.options.destination
    try:
        await plugin.bot.d["admin_service"].set_archive_rule(str(ctx.channel_id), str(destination.id))
    except (ValidationError, ResourceNotFoundError) as e:
        await respond_error(ctx, e.message)
        return
    except Exception:
        logger.exception(f"Failed to set archive rule for channel {ctx.channel_id}")
        await respond_error(ctx, GENERIC_ERROR)
        return

    await ctx.respond(
        f"Requests archived in <#{ctx.channel_id}> will be moved to <#{destination.id}>.",
        flags=hikari.MessageFlag.EPHEMERAL,
    )


@archive_rule_group.child
@lightbulb.add_checks(lightbulb.has_guild_permissions(hikari.Permissions.MANAGE_CHANNELS))
@lightbulb.command("clear", "Archive requests in this channel in place")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def clear_command(ctx: lightbulb.SlashContext) -> None:
    if await plugin.bot.d["admin_service"].clear_archive_rule(str(ctx.channel_id)):
        content = f"Requests archived in <#{ctx.channel_id}> will now stay in place."
    else:
        content = f"<#{ctx.channel_id}> has no archive rule."
    await ctx.respond(content, flags=hikari.MessageFlag.EPHEMERAL)


@archive_rule_group.child
@lightbulb.command("show", "Show where requests from this channel are archived")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def show_command(ctx: lightbulb.SlashContext) -> None:
    rule = await plugin.bot.d["admin_service"].get_archive_rule(str(ctx.channel_id))
    if rule is None:
        content = f"Requests archived in <#{ctx.channel_id}> stay in place."
    else:
        content = f"Requests archived in <#{ctx.channel_id}> are moved to <#{rule.to_channel}>."
    await ctx.respond(content, flags=hikari.MessageFlag.EPHEMERAL)


def load(bot: lightbulb.BotApp) -> None:
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    bot.remove_plugin(plugin)
