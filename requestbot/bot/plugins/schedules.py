from __future__ import annotations

import logging

import hikari
import lightbulb

from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.utils.responses import GENERIC_ERROR
from requestbot.bot.utils.responses import respond_error

logger = logging.getLogger(__name__)

plugin = lightbulb.Plugin("schedules")


@plugin.command
@lightbulb.option("title", "Title of every posted request", type=str)
@lightbulb.option("tasks", "Tasks separated by ';', prefix one with {3x} to repeat it", type=str)
@lightbulb.option("every", "How often to post, e.g. '1 day' or '12h'", type=str)
@lightbulb.option("thumbnail", "Image URL shown beside the tasks", type=str, required=False)
@lightbulb.command("schedule", "Post the same request in this channel on a fixed cadence")
@lightbulb.implements(lightbulb.SlashCommand)
async def schedule_command(ctx: lightbulb.SlashContext) -> None:
    """Create a schedule and post its tracking message.

    Deleting the tracking message stops the schedule.
    """
    service = plugin.bot.d["schedule_service"]
    try:
        schedule = await service.create_schedule(
            discord_user_id=str(ctx.author.id),
            channel_id=str(ctx.channel_id),
            title=ctx.options.title,
            tasks_spec=ctx.options.tasks,
            every=ctx.options.every,
            thumbnail_url=ctx.options.thumbnail,
        )
    except ValidationError as e:
        await respond_error(ctx, e.message)
        return
    except Exception:
        logger.exception(f"Failed to create schedule for user {ctx.author.id}")
        await respond_error(ctx, GENERIC_ERROR)
        return

    embed = hikari.Embed(
        title=f"Scheduled: {schedule.title}",
        description="\n".join(f"- {task}" for task in schedule.tasks) or "No tasks",
    )
    embed.set_footer(f"Posted every {ctx.options.every}. Delete this message to stop the schedule.")
    response = await ctx.respond(embed=embed)
    message = await response.message()
    await service.attach_message(schedule.id, str(message.id))
    logger.info(f"Schedule {schedule.id} tracked by message {message.id}")


def load(bot: lightbulb.BotApp) -> None:
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    bot.remove_plugin(plugin)
