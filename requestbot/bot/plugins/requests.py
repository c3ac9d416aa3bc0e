"""Request commands and the task controls attached to request messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import hikari
import lightbulb

from requestbot.bot.services.exceptions import ResourceNotFoundError
from requestbot.bot.services.exceptions import ValidationError
from requestbot.bot.services.rendering import CLAIM_TASK
from requestbot.bot.services.rendering import COMPLETE_TASK
from requestbot.bot.services.rendering import REPEAT_REQUEST
from requestbot.bot.services.rendering import UNCLAIM_TASK
from requestbot.bot.services.rendering import to_message_kwargs
from requestbot.bot.services.requests_service import RequestKind
from requestbot.bot.services.requests_service import TaskAction
from requestbot.bot.utils.responses import GENERIC_ERROR
from requestbot.bot.utils.responses import reply_to_component
from requestbot.bot.utils.responses import respond_error

if TYPE_CHECKING:
    from requestbot.bot.services.requests_service import RequestsService

logger = logging.getLogger(__name__)

plugin = lightbulb.Plugin("requests")

TASK_ACTIONS = {
    CLAIM_TASK: TaskAction.CLAIM,
    UNCLAIM_TASK: TaskAction.UNCLAIM,
    COMPLETE_TASK: TaskAction.COMPLETE,
}


def get_requests_service() -> RequestsService:
    return plugin.bot.d["requests_service"]


@plugin.command
@lightbulb.option("title", "What is being requested", type=str)
@lightbulb.option("tasks", "Tasks separated by ';', prefix one with {3x} to repeat it", type=str)
@lightbulb.option(
    "kind",
    "Post publicly or keep the request to yourself",
    type=str,
    choices=[kind.value for kind in RequestKind],
    default=RequestKind.PUBLIC.value,
    required=False,
)
@lightbulb.option("expires", "Archive automatically after e.g. '2 hours' or '1h30m'", type=str, required=False)
@lightbulb.option("thumbnail", "Image URL shown beside the tasks", type=str, required=False)
@lightbulb.command("request", "Post a request made of tasks others can claim and complete")
@lightbulb.implements(lightbulb.SlashCommand)
async def request_command(ctx: lightbulb.SlashContext) -> None:
    """Create a request and post it in the current channel."""
    kind = RequestKind(ctx.options.kind or RequestKind.PUBLIC.value)

    try:
        new = await get_requests_service().make_request(
            discord_user_id=str(ctx.author.id),
            title=ctx.options.title,
            tasks_spec=ctx.options.tasks,
            kind=kind,
            channel_id=str(ctx.channel_id),
            expires=ctx.options.expires,
            thumbnail_url=ctx.options.thumbnail,
        )
    except ValidationError as e:
        await respond_error(ctx, e.message)
        return
    except Exception:
        logger.exception(f"Failed to create request for user {ctx.author.id}")
        await respond_error(ctx, GENERIC_ERROR)
        return

    flags = hikari.MessageFlag.EPHEMERAL if kind is RequestKind.PRIVATE else hikari.MessageFlag.NONE
    response = await ctx.respond(flags=flags, **to_message_kwargs(new.rendered))
    message = await response.message()
    await get_requests_service().attach_message(new.request.id, str(message.id))


@plugin.listener(hikari.InteractionCreateEvent)
async def on_component_interaction(event: hikari.InteractionCreateEvent) -> None:
    """Route request controls to the requests service."""
    interaction = event.interaction
    if not isinstance(interaction, hikari.ComponentInteraction):
        return

    custom_id = interaction.custom_id
    if custom_id not in TASK_ACTIONS and custom_id != REPEAT_REQUEST:
        return

    service = get_requests_service()
    try:
        if custom_id == REPEAT_REQUEST:
            await service.repeat_request(interaction)
        else:
            await service.change_task_status(interaction, TASK_ACTIONS[custom_id])
    except (ValidationError, ResourceNotFoundError) as e:
        await reply_to_component(interaction, e.message)
    except Exception:
        logger.exception(f"Error handling {custom_id} interaction from user {interaction.user.id}")
        await reply_to_component(interaction, GENERIC_ERROR)


def load(bot: lightbulb.BotApp) -> None:
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    bot.remove_plugin(plugin)
