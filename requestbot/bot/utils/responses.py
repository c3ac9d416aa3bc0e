"""Helpers for answering members when a command or component fails."""

from __future__ import annotations

import logging

import hikari
import lightbulb

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong, please try again later."


def create_error_embed(message: str) -> hikari.Embed:
    return hikari.Embed(description=f"❌ {message}", color=hikari.Color(0xE74C3C))


async def respond_error(ctx: lightbulb.Context, message: str) -> None:
    """Answer a slash command with an ephemeral error."""
    try:
        await ctx.respond(embed=create_error_embed(message), flags=hikari.MessageFlag.EPHEMERAL)
    except hikari.HTTPError as e:
        logger.debug(f"Could not send error response: {e}")


async def reply_to_component(interaction: hikari.ComponentInteraction, message: str) -> None:
    """Answer a component interaction ephemerally.

    Falls back to a follow-up message when the interaction was already
    acknowledged, which happens when an archive failed part way.
    """
    embed = create_error_embed(message)
    try:
        await interaction.create_initial_response(
            hikari.ResponseType.MESSAGE_CREATE,
            embed=embed,
            flags=hikari.MessageFlag.EPHEMERAL,
        )
        return
    except hikari.BadRequestError:
        pass
    except hikari.HTTPError as e:
        logger.debug(f"Could not respond to interaction {interaction.id}: {e}")
        return

    try:
        await interaction.execute(embed=embed, flags=hikari.MessageFlag.EPHEMERAL)
    except hikari.HTTPError as e:
        logger.debug(f"Could not send follow-up for interaction {interaction.id}: {e}")
