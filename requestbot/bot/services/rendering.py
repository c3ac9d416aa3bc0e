"""Rendering of requests and deliveries into Discord message payloads.

Rendering is a pure function of the persisted state: the same request and
tasks always produce the same ``RenderedRequest``. The hikari conversion is
kept separate so the rendered data can be inspected without a gateway.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

import hikari
from hikari.impl import MessageActionRowBuilder

from requestbot.db.models import Delivery, Request, Task

CLAIM_TASK = "claim-task"
UNCLAIM_TASK = "unclaim-task"
COMPLETE_TASK = "complete-task"
REPEAT_REQUEST = "repeat-request"

# Discord limits for select menus
MAX_SELECT_OPTIONS = 25
MAX_OPTION_LABEL = 100

QUIPS = [
    "🧹 Many hands make light work",
    "📦 Another one for the pile",
    "🛠️ Built with questionable tools",
    "☕ Fueled by coffee and optimism",
    "🐢 Slow and steady",
    "🚀 Ship it!",
    "🧾 Paperwork never sleeps",
    "🎯 Aim small, miss small",
    "🔧 Tighten those bolts",
    "🌱 Growing one task at a time",
    "📋 Lists all the way down",
    "🤝 Teamwork makes the dream work",
    "⏳ Time waits for no request",
    "🧠 Think first, click later",
    "🎲 Results may vary",
]


@dataclass(frozen=True)
class SelectOption:
    label: str
    value: str


@dataclass(frozen=True)
class Control:
    """An interactive control: a select menu when it has options, else a button."""

    custom_id: str
    label: str
    options: tuple[SelectOption, ...] = ()

    @property
    def is_select(self) -> bool:
        return bool(self.options)


@dataclass(frozen=True)
class RenderedRequest:
    content: str
    embed_title: str
    description: str
    footer: str
    thumbnail_url: Optional[str]
    controls: tuple[Control, ...]

    def control(self, custom_id: str) -> Optional[Control]:
        return next((c for c in self.controls if c.custom_id == custom_id), None)


def format_timestamp(moment: datetime) -> str:
    """Discord timestamp markup with absolute and relative forms."""
    unix = int(moment.timestamp())
    return f"<t:{unix}> (<t:{unix}:R>)"


def select_quip(request: Request) -> str:
    digest = hashlib.sha256(request.id.bytes).digest()
    return QUIPS[int.from_bytes(digest[:8], "big") % len(QUIPS)]


def render_task_line(task: Task) -> str:
    strike = "~~" if task.is_completed else ""
    line = f"{task.weight}. {strike}{task.task}{strike}"

    if task.completed_at is not None:
        line += f", completed at {format_timestamp(task.completed_at)}"
    elif task.started_at is not None:
        line += f", claimed at {format_timestamp(task.started_at)}"

    if task.assignee is not None:
        line += f" by {task.assignee.mention}"
    return line


def _task_options(tasks: Sequence[Task]) -> tuple[SelectOption, ...]:
    return tuple(
        SelectOption(
            label=f"{task.weight}. {task.task}"[:MAX_OPTION_LABEL],
            value=str(task.id),
        )
        for task in tasks[:MAX_SELECT_OPTIONS]
    )


def render_controls(request: Request, tasks: Sequence[Task]) -> tuple[Control, ...]:
    """Controls derived from the uncompleted tasks.

    An archived request takes no more task updates, so only Repeat remains.
    """
    uncompleted = [] if request.is_archived else [task for task in tasks if not task.is_completed]
    claimed = [task for task in uncompleted if task.is_claimed]
    unclaimed = [task for task in uncompleted if not task.is_claimed]

    controls = []
    if claimed:
        controls.append(Control(UNCLAIM_TASK, "Unclaim task", _task_options(claimed)))
    if unclaimed:
        controls.append(Control(CLAIM_TASK, "Claim task", _task_options(unclaimed)))
    if uncompleted:
        controls.append(Control(COMPLETE_TASK, "Mark task as completed", _task_options(uncompleted)))
    if not uncompleted and request.discord_channel_id is not None:
        controls.append(Control(REPEAT_REQUEST, "Repeat"))
    return tuple(controls)


def render_request(request: Request, tasks: Sequence[Task]) -> RenderedRequest:
    """Render a request snapshot.

    Args:
        request: Request with its creator loaded
        tasks: Tasks of the request with assignees loaded, in any order

    Returns:
        RenderedRequest: Message body, embed data and controls
    """
    ordered = sorted(tasks, key=lambda task: (task.weight, str(task.id)))

    content_lines = [f"## {request.title}"]
    if request.archived_on is not None:
        content_lines.append(f"Archived {format_timestamp(request.archived_on)}")
    if request.expires_on is not None:
        content_lines.append(f"Expires {format_timestamp(request.expires_on)}")

    description_lines = [render_task_line(task) for task in ordered]
    description_lines.append("")
    description_lines.append(f"Requested by {request.creator.mention}")

    return RenderedRequest(
        content="\n".join(content_lines),
        embed_title="Tasks",
        description="\n".join(description_lines),
        footer=select_quip(request),
        thumbnail_url=request.thumbnail_url,
        controls=render_controls(request, ordered),
    )


def build_components(controls: Sequence[Control]) -> list[MessageActionRowBuilder]:
    rows = []
    for control in controls:
        row = MessageActionRowBuilder()
        if control.is_select:
            menu = row.add_text_menu(
                control.custom_id,
                placeholder=control.label,
                min_values=1,
                max_values=len(control.options),
            )
            for option in control.options:
                menu.add_option(option.label, option.value)
        else:
            row.add_interactive_button(
                hikari.ButtonStyle.PRIMARY,
                control.custom_id,
                label=control.label,
            )
        rows.append(row)
    return rows


def to_message_kwargs(rendered: RenderedRequest) -> dict[str, Any]:
    """Keyword arguments for hikari create/edit message and response calls."""
    embed = hikari.Embed(title=rendered.embed_title, description=rendered.description)
    embed.set_footer(rendered.footer)
    if rendered.thumbnail_url:
        embed.set_thumbnail(rendered.thumbnail_url)

    return {
        "content": rendered.content,
        "embed": embed,
        "components": build_components(rendered.controls),
    }


def render_delivery(delivery: Delivery) -> dict[str, Any]:
    lines = [f"- {item.amount}x {item.item_name}" for item in delivery.items]
    embed = hikari.Embed(title="Items", description="\n".join(lines))
    return {
        "content": f"Delivery by {delivery.creator.mention}",
        "embed": embed,
    }
