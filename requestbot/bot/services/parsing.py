"""Parsers for free-text command arguments."""

from __future__ import annotations

import re
from datetime import timedelta

from requestbot.bot.services.exceptions import MalformedDeliverySpec
from requestbot.bot.services.exceptions import MalformedDuration
from requestbot.bot.services.exceptions import MalformedTaskSpec

# "{3x} fetch water" -> count "3", text "fetch water"
_REPEAT_MARKER = re.compile(r"^\{([^}]*)x\}(.*)$", re.DOTALL)
_REPEAT_COUNT = re.compile(r"\d+", re.ASCII)
# "10x iron", "{10x} iron", "iron"
_DELIVERY_ITEM = re.compile(r"^(?:\{(-?\d+)x\}|(-?\d+)\s*x\s+)?(.*)$", re.DOTALL | re.IGNORECASE)
_DURATION_TERM = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]+)", re.IGNORECASE)

# Upper bound on the expanded task list of a single request or schedule.
MAX_TASKS = 100

_DURATION_UNITS = {
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800, "week": 604800, "weeks": 604800,
}


def _segments(spec: str) -> list[str]:
    return [segment.strip() for segment in spec.split(";") if segment.strip()]


def parse_tasks(spec: str) -> list[str]:
    """Expand a ``;``-separated task list into task titles.

    A segment may start with ``{Nx}`` to repeat its text N times, so
    ``"a;{3x}b;;c"`` gives ``["a", "b", "b", "b", "c"]``. Empty segments are
    dropped and ``{0x}`` yields no copies. A marker with nothing after it is
    rejected rather than expanded into empty task titles.

    Raises:
        MalformedTaskSpec: If a repeat count is not a non-negative integer,
            a repeated segment has no text, or the expansion exceeds
            ``MAX_TASKS``
    """
    tasks: list[str] = []
    for segment in _segments(spec):
        match = _REPEAT_MARKER.match(segment)
        if match is None:
            copies, text = 1, segment
        else:
            count, text = match.group(1).strip(), match.group(2).strip()
            if not _REPEAT_COUNT.fullmatch(count):
                raise MalformedTaskSpec(segment, f"`{count}` is not a valid repeat count")
            if not text:
                raise MalformedTaskSpec(segment, "missing task text after the repeat count")
            copies = int(count)

        if len(tasks) + copies > MAX_TASKS:
            raise MalformedTaskSpec(segment, f"a request can hold at most {MAX_TASKS} tasks")
        tasks.extend([text] * copies)
    return tasks


def parse_duration(value: str) -> timedelta:
    """Parse a human duration such as ``2 hours``, ``1h30m`` or ``3 days 4h``.

    Raises:
        MalformedDuration: If the text is not a sequence of number/unit terms
            or adds up to zero
    """
    text = value.strip().lower()
    if not text:
        raise MalformedDuration(value)

    total = 0.0
    position = 0
    for match in _DURATION_TERM.finditer(text):
        if text[position:match.start()].strip(" ,") not in ("", "and"):
            raise MalformedDuration(value)
        unit = _DURATION_UNITS.get(match.group(2))
        if unit is None:
            raise MalformedDuration(value)
        total += float(match.group(1)) * unit
        position = match.end()

    if position == 0 or text[position:].strip() or total <= 0:
        raise MalformedDuration(value)
    return timedelta(seconds=total)


def parse_delivery_items(spec: str) -> list[tuple[str, int]]:
    """Parse ``;``-separated delivery lines into ``(item, amount)`` pairs.

    Each line may start with an amount written as ``10x`` or ``{10x}``;
    without one the amount is 1.

    Raises:
        MalformedDeliverySpec: On a non-positive amount, a missing item name
            or when no items are given at all
    """
    items: list[tuple[str, int]] = []
    for segment in _segments(spec):
        match = _DELIVERY_ITEM.match(segment)
        raw_amount = match.group(1) or match.group(2)
        name = match.group(3).strip()
        amount = int(raw_amount) if raw_amount is not None else 1
        if amount <= 0:
            raise MalformedDeliverySpec(segment, "amount must be at least 1")
        if not name:
            raise MalformedDeliverySpec(segment, "missing item name")
        items.append((name, amount))

    if not items:
        raise MalformedDeliverySpec(spec, "no items given")
    return items
