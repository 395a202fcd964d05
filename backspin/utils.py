"""Utility functions for backspin."""

from __future__ import annotations

import asyncio
import math
import sys
from collections.abc import Coroutine
from typing import TypeVar

from backspin.errors import RateInputError

_T = TypeVar("_T")

# Check if eager_start is supported (Python 3.12+)
_SUPPORTS_EAGER_START = sys.version_info >= (3, 12)


def create_task(
    coro: Coroutine[None, None, _T],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
    name: str | None = None,
    eager_start: bool = True,
) -> asyncio.Task[_T]:
    """Create an asyncio task with eager_start=True by default.

    Eagerly started tasks run synchronously up to their first suspension
    point, so a toggle that only needs cached data completes in the same
    step that requested it (when supported by the Python version).

    Args:
        coro: The coroutine to run as a task.
        loop: Optional event loop to use. If None, uses the running loop.
        name: Optional name for the task (for debugging).
        eager_start: Whether to start the task eagerly (default: True).
                     Only used if Python version supports it.

    Returns:
        The created asyncio Task.
    """
    if loop is None:
        loop = asyncio.get_running_loop()

    if _SUPPORTS_EAGER_START and eager_start:
        return asyncio.Task(coro, loop=loop, name=name, eager_start=True)

    return loop.create_task(coro, name=name)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return min(high, max(low, value))


def parse_rate(text: str | None) -> float:
    """Parse user supplied rate text.

    Raises:
        RateInputError: If the text is empty, non-numeric, NaN or infinite.
    """
    if text is None:
        raise RateInputError("empty rate")
    try:
        value = float(text.strip())
    except ValueError as e:
        raise RateInputError(f"not a number: {text!r}") from e
    if not math.isfinite(value):
        raise RateInputError(f"not a finite number: {text!r}")
    return value


def format_rate(rate: float) -> str:
    """Format a rate the way the numeric field shows it (2 decimals, no trailing zeros)."""
    rounded = round(rate, 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:g}"
