"""Per-frame position sampling for the reverse playback indicator."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from backspin.utils import create_task

logger = logging.getLogger(__name__)

# Receives the normalized horizontal offset in [-1, 0], or None to reset
IndicatorCallback = Callable[[float | None], None]


class FrameTicker:
    """Cancellable periodic task calling a sampler once per display frame.

    The sampler returns False to stop the ticker. After cancel() the sampler
    is never called again, even if a frame was already due.
    """

    def __init__(self, sampler: Callable[[], bool], interval: float) -> None:
        self._sampler = sampler
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        """Whether frames are still being scheduled."""
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self) -> None:
        """Start scheduling frames on the running loop."""
        if self._task is not None:
            return
        self._task = create_task(self._run(), name="backspin-frame-ticker", eager_start=False)

    def cancel(self) -> None:
        """Stop scheduling frames."""
        self._cancelled = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self._interval)
            if self._cancelled:
                break
            try:
                keep_going = self._sampler()
            except Exception:
                logger.exception("Error in frame sampler")
                break
            if not keep_going:
                break


class PositionIndicatorSync:
    """Publishes the reverse position as a normalized horizontal offset.

    The offset is ``percent - 1.0``: 0.0 means the indicator sits at the
    end of the track, -1.0 at the start. Read-only with respect to the
    engine; it only forwards values to the presentation callback.
    """

    def __init__(self, callback: IndicatorCallback) -> None:
        self._callback = callback
        self._last: float | None = None

    @property
    def last_offset(self) -> float | None:
        """The most recently published offset (None when cleared)."""
        return self._last

    def publish(self, percent: float) -> None:
        """Publish the position as a fraction of the duration."""
        percent = min(1.0, max(0.0, percent))
        self._last = percent - 1.0
        self._callback(self._last)

    def clear(self) -> None:
        """Reset the indicator to its forward-playback rendering."""
        self._last = None
        self._callback(None)
