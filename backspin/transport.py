"""Transport capability consumed from each playback instance.

A transport is the host's own player: backspin never creates or destroys
one, it only reads and drives it and subscribes to its events. Transports
dispatch events through a TransportEvents hub so that any number of
listeners (rate controller, reverse engine, UI) can observe the same
instance.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class TransportEvent(Enum):
    """Events emitted by a transport."""

    PLAY = "play"
    """Forward playback was requested."""

    PAUSE = "pause"
    """Forward playback was paused."""

    RATECHANGE = "ratechange"
    """The playback rate changed (from any caller)."""

    LOADEDMETADATA = "loadedmetadata"
    """A source finished loading and its duration is known."""

    ENDED = "ended"
    """Forward playback reached the end of a non-looping source."""


class Transport(Protocol):
    """Play/pause/seek/rate primitives of one playback instance."""

    def play(self) -> None:
        """Start or resume forward playback."""
        ...

    def pause(self) -> None:
        """Pause forward playback, keeping the position."""
        ...

    @property
    def position(self) -> float:
        """Current forward position in seconds."""
        ...

    @position.setter
    def position(self, value: float) -> None: ...

    @property
    def playback_rate(self) -> float:
        """Current playback rate multiplier."""
        ...

    @playback_rate.setter
    def playback_rate(self, value: float) -> None: ...

    @property
    def duration(self) -> float:
        """Source duration in seconds (0.0 until metadata is loaded)."""
        ...

    @property
    def loop(self) -> bool:
        """Whether playback wraps around at the end."""
        ...

    @property
    def source(self) -> str:
        """Reference (path or URL) of the current source."""
        ...

    @property
    def paused(self) -> bool:
        """Whether forward playback is currently stopped."""
        ...

    def add_listener(self, event: TransportEvent, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event. Returns unsubscribe function."""
        ...


class TransportEvents:
    """Manages multiple listeners per transport event.

    Each listener runs in isolation: an exception in one is logged and the
    remaining listeners still run.
    """

    def __init__(self) -> None:
        """Initialize the listener table."""
        self._listeners: dict[TransportEvent, list[Listener]] = {event: [] for event in TransportEvent}

    def add_listener(self, event: TransportEvent, listener: Listener) -> Callable[[], None]:
        """Add a listener for event. Returns unsubscribe function."""
        listeners = self._listeners[event]
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def listener_count(self, event: TransportEvent) -> int:
        """Return how many listeners are subscribed to event."""
        return len(self._listeners[event])

    def emit(self, event: TransportEvent) -> None:
        """Dispatch event to all registered listeners."""
        # Copy so listeners may unsubscribe while being dispatched
        for listener in list(self._listeners[event]):
            try:
                listener()
            except Exception:
                logger.exception("Error in %s listener", event.value)
