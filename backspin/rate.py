"""Shared-rate playback speed control.

Three sources decide an instance's rate:

- the instance's own numeric field (set locally, per instance),
- the session override (set only by "apply to all", lives for the session),
- the persisted default (the last explicit choice, survives restarts).

A locally chosen rate is persisted but never becomes the session override,
so it cannot leak into other instances implicitly.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from backspin.errors import RateInputError
from backspin.settings import DEFAULT_RATE, RateStore, coerce_rate
from backspin.transport import TransportEvent
from backspin.utils import clamp, format_rate, parse_rate

if TYPE_CHECKING:
    from backspin.player import PlaybackInstance
    from backspin.registry import InstanceRegistry

logger = logging.getLogger(__name__)

MIN_RATE: Final[float] = 0.1
MAX_RATE: Final[float] = 16.0
SPEED_PRESETS: Final[tuple[float, ...]] = (0.25, 0.5, 1, 2, 3, 4, 8, 12, 16)
_PRESET_TOLERANCE: Final[float] = 0.001


def clamp_rate(rate: float) -> float:
    """Clamp rate into [MIN_RATE, MAX_RATE]."""
    return clamp(rate, MIN_RATE, MAX_RATE)


@dataclass
class RateState:
    """Process-wide rate state shared by every controller.

    Attributes:
        store: Persistence for the default rate.
        persisted_default: Last explicitly chosen rate, read once at startup.
        session_override: Rate set by "apply to all"; wins over the persisted
            default for instances initialised later in the session.
    """

    store: RateStore
    persisted_default: float = DEFAULT_RATE
    session_override: float | None = None

    @classmethod
    def load(cls, store: RateStore) -> RateState:
        """Create the state, reading the persisted default once."""
        return cls(store=store, persisted_default=coerce_rate(store.playback_rate))

    def effective_default(self) -> float:
        """Rate a newly attached instance starts with."""
        if self.session_override is not None:
            return self.session_override
        return self.persisted_default

    def persist(self, rate: float) -> None:
        """Record rate as the new persisted default."""
        self.persisted_default = rate
        self.store.save_rate(rate)


@dataclass(frozen=True, slots=True)
class RateDisplay:
    """What the presentation layer shows for one instance."""

    rate: float
    active_preset: float | None
    field_text: str


class RateController:
    """Owns the rate of one playback instance and keeps its controls in sync."""

    def __init__(
        self,
        instance: PlaybackInstance,
        state: RateState,
        registry: InstanceRegistry | None = None,
        on_display: Callable[[RateDisplay], None] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            instance: The instance whose transport this controller drives.
            state: Shared rate state.
            registry: Registry used to reach other instances on broadcast.
            on_display: Receives a RateDisplay whenever the controls change.
        """
        self._instance = instance
        self._state = state
        self._registry = registry
        self._on_display = on_display
        self._field_text = ""
        self._active_preset: float | None = None
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def field_text(self) -> str:
        """Current contents of the instance's numeric field."""
        return self._field_text

    @property
    def active_preset(self) -> float | None:
        """The highlighted preset, if the current rate matches one."""
        return self._active_preset

    @property
    def rate(self) -> float:
        """The transport's actual rate."""
        return self._instance.transport.playback_rate or 1.0

    def display(self) -> RateDisplay:
        """Snapshot of the presentation state."""
        return RateDisplay(
            rate=round(self.rate, 2),
            active_preset=self._active_preset,
            field_text=self._field_text,
        )

    def attach(self) -> None:
        """Subscribe to transport events and apply the initial rate."""
        if self._unsubscribers:
            return
        transport = self._instance.transport
        self._unsubscribers = [
            transport.add_listener(TransportEvent.PLAY, self.on_play),
            transport.add_listener(TransportEvent.RATECHANGE, self.sync_ui),
            transport.add_listener(TransportEvent.LOADEDMETADATA, self.on_loaded_metadata),
        ]
        self.apply_effective_rate_on_init()

    def detach(self) -> None:
        """Drop the transport subscriptions."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def set_local_rate(self, rate: float) -> None:
        """Apply a rate chosen on this instance and persist it as the default.

        Non-finite rates are ignored: nothing is applied or persisted.
        """
        if not math.isfinite(rate):
            logger.debug("Ignoring non-finite rate for %s: %r", self._instance.identity, rate)
            return
        rate = clamp_rate(rate)
        self.apply_rate(rate)
        self._state.persist(rate)

    def handle_field_input(self, text: str) -> bool:
        """Apply the rate typed into the numeric field.

        The field keeps whatever was typed; malformed input changes nothing
        else. Returns whether a rate was applied.
        """
        self._field_text = text
        try:
            value = parse_rate(text)
        except RateInputError as e:
            logger.debug("Ignoring rate input for %s: %s", self._instance.identity, e)
            return False
        self.set_local_rate(value)
        return True

    def step_preset(self, direction: int) -> None:
        """Move to the next preset above (direction > 0) or below the current rate."""
        current = round(self.rate, 2)
        if direction > 0:
            candidates = [p for p in SPEED_PRESETS if p > current + _PRESET_TOLERANCE]
            target = min(candidates) if candidates else SPEED_PRESETS[-1]
        else:
            candidates = [p for p in SPEED_PRESETS if p < current - _PRESET_TOLERANCE]
            target = max(candidates) if candidates else SPEED_PRESETS[0]
        self.set_local_rate(target)

    def apply_rate(self, rate: float) -> bool:
        """Apply rate to the transport and sync the controls, without persisting.

        This is the entry point other instances use during a broadcast.
        Returns whether the transport accepted the rate.
        """
        rate = clamp_rate(rate)
        applied = True
        try:
            self._instance.transport.playback_rate = rate
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to set rate %.2f on %s: %s", rate, self._instance.identity, e)
            applied = False
        self.sync_ui()
        return applied

    def apply_effective_rate_on_init(self) -> None:
        """Apply the session override, or else the persisted default."""
        self.apply_rate(self._state.effective_default())

    def broadcast_rate(self) -> float:
        """Make this instance's rate the session rate and apply it everywhere else.

        Returns the broadcast rate.
        """
        rate = self.rate
        self._state.session_override = rate
        self._state.persist(rate)
        logger.info("Applying rate %.2f from %s to all players", rate, self._instance.identity)
        if self._registry is not None:
            self._registry.apply_rate_to_others(self._instance, rate)
        return rate

    def resolve_play_rate(self) -> float:
        """Rate a play action should run at, given the visible controls."""
        try:
            return clamp_rate(parse_rate(self._field_text))
        except RateInputError:
            if self._state.session_override is not None:
                return self._state.session_override
            return self.rate

    def on_play(self) -> None:
        """Re-apply the visible rate when forward playback starts."""
        target = self.resolve_play_rate()
        if target != self.rate:
            logger.debug(
                "Re-syncing %s from %.2f to %.2f on play",
                self._instance.identity,
                self.rate,
                target,
            )
        self.apply_rate(target)

    def on_loaded_metadata(self) -> None:
        """A fresh load may reset the transport's rate; restore the visible one."""
        self.apply_rate(self.resolve_play_rate())

    def sync_ui(self) -> None:
        """Refresh the controls from the transport's actual rate."""
        rate = round(self.rate, 2)
        self._active_preset = next(
            (p for p in SPEED_PRESETS if abs(p - rate) < _PRESET_TOLERANCE), None
        )
        self._field_text = format_rate(rate)
        if self._on_display is not None:
            self._on_display(self.display())
