"""Playback instances and the behaviour backspin attaches to them."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from backspin.indicator import IndicatorCallback, PositionIndicatorSync
from backspin.rate import RateController, RateDisplay, RateState
from backspin.reverse import (
    Clock,
    RendererFactory,
    ReversedBuffer,
    ReversePlaybackEngine,
    ReverseState,
)

if TYPE_CHECKING:
    from backspin.decoder import SourceLoader
    from backspin.registry import InstanceRegistry
    from backspin.transport import Transport

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PlaybackInstance:
    """One independently controllable audio source.

    Attributes:
        identity: Stable identity used to prevent double enhancement.
        transport: The host's player; backspin never creates or destroys it.
        enhanced: Set once controls have been attached.
        reversed_buffer: Cached reversed copy of the source, computed at most once.
    """

    identity: str
    transport: Transport
    enhanced: bool = False
    reversed_buffer: ReversedBuffer | None = field(default=None, repr=False)


@dataclass(eq=False)
class BarePlayer:
    """An instance without backspin controls; only its raw transport is driven."""

    instance: PlaybackInstance

    def apply_rate(self, rate: float) -> None:
        """Set the transport rate directly."""
        self.instance.transport.playback_rate = rate


@dataclass(eq=False)
class EnhancedPlayer:
    """An instance with a rate controller and a reverse engine."""

    instance: PlaybackInstance
    controller: RateController
    engine: ReversePlaybackEngine

    @property
    def identity(self) -> str:
        return self.instance.identity

    def apply_rate(self, rate: float) -> None:
        """Apply rate through the controls (no persistence)."""
        self.controller.apply_rate(rate)

    async def toggle_reverse(self) -> None:
        """Toggle reverse playback."""
        await self.engine.toggle()

    def toggle_play(self) -> None:
        """Play/pause the forward transport; while reversing, stop reverse and play."""
        transport = self.instance.transport
        if self.engine.state is ReverseState.REVERSING or transport.paused:
            transport.play()
        else:
            transport.pause()

    def stop(self) -> None:
        """Local stop: end reverse, pause and rewind this player only."""
        self.engine.stop_playback()

    def broadcast_rate(self) -> float:
        """Apply this player's rate to every other player."""
        return self.controller.broadcast_rate()

    def detach(self) -> None:
        """Tear down reverse playback and drop all transport subscriptions."""
        self.engine.detach()
        self.controller.detach()


def enhance_player(
    instance: PlaybackInstance,
    *,
    state: RateState,
    registry: InstanceRegistry,
    loader: SourceLoader,
    renderer_factory: RendererFactory,
    clock: Clock | None = None,
    on_display: Callable[[RateDisplay], None] | None = None,
    on_indicator: IndicatorCallback | None = None,
    on_reverse_state: Callable[[ReverseState], None] | None = None,
) -> EnhancedPlayer:
    """Attach rate control and reverse playback to instance, at most once.

    Re-enhancing a known instance returns the existing player without
    creating new controls or subscriptions.

    Args:
        instance: The instance to enhance.
        state: Shared rate state.
        registry: Registry of all players in this process.
        loader: Fetches and decodes sources for reversal.
        renderer_factory: Creates reverse renderers.
        clock: Engine clock override (the running loop's time by default).
        on_display: Receives rate display updates.
        on_indicator: Receives the reverse position offset; None disables the indicator.
        on_reverse_state: Receives reverse state transitions.

    Raises:
        ValueError: If the identity is registered as a bare player, or the
            instance was enhanced through another registry.
    """
    existing = registry.get(instance.identity)
    if existing is not None:
        if isinstance(existing, EnhancedPlayer):
            return existing
        raise ValueError(f"{instance.identity} is registered without controls")
    if instance.enhanced:
        raise ValueError(f"{instance.identity} is already enhanced by another registry")

    indicator = PositionIndicatorSync(on_indicator) if on_indicator is not None else None
    controller = RateController(instance, state, registry, on_display=on_display)
    engine = ReversePlaybackEngine(
        instance,
        loader,
        renderer_factory,
        clock=clock,
        indicator=indicator,
        on_state_change=on_reverse_state,
    )
    player = EnhancedPlayer(instance=instance, controller=controller, engine=engine)
    registry.register(player)

    # The engine must see "play" before the controller re-applies the rate
    engine.attach()
    controller.attach()
    logger.info("Enhanced %s", instance.identity)
    return player
