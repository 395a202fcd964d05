"""Registry of the playback instances known to this process."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from backspin.player import BarePlayer, EnhancedPlayer

if TYPE_CHECKING:
    from backspin.player import PlaybackInstance

logger = logging.getLogger(__name__)

Player = EnhancedPlayer | BarePlayer


class InstanceRegistry:
    """Tracks enhanced and bare players and fans rate changes out to them."""

    def __init__(self) -> None:
        self._players: dict[str, Player] = {}

    def register(self, player: Player) -> bool:
        """Register player once.

        Returns False (and changes nothing) if its instance is already known.
        """
        instance = player.instance
        if instance.enhanced or instance.identity in self._players:
            logger.debug("Instance %s already registered", instance.identity)
            return False
        if isinstance(player, EnhancedPlayer):
            instance.enhanced = True
        self._players[instance.identity] = player
        logger.debug("Registered %s (%s)", instance.identity, type(player).__name__)
        return True

    def get(self, identity: str) -> Player | None:
        """Look up a player by instance identity."""
        return self._players.get(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._players

    def __iter__(self) -> Iterator[Player]:
        return iter(list(self._players.values()))

    def __len__(self) -> int:
        return len(self._players)

    def for_each_other(self, instance: PlaybackInstance, fn: Callable[[Player], None]) -> None:
        """Call fn on every registered player except the one owning instance.

        A failure for one player is logged and does not affect the others.
        """
        for player in list(self._players.values()):
            if player.instance is instance:
                continue
            try:
                fn(player)
            except Exception:
                logger.exception("Error applying to %s", player.instance.identity)

    def apply_rate_to_others(self, instance: PlaybackInstance, rate: float) -> None:
        """Apply rate to every other player, through its controls when it has them."""
        self.for_each_other(instance, lambda player: _apply_rate(player, rate))


def _apply_rate(player: Player, rate: float) -> None:
    if isinstance(player, EnhancedPlayer):
        player.controller.apply_rate(rate)
        return
    try:
        player.apply_rate(rate)
    except Exception as e:  # noqa: BLE001
        logger.warning("Failed to set rate on %s: %s", player.instance.identity, e)
