"""Keyboard input handling for backspin."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import readchar

from backspin.utils import create_task

if TYPE_CHECKING:
    from backspin.player import EnhancedPlayer
    from backspin.ui import BackspinUI

logger = logging.getLogger(__name__)

# Typed into the numeric rate field, submitted with Enter
_RATE_CHARS = frozenset("0123456789.")


class CommandHandler:
    """Handles keyboard commands against the selected player."""

    def __init__(
        self,
        players: list[EnhancedPlayer],
        ui: BackspinUI | None = None,
        print_event: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the command handler."""
        self._players = players
        self._ui = ui
        self._print_event = print_event or (lambda _: None)
        self._selected = 0
        self._typed = ""
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def selected(self) -> EnhancedPlayer | None:
        """The player commands apply to."""
        if not self._players:
            return None
        if self._ui is not None:
            self._selected = self._ui.selected_index
        return self._players[self._selected % len(self._players)]

    async def select(self, delta: int) -> None:
        """Move the selection."""
        if self._ui is not None:
            self._ui.move_selection(delta)
        elif self._players:
            self._selected = (self._selected + delta) % len(self._players)

    async def toggle_play_pause(self) -> None:
        """Toggle forward playback of the selected player."""
        if (player := self.selected) is not None:
            player.toggle_play()

    async def toggle_reverse(self) -> None:
        """Toggle reverse playback of the selected player."""
        if (player := self.selected) is None:
            return
        # Decoding may take a while; keep reading keys so a second press can cancel
        task = create_task(player.toggle_reverse(), name=f"reverse-{player.identity}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def change_rate(self, direction: int) -> None:
        """Step the selected player's rate through the presets."""
        if (player := self.selected) is None:
            return
        player.controller.step_preset(direction)
        self._print_event(f"{player.identity}: {player.controller.field_text}×")

    async def apply_to_all(self) -> None:
        """Broadcast the selected player's rate to every player."""
        if (player := self.selected) is None:
            return
        rate = player.broadcast_rate()
        self._print_event(f"Applied {rate:g}× to all players")

    def type_char(self, char: str) -> None:
        """Append a character to the rate being typed."""
        self._typed += char
        self._print_event(f"Rate: {self._typed}")

    async def submit_rate(self) -> None:
        """Send the typed rate to the selected player's numeric field."""
        typed, self._typed = self._typed, ""
        if not typed or (player := self.selected) is None:
            return
        if player.controller.handle_field_input(typed):
            self._print_event(f"{player.identity}: {player.controller.field_text}×")
        else:
            self._print_event(f"Ignored rate {typed!r}")

    async def stop(self) -> None:
        """Stop the selected player."""
        if (player := self.selected) is not None:
            player.stop()


async def keyboard_loop(
    players: list[EnhancedPlayer],
    ui: BackspinUI | None = None,
    print_event: Callable[[str], None] | None = None,
) -> None:
    """Run the keyboard input loop.

    Args:
        players: Players that can be controlled.
        ui: Optional UI instance.
        print_event: Function to print events.
    """
    handler = CommandHandler(players, ui, print_event)

    # Key dispatch table: key -> (highlight_name | None, async action)
    shortcuts: dict[str, tuple[str | None, Callable[[], Awaitable[None]]]] = {
        " ": ("space", handler.toggle_play_pause),
        "r": ("reverse", handler.toggle_reverse),
        "a": ("apply", handler.apply_to_all),
        "x": ("stop", handler.stop),
        "+": ("rate", lambda: handler.change_rate(1)),
        "=": ("rate", lambda: handler.change_rate(1)),
        "-": ("rate", lambda: handler.change_rate(-1)),
        "\t": ("select", lambda: handler.select(1)),
        readchar.key.ENTER: ("rate", handler.submit_rate),
        readchar.key.UP: ("select", lambda: handler.select(-1)),
        readchar.key.DOWN: ("select", lambda: handler.select(1)),
    }

    if not sys.stdin.isatty():
        logger.info("Running without interactive input")
        await asyncio.Event().wait()
        return

    loop = asyncio.get_running_loop()

    while True:
        try:
            # Run blocking readkey in executor to not block the event loop
            key = await loop.run_in_executor(None, readchar.readkey)
        except (asyncio.CancelledError, KeyboardInterrupt):
            break

        # Handle Ctrl+C
        if key == "\x03":
            break

        if key in ("q", "Q"):
            if ui:
                ui.highlight_shortcut("quit")
            break

        if key in _RATE_CHARS:
            handler.type_char(key)
            continue

        action = shortcuts.get(key) or shortcuts.get(key.lower())
        if action:
            highlight_name, action_handler = action
            if highlight_name and ui:
                ui.highlight_shortcut(highlight_name)
            try:
                await action_handler()
            except Exception:
                logger.exception("Error handling key %r", key)
            continue

        logger.debug("Unhandled key %r", key)
