"""Rich-based terminal UI for backspin."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Self

from rich.console import Console, ConsoleOptions, Group, RenderResult
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from backspin.rate import SPEED_PRESETS, RateDisplay
from backspin.reverse import ReverseState
from backspin.utils import format_rate


class _RefreshableLayout:
    """A renderable that rebuilds on each render cycle."""

    def __init__(self, ui: BackspinUI) -> None:
        self._ui = ui

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        """Rebuild and yield the layout on each render."""
        yield self._ui._build_layout()  # noqa: SLF001


# Duration in seconds to highlight a pressed shortcut
SHORTCUT_HIGHLIGHT_DURATION = 0.15
_MAX_EVENTS = 5
_BAR_WIDTH = 40


@dataclass
class PlayerRow:
    """Display state for one player."""

    name: str
    progress: Callable[[], tuple[float, float]]
    """Returns (forward position, duration) in seconds."""
    rate: RateDisplay | None = None
    reverse_state: ReverseState = ReverseState.IDLE
    indicator_offset: float | None = None


@dataclass
class UIState:
    """Holds state for the UI display."""

    players: list[PlayerRow] = field(default_factory=list)
    selected_index: int = 0
    events: deque[str] = field(default_factory=lambda: deque(maxlen=_MAX_EVENTS))

    # Shortcut highlight
    highlighted_shortcut: str | None = None
    highlight_time: float = 0.0


class BackspinUI:
    """Rich-based terminal UI listing every player."""

    def __init__(self) -> None:
        """Initialize the UI."""
        self._console = Console()
        self._state = UIState()
        self._live: Live | None = None
        self._running = False

    @property
    def state(self) -> UIState:
        """Get the UI state for external updates."""
        return self._state

    def _format_time(self, seconds: float) -> str:
        """Format seconds as MM:SS."""
        whole = int(max(0.0, seconds))
        return f"{whole // 60:02d}:{whole % 60:02d}"

    def _is_highlighted(self, shortcut: str) -> bool:
        """Check if a shortcut should be highlighted."""
        if self._state.highlighted_shortcut != shortcut:
            return False
        elapsed = time.monotonic() - self._state.highlight_time
        return elapsed < SHORTCUT_HIGHLIGHT_DURATION

    def _shortcut_style(self, shortcut: str) -> str:
        """Get the style for a shortcut key."""
        return "bold yellow reverse" if self._is_highlighted(shortcut) else "bold cyan"

    def highlight_shortcut(self, shortcut: str) -> None:
        """Highlight a shortcut temporarily."""
        self._state.highlighted_shortcut = shortcut
        self._state.highlight_time = time.monotonic()
        self.refresh()

    def add_player(self, row: PlayerRow) -> int:
        """Add a player row; returns its index."""
        self._state.players.append(row)
        self.refresh()
        return len(self._state.players) - 1

    def set_rate(self, index: int, display: RateDisplay) -> None:
        """Update the rate controls of a player."""
        self._state.players[index].rate = display
        self.refresh()

    def set_reverse_state(self, index: int, state: ReverseState) -> None:
        """Update the reverse state of a player."""
        self._state.players[index].reverse_state = state
        self.refresh()

    def set_indicator(self, index: int, offset: float | None) -> None:
        """Update the reverse position indicator of a player."""
        self._state.players[index].indicator_offset = offset

    def move_selection(self, delta: int) -> None:
        """Move the player selection by delta, wrapping around."""
        if not self._state.players:
            return
        count = len(self._state.players)
        self._state.selected_index = (self._state.selected_index + delta) % count
        self.refresh()

    @property
    def selected_index(self) -> int:
        return self._state.selected_index

    def add_event(self, message: str) -> None:
        """Append a line to the event log."""
        self._state.events.append(message)
        self.refresh()

    def _build_bar(self, row: PlayerRow) -> Text:
        position, duration = row.progress()
        reversing = row.reverse_state is ReverseState.REVERSING
        if reversing and row.indicator_offset is not None:
            fraction = row.indicator_offset + 1.0
            position = fraction * duration
        else:
            fraction = position / duration if duration > 0 else 0.0
        filled = int(_BAR_WIDTH * min(1.0, max(0.0, fraction)))

        bar = Text()
        bar.append("[", style="dim")
        style = "magenta bold" if reversing else "green bold"
        bar.append("=" * filled, style=style)
        if filled < _BAR_WIDTH:
            bar.append("<" if reversing else ">", style=style)
            bar.append("-" * max(0, _BAR_WIDTH - filled - 1), style="dim")
        bar.append("] ", style="dim")
        bar.append(self._format_time(position), style="cyan")
        bar.append(" / ", style="dim")
        bar.append(self._format_time(duration), style="cyan")
        return bar

    def _build_presets(self, row: PlayerRow) -> Text:
        presets = Text()
        active = row.rate.active_preset if row.rate is not None else None
        for preset in SPEED_PRESETS:
            style = "bold blue reverse" if active == preset else "dim"
            presets.append(f" {format_rate(preset)} ", style=style)
        field_text = row.rate.field_text if row.rate is not None else ""
        presets.append("  custom× ", style="dim")
        presets.append(field_text or "-", style="bold white")
        return presets

    def _build_players_panel(self) -> Panel:
        content = Table.grid(padding=(0, 1))
        content.add_column(width=2)
        content.add_column()

        if not self._state.players:
            content.add_row("", Text("Loading...", style="dim"))
        for i, row in enumerate(self._state.players):
            marker = Text(">", style="bold cyan") if i == self._state.selected_index else Text(" ")
            title = Text(row.name, style="bold white")
            if row.reverse_state is ReverseState.REVERSING:
                title.append("  ⇋ reverse", style="magenta")
            content.add_row(marker, title)
            content.add_row("", self._build_presets(row))
            content.add_row("", self._build_bar(row))
        return Panel(content, title="Players", border_style="blue")

    def _build_shortcuts_panel(self) -> Panel:
        shortcuts = Text()
        for key, name, label in (
            ("↑/↓", "select", "select"),
            ("<space>", "space", "play/pause"),
            ("r", "reverse", "reverse"),
            ("-/+", "rate", "speed"),
            ("0-9 ⏎", "rate", "type speed"),
            ("a", "apply", "apply to all"),
            ("x", "stop", "stop"),
            ("q", "quit", "quit"),
        ):
            shortcuts.append(key, style=self._shortcut_style(name))
            shortcuts.append(f" {label}  ", style="dim")
        return Panel(shortcuts, title="Keys", border_style="magenta")

    def _build_events_panel(self) -> Panel:
        lines = [Text(line, style="dim") for line in self._state.events] or [Text("")]
        return Panel(Group(*lines), title="Events", border_style="yellow")

    def _build_layout(self) -> Group:
        return Group(
            self._build_players_panel(),
            self._build_shortcuts_panel(),
            self._build_events_panel(),
        )

    def refresh(self) -> None:
        """Request a redraw."""
        if self._live is not None and self._running:
            self._live.refresh()

    def start(self) -> None:
        """Start the live display."""
        self._console.clear()
        self._live = Live(
            _RefreshableLayout(self),
            console=self._console,
            refresh_per_second=20,
            screen=True,
        )
        self._live.start()
        self._running = True

    def stop(self) -> None:
        """Stop the live display."""
        self._running = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def __enter__(self) -> Self:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        """Context manager exit."""
        self.stop()
