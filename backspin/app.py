"""Core application logic for the backspin terminal player."""

from __future__ import annotations

import asyncio
import logging
import math
import sys
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

import aiohttp

from backspin.audio import SoundDeviceRenderer, SoundDeviceTransport, resolve_audio_device
from backspin.decoder import AudioSourceLoader
from backspin.errors import DecodeError
from backspin.keyboard import keyboard_loop
from backspin.player import EnhancedPlayer, PlaybackInstance, enhance_player
from backspin.rate import RateState, clamp_rate
from backspin.registry import InstanceRegistry
from backspin.settings import get_settings_manager
from backspin.ui import BackspinUI, PlayerRow

logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    """Configuration for the backspin application."""

    sources: list[str] = field(default_factory=list)
    rate: float | None = None
    loop: bool = False
    audio_device: str | None = None
    config_dir: Path | None = None
    log_level: str = "INFO"
    headless: bool = False


class BackspinApp:
    """Main backspin application."""

    def __init__(self, config: AppConfig) -> None:
        """Initialize the application."""
        self._config = config
        self._ui: BackspinUI | None = None
        self._registry = InstanceRegistry()
        self._players: list[EnhancedPlayer] = []
        self._transports: list[SoundDeviceTransport] = []

    def _print_event(self, message: str) -> None:
        """Print an event message."""
        if self._ui is not None:
            self._ui.add_event(message)
        else:
            print(message, flush=True)  # noqa: T201

    async def run(self) -> int:
        """Run the application."""
        config = self._config

        # In interactive mode with UI, suppress logs to avoid interfering with display
        # Only show WARNING and above unless explicitly set to DEBUG
        interactive = sys.stdin.isatty() and not config.headless
        if interactive and config.log_level != "DEBUG":
            logging.basicConfig(level=logging.WARNING)
        else:
            logging.basicConfig(level=getattr(logging, config.log_level))

        if not config.sources:
            logger.error("No audio sources given")
            return 1

        try:
            device = resolve_audio_device(config.audio_device)
        except ValueError as e:
            logger.error("Audio device error: %s", e)
            return 1

        settings = await get_settings_manager(config.config_dir)
        if config.rate is not None and math.isfinite(config.rate):
            settings.save_rate(clamp_rate(config.rate))
        state = RateState.load(settings)

        if interactive:
            self._ui = BackspinUI()
            self._ui.start()

        try:
            async with aiohttp.ClientSession() as session:
                loader = AudioSourceLoader(session)
                for index, source in enumerate(config.sources):
                    await self._add_player(index, source, loader, state, device)

                if not self._players:
                    self._print_event("No playable sources")
                    return 1

                self._print_event(f"Loaded {len(self._players)} player(s)")
                await keyboard_loop(self._players, self._ui, self._print_event)
        except asyncio.CancelledError:
            logger.debug("Application cancelled")
        finally:
            for player in self._players:
                player.detach()
            for transport in self._transports:
                transport.close()
            await settings.flush()
            if self._ui is not None:
                self._ui.stop()
                self._ui = None
        return 0

    async def _add_player(
        self,
        index: int,
        source: str,
        loader: AudioSourceLoader,
        state: RateState,
        device: int | None,
    ) -> None:
        transport = SoundDeviceTransport(source, loader, loop=self._config.loop, device=device)
        try:
            await transport.open()
        except DecodeError as e:
            logger.error("Cannot open %s: %s", source, e)
            self._print_event(f"Skipping {source}: {e}")
            return
        self._transports.append(transport)

        instance = PlaybackInstance(identity=f"{index + 1}:{Path(source).name}", transport=transport)
        ui = self._ui
        if ui is not None:
            row = ui.add_player(
                PlayerRow(
                    name=instance.identity,
                    progress=lambda t=transport: (t.position, t.duration),
                )
            )
            player = enhance_player(
                instance,
                state=state,
                registry=self._registry,
                loader=loader,
                renderer_factory=partial(SoundDeviceRenderer, device),
                on_display=partial(ui.set_rate, row),
                on_indicator=partial(ui.set_indicator, row),
                on_reverse_state=partial(ui.set_reverse_state, row),
            )
        else:
            player = enhance_player(
                instance,
                state=state,
                registry=self._registry,
                loader=loader,
                renderer_factory=partial(SoundDeviceRenderer, device),
                on_reverse_state=lambda s, name=instance.identity: self._print_event(
                    f"{name}: {s.name.lower()}"
                ),
            )
        self._players.append(player)
