"""Settings persistence for backspin.

This module provides persistent storage for the preferred playback rate.
The rate is loaded from disk once at startup and saved with debouncing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Bounds mirrored by backspin.rate; duplicated here to keep settings import-light
_MIN_RATE = 0.1
_MAX_RATE = 16.0
DEFAULT_RATE = 1.0

# Debounce delay for saving settings
SAVE_DEBOUNCE_SECONDS = 1.0


class RateStore(Protocol):
    """Key-value persistence for the last chosen playback rate."""

    @property
    def playback_rate(self) -> float:
        """Return the stored rate (DEFAULT_RATE when nothing valid is stored)."""
        ...

    def save_rate(self, rate: float) -> None:
        """Persist rate as the new default."""
        ...


def coerce_rate(value: Any) -> float:
    """Turn a stored value into a usable rate, falling back to the default."""
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return DEFAULT_RATE
    if not math.isfinite(rate):
        return DEFAULT_RATE
    return min(_MAX_RATE, max(_MIN_RATE, rate))


@dataclass
class Settings:
    """All persistent settings for backspin."""

    playback_rate: float = DEFAULT_RATE

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return {"playback_rate": self.playback_rate}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a dictionary."""
        return cls(playback_rate=coerce_rate(data.get("playback_rate", DEFAULT_RATE)))


class MemoryRateStore:
    """In-process RateStore; nothing survives the process."""

    def __init__(self, playback_rate: float = DEFAULT_RATE) -> None:
        self._rate = coerce_rate(playback_rate)
        self.writes: list[float] = []

    @property
    def playback_rate(self) -> float:
        return self._rate

    def save_rate(self, rate: float) -> None:
        self._rate = rate
        self.writes.append(rate)


class SettingsManager:
    """Manages settings with debounced disk persistence.

    Changes made while an event loop is running are saved after
    SAVE_DEBOUNCE_SECONDS of inactivity, or immediately on flush().
    Without a running loop the file is written synchronously.
    """

    def __init__(self, settings_file: Path) -> None:
        """Initialize the settings manager.

        Args:
            settings_file: Path to the settings file.
        """
        self._settings_file = settings_file
        self._settings = Settings()
        self._debounce_save_handle: asyncio.TimerHandle | None = None

    @property
    def settings_file(self) -> Path:
        """Path of the backing settings file."""
        return self._settings_file

    async def load(self) -> None:
        """Load settings from disk."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load)

    @property
    def playback_rate(self) -> float:
        """Get the persisted playback rate."""
        return self._settings.playback_rate

    def save_rate(self, rate: float) -> None:
        """Persist rate as the new default playback rate."""
        self.update(playback_rate=rate)

    def update(self, *, playback_rate: float) -> None:
        """Update the stored rate. Only an actual change triggers a save.

        Args:
            playback_rate: New playback rate, clamped to the supported range.
        """
        playback_rate = coerce_rate(playback_rate)
        if self._settings.playback_rate == playback_rate:
            return
        self._settings.playback_rate = playback_rate
        self._schedule_save()

    async def flush(self) -> None:
        """Immediately save any pending changes to disk."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()
            self._debounce_save_handle = None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._save)

    def _schedule_save(self) -> None:
        """Schedule a debounced save operation."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save()
            return

        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()
        self._debounce_save_handle = loop.call_later(
            SAVE_DEBOUNCE_SECONDS, self._debounced_save, loop
        )

    def _debounced_save(self, loop: asyncio.AbstractEventLoop) -> None:
        """Called by the timer to save settings in executor."""
        self._debounce_save_handle = None
        loop.run_in_executor(None, self._save)

    def _load(self) -> None:
        """Load settings from the settings file (blocking I/O)."""
        if not self._settings_file.exists():
            logger.debug("Settings file does not exist: %s", self._settings_file)
            return

        try:
            data = json.loads(self._settings_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self._settings_file, e)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed settings in %s", self._settings_file)
            return
        self._settings = Settings.from_dict(data)
        logger.info(
            "Loaded settings from %s: playback_rate=%.2f",
            self._settings_file,
            self._settings.playback_rate,
        )

    def _save(self) -> None:
        """Save settings to the settings file (blocking I/O)."""
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            self._settings_file.write_text(json.dumps(self._settings.to_dict(), indent=2) + "\n")
            logger.debug("Saved settings to %s", self._settings_file)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self._settings_file, e)


async def get_settings_manager(config_dir: Path | str | None = None) -> SettingsManager:
    """Create and load a settings manager.

    This should only be called once at startup. Pass the returned instance
    to components that need it.

    Args:
        config_dir: Optional directory to store settings. Defaults to ~/.config/backspin.

    Returns:
        A new SettingsManager instance with settings loaded from disk.
    """
    if config_dir is None:
        config_dir = Path.home() / ".config" / "backspin"
    elif isinstance(config_dir, str):
        config_dir = Path(config_dir)
    manager = SettingsManager(config_dir / "settings.json")
    await manager.load()
    return manager
