"""Audio output for backspin.

This module provides linear rate-scaled block rendering and the sounddevice
based forward transport and reverse renderer used by the terminal player.

This module also provides device enumeration utilities for listing and
resolving audio output devices.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np
import sounddevice
from sounddevice import CallbackFlags

from backspin.decoder import DecodedAudio, SourceLoader
from backspin.errors import TransportError
from backspin.transport import Listener, TransportEvent, TransportEvents

if TYPE_CHECKING:
    from backspin.reverse import ReversedBuffer

logger = logging.getLogger(__name__)

_BLOCKSIZE: Final[int] = 1024
"""Audio block size (~23ms at 44.1kHz)."""


@dataclass(slots=True)
class AudioDevice:
    """Represents an audio output device.

    Attributes:
        index: Device index used for selection.
        name: Human-readable device name.
        output_channels: Number of output channels supported.
        sample_rate: Default sample rate in Hz.
        is_default: Whether this is the system default output device.
    """

    index: int
    name: str
    output_channels: int
    sample_rate: float
    is_default: bool


def query_devices() -> list[AudioDevice]:
    """Query all available audio output devices.

    Returns:
        List of AudioDevice objects for devices with output channels.
    """
    devices = sounddevice.query_devices()
    default_output = int(sounddevice.default.device[1])

    result: list[AudioDevice] = []
    for i in range(len(devices)):
        dev = devices[i]
        if dev["max_output_channels"] > 0:
            result.append(
                AudioDevice(
                    index=i,
                    name=str(dev["name"]),
                    output_channels=int(dev["max_output_channels"]),
                    sample_rate=float(dev["default_samplerate"]),
                    is_default=(i == default_output),
                )
            )
    return result


def resolve_audio_device(device: str | None) -> int | None:
    """Resolve audio device by index or name prefix.

    Args:
        device: Device index (numeric string) or name prefix to match.

    Returns:
        Device index if valid, None for default device.

    Raises:
        ValueError: If device is invalid or not found.
    """
    if device is None:
        return None

    outputs = query_devices()

    if device.isnumeric():
        device_id = int(device)
        for candidate in outputs:
            if candidate.index == device_id:
                return device_id
        raise ValueError(f"Device {device_id} is not an output device")

    for candidate in outputs:
        if candidate.name.startswith(device):
            return candidate.index

    raise ValueError(f"No audio output device found matching '{device}'")


def render_block(
    samples: np.ndarray, cursor: float, rate: float, frames: int, *, loop: bool
) -> tuple[np.ndarray, float, bool]:
    """Render frames of output starting at cursor, stepping rate source frames per frame.

    Linear interpolation between neighbouring source frames; the pitch moves
    with the rate.

    Args:
        samples: Source samples shaped (channels, total_frames).
        cursor: Fractional source frame to start from.
        rate: Source frames consumed per output frame.
        frames: Number of output frames to produce.
        loop: Wrap around at the end of the source instead of stopping.

    Returns:
        (block shaped (frames, channels), next cursor, whether the source ran out).
    """
    channels, total = samples.shape
    out = np.zeros((frames, channels), dtype=np.float32)
    if total == 0:
        return out, cursor, True

    positions = cursor + rate * np.arange(frames, dtype=np.float64)
    if loop:
        positions = np.mod(positions, total)
        count = frames
    else:
        count = int(np.count_nonzero(positions < total))
        positions = positions[:count]

    base = np.floor(positions).astype(np.int64)
    frac = (positions - base).astype(np.float32)
    following = base + 1
    following = np.mod(following, total) if loop else np.minimum(following, total - 1)
    block = samples[:, base] * (1.0 - frac) + samples[:, following] * frac
    out[:count] = block.T

    next_cursor = cursor + rate * frames
    if loop:
        next_cursor = math.fmod(next_cursor, total)
    ended = not loop and count < frames
    return out, next_cursor, ended


class SoundDeviceTransport:
    """Forward transport playing one decoded source through sounddevice.

    The sounddevice callback runs on the audio thread; anything that must
    reach listeners is marshalled back onto the event loop.
    """

    def __init__(
        self,
        source: str,
        loader: SourceLoader,
        *,
        loop: bool = False,
        device: int | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            source: Path or URL of the audio to play.
            loader: Loader used to fetch and decode the source.
            loop: Whether playback wraps around at the end.
            device: Output device index, or None for the system default.
        """
        self._source = source
        self._loader = loader
        self._loop_playback = loop
        self._device = device
        self._events = TransportEvents()
        self._audio: DecodedAudio | None = None
        self._stream: sounddevice.OutputStream | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None
        self._cursor = 0.0
        self._rate = 1.0
        self._paused = True
        # Set on the audio thread at end of track, cleared by _on_ended on the loop
        self._ending = False

    async def open(self) -> None:
        """Load the source and prepare the output stream.

        Raises:
            DecodeError: If the source cannot be loaded.
        """
        self._event_loop = asyncio.get_running_loop()
        self._audio = await self._loader.load(self._source)
        self._close_stream()
        self._stream = sounddevice.OutputStream(
            samplerate=self._audio.sample_rate,
            channels=self._audio.channels,
            dtype="float32",
            blocksize=_BLOCKSIZE,
            callback=self._audio_callback,
            device=self._device,
        )
        self._cursor = 0.0
        logger.info("Opened %s (%.2f s)", self._source, self._audio.duration)
        self._events.emit(TransportEvent.LOADEDMETADATA)

    @property
    def source(self) -> str:
        return self._source

    @property
    def duration(self) -> float:
        return self._audio.duration if self._audio is not None else 0.0

    @property
    def loop(self) -> bool:
        return self._loop_playback

    @loop.setter
    def loop(self, value: bool) -> None:
        self._loop_playback = value

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def position(self) -> float:
        if self._audio is None:
            return 0.0
        return self._cursor / self._audio.sample_rate

    @position.setter
    def position(self, value: float) -> None:
        if self._audio is None:
            return
        seconds = min(max(0.0, float(value)), self._audio.duration)
        self._cursor = seconds * self._audio.sample_rate

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, value: float) -> None:
        rate = float(value)
        if not math.isfinite(rate) or rate <= 0:
            raise TransportError(f"unsupported playback rate: {value!r}")
        if rate == self._rate:
            return
        self._rate = rate
        self._events.emit(TransportEvent.RATECHANGE)

    def add_listener(self, event: TransportEvent, listener: Listener) -> Callable[[], None]:
        return self._events.add_listener(event, listener)

    def play(self) -> None:
        """Start or resume forward playback."""
        if self._stream is None or self._audio is None:
            logger.warning("Cannot play %s before it is opened", self._source)
            return
        if not self._loop_playback and self._cursor >= self._audio.frames:
            self._cursor = 0.0
        self._paused = False
        self._ending = False
        self._events.emit(TransportEvent.PLAY)
        if not self._stream.active:
            self._stream.start()

    def pause(self) -> None:
        """Pause forward playback."""
        if self._paused:
            return
        self._paused = True
        if self._stream is not None and self._stream.active:
            self._stream.stop()
        self._events.emit(TransportEvent.PAUSE)

    def close(self) -> None:
        """Release the output stream."""
        self._paused = True
        self._close_stream()

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _on_ended(self) -> None:
        if not self._ending:
            return
        self._ending = False
        self.pause()
        self._events.emit(TransportEvent.ENDED)

    def _audio_callback(
        self,
        outdata: np.ndarray,
        frames: int,
        time: object,
        status: CallbackFlags,
    ) -> None:
        """Fill outdata from the decoded source (audio thread)."""
        if status:
            logger.debug("Audio callback status: %s", status)
        if self._paused or self._ending or self._audio is None:
            outdata.fill(0)
            return
        block, cursor, ended = render_block(
            self._audio.samples, self._cursor, self._rate, frames, loop=self._loop_playback
        )
        outdata[:] = block
        self._cursor = min(cursor, float(self._audio.frames))
        if ended and self._event_loop is not None:
            self._ending = True
            self._event_loop.call_soon_threadsafe(self._on_ended)


class SoundDeviceRenderer:
    """Renders a ReversedBuffer through sounddevice, like a one-shot buffer source."""

    def __init__(self, device: int | None = None) -> None:
        """Initialize the renderer.

        Args:
            device: Output device index, or None for the system default.
        """
        self._device = device
        self._stream: sounddevice.OutputStream | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None
        self._samples: np.ndarray | None = None
        self._cursor = 0.0
        self._loop = False
        self._stopped = False
        self.playback_rate = 1.0
        self.on_ended: Callable[[], None] | None = None

    def start(self, buffer: ReversedBuffer, offset: float, rate: float, *, loop: bool) -> None:
        """Start rendering buffer from offset seconds at rate."""
        self._event_loop = asyncio.get_running_loop()
        self._samples = buffer.samples
        self._cursor = max(0.0, offset) * buffer.sample_rate
        self._loop = loop
        self.playback_rate = rate
        self._stopped = False
        self._stream = sounddevice.OutputStream(
            samplerate=buffer.sample_rate,
            channels=buffer.channels,
            dtype="float32",
            blocksize=_BLOCKSIZE,
            callback=self._audio_callback,
            device=self._device,
        )
        self._stream.start()

    def stop(self) -> None:
        """Stop rendering; on_ended will not fire afterwards."""
        self._stopped = True
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    def _ended(self) -> None:
        if self._stopped:
            return
        self.stop()
        if self.on_ended is not None:
            self.on_ended()

    def _audio_callback(
        self,
        outdata: np.ndarray,
        frames: int,
        time: object,
        status: CallbackFlags,
    ) -> None:
        """Fill outdata from the reversed samples (audio thread)."""
        if status:
            logger.debug("Reverse callback status: %s", status)
        if self._stopped or self._samples is None:
            outdata.fill(0)
            return
        block, self._cursor, ended = render_block(
            self._samples, self._cursor, self.playback_rate, frames, loop=self._loop
        )
        outdata[:] = block
        if ended and self._event_loop is not None:
            self._event_loop.call_soon_threadsafe(self._ended)
            raise sounddevice.CallbackStop
