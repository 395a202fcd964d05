"""Reverse playback for a single playback instance.

Transports cannot play backwards, so reverse playback is synthesized: the
instance's source is decoded once, every channel is reversed, and the result
is rendered from the mirrored offset while the forward transport is paused.

Position bookkeeping uses an anchor pair taken when a session starts::

    elapsed  = (clock() - anchor_time) * current_rate
    position = start_offset - elapsed          (wrapped when looping)

The rate is read at sample time, never captured at the anchor, so a rate
change in the middle of a session moves the position consistently with the
renderer (which is updated live from the transport's ratechange event).
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Protocol

import numpy as np

from backspin.errors import DecodeError
from backspin.indicator import FrameTicker, PositionIndicatorSync
from backspin.transport import TransportEvent

if TYPE_CHECKING:
    from backspin.decoder import DecodedAudio, SourceLoader
    from backspin.player import PlaybackInstance

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ReverseState(Enum):
    """State machine for reverse playback."""

    IDLE = auto()
    """No reverse session; forward transport is in control."""

    REVERSING = auto()
    """A reverse session is rendering."""


@dataclass(frozen=True, slots=True)
class ReversedBuffer:
    """Immutable, sample-reversed copy of an instance's decoded source.

    Attributes:
        samples: Read-only float32 array shaped (channels, frames), each
            channel in reverse order.
        sample_rate: Sample rate in Hz.
    """

    samples: np.ndarray
    sample_rate: int

    @classmethod
    def from_decoded(cls, decoded: DecodedAudio) -> ReversedBuffer:
        """Reverse every channel of decoded into a new read-only buffer."""
        samples = np.ascontiguousarray(decoded.samples[:, ::-1], dtype=np.float32)
        samples.setflags(write=False)
        return cls(samples=samples, sample_rate=decoded.sample_rate)

    @property
    def channels(self) -> int:
        """Number of channels."""
        return int(self.samples.shape[0])

    @property
    def frames(self) -> int:
        """Number of frames per channel."""
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.frames / self.sample_rate if self.sample_rate > 0 else 0.0


class Renderer(Protocol):
    """Plays a ReversedBuffer; the engine owns one per session."""

    playback_rate: float
    on_ended: Callable[[], None] | None

    def start(self, buffer: ReversedBuffer, offset: float, rate: float, *, loop: bool) -> None:
        """Start rendering buffer from offset seconds at rate."""
        ...

    def stop(self) -> None:
        """Stop rendering. on_ended must not fire after this returns."""
        ...


RendererFactory = Callable[[], Renderer]


def reverse_position(start_offset: float, elapsed: float, duration: float, *, loop: bool) -> float:
    """Map elapsed source time since the anchor to a forward position.

    Args:
        start_offset: Forward position when the session started.
        elapsed: Source seconds rendered since the anchor (real time times rate).
        duration: Source duration in seconds.
        loop: Whether the session wraps around at the source start.

    Returns:
        The forward position; clamped to >= 0 when not looping and in
        [0, duration) when looping.
    """
    if not loop or duration <= 0:
        return max(0.0, start_offset - elapsed)
    cycle = math.fmod(start_offset - elapsed, duration)
    position = cycle + duration if cycle <= 0 else cycle
    # fmod + duration can round up to duration itself
    if position >= duration:
        position -= duration
    return position


@dataclass
class ReverseSession:
    """One active reverse rendering run."""

    buffer: ReversedBuffer
    renderer: Renderer
    loop: bool
    anchor_time: float
    start_offset: float

    @property
    def duration(self) -> float:
        return self.buffer.duration

    def elapsed(self, now: float, rate: float) -> float:
        """Source seconds rendered since the anchor, at the current rate."""
        return (now - self.anchor_time) * rate

    def position(self, now: float, rate: float) -> float:
        """Forward position corresponding to now."""
        return reverse_position(
            self.start_offset, self.elapsed(now, rate), self.duration, loop=self.loop
        )


class ReversePlaybackEngine:
    """Per-instance reverse playback.

    Toggling on pauses the forward transport, makes sure a ReversedBuffer is
    cached on the instance (decoding at most once per instance lifetime),
    and starts a session. Toggling off, forward play, the local stop action
    and the natural end of a non-looping session all tear the session down
    synchronously, cancelling the renderer and the frame ticker together.
    """

    def __init__(
        self,
        instance: PlaybackInstance,
        loader: SourceLoader,
        renderer_factory: RendererFactory,
        *,
        clock: Clock | None = None,
        indicator: PositionIndicatorSync | None = None,
        frame_interval: float = 1 / 60,
        on_state_change: Callable[[ReverseState], None] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            instance: The playback instance to drive.
            loader: Fetches and decodes the instance's source.
            renderer_factory: Creates a renderer for each session.
            clock: Engine clock in seconds; defaults to the running loop's time.
            indicator: Optional position indicator to keep in sync.
            frame_interval: Seconds between position samples while reversing.
            on_state_change: Called with the new state after every transition.
        """
        self._instance = instance
        self._loader = loader
        self._renderer_factory = renderer_factory
        self._clock = clock
        self._indicator = indicator
        self._frame_interval = frame_interval
        self._on_state_change = on_state_change
        self._session: ReverseSession | None = None
        self._ticker: FrameTicker | None = None
        self._decode_task: asyncio.Future[ReversedBuffer] | None = None
        # Bumped by every stop; a start that awaited across a bump is superseded
        self._generation = 0
        self._pending = False
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self) -> None:
        """Subscribe to the transport events the engine reacts to."""
        if self._unsubscribers:
            return
        transport = self._instance.transport
        self._unsubscribers = [
            transport.add_listener(TransportEvent.PLAY, self._on_play),
            transport.add_listener(TransportEvent.RATECHANGE, self._on_rate_change),
        ]

    def detach(self) -> None:
        """Stop any session and drop the transport subscriptions."""
        self.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    @property
    def state(self) -> ReverseState:
        """Current state."""
        return ReverseState.REVERSING if self._session is not None else ReverseState.IDLE

    @property
    def pending(self) -> bool:
        """Whether a toggle-on is waiting for the source to decode."""
        return self._pending

    @property
    def session(self) -> ReverseSession | None:
        """The live session, if any."""
        return self._session

    def now(self) -> float:
        """Read the engine clock."""
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    def current_rate(self) -> float:
        """The transport's current rate (1.0 when unset)."""
        return self._instance.transport.playback_rate or 1.0

    def position(self) -> float | None:
        """Forward position of the live session, or None when idle."""
        if self._session is None:
            return None
        return self._session.position(self.now(), self.current_rate())

    async def toggle(self) -> None:
        """Toggle reverse playback.

        While reversing (or while a start is pending), stops and commits the
        reverse position to the transport, then resumes forward play.
        """
        if self._session is not None or self._pending:
            self.stop(commit_time=True)
            self._instance.transport.play()
            return
        await self.start()

    async def start(self) -> None:
        """Start a reverse session from the transport's current position.

        Load failures of any kind are logged and leave the engine idle.
        """
        transport = self._instance.transport
        transport.pause()
        self.stop()

        generation = self._generation
        self._pending = True
        try:
            buffer = await self.ensure_buffer()
        except DecodeError as e:
            logger.warning("Reverse playback failed for %s: %s", self._instance.identity, e)
            return
        except Exception:
            logger.exception("Unexpected error loading %s", self._instance.identity)
            return
        finally:
            if generation == self._generation:
                self._pending = False
        if generation != self._generation:
            logger.debug("Reverse start for %s superseded", self._instance.identity)
            return
        self._begin(buffer)

    async def ensure_buffer(self) -> ReversedBuffer:
        """Return the instance's ReversedBuffer, decoding it on first use.

        Concurrent callers share a single in-flight decode. The result is
        cached even if every caller has been superseded in the meantime.

        Raises:
            DecodeError: If the source cannot be fetched or decoded.
        """
        cached = self._instance.reversed_buffer
        if cached is not None:
            return cached
        if self._decode_task is None:
            self._decode_task = asyncio.ensure_future(self._decode())
        task = self._decode_task
        try:
            # Shielded so cancelling one waiter never wastes the decode
            return await asyncio.shield(task)
        finally:
            if task.done() and self._decode_task is task:
                self._decode_task = None

    async def _decode(self) -> ReversedBuffer:
        source = self._instance.transport.source
        logger.info("Decoding %s for reverse playback", source)
        decoded = await self._loader.load(source)
        buffer = ReversedBuffer.from_decoded(decoded)
        self._instance.reversed_buffer = buffer
        return buffer

    def _begin(self, buffer: ReversedBuffer) -> None:
        transport = self._instance.transport
        duration = buffer.duration
        if duration <= 0:
            logger.warning("Nothing to reverse for %s: empty source", self._instance.identity)
            return

        current = transport.position
        start_offset = current if current > 0 else duration
        start_offset = min(start_offset, duration)
        renderer_offset = duration - start_offset
        rate = self.current_rate()
        loop = transport.loop

        renderer = self._renderer_factory()
        renderer.on_ended = None if loop else self._on_renderer_ended
        renderer.start(buffer, renderer_offset, rate, loop=loop)

        self._session = ReverseSession(
            buffer=buffer,
            renderer=renderer,
            loop=loop,
            anchor_time=self.now(),
            start_offset=start_offset,
        )
        self._ticker = FrameTicker(self._tick, self._frame_interval)
        self._ticker.start()
        logger.debug(
            "Reverse session for %s: offset=%.3f duration=%.3f rate=%.2f loop=%s",
            self._instance.identity,
            start_offset,
            duration,
            rate,
            loop,
        )
        self._notify()

    def stop(self, *, commit_time: bool = False) -> None:
        """Tear down the live session (if any) and supersede pending starts.

        Args:
            commit_time: Write the reverse position into the forward transport.
        """
        self._generation += 1
        self._pending = False
        session = self._session
        if session is None:
            return

        # Read before teardown so the committed time matches the last render
        position = None
        if commit_time and session.duration > 0:
            elapsed = session.elapsed(self.now(), self.current_rate())
            position = max(0.0, session.start_offset - elapsed)

        self._session = None
        session.renderer.on_ended = None
        session.renderer.stop()
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._indicator is not None:
            self._indicator.clear()

        if position is not None:
            self._instance.transport.position = position
        self._notify()

    def stop_playback(self) -> None:
        """Local stop action: end any session, pause and rewind to the start."""
        self.stop()
        transport = self._instance.transport
        transport.pause()
        transport.position = 0.0

    def tick(self) -> float | None:
        """Sample the session once; returns the position or None when idle.

        The same position value drives the indicator and the natural-end
        check so they can never disagree.
        """
        session = self._session
        if session is None:
            return None
        position = session.position(self.now(), self.current_rate())
        if self._indicator is not None and session.duration > 0:
            self._indicator.publish(position / session.duration)
        if not session.loop and position <= 0:
            self.stop(commit_time=True)
        return position

    def _tick(self) -> bool:
        self.tick()
        return self._session is not None

    def _on_renderer_ended(self) -> None:
        if self._session is not None and not self._session.loop:
            self.stop(commit_time=True)

    def _on_play(self) -> None:
        self.stop()

    def _on_rate_change(self) -> None:
        if self._session is not None:
            self._session.renderer.playback_rate = self.current_rate()

    def _notify(self) -> None:
        if self._on_state_change is not None:
            self._on_state_change(self.state)
