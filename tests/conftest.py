"""Shared fakes for backspin tests.

The fakes stand in for the host side of the system: a transport that
records what was done to it, a renderer that never touches an audio
device, a loader with a call counter and an optional gate, and a clock
that only moves when told to.
"""

from __future__ import annotations

import numpy as np
import pytest

from backspin.decoder import DecodedAudio
from backspin.errors import TransportError
from backspin.player import PlaybackInstance, enhance_player
from backspin.rate import RateState
from backspin.registry import InstanceRegistry
from backspin.settings import MemoryRateStore
from backspin.transport import TransportEvent, TransportEvents


class FakeTransport:
    def __init__(self, source="mem://track", duration=10.0, loop=False, rate=1.0):
        self.source = source
        self.duration = duration
        self.loop = loop
        self.paused = True
        self.position = 0.0
        self.events = TransportEvents()
        self.rate_writes = []
        self.play_calls = 0
        self.reject_rates = False
        self._rate = rate

    @property
    def playback_rate(self):
        return self._rate

    @playback_rate.setter
    def playback_rate(self, value):
        if self.reject_rates:
            raise TransportError("rate rejected by host")
        self.rate_writes.append(value)
        if value != self._rate:
            self._rate = value
            self.events.emit(TransportEvent.RATECHANGE)

    def play(self):
        self.play_calls += 1
        self.paused = False
        self.events.emit(TransportEvent.PLAY)

    def pause(self):
        self.paused = True
        self.events.emit(TransportEvent.PAUSE)

    def add_listener(self, event, listener):
        return self.events.add_listener(event, listener)


class FakeRenderer:
    def __init__(self):
        self.playback_rate = 1.0
        self.on_ended = None
        self.started = None
        self.stopped = False

    def start(self, buffer, offset, rate, *, loop):
        self.started = (buffer, offset, rate, loop)
        self.playback_rate = rate

    def stop(self):
        self.stopped = True


class RendererFactory:
    def __init__(self):
        self.created = []

    def __call__(self):
        renderer = FakeRenderer()
        self.created.append(renderer)
        return renderer

    @property
    def last(self):
        return self.created[-1]


class FakeLoader:
    """Loader returning a ramp so reversal is easy to check."""

    def __init__(self, duration=10.0, sample_rate=100, channels=2):
        frames = int(duration * sample_rate)
        ramp = np.arange(frames, dtype=np.float32) / frames
        self.audio = DecodedAudio(
            samples=np.stack([ramp * (ch + 1) for ch in range(channels)]),
            sample_rate=sample_rate,
        )
        self.calls = []
        self.gate = None
        self.error = None

    async def load(self, source):
        self.calls.append(source)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.audio


class ManualClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def store():
    return MemoryRateStore()


@pytest.fixture
def rate_state(store):
    return RateState.load(store)


@pytest.fixture
def registry():
    return InstanceRegistry()


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def renderers():
    return RendererFactory()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_player(rate_state, registry, loader, renderers, clock):
    """Build and enhance a player around a FakeTransport."""

    def factory(identity="a", *, transport=None, indicator=None, **transport_kwargs):
        transport = transport or FakeTransport(**transport_kwargs)
        instance = PlaybackInstance(identity=identity, transport=transport)
        return enhance_player(
            instance,
            state=rate_state,
            registry=registry,
            loader=loader,
            renderer_factory=renderers,
            clock=clock,
            on_indicator=indicator,
        )

    return factory
