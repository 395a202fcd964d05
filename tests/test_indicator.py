import asyncio

import pytest

from backspin.indicator import FrameTicker, PositionIndicatorSync
from backspin.transport import TransportEvent, TransportEvents


def test_indicator_publishes_offset_from_the_end():
    offsets = []
    sync = PositionIndicatorSync(offsets.append)

    sync.publish(0.25)
    sync.publish(1.0)
    sync.publish(1.7)
    sync.publish(-0.2)

    assert offsets == [pytest.approx(-0.75), 0.0, 0.0, -1.0]
    assert sync.last_offset == -1.0


def test_indicator_clear_sends_none():
    offsets = []
    sync = PositionIndicatorSync(offsets.append)
    sync.publish(0.5)

    sync.clear()

    assert offsets[-1] is None
    assert sync.last_offset is None


def test_ticker_stops_when_sampler_returns_false():
    async def scenario():
        calls = []

        def sampler():
            calls.append(1)
            return len(calls) < 3

        ticker = FrameTicker(sampler, 0.001)
        ticker.start()
        await asyncio.sleep(0.1)

        assert len(calls) == 3
        assert not ticker.running

    asyncio.run(scenario())


def test_cancelled_ticker_never_samples_again():
    async def scenario():
        calls = []
        ticker = FrameTicker(lambda: calls.append(1) or True, 0.001)
        ticker.start()
        await asyncio.sleep(0.02)

        ticker.cancel()
        seen = len(calls)
        await asyncio.sleep(0.02)

        assert len(calls) == seen
        assert not ticker.running

    asyncio.run(scenario())


def test_ticker_survives_cancel_from_inside_the_sampler():
    async def scenario():
        calls = []

        def sampler():
            calls.append(1)
            ticker.cancel()
            return True

        ticker = FrameTicker(sampler, 0.001)
        ticker.start()
        await asyncio.sleep(0.05)

        assert calls == [1]

    asyncio.run(scenario())


def test_failing_listener_does_not_block_others(caplog):
    events = TransportEvents()
    calls = []

    def broken():
        raise RuntimeError("boom")

    events.add_listener(TransportEvent.PLAY, broken)
    events.add_listener(TransportEvent.PLAY, lambda: calls.append("play"))

    events.emit(TransportEvent.PLAY)

    assert calls == ["play"]
    assert "Error in play listener" in caplog.text


def test_unsubscribe_is_idempotent():
    events = TransportEvents()
    unsubscribe = events.add_listener(TransportEvent.PAUSE, lambda: None)

    unsubscribe()
    unsubscribe()

    assert events.listener_count(TransportEvent.PAUSE) == 0
