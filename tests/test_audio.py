import numpy as np
import pytest

try:
    from backspin.audio import render_block
except OSError:
    # sounddevice needs the PortAudio library at import time
    pytest.skip("PortAudio is not available", allow_module_level=True)


def _samples(frames=10):
    ramp = np.arange(frames, dtype=np.float32)
    return np.stack([ramp, -ramp])


def test_render_block_at_unit_rate_copies_frames():
    block, cursor, ended = render_block(_samples(), 2.0, 1.0, 4, loop=False)

    np.testing.assert_allclose(block[:, 0], [2, 3, 4, 5])
    np.testing.assert_allclose(block[:, 1], [-2, -3, -4, -5])
    assert cursor == 6.0
    assert not ended


def test_render_block_interpolates_fractional_rates():
    block, cursor, _ = render_block(_samples(), 0.0, 0.5, 4, loop=False)

    np.testing.assert_allclose(block[:, 0], [0, 0.5, 1, 1.5])
    assert cursor == 2.0


def test_render_block_pads_with_silence_at_the_end():
    block, _, ended = render_block(_samples(), 8.0, 1.0, 4, loop=False)

    np.testing.assert_allclose(block[:, 0], [8, 9, 0, 0])
    assert ended


def test_render_block_wraps_when_looping():
    block, cursor, ended = render_block(_samples(), 8.0, 2.0, 3, loop=True)

    np.testing.assert_allclose(block[:, 0], [8, 0, 2])
    assert cursor == 4.0
    assert not ended


def test_render_block_on_empty_source_ends_immediately():
    block, _, ended = render_block(np.zeros((2, 0), dtype=np.float32), 0.0, 1.0, 4, loop=False)

    assert block.shape == (4, 2)
    assert ended


class _Stream:
    def __init__(self):
        self.active = True
        self.stopped = False

    def stop(self):
        self.active = False
        self.stopped = True

    def close(self):
        pass


class _ImmediateLoop:
    def call_soon_threadsafe(self, callback, *args):
        callback(*args)


def test_end_of_track_pauses_and_stops_the_stream():
    from backspin.audio import SoundDeviceTransport
    from backspin.decoder import DecodedAudio
    from backspin.transport import TransportEvent

    transport = SoundDeviceTransport("clip.wav", loader=None)
    transport._audio = DecodedAudio(samples=_samples(4), sample_rate=4)
    transport._stream = stream = _Stream()
    transport._event_loop = _ImmediateLoop()
    transport._paused = False
    events = []
    for event in (TransportEvent.PAUSE, TransportEvent.ENDED):
        transport.add_listener(event, lambda event=event: events.append(event))

    outdata = np.zeros((8, 2), dtype=np.float32)
    transport._audio_callback(outdata, 8, None, None)

    assert transport.paused
    assert stream.stopped
    assert events == [TransportEvent.PAUSE, TransportEvent.ENDED]

    # Nothing more is rendered or reported once the track has ended
    transport._audio_callback(outdata, 8, None, None)
    assert not outdata.any()
    assert events == [TransportEvent.PAUSE, TransportEvent.ENDED]
