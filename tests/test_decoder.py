import asyncio
import io
import wave

import numpy as np
import pytest

from backspin.decoder import AudioSourceLoader, decode_audio
from backspin.errors import DecodeError


def _wav_bytes(frames=800, sample_rate=8000, channels=2):
    ramp = np.linspace(-0.5, 0.5, frames)
    pcm = np.stack([ramp * (ch + 1) / channels for ch in range(channels)], axis=1)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes((pcm * 32767).astype("<i2").tobytes())
    return buf.getvalue()


def test_decode_wav_to_planar_float():
    decoded = decode_audio(_wav_bytes())

    assert decoded.sample_rate == 8000
    assert decoded.channels == 2
    assert decoded.frames == 800
    assert decoded.samples.dtype == np.float32
    assert decoded.duration == pytest.approx(0.1)
    # first channel ramps upwards
    assert decoded.samples[0, 0] < decoded.samples[0, -1]


def test_decode_garbage_raises_decode_error():
    with pytest.raises(DecodeError):
        decode_audio(b"definitely not audio")


def test_loader_reads_local_files(tmp_path):
    path = tmp_path / "clip.wav"
    path.write_bytes(_wav_bytes(channels=1))

    decoded = asyncio.run(AudioSourceLoader().load(str(path)))

    assert decoded.channels == 1
    assert decoded.frames == 800


def test_loader_wraps_missing_files(tmp_path):
    with pytest.raises(DecodeError):
        asyncio.run(AudioSourceLoader().load(str(tmp_path / "missing.wav")))
