"""Source loading and decoding for backspin.

Sources are fetched with aiohttp (http/https) or read from disk, then
decoded with PyAV into float32 planar samples at their native rate.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Protocol

import aiohttp
import av
import numpy as np
from av.container import InputContainer

from backspin.errors import DecodeError

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT_SECONDS: Final[float] = 30.0


@dataclass(frozen=True, slots=True)
class DecodedAudio:
    """Decoded source audio.

    Attributes:
        samples: float32 array shaped (channels, frames).
        sample_rate: Sample rate in Hz.
    """

    samples: np.ndarray
    sample_rate: int

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
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate


def decode_audio(data: bytes) -> DecodedAudio:
    """Decode an encoded audio file to float32 planar samples.

    Raises:
        DecodeError: If the data holds no decodable audio stream.
    """
    container: InputContainer | None = None
    try:
        container = av.open(io.BytesIO(data))  # type: ignore[assignment]
        assert isinstance(container, InputContainer)
        if not container.streams.audio:
            raise DecodeError("source has no audio stream")
        stream = container.streams.audio[0]
        sample_rate = int(stream.codec_context.sample_rate or stream.rate or 0)
        resampler: av.AudioResampler | None = None
        chunks: list[np.ndarray] = []

        for frame in container.decode(stream):
            if resampler is None:
                # Keep the native layout and rate, only normalise the sample format
                resampler = av.AudioResampler(
                    format="fltp", layout=frame.layout.name, rate=frame.sample_rate
                )
                sample_rate = frame.sample_rate
            chunks.extend(f.to_ndarray() for f in resampler.resample(frame))
        if resampler is not None:
            chunks.extend(f.to_ndarray() for f in resampler.resample(None))
    except (av.FFmpegError, ValueError) as e:
        raise DecodeError(f"failed to decode source: {e}") from e
    finally:
        if container is not None:
            container.close()

    if not chunks or sample_rate <= 0:
        raise DecodeError("source decoded to no audio")
    samples = np.ascontiguousarray(np.concatenate(chunks, axis=1), dtype=np.float32)
    return DecodedAudio(samples=samples, sample_rate=sample_rate)


class SourceLoader(Protocol):
    """Asynchronously retrieves and decodes an instance's source."""

    async def load(self, source: str) -> DecodedAudio:
        """Return the decoded source. Raises DecodeError on failure."""
        ...


class AudioSourceLoader:
    """Load sources from http(s) URLs with aiohttp or from local files."""

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        """Initialize the loader.

        Args:
            session: Optional shared HTTP session; one is created per fetch otherwise.
        """
        self._session = session

    async def fetch(self, source: str) -> bytes:
        """Fetch the raw encoded bytes of source."""
        if source.startswith(("http://", "https://")):
            return await self._fetch_url(source)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, Path(source).expanduser().read_bytes)

    async def _fetch_url(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=_FETCH_TIMEOUT_SECONDS)
        if self._session is not None:
            async with self._session.get(url, timeout=timeout) as resp:
                resp.raise_for_status()
                return await resp.read()
        async with aiohttp.ClientSession(timeout=timeout) as session, session.get(url) as resp:
            resp.raise_for_status()
            return await resp.read()

    async def load(self, source: str) -> DecodedAudio:
        """Fetch and decode source.

        Raises:
            DecodeError: If the fetch or the decode fails.
        """
        try:
            data = await self.fetch(source)
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            raise DecodeError(f"failed to fetch {source}: {e}") from e
        loop = asyncio.get_running_loop()
        decoded = await loop.run_in_executor(None, decode_audio, data)
        logger.debug(
            "Decoded %s: %d channel(s), %d Hz, %.2f s",
            source,
            decoded.channels,
            decoded.sample_rate,
            decoded.duration,
        )
        return decoded

