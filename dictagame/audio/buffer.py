from __future__ import annotations

import contextlib
import wave
from pathlib import Path
from typing import Iterator

from dictagame.contracts import AudioChunk


class BufferSource:
    """
    Bounded PCM16 source replaying an in-memory buffer in fixed-size chunks.
    The iterator ends when the buffer is exhausted.
    """

    live = False

    def __init__(
        self,
        pcm16: bytes,
        *,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_seconds: float = 0.25,
    ) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if len(pcm16) % (2 * channels) != 0:
            raise ValueError("pcm16 length must be a whole number of frames")
        self.pcm16 = bytes(pcm16)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.chunk_seconds = float(chunk_seconds)

    @property
    def duration(self) -> float:
        return len(self.pcm16) / float(self.sample_rate * self.channels * 2)

    @contextlib.contextmanager
    def open(self) -> Iterator[Iterator[AudioChunk]]:
        yield self._chunks()

    def _chunks(self) -> Iterator[AudioChunk]:
        frame_bytes = 2 * self.channels
        frames_per_chunk = max(1, int(round(self.chunk_seconds * self.sample_rate)))
        step = frames_per_chunk * frame_bytes
        for offset in range(0, len(self.pcm16), step):
            part = self.pcm16[offset : offset + step]
            yield AudioChunk(
                pcm16=part,
                sample_rate=self.sample_rate,
                channels=self.channels,
                start_time=(offset // frame_bytes) / self.sample_rate,
                duration=(len(part) // frame_bytes) / self.sample_rate,
            )


class WavFileSource:
    """Replays a 16-bit PCM WAV file; the file is read when the session opens it."""

    live = False

    def __init__(self, path: str | Path, *, chunk_seconds: float = 0.25) -> None:
        self.path = Path(path)
        self.chunk_seconds = float(chunk_seconds)

    @property
    def sample_rate(self) -> int:
        with wave.open(str(self.path), "rb") as wf:
            return wf.getframerate()

    def read(self) -> BufferSource:
        with wave.open(str(self.path), "rb") as wf:
            if wf.getsampwidth() != 2:
                raise ValueError(f"expected 16-bit PCM WAV: {self.path}")
            channels = wf.getnchannels()
            sample_rate = wf.getframerate()
            pcm16 = wf.readframes(wf.getnframes())
        if not pcm16:
            raise ValueError(f"File too short: {self.path}")
        return BufferSource(
            pcm16,
            sample_rate=sample_rate,
            channels=channels,
            chunk_seconds=self.chunk_seconds,
        )

    @contextlib.contextmanager
    def open(self) -> Iterator[Iterator[AudioChunk]]:
        buf = self.read()
        with buf.open() as chunks:
            yield chunks
