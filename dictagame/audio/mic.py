from __future__ import annotations

import contextlib
from typing import Iterator, Optional

from dictagame.contracts import AudioChunk


class MicError(RuntimeError):
    pass


class SoundDeviceMicSource:
    """
    Live microphone source using the `sounddevice` package (PortAudio).
    Captures raw PCM16 chunks of fixed duration.

    `open()` grabs the capture device; only one session should hold it at a time.
    """

    live = True

    def __init__(
        self,
        *,
        chunk_seconds: float = 0.25,
        sample_rate: int = 16000,
        channels: int = 1,
        device: Optional[int] = None,
    ) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2 (for now)")

        self.chunk_seconds = float(chunk_seconds)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.device = device

    @staticmethod
    def list_devices() -> str:
        try:
            import sounddevice as sd
        except ImportError as e:
            raise MicError(
                "sounddevice is not installed. Install with: python -m pip install sounddevice"
            ) from e
        return str(sd.query_devices())

    def _frames_per_chunk(self) -> int:
        return max(1, int(round(self.chunk_seconds * self.sample_rate)))

    @contextlib.contextmanager
    def open(self) -> Iterator[Iterator[AudioChunk]]:
        try:
            import sounddevice as sd
        except ImportError as e:
            raise MicError(
                "sounddevice is not installed. Install with: python -m pip install sounddevice"
            ) from e

        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                blocksize=0,  # let PortAudio choose
            )
            stream.start()
        except Exception as e:
            raise MicError(
                "Failed to open microphone stream. "
                "Try --list-devices and select a device id with --device."
            ) from e

        try:
            yield self._read_chunks(stream)
        finally:
            stream.stop()
            stream.close()

    def _read_chunks(self, stream) -> Iterator[AudioChunk]:
        frames_per_chunk = self._frames_per_chunk()
        frames_seen = 0
        while True:
            # overflow only means PortAudio dropped frames; keep reading
            data, _overflowed = stream.read(frames_per_chunk)

            start_time = frames_seen / self.sample_rate
            duration = frames_per_chunk / self.sample_rate
            frames_seen += frames_per_chunk

            yield AudioChunk(
                pcm16=bytes(data),
                sample_rate=self.sample_rate,
                channels=self.channels,
                start_time=start_time,
                duration=duration,
            )
