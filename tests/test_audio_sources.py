from __future__ import annotations

import sys
import types
import wave
from array import array
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from dictagame.audio.buffer import BufferSource, WavFileSource
from dictagame.audio.mic import MicError, SoundDeviceMicSource
from dictagame.audio.utterance import EnergyVAD, UtteranceGate, pcm16_rms
from dictagame.contracts import AudioChunk


def _pcm16_constant(amplitude: int, frames: int, channels: int = 1) -> bytes:
    return array("h", [amplitude] * (frames * channels)).tobytes()


def _write_wav(path: Path, pcm16: bytes, sample_rate: int = 16000, channels: int = 1) -> None:
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm16)


def test_buffer_source_chunks_cover_whole_buffer() -> None:
    pcm = _pcm16_constant(100, 4000)
    source = BufferSource(pcm, sample_rate=16000, chunk_seconds=0.1)
    with source.open() as chunks:
        out = list(chunks)

    assert [c.start_time for c in out] == [0.0, 0.1, 0.2]
    assert [round(c.duration, 3) for c in out] == [0.1, 0.1, 0.05]
    assert b"".join(c.pcm16 for c in out) == pcm
    assert source.live is False
    assert source.duration == 0.25


def test_buffer_source_rejects_partial_frames() -> None:
    with pytest.raises(ValueError):
        BufferSource(b"\x00\x01\x02", sample_rate=16000)


def test_wav_file_source_reads_header_and_frames(tmp_path: Path) -> None:
    wav_path = tmp_path / "digits.wav"
    pcm = _pcm16_constant(500, 8000, channels=1)
    _write_wav(wav_path, pcm, sample_rate=8000)

    source = WavFileSource(wav_path, chunk_seconds=0.5)
    assert source.sample_rate == 8000
    with source.open() as chunks:
        out = list(chunks)
    assert len(out) == 2
    assert out[0].sample_rate == 8000
    assert b"".join(c.pcm16 for c in out) == pcm


def test_wav_file_source_rejects_empty_file(tmp_path: Path) -> None:
    wav_path = tmp_path / "empty.wav"
    _write_wav(wav_path, b"")
    with pytest.raises(ValueError, match="File too short"):
        with WavFileSource(wav_path).open():
            pass


def test_energy_vad_threshold() -> None:
    assert pcm16_rms(b"") == 0.0
    assert pcm16_rms(_pcm16_constant(300, 10)) == pytest.approx(300.0)
    vad = EnergyVAD(rms_threshold=250.0)
    assert vad.is_speech(_pcm16_constant(300, 10))
    assert not vad.is_speech(_pcm16_constant(100, 10))


def _chunks(pattern: str, sr: int = 16000, chunk_sec: float = 0.5) -> list[AudioChunk]:
    frames = int(chunk_sec * sr)
    out = []
    for i, kind in enumerate(pattern):
        amplitude = 3000 if kind == "S" else 0
        out.append(
            AudioChunk(
                pcm16=_pcm16_constant(amplitude, frames),
                sample_rate=sr,
                channels=1,
                start_time=i * chunk_sec,
                duration=chunk_sec,
            )
        )
    return out


def test_utterance_gate_closes_after_silence() -> None:
    gate = UtteranceGate(vad=EnergyVAD(rms_threshold=500.0), silence_chunks_to_finalize=2, min_utter_sec=0.6)
    closed = [u for u in (gate.push(c) for c in _chunks("_SS__")) if u is not None]

    assert len(closed) == 1
    assert closed[0].start_time == 0.5
    assert closed[0].duration == pytest.approx(1.0)
    assert not gate.in_utterance


def test_utterance_gate_drops_short_utterances() -> None:
    gate = UtteranceGate(vad=EnergyVAD(rms_threshold=500.0), silence_chunks_to_finalize=1, min_utter_sec=0.6)
    closed = [u for u in (gate.push(c) for c in _chunks("S_")) if u is not None]
    assert closed == []


def test_utterance_gate_force_closes_on_max_length_and_flush() -> None:
    gate = UtteranceGate(
        vad=EnergyVAD(rms_threshold=500.0),
        silence_chunks_to_finalize=2,
        min_utter_sec=0.6,
        max_utter_sec=1.5,
    )
    closed = [u for u in (gate.push(c) for c in _chunks("SSSSS")) if u is not None]
    assert [u.start_time for u in closed] == [0.0]

    tail = gate.flush()
    assert tail is not None
    assert tail.start_time == 1.5
    assert gate.flush() is None


class _FakeRawInputStream:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def read(self, frames: int):
        return _pcm16_constant(7, frames), False

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True


def test_mic_source_reads_timed_chunks_and_closes_stream(monkeypatch) -> None:
    streams: list[_FakeRawInputStream] = []

    def _factory(**kwargs):
        streams.append(_FakeRawInputStream(**kwargs))
        return streams[-1]

    module = types.ModuleType("sounddevice")
    module.RawInputStream = _factory
    monkeypatch.setitem(sys.modules, "sounddevice", module)

    mic = SoundDeviceMicSource(chunk_seconds=0.5, sample_rate=8000, device=2)
    with mic.open() as chunks:
        first = next(chunks)
        second = next(chunks)

    assert streams[0].kwargs["device"] == 2
    assert streams[0].kwargs["dtype"] == "int16"
    assert streams[0].closed
    assert len(first.pcm16) == 4000 * 2
    assert (first.start_time, second.start_time) == (0.0, 0.5)


def test_mic_source_wraps_open_failure(monkeypatch) -> None:
    module = types.ModuleType("sounddevice")
    module.RawInputStream = MagicMock(side_effect=OSError("no device"))
    monkeypatch.setitem(sys.modules, "sounddevice", module)

    with pytest.raises(MicError, match="Failed to open microphone stream"):
        with SoundDeviceMicSource().open():
            pass
