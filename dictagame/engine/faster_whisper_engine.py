from __future__ import annotations

import logging
import os
import re
import tempfile
import wave
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

from dictagame.audio.utterance import EnergyVAD, UtteranceGate
from dictagame.contracts import AudioChunk, EngineEvent, Final
from dictagame.engine.base import EngineInitError, Model, RecognitionEngine

logger = logging.getLogger(__name__)

UNKNOWN = "[unk]"
_NOT_WORD = re.compile(r"[^\w\s'\-]+", flags=re.UNICODE)
_SPACES = re.compile(r"\s+")


def normalize_words(text: str) -> str:
    """Lower-case and strip punctuation so "Cat." matches the dictionary key "cat"."""
    text = _NOT_WORD.sub(" ", text or "")
    return _SPACES.sub(" ", text).strip().lower()


def snap_to_grammar(text: str, grammar: Optional[Sequence[str]]) -> str:
    if not grammar or not text:
        return text
    for phrase in grammar:
        if normalize_words(phrase) == text:
            return phrase
    return UNKNOWN if UNKNOWN in grammar else ""


def casing_map(vocabulary: Iterable[str]) -> dict[str, str]:
    """Normalized form -> original spelling; an entry already in normalized form wins."""
    out: dict[str, str] = {}
    for word in vocabulary:
        key = normalize_words(word)
        if key and (key == word or key not in out):
            out[key] = word
    return out


def _write_pcm16_wav(path: str, pcm16: bytes, sample_rate: int, channels: int) -> None:
    with wave.open(path, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm16)


@dataclass
class _WhisperStream:
    model: Model
    sample_rate: int
    grammar: Optional[Sequence[str]]
    gate: UtteranceGate


class FasterWhisperEngine(RecognitionEngine):
    """
    Utterance-level recognizer on top of faster-whisper.

    Whisper has no streaming decoder, so chunks are grouped by an energy gate
    and each closed utterance is transcribed into one Final event. A grammar is
    applied by biasing the prompt and snapping the output onto the phrase list.
    """

    def __init__(
        self,
        *,
        device: str = "cpu",
        compute_type: str = "int8",
        beam_size: int = 1,
        rms_threshold: float = 250.0,
        silence_chunks: int = 2,
        min_utter_sec: float = 0.3,
        max_utter_sec: Optional[float] = 4.0,
        vocabulary: Iterable[str] = (),
    ) -> None:
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size
        self.rms_threshold = float(rms_threshold)
        self.silence_chunks = int(silence_chunks)
        self.min_utter_sec = float(min_utter_sec)
        self.max_utter_sec = max_utter_sec
        # whisper output is normalized; known words get their original casing back
        self._casing = casing_map(vocabulary)

    @property
    def name(self) -> str:
        return "faster-whisper"

    def load_model(self, language: str, ref: str) -> Model:
        from faster_whisper import WhisperModel

        logger.info("whisper_model_loading", extra={"language": language, "ref": ref})
        handle = WhisperModel(
            ref,
            device=self.device,
            compute_type=self.compute_type,
        )
        return Model(language=language, engine=self.name, ref=str(ref), handle=handle)

    def initialize(
        self,
        model: Model,
        sample_rate: int,
        grammar: Optional[Sequence[str]] = None,
    ) -> Any:
        if model is None or model.handle is None:
            raise EngineInitError("model is not loaded")
        if sample_rate <= 0:
            raise EngineInitError(f"invalid sample rate: {sample_rate}")
        try:
            gate = UtteranceGate(
                vad=EnergyVAD(rms_threshold=self.rms_threshold),
                silence_chunks_to_finalize=self.silence_chunks,
                min_utter_sec=self.min_utter_sec,
                max_utter_sec=self.max_utter_sec,
            )
        except ValueError as e:
            raise EngineInitError(str(e)) from e
        return _WhisperStream(
            model=model,
            sample_rate=int(sample_rate),
            grammar=list(grammar) if grammar else None,
            gate=gate,
        )

    def _transcribe(self, stream: _WhisperStream, utterance: AudioChunk) -> str:
        fd, tmp_path = tempfile.mkstemp(suffix=".wav", prefix="dictagame_utter_")
        os.close(fd)
        try:
            _write_pcm16_wav(
                tmp_path,
                utterance.pcm16,
                sample_rate=utterance.sample_rate,
                channels=utterance.channels,
            )
            prompt = None
            if stream.grammar:
                prompt = ", ".join(p for p in stream.grammar if p != UNKNOWN)
            segments, _info = stream.model.handle.transcribe(
                tmp_path,
                language=stream.model.language,
                beam_size=self.beam_size,
                vad_filter=False,
                condition_on_previous_text=False,
                initial_prompt=prompt,
            )
            text = " ".join((s.text or "").strip() for s in segments)
        finally:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
        text = normalize_words(text)
        if stream.grammar:
            return snap_to_grammar(text, stream.grammar)
        return self._casing.get(text, text)

    def feed(self, handle: Any, chunk: AudioChunk) -> List[EngineEvent]:
        utterance = handle.gate.push(chunk)
        if utterance is None:
            return []
        return [Final(self._transcribe(handle, utterance))]

    def finish(self, handle: Any) -> str:
        utterance = handle.gate.flush()
        if utterance is None:
            return ""
        return self._transcribe(handle, utterance)

    def release(self, handle: Any) -> None:
        handle.gate.flush()
