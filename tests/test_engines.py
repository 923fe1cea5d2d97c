from __future__ import annotations

import json
import sys
import types
from array import array
from unittest.mock import MagicMock

import pytest

from dictagame.contracts import AudioChunk, Final, Partial
from dictagame.engine.base import EngineInitError, Model
from dictagame.engine.faster_whisper_engine import (
    FasterWhisperEngine,
    casing_map,
    normalize_words,
    snap_to_grammar,
)
from dictagame.engine.vosk_engine import VoskEngine

GRAMMAR = ["one zero zero zero one", "oh zero one two three four five six seven eight nine", "[unk]"]


def _chunk(amplitude: int, t: float, sr: int = 16000, sec: float = 0.25) -> AudioChunk:
    frames = int(sr * sec)
    return AudioChunk(
        pcm16=array("h", [amplitude] * frames).tobytes(),
        sample_rate=sr,
        channels=1,
        start_time=t,
        duration=sec,
    )


@pytest.fixture
def fake_vosk(monkeypatch):
    module = types.ModuleType("vosk")
    module.SetLogLevel = MagicMock()
    module.Model = MagicMock(name="Model")
    module.KaldiRecognizer = MagicMock(name="KaldiRecognizer")
    monkeypatch.setitem(sys.modules, "vosk", module)
    return module


def test_vosk_engine_loads_model_and_builds_grammar_recognizer(fake_vosk) -> None:
    engine = VoskEngine()
    model = engine.load_model("en", "/models/en")
    assert model.language == "en"
    assert model.engine == "vosk"
    fake_vosk.Model.assert_called_once_with("/models/en")
    fake_vosk.SetLogLevel.assert_called_once_with(-1)

    engine.initialize(model, 16000, GRAMMAR)
    args = fake_vosk.KaldiRecognizer.call_args.args
    assert args[0] is model.handle
    assert args[1] == 16000.0
    assert json.loads(args[2]) == GRAMMAR


def test_vosk_engine_translates_results_into_events(fake_vosk) -> None:
    engine = VoskEngine()
    model = Model(language="en", engine="vosk", ref="x", handle=object())
    rec = engine.initialize(model, 16000)
    fake_vosk.KaldiRecognizer.assert_called_once_with(model.handle, 16000.0)

    rec.AcceptWaveform.return_value = False
    rec.PartialResult.return_value = '{"partial" : "ca"}'
    assert engine.feed(rec, _chunk(1000, 0.0)) == [Partial("ca")]

    rec.PartialResult.return_value = '{"partial" : ""}'
    assert engine.feed(rec, _chunk(1000, 0.25)) == []

    rec.AcceptWaveform.return_value = True
    rec.Result.return_value = '{"text" : "cat"}'
    assert engine.feed(rec, _chunk(1000, 0.5)) == [Final("cat")]

    rec.FinalResult.return_value = '{"text" : ""}'
    assert engine.finish(rec) == ""


def test_vosk_engine_requires_loaded_model(fake_vosk) -> None:
    with pytest.raises(EngineInitError):
        VoskEngine().initialize(Model(language="en", engine="vosk", ref="x"), 16000)


def test_vosk_recognizer_failure_is_init_error(fake_vosk) -> None:
    fake_vosk.KaldiRecognizer.side_effect = Exception("Failed to create a recognizer")
    model = Model(language="en", engine="vosk", ref="x", handle=object())
    with pytest.raises(EngineInitError, match="Failed to create Vosk recognizer"):
        VoskEngine().initialize(model, 16000)


def test_normalize_words_strips_punctuation_and_case() -> None:
    assert normalize_words(" Cat. ") == "cat"
    assert normalize_words("Собака!") == "собака"
    assert normalize_words("one, zero  zero") == "one zero zero"


def test_snap_to_grammar() -> None:
    assert snap_to_grammar("one zero zero zero one", GRAMMAR) == "one zero zero zero one"
    assert snap_to_grammar("hello", GRAMMAR) == "[unk]"
    assert snap_to_grammar("hello", ["hello there"]) == ""
    assert snap_to_grammar("hello", None) == "hello"


def _whisper_model(text: str) -> Model:
    handle = MagicMock()
    handle.transcribe.return_value = ([MagicMock(text=text)], MagicMock())
    return Model(language="ru", engine="faster-whisper", ref="tiny", handle=handle)


def test_whisper_engine_emits_final_per_utterance() -> None:
    engine = FasterWhisperEngine(rms_threshold=500.0, silence_chunks=2, min_utter_sec=0.3)
    model = _whisper_model(" Кот.")
    handle = engine.initialize(model, 16000)

    events = []
    for i, amp in enumerate([0, 3000, 3000, 0, 0]):
        events.extend(engine.feed(handle, _chunk(amp, i * 0.25)))

    assert events == [Final("кот")]
    kwargs = model.handle.transcribe.call_args.kwargs
    assert kwargs["language"] == "ru"
    assert kwargs["initial_prompt"] is None


def test_whisper_engine_applies_grammar_and_flushes() -> None:
    engine = FasterWhisperEngine(rms_threshold=500.0, silence_chunks=2, min_utter_sec=0.3)
    model = _whisper_model("One, zero, zero, zero, one.")
    handle = engine.initialize(model, 16000, GRAMMAR)

    for i in range(3):
        assert engine.feed(handle, _chunk(3000, i * 0.25)) == []
    assert engine.finish(handle) == "one zero zero zero one"
    assert "[unk]" not in model.handle.transcribe.call_args.kwargs["initial_prompt"]
    assert engine.finish(handle) == ""


def test_whisper_engine_requires_loaded_model() -> None:
    with pytest.raises(EngineInitError):
        FasterWhisperEngine().initialize(Model(language="en", engine="faster-whisper", ref="tiny"), 16000)


def test_casing_map_prefers_normalized_spelling() -> None:
    assert casing_map(["Paris", "Париж", "cat", "Cat"]) == {"paris": "Paris", "париж": "Париж", "cat": "cat"}


def test_whisper_engine_restores_dictionary_casing() -> None:
    engine = FasterWhisperEngine(
        rms_threshold=500.0,
        silence_chunks=2,
        min_utter_sec=0.3,
        vocabulary=["Paris", "Париж"],
    )
    model = _whisper_model(" paris!")
    handle = engine.initialize(model, 16000)

    for i in range(3):
        engine.feed(handle, _chunk(3000, i * 0.25))
    assert engine.finish(handle) == "Paris"

    model.handle.transcribe.return_value = ([MagicMock(text="London.")], MagicMock())
    for i in range(3):
        engine.feed(handle, _chunk(3000, i * 0.25))
    assert engine.finish(handle) == "london"
