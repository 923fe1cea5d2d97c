from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence

from dictagame.contracts import AudioChunk, EngineEvent, Final, Partial
from dictagame.engine.base import EngineInitError, Model, RecognitionEngine

logger = logging.getLogger(__name__)


def _result_text(raw: str, key: str = "text") -> str:
    try:
        payload = json.loads(raw or "{}")
    except ValueError:
        return ""
    return str(payload.get(key, "") or "").strip()


class VoskEngine(RecognitionEngine):
    """
    Kaldi streaming recognizer via `vosk`.
    `ref` is the path of an unpacked model directory.
    """

    def __init__(self, *, log_level: int = -1) -> None:
        self.log_level = int(log_level)
        self._log_level_set = False

    @property
    def name(self) -> str:
        return "vosk"

    def _vosk(self):
        import vosk

        if not self._log_level_set:
            vosk.SetLogLevel(self.log_level)
            self._log_level_set = True
        return vosk

    def load_model(self, language: str, ref: str) -> Model:
        vosk = self._vosk()
        logger.info("vosk_model_loading", extra={"language": language, "ref": ref})
        handle = vosk.Model(str(ref))
        return Model(language=language, engine=self.name, ref=str(ref), handle=handle)

    def initialize(
        self,
        model: Model,
        sample_rate: int,
        grammar: Optional[Sequence[str]] = None,
    ) -> Any:
        if model is None or model.handle is None:
            raise EngineInitError("model is not loaded")
        try:
            vosk = self._vosk()
            if grammar:
                rec = vosk.KaldiRecognizer(model.handle, float(sample_rate), json.dumps(list(grammar)))
            else:
                rec = vosk.KaldiRecognizer(model.handle, float(sample_rate))
        except Exception as e:
            raise EngineInitError(f"Failed to create Vosk recognizer: {e}") from e
        return rec

    def feed(self, handle: Any, chunk: AudioChunk) -> List[EngineEvent]:
        if handle.AcceptWaveform(chunk.pcm16):
            return [Final(_result_text(handle.Result()))]
        partial = _result_text(handle.PartialResult(), key="partial")
        if partial:
            return [Partial(partial)]
        return []

    def finish(self, handle: Any) -> str:
        return _result_text(handle.FinalResult())
