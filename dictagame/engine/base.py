from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from dictagame.contracts import AudioChunk, EngineEvent


class EngineInitError(RuntimeError):
    """A session could not be started: model, engine or audio source unavailable."""


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    """Last meaningful line of an error or traceback text, shortened for display."""
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return "Unknown runtime error."
    for ln in reversed(lines):
        if ln.startswith(("File ", "^", "Traceback ")):
            continue
        out = ln
        break
    else:
        out = lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


@dataclass(frozen=True)
class Model:
    """Loaded, language-tagged recognition model; shared read-only by sessions."""
    language: str
    engine: str
    ref: str
    handle: Any = None


class RecognitionEngine(ABC):
    """
    Streaming recognizer adapter.

    A handle returned by `initialize` is owned by exactly one session; `feed`
    and `finish` are only called from that session's pump thread.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def load_model(self, language: str, ref: str) -> Model: ...

    @abstractmethod
    def initialize(
        self,
        model: Model,
        sample_rate: int,
        grammar: Optional[Sequence[str]] = None,
    ) -> Any:
        """Return an engine handle or raise EngineInitError."""
        raise NotImplementedError

    @abstractmethod
    def feed(self, handle: Any, chunk: AudioChunk) -> List[EngineEvent]: ...

    @abstractmethod
    def finish(self, handle: Any) -> str:
        """Flush buffered audio and return the last final text (may be empty)."""
        raise NotImplementedError

    def release(self, handle: Any) -> None:
        return None
