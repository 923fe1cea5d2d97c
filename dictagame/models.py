from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Mapping

from dictagame.engine.base import Model, RecognitionEngine


class LoadError(RuntimeError):
    def __init__(self, language: str, cause: str) -> None:
        super().__init__(f"Failed to unpack the model for {language!r}: {cause}")
        self.language = language
        self.cause = cause


def _log_event(logger: logging.Logger | None, level: int, event: str, **fields: Any) -> None:
    if logger is None:
        return
    logger.log(level, event, extra=fields)


class ModelLoader:
    """
    Loads one model per language on background threads.

    Results are reported through `on_loaded(model)` / `on_failed(error)` from the
    loader thread; callers are expected to hand them to their own control thread.
    Models with the same ref share one library handle.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        *,
        on_loaded: Callable[[Model], None],
        on_failed: Callable[[LoadError], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self.engine = engine
        self.on_loaded = on_loaded
        self.on_failed = on_failed
        self.logger = logger
        self._lock = threading.Lock()
        self._handles: dict[str, Any] = {}

    def load_sync(self, language: str, ref: str) -> Model:
        with self._lock:
            cached = self._handles.get(str(ref))
        if cached is not None:
            return replace(cached, language=language)
        try:
            model = self.engine.load_model(language, ref)
        except Exception as e:
            raise LoadError(language, str(e) or type(e).__name__) from e
        with self._lock:
            self._handles.setdefault(str(ref), model)
        return model

    def _load_entry(self, language: str, ref: str) -> None:
        try:
            model = self.load_sync(language, ref)
        except LoadError as e:
            _log_event(self.logger, logging.ERROR, "model_load_failed", language=language, ref=str(ref), cause=e.cause)
            self.on_failed(e)
            return
        _log_event(self.logger, logging.INFO, "model_loaded", language=language, ref=str(ref), engine=model.engine)
        self.on_loaded(model)

    def load(self, language: str, ref: str) -> threading.Thread:
        thread = threading.Thread(
            target=self._load_entry,
            args=(language, ref),
            name=f"dictagame-model-{language}",
            daemon=True,
        )
        thread.start()
        return thread

    def load_all(self, refs: Mapping[str, str]) -> list[threading.Thread]:
        return [self.load(language, ref) for language, ref in refs.items()]
