from __future__ import annotations

import contextlib
import logging
import threading
from enum import Enum
from typing import Any, Callable, ContextManager, Iterator, Optional, Protocol, Sequence

from dictagame.contracts import AudioChunk, EngineError, EngineEvent, Final, Timeout
from dictagame.engine.base import EngineInitError, Model, RecognitionEngine, summarize_exception

Listener = Callable[[EngineEvent], None]


class AudioSource(Protocol):
    live: bool

    @property
    def sample_rate(self) -> int: ...

    def open(self) -> ContextManager[Iterator[AudioChunk]]: ...


class SessionState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    STOPPED = "stopped"


def _log_event(logger: logging.Logger | None, level: int, event: str, **fields: Any) -> None:
    if logger is None:
        return
    logger.log(level, event, extra=fields)


class StreamingSession:
    """
    One engine handle bound to one audio source and one listener.

    Audio is pumped on a dedicated thread which feeds the engine and forwards
    its events, in order, to the listener. After `stop()` returns no further
    listener callbacks fire for this instance. A session is single-use.
    """

    def __init__(
        self,
        *,
        engine: RecognitionEngine,
        model: Model,
        source: AudioSource,
        grammar: Optional[Sequence[str]] = None,
        sample_rate: Optional[int] = None,
        timeout_sec: Optional[float] = None,
        join_timeout: float = 2.0,
        name: str = "session",
        logger: logging.Logger | None = None,
    ) -> None:
        if timeout_sec is not None and timeout_sec <= 0:
            raise ValueError("timeout_sec must be > 0 when set")
        self.engine = engine
        self.model = model
        self.source = source
        self.grammar = list(grammar) if grammar else None
        self.sample_rate = sample_rate
        self.timeout_sec = timeout_sec
        self.join_timeout = float(join_timeout)
        self.name = name
        self.logger = logger

        self._state = SessionState.INACTIVE
        self._state_lock = threading.Lock()
        # held while a callback runs; stop() takes it to fence off later callbacks
        self._dispatch_lock = threading.RLock()
        self._stopping = threading.Event()
        self._paused = threading.Event()
        self._listener: Optional[Listener] = None
        self._handle: Any = None
        self._released = False
        self._stack: Optional[contextlib.ExitStack] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == SessionState.ACTIVE

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def start(self, listener: Listener) -> None:
        with self._state_lock:
            if self._state != SessionState.INACTIVE:
                raise RuntimeError(f"session {self.name!r} was already started")

            try:
                sample_rate = int(self.sample_rate or self.source.sample_rate)
            except Exception as e:
                raise EngineInitError(f"Audio source unavailable: {e}") from e
            try:
                handle = self.engine.initialize(self.model, sample_rate, self.grammar)
            except EngineInitError:
                raise
            except Exception as e:
                raise EngineInitError(f"Engine init failed: {summarize_exception(str(e))}") from e

            stack = contextlib.ExitStack()
            try:
                chunks = stack.enter_context(self.source.open())
            except Exception as e:
                self.engine.release(handle)
                raise EngineInitError(f"Audio source unavailable: {summarize_exception(str(e))}") from e

            self._handle = handle
            self._stack = stack
            self._listener = listener
            self._state = SessionState.ACTIVE
            self._thread = threading.Thread(
                target=self._pump,
                args=(chunks,),
                name=f"dictagame-{self.name}",
                daemon=True,
            )
            self._thread.start()
        _log_event(
            self.logger,
            logging.INFO,
            "session_started",
            session=self.name,
            language=self.model.language,
            sample_rate=sample_rate,
            grammar=bool(self.grammar),
        )

    def pause(self, flag: bool) -> None:
        if not self.active or not getattr(self.source, "live", False):
            return
        if flag:
            self._paused.set()
        else:
            self._paused.clear()
        _log_event(self.logger, logging.INFO, "session_paused" if flag else "session_resumed", session=self.name)

    def stop(self) -> None:
        with self._state_lock:
            if self._state != SessionState.ACTIVE:
                return
            self._state = SessionState.STOPPED
        with self._dispatch_lock:
            self._stopping.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(self.join_timeout)
            if thread.is_alive():
                _log_event(self.logger, logging.WARNING, "session_join_timeout", session=self.name)
        # the device must be free once stop() returns, even if the pump is still busy
        self._close_source()
        _log_event(self.logger, logging.INFO, "session_stopped", session=self.name)

    def join(self, timeout: Optional[float] = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _dispatch(self, event: EngineEvent) -> bool:
        with self._dispatch_lock:
            if self._stopping.is_set():
                return False
            listener = self._listener
            if listener is not None:
                listener(event)
            return True

    def _pump(self, chunks: Iterator[AudioChunk]) -> None:
        fed_sec = 0.0
        try:
            for chunk in chunks:
                if self._stopping.is_set():
                    return
                if self._paused.is_set():
                    continue
                for event in self.engine.feed(self._handle, chunk):
                    if not self._dispatch(event):
                        return
                fed_sec += chunk.duration
                if self.timeout_sec is not None and fed_sec >= self.timeout_sec:
                    _log_event(self.logger, logging.INFO, "session_timeout", session=self.name, fed_sec=round(fed_sec, 2))
                    self._dispatch(Timeout())
                    return
            if not self._stopping.is_set():
                text = self.engine.finish(self._handle)
                self._dispatch(Final(text, end_of_stream=True))
        except Exception as e:
            _log_event(self.logger, logging.ERROR, "session_error", session=self.name, cause=str(e))
            self._dispatch(EngineError(summarize_exception(str(e) or type(e).__name__)))
        finally:
            self._terminate()

    def _close_source(self) -> None:
        with self._state_lock:
            stack = self._stack
            self._stack = None
        if stack is not None:
            stack.close()

    def _terminate(self) -> None:
        with self._state_lock:
            if self._state == SessionState.ACTIVE:
                self._state = SessionState.STOPPED
            released = self._released
            self._released = True
        with self._dispatch_lock:
            self._stopping.set()
        if released:
            return
        try:
            self._close_source()
        finally:
            self.engine.release(self._handle)
            self._handle = None
