from __future__ import annotations

import functools
import itertools
import logging
import threading
from typing import Callable, Iterable, Optional, Protocol

from dictagame.bus import (
    ControlBus,
    Message,
    ModelLoaded,
    ModelLoadFailed,
    PauseRequested,
    SessionEvent,
    StartRequested,
    StopRequested,
    ToggleListening,
    ToggleReplay,
)
from dictagame.contracts import (
    ActiveRole,
    EngineError,
    EngineEvent,
    Final,
    Partial,
    Phase,
    Snapshot,
    Timeout,
)
from dictagame.dictionary import Dictionary
from dictagame.engine.base import EngineInitError, Model
from dictagame.session import Listener


class Session(Protocol):
    def start(self, listener: Listener) -> None: ...

    def stop(self) -> None: ...

    def pause(self, flag: bool) -> None: ...


class SnapshotSink(Protocol):
    def publish(self, snapshot: Snapshot) -> None: ...


SessionFactory = Callable[[ActiveRole, Model], Session]

_LISTENING = (Phase.LISTENING_SOURCE, Phase.LISTENING_TARGET)


class DictationController:
    """
    Owns the game state and the single live recognition session.

    Public request methods and the session listeners only push messages onto
    the control bus; state changes happen in `process_pending()` / `run()`,
    which must be driven by one thread. A snapshot is published to every sink
    after each handled message that changed something.
    """

    def __init__(
        self,
        dictionary: Dictionary,
        *,
        session_factory: SessionFactory,
        source_language: str = "en",
        target_language: str = "ru",
        replay_language: Optional[str] = None,
        replay_enabled: bool = True,
        sinks: Iterable[SnapshotSink] = (),
        bus: Optional[ControlBus] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if source_language == target_language:
            raise ValueError("source and target language must differ")
        self.dictionary = dictionary
        self.source_language = source_language
        self.target_language = target_language
        self.replay_language = replay_language or source_language
        self.replay_enabled = bool(replay_enabled)
        self.bus = bus or ControlBus()
        self.logger = logger or logging.getLogger(__name__)
        self._session_factory = session_factory
        self._sinks = list(sinks)

        self._models: dict[str, Model] = {}
        self._completed: set[str] = set()
        self._pending: Optional[str] = None
        self._last_word: Optional[str] = None
        self._replay_text: Optional[str] = None
        self._error: Optional[str] = None
        self._paused = False
        self._phase = Phase.IDLE

        self._session: Optional[Session] = None
        self._role = ActiveRole.NONE
        self._token: Optional[int] = None
        self._tokens = itertools.count(1)

        self._snapshot: Snapshot
        self._publish()

    # --- requests (any thread) ---

    def request_start(self) -> None:
        self.bus.push(StartRequested())

    def request_stop(self) -> None:
        self.bus.push(StopRequested())

    def set_pause(self, flag: bool) -> None:
        self.bus.push(PauseRequested(bool(flag)))

    def toggle_listening(self) -> None:
        self.bus.push(ToggleListening())

    def toggle_replay(self) -> None:
        self.bus.push(ToggleReplay())

    def model_loaded(self, model: Model) -> None:
        self.bus.push(ModelLoaded(model))

    def model_failed(self, error: Exception) -> None:
        self.bus.push(ModelLoadFailed(error))

    # --- read side ---

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def active_role(self) -> ActiveRole:
        return self._role

    @property
    def pending_word(self) -> Optional[str]:
        return self._pending

    @property
    def last_recognized_word(self) -> Optional[str]:
        return self._last_word

    @property
    def completed(self) -> frozenset:
        return frozenset(self._completed)

    @property
    def error_message(self) -> Optional[str]:
        return self._error

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def models_ready(self) -> bool:
        return self.source_language in self._models and self.target_language in self._models

    def snapshot(self) -> Snapshot:
        return self._snapshot

    # --- control thread ---

    def process_pending(self, max_items: Optional[int] = None) -> int:
        handled = 0
        while max_items is None or handled < max_items:
            msg = self.bus.pop()
            if msg is None:
                break
            self._dispatch(msg)
            handled += 1
        return handled

    def run(self, stop_event: threading.Event, poll_sec: float = 0.1) -> None:
        self.logger.info("controller_run")
        try:
            while not stop_event.is_set():
                msg = self.bus.pop(timeout=poll_sec)
                if msg is not None:
                    self._dispatch(msg)
        finally:
            self.close()

    def close(self) -> None:
        if self._session is None:
            return
        self._release_session()
        self._phase = Phase.STOPPED
        self.logger.info("controller_closed")
        self._publish()

    def _dispatch(self, msg: Message) -> None:
        before = self._phase
        if self._handle(msg):
            if self._phase != before:
                self.logger.info(
                    "transition",
                    extra={
                        "from_phase": before.value,
                        "to_phase": self._phase.value,
                        "role": self._role.value,
                        "pending": self._pending,
                        "trigger": type(msg).__name__,
                    },
                )
            self._publish()

    def _handle(self, msg: Message) -> bool:
        if isinstance(msg, SessionEvent):
            return self._on_session_event(msg.token, msg.event)
        if isinstance(msg, StartRequested):
            return self._on_start()
        if isinstance(msg, StopRequested):
            return self._on_stop()
        if isinstance(msg, PauseRequested):
            return self._on_pause(msg.flag)
        if isinstance(msg, ToggleListening):
            return self._on_stop() if self._phase in _LISTENING else self._on_start()
        if isinstance(msg, ToggleReplay):
            return self._on_toggle_replay()
        if isinstance(msg, ModelLoaded):
            return self._on_model_loaded(msg.model)
        if isinstance(msg, ModelLoadFailed):
            return self._on_model_failed(msg.error)
        raise TypeError(f"unexpected control message: {msg!r}")

    # --- session slot ---

    def _language_for(self, role: ActiveRole) -> str:
        if role == ActiveRole.TARGET_LISTENING:
            return self.target_language
        if role == ActiveRole.FILE_REPLAY:
            return self.replay_language
        return self.source_language

    def _post_session_event(self, token: int, event: EngineEvent) -> None:
        self.bus.push(SessionEvent(token, event))

    def _release_session(self) -> None:
        session = self._session
        self._session = None
        self._token = None
        self._role = ActiveRole.NONE
        self._pending = None
        self._paused = False
        if session is not None:
            session.stop()

    def _activate(self, role: ActiveRole) -> bool:
        # the previous session is always stopped before the next one starts
        self._release_session()
        language = self._language_for(role)
        model = self._models.get(language)
        if model is None:
            self._fail_start(role, f"No model loaded for language {language!r}.")
            return False
        token = next(self._tokens)
        try:
            session = self._session_factory(role, model)
            session.start(functools.partial(self._post_session_event, token))
        except EngineInitError as e:
            self._fail_start(role, str(e))
            return False
        self._session = session
        self._token = token
        self._role = role
        self.logger.info("session_activated", extra={"role": role.value, "language": language, "token": token})
        return True

    def _fail_start(self, role: ActiveRole, cause: str) -> None:
        self._phase = Phase.STOPPED
        self._error = cause
        self.logger.error("session_start_failed", extra={"role": role.value, "cause": cause})

    def _listen_source(self) -> None:
        if self._activate(ActiveRole.SOURCE_LISTENING):
            self._phase = Phase.LISTENING_SOURCE

    def _enter_error(self, cause: str) -> None:
        self._release_session()
        self._phase = Phase.ERROR
        self._error = cause
        self.logger.error("session_error", extra={"cause": cause})

    # --- transitions ---

    def _on_start(self) -> bool:
        if self._phase in _LISTENING:
            return False
        if not self.models_ready:
            self._error = "Models are not loaded yet."
            return True
        self._error = None
        self._listen_source()
        return True

    def _on_stop(self) -> bool:
        self._release_session()
        self._phase = Phase.STOPPED
        return True

    def _on_pause(self, flag: bool) -> bool:
        if self._session is None:
            return False
        self._session.pause(flag)
        self._paused = bool(getattr(self._session, "paused", flag))
        return True

    def _on_toggle_replay(self) -> bool:
        if self._role == ActiveRole.FILE_REPLAY:
            self._release_session()
            self._phase = Phase.STOPPED
            return True
        if not self.replay_enabled:
            self._error = "File replay is not configured."
            return True
        self._replay_text = None
        self._error = None
        if self._activate(ActiveRole.FILE_REPLAY):
            self._phase = Phase.REPLAYING
        return True

    def _on_model_loaded(self, model: Model) -> bool:
        self._models[model.language] = model
        if self._phase == Phase.IDLE and self.models_ready:
            self._on_start()
        return True

    def _on_model_failed(self, error: Exception) -> bool:
        self._error = str(error)
        self.logger.error("model_load_failed", extra={"cause": str(error)})
        return True

    def _on_session_event(self, token: int, event: EngineEvent) -> bool:
        if token != self._token or self._session is None:
            self.logger.debug("stale_session_event", extra={"token": token, "event": type(event).__name__})
            return False
        if isinstance(event, Partial):
            return False
        if isinstance(event, EngineError):
            self._enter_error(event.cause)
            return True
        if isinstance(event, Timeout):
            self._release_session()
            self._phase = Phase.STOPPED
            return True
        if isinstance(event, Final):
            if self._role == ActiveRole.FILE_REPLAY:
                return self._on_replay_final(event)
            return self._on_final(event)
        return False

    def _on_replay_final(self, event: Final) -> bool:
        text = (event.text or "").strip()
        if text:
            self._replay_text = text
        if event.end_of_stream:
            self._release_session()
            self._phase = Phase.STOPPED
            return True
        return bool(text)

    def _on_final(self, event: Final) -> bool:
        token = self._token
        text = (event.text or "").strip()
        changed = False
        if text:
            self._last_word = text
            changed = True
            if self._role == ActiveRole.SOURCE_LISTENING:
                if text in self.dictionary and self._pending is None:
                    if self._activate(ActiveRole.TARGET_LISTENING):
                        self._pending = text
                        self._phase = Phase.LISTENING_TARGET
            elif self._role == ActiveRole.TARGET_LISTENING and self._pending is not None:
                if text in self.dictionary.get(self._pending, ()):
                    self._completed.add(self._pending)
                    self.logger.info("word_completed", extra={"word": self._pending, "translation": text})
                    self._listen_source()
        if event.end_of_stream and self._token == token:
            # source ran dry without a handoff; nothing is listening any more
            self._release_session()
            self._phase = Phase.STOPPED
            changed = True
        return changed

    # --- snapshots ---

    def _build_snapshot(self) -> Snapshot:
        return Snapshot(
            phase=self._phase,
            active_role=self._role,
            pending_word=self._pending,
            last_recognized_word=self._last_word,
            completed=frozenset(self._completed),
            dictionary=self.dictionary,
            error_message=self._error,
            paused=self._paused,
            models_ready=self.models_ready,
            replay_text=self._replay_text,
            languages=(self.source_language, self.target_language),
        )

    def _publish(self) -> None:
        self._snapshot = self._build_snapshot()
        for sink in self._sinks:
            sink.publish(self._snapshot)

