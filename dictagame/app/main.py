from __future__ import annotations

import signal
import sys
import threading
from typing import Callable, TextIO

from dictagame.app.config import resolve_args
from dictagame.app.diagnostics import hint_for_exception
from dictagame.app.logging_setup import setup_app_logger
from dictagame.app.services import build_services
from dictagame.audio.mic import MicError, SoundDeviceMicSource
from dictagame.contracts import Snapshot
from dictagame.controller import DictationController
from dictagame.models import ModelLoader
from dictagame.presentation import ConsoleSink

HELP = "Commands: s = start/stop, p = pause/resume, f = file replay, q = quit"


class _HintSink:
    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self._last_error: str | None = None

    def publish(self, snapshot: Snapshot) -> None:
        err = snapshot.error_message
        if err and err != self._last_error:
            print(f"hint: {hint_for_exception(err)}", file=self.stream, flush=True)
        self._last_error = err


def command_handlers(controller: DictationController) -> dict[str, Callable[[], None]]:
    def _toggle_pause() -> None:
        controller.set_pause(not controller.snapshot().paused)

    return {
        "s": controller.toggle_listening,
        "p": _toggle_pause,
        "f": controller.toggle_replay,
    }


def read_commands(
    controller: DictationController,
    stop_event: threading.Event,
    stream: TextIO,
) -> None:
    handlers = command_handlers(controller)
    for raw in stream:
        cmd = raw.strip().lower()[:1]
        if cmd == "q":
            break
        handler = handlers.get(cmd)
        if handler is None:
            print(HELP, flush=True)
            continue
        handler()
        if stop_event.is_set():
            break
    stop_event.set()


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, _log_dir, log_path = setup_app_logger(debug=bool(args.debug))
    logger.info("app_start", extra={"config_path": str(getattr(args, "config", "")), "argv": argv or []})

    if args.list_devices:
        try:
            print(SoundDeviceMicSource.list_devices())
        except MicError as e:
            print(e, file=sys.stderr)
            return 1
        return 0

    services = build_services(args, logger=logger.getChild("session"))
    controller = DictationController(
        services.dictionary,
        session_factory=services.session_factory,
        source_language=str(args.source_lang),
        target_language=str(args.target_lang),
        replay_enabled=services.replay_enabled,
        sinks=[ConsoleSink(), _HintSink(sys.stderr)],
        logger=logger.getChild("controller"),
    )
    loader = ModelLoader(
        services.engine,
        on_loaded=controller.model_loaded,
        on_failed=controller.model_failed,
        logger=logger.getChild("models"),
    )

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())

    control = threading.Thread(
        target=controller.run,
        args=(stop_event,),
        name="dictagame-control",
        daemon=True,
    )
    control.start()
    loader.load_all(services.model_refs)

    print(f"DictaGame ready ({services.engine.name}). Loading models...")
    print(HELP)
    print(f"Logs: {log_path}")

    reader = threading.Thread(
        target=read_commands,
        args=(controller, stop_event, sys.stdin),
        name="dictagame-stdin",
        daemon=True,
    )
    reader.start()
    try:
        while not stop_event.wait(0.2):
            pass
    finally:
        stop_event.set()
        control.join(timeout=5.0)
        logger.info("app_quit")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
