from __future__ import annotations

import io

from dictagame.bus import ControlBus, SessionEvent, StartRequested, StopRequested
from dictagame.contracts import ActiveRole, Final, Phase, Snapshot
from dictagame.dictionary import build_dictionary
from dictagame.presentation import ConsoleSink, format_snapshot


def _snapshot(**overrides) -> Snapshot:
    values = dict(
        phase=Phase.LISTENING_TARGET,
        active_role=ActiveRole.TARGET_LISTENING,
        pending_word="cat",
        last_recognized_word="cat",
        completed=frozenset({"dog"}),
        dictionary=build_dictionary({"cat": ["кот"], "dog": ["собака"]}),
        models_ready=True,
    )
    values.update(overrides)
    return Snapshot(**values)


def test_control_bus_keeps_arrival_order() -> None:
    bus = ControlBus()
    bus.push(StartRequested())
    bus.push(SessionEvent(1, Final("cat")))
    bus.push(StopRequested())
    assert len(bus) == 3
    assert bus.pop() == StartRequested()
    assert bus.pop() == SessionEvent(1, Final("cat"))
    assert bus.pop() == StopRequested()
    assert bus.pop() is None
    assert bus.pop(timeout=0.01) is None


def test_format_snapshot_lists_words_and_status() -> None:
    text = format_snapshot(_snapshot(error_message="boom"))
    lines = text.splitlines()
    assert lines[0] == "  - cat -> [кот]"
    assert lines[1] == "  + dog -> [собака]"
    assert "status: listening_target (say the translation, ru)" in lines
    assert "completed: 1/2" in lines
    assert "current word: cat" in lines
    assert "error: boom" in lines


def test_format_snapshot_idle_loading() -> None:
    text = format_snapshot(
        _snapshot(
            phase=Phase.IDLE,
            active_role=ActiveRole.NONE,
            pending_word=None,
            models_ready=False,
        )
    )
    assert "status: idle [loading models]" in text
    assert "current word: -" in text


def test_console_sink_skips_repeated_snapshots() -> None:
    out = io.StringIO()
    sink = ConsoleSink(out)
    sink.publish(_snapshot())
    sink.publish(_snapshot())
    sink.publish(_snapshot(paused=True))
    assert out.getvalue().count("status:") == 2
    assert "[paused]" in out.getvalue()
