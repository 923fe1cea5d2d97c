from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Any, Optional, Union

from dictagame.contracts import EngineEvent


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class PauseRequested:
    flag: bool


@dataclass(frozen=True)
class ToggleListening:
    pass


@dataclass(frozen=True)
class ToggleReplay:
    pass


@dataclass(frozen=True)
class ModelLoaded:
    model: Any


@dataclass(frozen=True)
class ModelLoadFailed:
    error: Exception


@dataclass(frozen=True)
class SessionEvent:
    token: int
    event: EngineEvent


Message = Union[
    StartRequested,
    StopRequested,
    PauseRequested,
    ToggleListening,
    ToggleReplay,
    ModelLoaded,
    ModelLoadFailed,
    SessionEvent,
]


class ControlBus:
    """
    Many-producer, single-consumer FIFO feeding the controller's thread.
    Nothing is ever dropped; ordering is arrival order.
    """

    def __init__(self) -> None:
        self.q: "queue.Queue[Message]" = queue.Queue()

    def push(self, msg: Message) -> None:
        self.q.put_nowait(msg)

    def pop(self, timeout: Optional[float] = None) -> Optional[Message]:
        try:
            if timeout is None:
                return self.q.get_nowait()
            return self.q.get(timeout=timeout)
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self.q.qsize()

