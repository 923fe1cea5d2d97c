from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union


@dataclass(frozen=True)
class AudioChunk:
    """
    Raw PCM16 audio chunk captured from a source (microphone or buffer).
    pcm16: little-endian signed 16-bit PCM bytes (interleaved if channels > 1).
    """
    pcm16: bytes
    sample_rate: int
    channels: int
    start_time: float  # seconds since stream start
    duration: float    # seconds


@dataclass(frozen=True)
class Partial:
    text: str


@dataclass(frozen=True)
class Final:
    text: str
    # set on the result flushed when a bounded source runs dry
    end_of_stream: bool = False


@dataclass(frozen=True)
class Timeout:
    pass


@dataclass(frozen=True)
class EngineError:
    cause: str


EngineEvent = Union[Partial, Final, Timeout, EngineError]


class ActiveRole(str, Enum):
    NONE = "none"
    SOURCE_LISTENING = "source_listening"
    TARGET_LISTENING = "target_listening"
    FILE_REPLAY = "file_replay"


class Phase(str, Enum):
    IDLE = "idle"
    LISTENING_SOURCE = "listening_source"
    LISTENING_TARGET = "listening_target"
    REPLAYING = "replaying"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class Snapshot:
    phase: Phase
    active_role: ActiveRole
    pending_word: Optional[str]
    last_recognized_word: Optional[str]
    completed: frozenset
    dictionary: Mapping[str, frozenset]
    error_message: Optional[str] = None
    paused: bool = False
    models_ready: bool = False
    replay_text: Optional[str] = None
    languages: tuple = field(default=("en", "ru"))
