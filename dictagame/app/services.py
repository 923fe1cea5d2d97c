from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from dictagame.audio.buffer import WavFileSource
from dictagame.audio.mic import SoundDeviceMicSource
from dictagame.contracts import ActiveRole
from dictagame.controller import SessionFactory
from dictagame.dictionary import Dictionary, default_dictionary, load_dictionary
from dictagame.engine.base import Model, RecognitionEngine
from dictagame.engine.faster_whisper_engine import FasterWhisperEngine
from dictagame.engine.vosk_engine import VoskEngine
from dictagame.session import StreamingSession


@dataclass(frozen=True)
class DictationServices:
    engine: RecognitionEngine
    dictionary: Dictionary
    session_factory: SessionFactory
    model_refs: dict[str, str]
    replay_enabled: bool


def build_engine(args: Any, vocabulary: Iterable[str] = ()) -> RecognitionEngine:
    if str(args.engine) == "whisper":
        return FasterWhisperEngine(
            rms_threshold=float(args.rms_th),
            silence_chunks=int(args.silence_chunks),
            min_utter_sec=float(args.min_utter_sec),
            max_utter_sec=None if args.max_utter_sec is None else float(args.max_utter_sec),
            vocabulary=vocabulary,
        )
    return VoskEngine(log_level=0 if args.debug else -1)


def build_session_factory(
    args: Any,
    engine: RecognitionEngine,
    logger: logging.Logger | None = None,
) -> SessionFactory:
    timeout_sec = None if args.session_timeout_sec is None else float(args.session_timeout_sec)

    def _factory(role: ActiveRole, model: Model) -> StreamingSession:
        if role == ActiveRole.FILE_REPLAY:
            return StreamingSession(
                engine=engine,
                model=model,
                source=WavFileSource(str(args.replay_wav), chunk_seconds=float(args.chunk_sec)),
                grammar=list(args.replay_grammar or []),
                name="replay",
                logger=logger,
            )
        mic = SoundDeviceMicSource(
            chunk_seconds=float(args.chunk_sec),
            sample_rate=int(args.sr),
            channels=int(args.channels),
            device=args.device,
        )
        return StreamingSession(
            engine=engine,
            model=model,
            source=mic,
            timeout_sec=timeout_sec,
            join_timeout=max(1.0, 4 * float(args.chunk_sec)),
            name="source" if role == ActiveRole.SOURCE_LISTENING else "target",
            logger=logger,
        )

    return _factory


def build_services(args: Any, logger: logging.Logger | None = None) -> DictationServices:
    dictionary = load_dictionary(args.dictionary) if args.dictionary else default_dictionary()
    vocabulary = set(dictionary)
    for translations in dictionary.values():
        vocabulary.update(translations)
    engine = build_engine(args, vocabulary)
    return DictationServices(
        engine=engine,
        dictionary=dictionary,
        session_factory=build_session_factory(args, engine, logger=logger),
        model_refs={
            str(args.source_lang): str(args.source_model),
            str(args.target_lang): str(args.target_model),
        },
        replay_enabled=bool(args.replay_wav),
    )
