from __future__ import annotations

import argparse
import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

REPLAY_GRAMMAR: list[str] = [
    "one zero zero zero one",
    "oh zero one two three four five six seven eight nine",
    "[unk]",
]

DEFAULTS: dict[str, Any] = {
    "list_devices": False,
    "device": None,
    "sr": 16000,
    "channels": 1,
    "chunk_sec": 0.25,
    "engine": "vosk",
    "source_lang": "en",
    "target_lang": "ru",
    "source_model": "model-en-us",
    "target_model": "model-ru",
    "dictionary": None,
    "replay_wav": None,
    "replay_grammar": REPLAY_GRAMMAR,
    "rms_th": 250.0,
    "silence_chunks": 2,
    "min_utter_sec": 0.3,
    "max_utter_sec": 4.0,
    "session_timeout_sec": None,
    "debug": False,
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())
ENGINES: tuple[str, ...] = ("vosk", "whisper")


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir("DictaGame", "DictaGame"))
    return AppPaths(config_dir=config_dir, config_path=config_dir / "config.json")


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: payload[key] for key in CONFIG_KEYS if key in payload}


def load_default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULTS)


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    _write_json_dict(paths.config_path, defaults or load_default_config())
    return paths.config_path


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    defaults = load_default_config()
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists(defaults)
    merged = dict(defaults)
    merged.update(_known_only(_load_json_dict(chosen)))
    return merged, chosen


def resolve_defaults(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    return load_user_config(config_path=config_path)


def _optional_float(value: str) -> float | None:
    if value.strip().lower() in ("", "none", "off"):
        return None
    return float(value)


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dictagame", description="Bilingual dictation game")
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")
    p.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")
    p.add_argument("--sr", type=int, default=defaults["sr"], help="sample rate (Hz)")
    p.add_argument("--channels", type=int, default=defaults["channels"], help="input channels")
    p.add_argument("--chunk-sec", type=float, default=defaults["chunk_sec"], help="audio chunk size in seconds")
    p.add_argument(
        "--engine",
        default=defaults["engine"],
        choices=list(ENGINES),
        help="recognition engine: vosk (streaming, grammar) or whisper (faster-whisper)",
    )
    p.add_argument("--source-lang", default=defaults["source_lang"], help="language of the words to say first")
    p.add_argument("--target-lang", default=defaults["target_lang"], help="language of the translations")
    p.add_argument(
        "--source-model",
        default=defaults["source_model"],
        help="source model: Vosk model directory or faster-whisper model size/path",
    )
    p.add_argument(
        "--target-model",
        default=defaults["target_model"],
        help="target model: Vosk model directory or faster-whisper model size/path",
    )
    p.add_argument("--dictionary", default=defaults["dictionary"], help="JSON word list {word: [translations]}")
    p.add_argument("--replay-wav", default=defaults["replay_wav"], help="16-bit PCM WAV for file replay mode")
    p.add_argument(
        "--replay-grammar",
        nargs="+",
        default=defaults["replay_grammar"],
        help="phrases the file replay recognizer is restricted to",
    )
    p.add_argument("--rms-th", type=float, default=defaults["rms_th"], help="RMS threshold for speech (whisper)")
    p.add_argument(
        "--silence-chunks",
        type=int,
        default=defaults["silence_chunks"],
        help="finalize after this many non-speech chunks (whisper)",
    )
    p.add_argument(
        "--min-utter-sec",
        type=float,
        default=defaults["min_utter_sec"],
        help="ignore utterances shorter than this (whisper)",
    )
    p.add_argument(
        "--max-utter-sec",
        type=_optional_float,
        default=defaults["max_utter_sec"],
        help="force finalize while continuously speaking (whisper)",
    )
    p.add_argument(
        "--session-timeout-sec",
        type=_optional_float,
        default=defaults["session_timeout_sec"],
        help="stop listening after this much audio (default: never)",
    )
    p.add_argument("--debug", action="store_true", help="verbose engine logging")
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = resolve_defaults(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    if defaults.get("list_devices"):
        args.list_devices = True
    if defaults.get("debug"):
        args.debug = True
    return args
