from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

Dictionary = Mapping[str, frozenset]

DEFAULT_WORDS: dict[str, tuple[str, ...]] = {
    "cat": ("кот",),
    "dog": ("собака",),
    "forest": ("лес",),
}


class DictionaryError(ValueError):
    pass


def _translations(word: str, raw: Any) -> frozenset:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, Iterable):
        raise DictionaryError(f"translations for {word!r} must be a string or a list of strings")
    out = set()
    for item in raw:
        if not isinstance(item, str):
            raise DictionaryError(f"translation for {word!r} must be a string, got {type(item).__name__}")
        text = item.strip()
        if text:
            out.add(text)
    if not out:
        raise DictionaryError(f"word {word!r} has no translations")
    return frozenset(out)


def build_dictionary(words: Mapping[str, Any]) -> Dictionary:
    """
    Build the read-only source -> translations mapping.

    Keys are kept case-sensitive and stripped; every key needs at least one
    non-blank translation.
    """
    out: dict[str, frozenset] = {}
    for key, raw in words.items():
        if not isinstance(key, str) or not key.strip():
            raise DictionaryError(f"source word must be a non-empty string, got {key!r}")
        word = key.strip()
        merged = _translations(word, raw)
        if word in out:
            merged = out[word] | merged
        out[word] = merged
    if not out:
        raise DictionaryError("dictionary must contain at least one word")
    return MappingProxyType(out)


def default_dictionary() -> Dictionary:
    return build_dictionary(DEFAULT_WORDS)


def load_dictionary(path: str | Path) -> Dictionary:
    # Accept UTF-8 with or without BOM for hand-edited word lists.
    with Path(path).open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise DictionaryError(f"dictionary must be a JSON object: {path}")
    return build_dictionary(loaded)
