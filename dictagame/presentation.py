from __future__ import annotations

import sys
from typing import TextIO

from dictagame.contracts import ActiveRole, Phase, Snapshot

_PROMPTS = {
    ActiveRole.NONE: "",
    ActiveRole.SOURCE_LISTENING: "say a word",
    ActiveRole.TARGET_LISTENING: "say the translation",
    ActiveRole.FILE_REPLAY: "replaying file",
}


def format_snapshot(snapshot: Snapshot) -> str:
    """Word table with +/- completion marks followed by the current game status."""
    src, tgt = snapshot.languages
    lines = []
    for word in sorted(snapshot.dictionary):
        translations = ", ".join(sorted(snapshot.dictionary[word]))
        mark = "+" if word in snapshot.completed else "-"
        lines.append(f"  {mark} {word} -> [{translations}]")

    status = snapshot.phase.value
    prompt = _PROMPTS[snapshot.active_role]
    if prompt:
        lang = tgt if snapshot.active_role == ActiveRole.TARGET_LISTENING else src
        status = f"{status} ({prompt}, {lang})"
    if snapshot.paused:
        status += " [paused]"
    if not snapshot.models_ready and snapshot.phase == Phase.IDLE:
        status += " [loading models]"

    lines.append(f"status: {status}")
    lines.append(f"completed: {len(snapshot.completed)}/{len(snapshot.dictionary)}")
    lines.append(f"current word: {snapshot.pending_word or '-'}")
    lines.append(f"recognized: {snapshot.last_recognized_word or '-'}")
    if snapshot.replay_text:
        lines.append(f"replay: {snapshot.replay_text}")
    if snapshot.error_message:
        lines.append(f"error: {snapshot.error_message}")
    return "\n".join(lines)


class ConsoleSink:
    """Prints a snapshot whenever it differs from the previous one."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self._last: str | None = None

    def publish(self, snapshot: Snapshot) -> None:
        text = format_snapshot(snapshot)
        if text == self._last:
            return
        self._last = text
        print(text, file=self.stream)
        print("", file=self.stream, flush=True)
