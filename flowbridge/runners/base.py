"""Shared runner pieces: the run result and an optional transcript file."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True)
class RunResult:
    """Outcome of one CLI invocation."""

    raw_output: str
    stderr: str = ""
    returncode: int | None = 0
    success: bool = True


class BaseRunner:
    """Holds the working directory and appends prompts/responses to a transcript.

    The transcript is `<transcript_dir>/<name>.log`; with no directory
    configured nothing is written.
    """

    def __init__(
        self,
        working_dir: str,
        transcript_dir: Path | None = None,
        name: str = "iflow",
    ):
        self.working_dir = working_dir
        self.transcript: Path | None = None
        if transcript_dir is not None:
            transcript_dir.mkdir(parents=True, exist_ok=True)
            self.transcript = transcript_dir / f"{name}.log"

    def _record(self, label: str, text: str) -> None:
        if self.transcript is None:
            return
        stamp = datetime.now().strftime("%H:%M:%S")
        with open(self.transcript, "a", encoding="utf-8") as f:
            f.write(f"\n[{stamp}] {label}:\n{text}\n")
