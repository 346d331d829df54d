"""Runner exceptions.

These exception types let the turn layer format failures consistently and
decide what to retry without scraping strings.
"""

from __future__ import annotations


class RunnerError(RuntimeError):
    """Base class for assistant CLI failures. All of them are retryable."""


class RunnerSpawnError(RunnerError):
    """The CLI process could not be started."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(self.__str__())

    def __str__(self) -> str:
        return f"Failed to start {self.command}: {self.reason}"


class RunnerFailed(RunnerError):
    """The CLI exited non-zero without producing any output."""

    def __init__(self, returncode: int | None, stderr: str | None = None):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(self.__str__())

    def __str__(self) -> str:
        detail = (self.stderr or "").strip()
        if detail:
            return f"iFlow CLI failed (exit {self.returncode}): {detail[-500:]}"
        return f"iFlow CLI failed (exit {self.returncode}): Unknown error"


class RunnerTimeout(RunnerFailed):
    """The CLI did not finish within the configured timeout."""

    def __init__(self, timeout_s: float, *, killed: bool = False):
        self.timeout_s = float(timeout_s)
        self.killed = killed
        super().__init__(None, None)

    def __str__(self) -> str:
        return f"iFlow CLI timed out ({self.timeout_s * 1000:.0f}ms)"
