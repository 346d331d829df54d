"""Subprocess transport helpers for runners."""

from __future__ import annotations

import asyncio
import logging

log = logging.getLogger(__name__)


class SubprocessTransport:
    def __init__(self):
        self.process: asyncio.subprocess.Process | None = None

    async def start(
        self,
        cmd: list[str],
        *,
        cwd: str | None,
        env: dict[str, str] | None = None,
    ) -> asyncio.subprocess.Process:
        self.process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )

        if self.process.stdout is None or self.process.stderr is None:
            raise RuntimeError("Subprocess pipes missing")

        return self.process

    async def write_input(self, text: str) -> None:
        """Send a single-shot prompt and close stdin."""
        proc = self.process
        if not proc or proc.stdin is None:
            return
        try:
            proc.stdin.write(text.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # The CLI may exit before reading its input; its exit status decides.
            log.warning("Subprocess %s closed stdin early", proc.pid)
        finally:
            proc.stdin.close()

    async def wait(self) -> int:
        if not self.process:
            return 0
        await self.process.wait()
        return int(self.process.returncode or 0)

    async def cancel_and_kill(self, timeout: float = 5.0) -> bool:
        """Terminate the process, wait, then force-kill if still alive.

        Returns True if SIGKILL was needed.
        """
        proc = self.process
        if not proc or proc.returncode is not None:
            return False
        try:
            proc.terminate()
        except ProcessLookupError:
            return False
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
            return False
        except (asyncio.TimeoutError, ProcessLookupError):
            log.warning("Process %s did not exit after SIGTERM, sending SIGKILL", proc.pid)
            try:
                proc.kill()
            except ProcessLookupError:
                return False
            await proc.wait()
            return True
