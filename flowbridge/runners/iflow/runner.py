"""iFlow CLI runner."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
from contextlib import suppress
from pathlib import Path

from flowbridge.runners.base import BaseRunner, RunResult
from flowbridge.runners.errors import (
    RunnerError,
    RunnerFailed,
    RunnerSpawnError,
    RunnerTimeout,
)
from flowbridge.runners.iflow.config import IFlowConfig
from flowbridge.runners.ports import ChunkCallback
from flowbridge.runners.subprocess_transport import SubprocessTransport

log = logging.getLogger("iflow")


class IFlowRunner(BaseRunner):
    """Runs the iflow CLI once per turn and streams its stdout."""

    _READ_SIZE = 4096

    def __init__(
        self,
        config: IFlowConfig | None = None,
        transcript_dir: Path | None = None,
    ):
        self.config = config or IFlowConfig()
        super().__init__(self.config.resolve_work_dir(), transcript_dir)

    def _build_command(self, *, mode: str, thinking: bool) -> list[str]:
        cmd = [self.config.command]
        if mode and mode != "default":
            cmd.append(f"--mode={mode}")
        if thinking:
            cmd.append("--thinking")
        cmd.append("--stream")
        return cmd

    def _build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["TERM"] = "xterm-256color"
        env["IFLOW_ENABLE_SEARCH"] = "true"
        env["IFLOW_SEARCH_PROVIDER"] = "tavily"
        env.update(self.config.extra_env)
        return env

    async def _pump_stdout(
        self, stream: asyncio.StreamReader, on_chunk: ChunkCallback | None
    ) -> str:
        # Incremental decoding keeps multi-byte characters intact across reads.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        accumulated = ""
        while True:
            data = await stream.read(self._READ_SIZE)
            chunk = decoder.decode(data, final=not data)
            if chunk:
                if not accumulated:
                    log.info("Receiving output")
                accumulated += chunk
                if on_chunk:
                    on_chunk(chunk, accumulated)
            if not data:
                return accumulated

    @staticmethod
    async def _read_all(stream: asyncio.StreamReader) -> str:
        data = await stream.read()
        return data.decode("utf-8", errors="replace")

    async def _communicate(
        self,
        transport: SubprocessTransport,
        proc: asyncio.subprocess.Process,
        prompt: str,
        on_chunk: ChunkCallback | None,
    ) -> tuple[str, str, int]:
        assert proc.stdout is not None and proc.stderr is not None
        _, stdout, stderr = await asyncio.gather(
            transport.write_input(prompt + "\n"),
            self._pump_stdout(proc.stdout, on_chunk),
            self._read_all(proc.stderr),
        )
        returncode = await transport.wait()
        return stdout, stderr, returncode

    async def execute(
        self,
        prompt: str,
        on_chunk: ChunkCallback | None = None,
        *,
        mode: str = "default",
        thinking: bool = False,
    ) -> RunResult:
        """Run the CLI once with `prompt` on stdin.

        Succeeds when the process exits 0 or produced any stdout at all; a
        non-zero exit after partial output still counts as a response.
        """
        cmd = self._build_command(mode=mode, thinking=thinking)
        log.info("Starting %s", " ".join(cmd))
        self._record("Prompt", prompt)

        transport = SubprocessTransport()
        try:
            await transport.start(cmd, cwd=self.working_dir, env=self._build_env())
        except OSError as e:
            log.error("iFlow CLI process error: %s", e)
            raise RunnerSpawnError(cmd[0], str(e)) from e

        proc = transport.process
        assert proc is not None

        try:
            stdout, stderr, returncode = await asyncio.wait_for(
                self._communicate(transport, proc, prompt, on_chunk),
                timeout=self.config.timeout_s,
            )
        except asyncio.TimeoutError:
            log.warning(
                "iFlow CLI timed out after %.0fs, terminating pid %s",
                self.config.timeout_s,
                proc.pid,
            )
            killed = await transport.cancel_and_kill(self.config.kill_grace_s)
            raise RunnerTimeout(self.config.timeout_s, killed=killed) from None
        except BaseException:
            with suppress(Exception):
                await transport.cancel_and_kill(self.config.kill_grace_s)
            raise

        log.info("iFlow CLI finished, exit code %s", returncode)

        if returncode == 0 or stdout:
            if returncode != 0:
                log.warning(
                    "iFlow CLI exited %s but produced output; treating as success",
                    returncode,
                )
            self._record("Response", stdout)
            return RunResult(
                raw_output=stdout,
                stderr=stderr,
                returncode=returncode,
                success=True,
            )

        raise RunnerFailed(returncode, stderr)

    async def execute_with_retry(
        self,
        prompt: str,
        on_chunk: ChunkCallback | None = None,
        *,
        mode: str = "default",
        thinking: bool = False,
        max_attempts: int | None = None,
    ) -> RunResult:
        """Run with retries, waiting attempt * retry_delay_s between tries.

        Each retry starts a fresh process, so `on_chunk` may see content from a
        failed attempt again.
        """
        attempts = max(1, int(max_attempts or self.config.max_attempts))
        last_error: RunnerError | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.execute(
                    prompt, on_chunk, mode=mode, thinking=thinking
                )
            except RunnerError as e:
                last_error = e
                log.warning("Attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    delay = attempt * self.config.retry_delay_s
                    log.info("Retrying in %.1fs...", delay)
                    await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    async def check_available(self, timeout_s: float = 15.0) -> tuple[bool, str]:
        """Run `<command> --version`; returns (available, first output line)."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.config.command,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return False, str(e)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            with suppress(ProcessLookupError):
                proc.kill()
            return False, "timed out"

        out = (stdout or b"").decode("utf-8", errors="replace").strip()
        err = (stderr or b"").decode("utf-8", errors="replace").strip()
        first_line = (out or err).splitlines()[0] if (out or err) else ""
        return proc.returncode == 0, first_line
