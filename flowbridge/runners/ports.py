"""Ports (interfaces) for runner implementations.

The turn layer depends on these contracts rather than on the concrete iFlow
runner, so tests can substitute a scripted runner.
"""

from __future__ import annotations

from typing import Callable, Protocol

from flowbridge.runners.base import RunResult

# Receives (new_chunk, accumulated_output). Called synchronously, in order.
ChunkCallback = Callable[[str, str], None]


class Runner(Protocol):
    async def execute(
        self,
        prompt: str,
        on_chunk: ChunkCallback | None = None,
        *,
        mode: str = "default",
        thinking: bool = False,
    ) -> RunResult: ...

    async def execute_with_retry(
        self,
        prompt: str,
        on_chunk: ChunkCallback | None = None,
        *,
        mode: str = "default",
        thinking: bool = False,
        max_attempts: int | None = None,
    ) -> RunResult: ...
