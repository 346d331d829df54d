"""CLI runners for the assistant."""

from flowbridge.runners.base import RunResult
from flowbridge.runners.errors import (
    RunnerError,
    RunnerFailed,
    RunnerSpawnError,
    RunnerTimeout,
)
from flowbridge.runners.iflow import IFlowConfig, IFlowRunner
from flowbridge.runners.ports import ChunkCallback, Runner

__all__ = [
    "ChunkCallback",
    "IFlowConfig",
    "IFlowRunner",
    "RunResult",
    "Runner",
    "RunnerError",
    "RunnerFailed",
    "RunnerSpawnError",
    "RunnerTimeout",
]
