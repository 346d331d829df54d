"""iFlow CLI runner."""

from flowbridge.runners.iflow.config import IFlowConfig
from flowbridge.runners.iflow.runner import IFlowRunner

__all__ = ["IFlowConfig", "IFlowRunner"]
