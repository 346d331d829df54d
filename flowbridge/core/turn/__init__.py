"""Turn pipeline (core orchestration).

Each inbound message is run as one turn:
- admission control per conversation key
- streamed CLI execution with incremental output extraction
- throttled progressive edits of a placeholder message

Chat platforms and card rendering are injected via the protocols in api.py.
"""

from flowbridge.core.turn.api import (
    CardRendererPort,
    ChatDeliveryError,
    ChatPlatformPort,
    InboundMessage,
    TurnOptions,
)
from flowbridge.core.turn.orchestrator import TurnOrchestrator
from flowbridge.core.turn.updater import CardUpdater, TurnState

__all__ = [
    "CardRendererPort",
    "CardUpdater",
    "ChatDeliveryError",
    "ChatPlatformPort",
    "InboundMessage",
    "TurnOptions",
    "TurnOrchestrator",
    "TurnState",
]
