"""Bridge-level chat commands."""

from flowbridge.commands.handlers import CommandHandler, command

__all__ = ["CommandHandler", "command"]
