"""XMPP chat platform adapter."""

from flowbridge.platforms.xmpp.bot import XMPPChatBot
from flowbridge.platforms.xmpp.render import PlainTextRenderer

__all__ = ["PlainTextRenderer", "XMPPChatBot"]
