"""Inbound filtering and message routing."""

from .inbound import AllowList, InboundEvent, accept, parse_allowed_chats, parse_message
from .router import MessageHandler, MessageRouter

__all__ = [
    "AllowList",
    "InboundEvent",
    "accept",
    "parse_allowed_chats",
    "parse_message",
    "MessageHandler",
    "MessageRouter",
]
