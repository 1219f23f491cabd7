"""WhatsApp session: credentials, protocol boundary and lifecycle."""

from .connection import ConnectionState, ReconnectPolicy, SessionConnection
from .credentials import FileCredentialStore
from .protocol import (
    ConnectionUpdate,
    DisconnectReason,
    EventEmitter,
    MessagesUpsert,
    ProtocolSession,
    SessionOptions,
    Transport,
)

__all__ = [
    "ConnectionState",
    "ReconnectPolicy",
    "SessionConnection",
    "FileCredentialStore",
    "ConnectionUpdate",
    "DisconnectReason",
    "EventEmitter",
    "MessagesUpsert",
    "ProtocolSession",
    "SessionOptions",
    "Transport",
]
