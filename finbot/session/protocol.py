"""Boundary between finbot and the WhatsApp protocol implementation.

The protocol layer (handshake, multi-device encryption, the wire format) is
not part of finbot. A transport only has to provide:

- a way to find the protocol version to speak (:meth:`Transport.latest_version`)
- sessions that can be started, ended and asked to send a message
- an :class:`EventEmitter` on each session reporting ``creds.update``,
  ``connection.update`` and ``messages.upsert``
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional, Union

from ..errors import is_transient_protocol_error

logger = logging.getLogger("finbot.session.protocol")

CREDS_UPDATE = "creds.update"
CONNECTION_UPDATE = "connection.update"
MESSAGES_UPSERT = "messages.upsert"

Listener = Callable[[Any], Union[Awaitable[None], None]]


class DisconnectReason(IntEnum):
    """Status codes attached to a closed connection."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


@dataclass
class ConnectionUpdate:
    """Payload of a ``connection.update`` event.

    ``connection`` is one of ``"connecting"``, ``"open"``, ``"close"`` or None
    when the update only carries a pairing code.
    """

    connection: Optional[str] = None
    qr: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[BaseException] = None


@dataclass
class MessagesUpsert:
    """Payload of a ``messages.upsert`` event."""

    messages: list[dict] = field(default_factory=list)
    type: str = "notify"


@dataclass(frozen=True)
class SessionOptions:
    """Options handed to the transport when a session is created."""

    browser: tuple[str, str] = ("macOS", "Desktop")
    sync_full_history: bool = False
    mark_online_on_connect: bool = True
    generate_link_previews: bool = False
    default_query_timeout: float = 60.0
    retry_request_delay: float = 5.0


class EventEmitter:
    """Minimal async event emitter.

    Listeners are awaited one after another in registration order, so a
    ``messages.upsert`` batch is fully handled before the next event of the
    same session is delivered. Registering the same listener twice is a no-op.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener):
        listeners = self._listeners[event]
        if listener not in listeners:
            listeners.append(listener)

    def off(self, event: str, listener: Listener):
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def remove_all_listeners(self, event: Optional[str] = None):
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, payload: Any = None):
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                if is_transient_protocol_error(e):
                    logger.debug(f"Suppressed protocol noise in {event} listener: {e}")
                    continue
                logger.error(f"Error in {event} listener: {e}", exc_info=True)


class ProtocolSession(ABC):
    """One authenticated (or authenticating) protocol connection."""

    def __init__(self):
        self.ev = EventEmitter()

    @abstractmethod
    async def start(self) -> None:
        """Begin the handshake. Progress is reported via ``connection.update``."""

    @abstractmethod
    async def send_message(self, jid: str, content: dict, options: Optional[dict] = None) -> Any:
        """Send ``content`` (e.g. ``{"text": "..."}``) to ``jid``."""

    @abstractmethod
    async def end(self, error: Optional[BaseException] = None) -> None:
        """Tear the session down. Must be safe to call more than once."""


class Transport(ABC):
    """Factory for protocol sessions."""

    @abstractmethod
    async def latest_version(self) -> tuple[tuple[int, ...], bool]:
        """Return ``(version, is_latest)`` for the protocol to speak."""

    @abstractmethod
    def create_session(
        self,
        *,
        version: tuple[int, ...],
        credentials: Optional[dict],
        options: SessionOptions,
    ) -> ProtocolSession:
        """Create (but do not start) a session for the given credentials."""
