"""WhatsApp session lifecycle.

:class:`SessionConnection` owns the single protocol session of the process
and moves it through::

    DISCONNECTED -> CONNECTING -> (AWAITING_PAIRING) -> OPEN -> CLOSED
    CLOSED -> CONNECTING          after a retryable disconnect
    CLOSED -> DISCONNECTED        after logout (terminal)

Every ``connect()`` builds a fresh session, so listeners are detached from the
previous session before they are attached to the new one, and events that
still arrive from an old session are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from ..communication.inbound import InboundEvent, parse_message
from ..errors import CredentialStoreError, NotConnectedError
from .credentials import FileCredentialStore
from .pairing import show_pairing_code
from .protocol import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    MessagesUpsert,
    ProtocolSession,
    SessionOptions,
    Transport,
)

logger = logging.getLogger("finbot.session")

MessageCallback = Callable[[InboundEvent], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReconnectPolicy:
    """Fixed-delay reconnect decision.

    Only a logout is terminal; network drops, timeouts, server restarts and
    unknown reasons are retried after ``delay`` seconds.
    """

    delay: float = 5.0
    terminal_reasons: frozenset[int] = frozenset({DisconnectReason.LOGGED_OUT})

    def should_reconnect(self, reason: Optional[int]) -> bool:
        return reason not in self.terminal_reasons


class SessionConnection:
    """Connects to WhatsApp, keeps the session alive and sends replies."""

    def __init__(
        self,
        transport: Transport,
        store: FileCredentialStore,
        policy: Optional[ReconnectPolicy] = None,
        *,
        options: Optional[SessionOptions] = None,
        on_pairing: Callable[[str], Any] = show_pairing_code,
    ):
        self._transport = transport
        self._store = store
        self._policy = policy or ReconnectPolicy()
        self._options = options or SessionOptions()
        self._on_pairing = on_pairing
        self._on_message: Optional[MessageCallback] = None
        self._session: Optional[ProtocolSession] = None
        self._listeners: dict[str, Callable] = {}
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    # ── Lifecycle ──────────────────────────────────────────────

    async def connect(self, on_message: MessageCallback):
        """Establish (or re-establish) the session.

        Returns once the handshake has been started; whether it succeeds is
        observed through state transitions. Errors raised while setting the
        session up are logged and re-raised.
        """
        self._on_message = on_message
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)

        try:
            logger.info(f"Auth folder: {self._store.auth_dir}")
            version, is_latest = await self._transport.latest_version()
            logger.info(
                f"Using protocol v{'.'.join(str(p) for p in version)}"
                f"{' (latest)' if is_latest else ''}"
            )

            credentials = await self._store.load()
            if credentials is None:
                logger.info("No saved session, pairing will be required")

            await self._drop_session()
            session = self._transport.create_session(
                version=version,
                credentials=credentials,
                options=self._options,
            )
            self._session = session
            self._attach(session)
            await session.start()
        except Exception as e:
            logger.error(f"Error connecting: {e}")
            self._set_state(ConnectionState.CLOSED)
            raise

    async def close(self):
        """Shut the session down without reconnecting."""
        self._closing = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._drop_session()
        self._set_state(ConnectionState.DISCONNECTED)

    # ── Outbound ───────────────────────────────────────────────

    async def send(self, to: str, text: str) -> bool:
        """Send a text message.

        Raises NotConnectedError when the session is not open. Transport
        failures are logged and reported as False.
        """
        session = self._require_open()
        try:
            await session.send_message(to, {"text": text})
        except Exception as e:
            logger.error(f"Error sending message to {to}: {e}")
            return False
        return True

    async def reply(self, to: str, text: str, quoted: Optional[dict] = None) -> bool:
        """Like :meth:`send`, quoting ``quoted`` where the transport supports it."""
        session = self._require_open()
        options = {"quoted": quoted} if quoted else {}
        try:
            await session.send_message(to, {"text": text}, options)
        except Exception as e:
            logger.error(f"Error sending reply to {to}: {e}")
            return False
        return True

    def _require_open(self) -> ProtocolSession:
        session = self._session
        if self._state != ConnectionState.OPEN or session is None:
            raise NotConnectedError(f"WhatsApp session is not open (state={self._state.value})")
        return session

    # ── Session events ─────────────────────────────────────────

    def _attach(self, session: ProtocolSession):
        self._listeners = {
            CREDS_UPDATE: partial(self._handle_creds_update, session),
            CONNECTION_UPDATE: partial(self._handle_connection_update, session),
            MESSAGES_UPSERT: partial(self._handle_messages_upsert, session),
        }
        for event, listener in self._listeners.items():
            session.ev.on(event, listener)

    def _detach(self, session: ProtocolSession):
        for event, listener in self._listeners.items():
            session.ev.off(event, listener)
        self._listeners = {}

    async def _drop_session(self):
        session = self._session
        if session is None:
            return
        self._detach(session)
        self._session = None
        try:
            await session.end()
        except Exception as e:
            logger.debug(f"Error ending previous session: {e}")

    async def _handle_creds_update(self, session: ProtocolSession, creds: dict):
        if session is not self._session:
            return
        try:
            await self._store.on_update(creds)
        except CredentialStoreError as e:
            logger.error(f"Failed to persist credentials: {e}")

    async def _handle_connection_update(self, session: ProtocolSession, update: ConnectionUpdate):
        if session is not self._session:
            logger.debug("Ignoring connection update from a previous session")
            return

        logger.info(f"Connection status: {update.connection or 'waiting...'}")

        if update.qr:
            self._set_state(ConnectionState.AWAITING_PAIRING)
            self._on_pairing(update.qr)

        if update.connection == "open":
            self._set_state(ConnectionState.OPEN)
            logger.info("Connected to WhatsApp.")
        elif update.connection == "close":
            self._handle_close(update)

    def _handle_close(self, update: ConnectionUpdate):
        self._set_state(ConnectionState.CLOSED)
        status = update.status_code
        reconnect = self._policy.should_reconnect(status)
        reason = str(update.error) if update.error else "unknown"
        logger.info(f"Connection closed (code={status}, reason={reason}, reconnect={reconnect})")

        if self._closing:
            return
        if reconnect:
            self._schedule_reconnect()
        else:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning(
                "Session logged out by WhatsApp. Run `finbot logout` to clear "
                "the saved session, then restart to pair again."
            )

    async def _handle_messages_upsert(self, session: ProtocolSession, upsert: MessagesUpsert):
        if session is not self._session or self._on_message is None:
            return
        for raw in upsert.messages:
            event = parse_message(raw)
            if event is None:
                continue
            try:
                await self._on_message(event)
            except Exception as e:
                logger.error(f"Error processing message from {event.sender_id}: {e}", exc_info=True)

    # ── Reconnect ──────────────────────────────────────────────

    def _schedule_reconnect(self):
        if self._reconnect_task and not self._reconnect_task.done():
            logger.debug("Reconnect already scheduled")
            return
        logger.info(f"Waiting {self._policy.delay:g}s before reconnecting...")
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self):
        await asyncio.sleep(self._policy.delay)
        self._reconnect_task = None
        if self._closing or self._on_message is None:
            return
        try:
            await self.connect(self._on_message)
        except CredentialStoreError as e:
            logger.critical(f"Cannot reconnect, saved session is unreadable: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
        except Exception as e:
            logger.warning(f"Reconnect attempt failed: {e}")
            self._schedule_reconnect()

    def _set_state(self, state: ConnectionState):
        if state != self._state:
            logger.debug(f"Connection state {self._state.value} -> {state.value}")
            self._state = state
