"""Routes accepted inbound messages to the handler and sends the reply."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ..errors import NotConnectedError
from .inbound import AllowList, InboundEvent, accept

logger = logging.getLogger("finbot.router")

MessageHandler = Callable[[str], Awaitable[str]]

# Dedup: messages redelivered after a reconnect
_DEDUP_TTL = 600        # 10 minutes
_DEDUP_MAX = 5000       # max cache entries before prune


class MessageRouter:
    """Filter → handler → reply, one independent unit of work per message."""

    def __init__(
        self,
        connection,
        handler: MessageHandler,
        allow_list: AllowList,
        *,
        handler_timeout: Optional[float] = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._connection = connection
        self._handler = handler
        self._allow_list = allow_list
        self._timeout = handler_timeout
        self._clock = clock
        self._seen: dict[str, float] = {}

    async def __call__(self, event: InboundEvent):
        await self.dispatch(event)

    async def dispatch(self, event: InboundEvent) -> bool:
        """Process one inbound event. Returns True if a reply was sent."""
        if not accept(event, self._allow_list):
            return False
        if self._is_duplicate(event):
            logger.debug(f"Duplicate message {event.message_id} from {event.sender_id}, skipping")
            return False

        logger.info(f"Authorized message from {event.sender_id}: {event.text}")

        try:
            response = await asyncio.wait_for(self._handler(event.text), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"Handler timed out after {self._timeout:g}s for message from {event.sender_id}")
            return False
        except Exception as e:
            logger.error(f"Error processing message from {event.sender_id}: {e}", exc_info=True)
            return False

        if not response:
            logger.warning(f"Handler returned an empty reply for {event.sender_id}, nothing sent")
            return False

        try:
            sent = await self._connection.send(event.sender_id, response)
        except NotConnectedError as e:
            logger.warning(f"Reply to {event.sender_id} dropped: {e}")
            return False

        if sent:
            logger.info(f"Reply sent: {response[:50]}...")
        return sent

    # ── Dedup ──────────────────────────────────────────────────

    def _is_duplicate(self, event: InboundEvent) -> bool:
        if not event.message_id:
            return False
        now = self._clock()
        key = f"{event.sender_id}:{event.message_id}"
        seen_at = self._seen.get(key)
        if seen_at is not None and (now - seen_at) < _DEDUP_TTL:
            return True
        self._seen[key] = now
        if len(self._seen) > _DEDUP_MAX:
            self._prune(now)
        return False

    def _prune(self, now: float):
        self._seen = {k: v for k, v in self._seen.items() if (now - v) < _DEDUP_TTL}
        if len(self._seen) > _DEDUP_MAX:
            newest = sorted(self._seen.items(), key=lambda kv: kv[1])[-_DEDUP_MAX:]
            self._seen = dict(newest)
