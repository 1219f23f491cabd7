"""Inbound message model and the allow-list filter.

Every ``messages.upsert`` payload from the protocol session is turned into an
:class:`InboundEvent` and passed through :func:`accept` before it may reach
the message router. Rejections are silent: unauthorized chats (status
broadcasts, busy groups) would otherwise flood the log.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

GROUP_SUFFIX = "@g.us"


def is_group_jid(jid: str) -> bool:
    """Return True if the chat identifier names a group."""
    return jid.endswith(GROUP_SUFFIX)


@dataclass(frozen=True)
class AllowList:
    """Immutable set of chat identifiers the bot may read from and reply to."""

    chats: frozenset[str] = frozenset()

    @classmethod
    def of(cls, chats: Iterable[str]) -> "AllowList":
        return cls(frozenset(c.strip() for c in chats if c and c.strip()))

    def __contains__(self, jid: object) -> bool:
        return jid in self.chats

    def __len__(self) -> int:
        return len(self.chats)

    def __iter__(self):
        return iter(sorted(self.chats))

    def describe(self) -> list[tuple[str, str]]:
        """Return ``(label, jid)`` pairs, labelling groups and contacts."""
        return [("group" if is_group_jid(jid) else "contact", jid) for jid in self]


def parse_allowed_chats(raw: Optional[str]) -> AllowList:
    """Parse a comma-separated ALLOWED_CHATS value.

    Blank entries are dropped, so ``" , "`` yields an empty allow-list.
    """
    if not raw:
        return AllowList()
    return AllowList.of(raw.split(","))


@dataclass(frozen=True)
class InboundEvent:
    """A single inbound message, valid only while it is being routed."""

    sender_id: str
    is_from_self: bool
    text: str
    message_id: Optional[str] = None
    raw: Any = field(default=None, repr=False, compare=False)


def extract_text(message: Optional[dict]) -> str:
    """Extract the text body, preferring ``conversation`` over extended text."""
    if not isinstance(message, dict):
        return ""
    text = message.get("conversation")
    if text:
        return text
    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict):
        return extended.get("text") or ""
    return ""


def parse_message(raw: dict) -> Optional[InboundEvent]:
    """Build an InboundEvent from a protocol message payload.

    Returns None for notifications and status updates that carry no
    ``message`` body or no chat identifier.
    """
    if not isinstance(raw, dict):
        return None
    key = raw.get("key") or {}
    message = raw.get("message")
    sender = key.get("remoteJid")
    if not message or not sender:
        return None
    return InboundEvent(
        sender_id=sender,
        is_from_self=bool(key.get("fromMe", False)),
        text=extract_text(message),
        message_id=key.get("id"),
        raw=raw,
    )


def accept(event: InboundEvent, allow_list: AllowList) -> bool:
    """Decide whether an inbound event may be routed to the handler."""
    if event.is_from_self:
        return False
    if not event.text:
        return False
    if not allow_list:
        # Startup refuses to run without an allow-list.
        raise ValueError("accept() called with an empty allow-list")
    return event.sender_id in allow_list
