"""Tests for inbound parsing and the allow-list filter."""

import pytest

from finbot.communication.inbound import (
    AllowList,
    InboundEvent,
    accept,
    extract_text,
    is_group_jid,
    parse_allowed_chats,
    parse_message,
)

from conftest import make_message


ALLOWED = AllowList.of(["1234@g.us"])


def _event(sender="1234@g.us", text="hello", from_self=False):
    return InboundEvent(sender_id=sender, is_from_self=from_self, text=text)


class TestAccept:
    def test_allowed_sender(self):
        assert accept(_event(), ALLOWED) is True

    def test_unlisted_sender(self):
        assert accept(_event(sender="5555@g.us"), ALLOWED) is False

    @pytest.mark.parametrize("sender", ["1234@g.us", "5555@g.us"])
    def test_own_messages_rejected(self, sender):
        assert accept(_event(sender=sender, from_self=True), ALLOWED) is False

    def test_empty_text_rejected(self):
        assert accept(_event(text=""), ALLOWED) is False

    def test_empty_allow_list_is_an_error(self):
        with pytest.raises(ValueError):
            accept(_event(), AllowList())


class TestParseMessage:
    def test_conversation(self):
        event = parse_message(make_message("1234@g.us", "gastei 50 no mercado", msg_id="ABC"))
        assert event.sender_id == "1234@g.us"
        assert event.text == "gastei 50 no mercado"
        assert event.message_id == "ABC"
        assert event.is_from_self is False

    def test_extended_text(self):
        event = parse_message(make_message("1234@g.us", "com link", extended=True))
        assert event.text == "com link"

    def test_conversation_preferred(self):
        assert extract_text({"conversation": "a", "extendedTextMessage": {"text": "b"}}) == "a"

    def test_non_text_message(self):
        event = parse_message({"key": {"remoteJid": "1234@g.us"}, "message": {"imageMessage": {}}})
        assert event is not None
        assert event.text == ""

    def test_notification_without_body(self):
        assert parse_message({"key": {"remoteJid": "1234@g.us", "fromMe": False}}) is None

    def test_missing_jid(self):
        assert parse_message({"key": {}, "message": {"conversation": "hi"}}) is None

    def test_from_me(self):
        event = parse_message(make_message("1234@g.us", "echo", from_me=True))
        assert event.is_from_self is True


def test_parse_allowed_chats():
    assert len(parse_allowed_chats(None)) == 0
    assert len(parse_allowed_chats("")) == 0
    assert set(parse_allowed_chats("a@g.us,b@s.whatsapp.net")) == {"a@g.us", "b@s.whatsapp.net"}


def test_is_group_jid():
    assert is_group_jid("1234@g.us")
    assert not is_group_jid("5511999999999@s.whatsapp.net")
