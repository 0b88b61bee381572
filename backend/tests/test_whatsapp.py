"""
Tests unitaires — WhatsAppService (Meta Cloud API).
"""

from unittest.mock import MagicMock

import requests

from agrilo.services.whatsapp import MAX_MESSAGE_LENGTH, WhatsAppService, format_phone, truncate_message


class TestWhatsAppService:

    def test_missing_credentials_returns_false_without_call(self):
        session = MagicMock()
        service = WhatsAppService(access_token="", phone_number_id="", session=session)
        assert service.send_alert("+91 98765-43210", "Irrigate now") is False
        session.request.assert_not_called()

    def test_send_alert_posts_text_message(self):
        session = MagicMock()
        session.request.return_value.json.return_value = {"messages": [{"id": "wamid.1"}]}
        service = WhatsAppService(access_token="tok", phone_number_id="123", session=session)

        assert service.send_alert("+91 98765-43210", "Irrigate now") is True
        method, url = session.request.call_args[0]
        body = session.request.call_args[1]["json"]
        assert method == "POST"
        assert url.endswith("/123/messages")
        assert body["to"] == "919876543210"
        assert body["text"]["body"] == "Irrigate now"

    def test_upstream_failure_returns_false(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("down")
        service = WhatsAppService(access_token="tok", phone_number_id="123", session=session)
        assert service.send_template("+911234", "weekly_plan") is False

    def test_empty_message_is_skipped(self):
        session = MagicMock()
        service = WhatsAppService(access_token="tok", phone_number_id="123", session=session)
        assert service.send_alert("+911234", "   ") is False
        session.request.assert_not_called()


def test_format_phone():
    assert format_phone("+1 (555) 010-9999") == "15550109999"


def test_truncate_message():
    long_text = "x" * (MAX_MESSAGE_LENGTH + 100)
    truncated = truncate_message(long_text)
    assert len(truncated) <= MAX_MESSAGE_LENGTH
    assert truncated.endswith("[Message truncated]")
