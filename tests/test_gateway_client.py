"""Tests for the WhatsApp gateway client, rate limiting and retries."""

import pytest
import requests

from leadflow.core.config import WhatsAppConfig
from leadflow.messaging import GatewayConfigError, GatewayError, RateLimiter, RateLimitExceeded, WhatsAppClient
from leadflow.messaging.client import message_id

from fakes import FakeResponse, FakeSession, make_client


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter:
    """Tests for the fixed-window rate limiter."""

    def test_window_limit_and_reset(self):
        """Test requests beyond the limit are refused until the window passes."""
        clock = FakeClock()
        limiter = RateLimiter(limit=2, window_seconds=60, clock=clock)

        assert limiter.allow("k")
        assert limiter.allow("k")
        assert not limiter.allow("k")
        assert limiter.allow("other")
        assert limiter.current_count("k") == 2

        clock.now += 61
        assert limiter.allow("k")
        assert limiter.current_count("k") == 1


class TestWhatsAppClient:
    """Tests for WhatsAppClient."""

    def test_requires_credentials(self):
        """Test construction fails when credentials are missing."""
        with pytest.raises(GatewayConfigError) as exc_info:
            WhatsAppClient(WhatsAppConfig(phone_number_id="1"))

        assert "access_token" in str(exc_info.value)

    def test_send_text_message(self):
        """Test the message envelope and auth header."""
        session = FakeSession([FakeResponse(200, {"messages": [{"id": "wamid.ABC"}]})])
        client = make_client(session)

        response = client.send_text_message("15551234567", "Hello")

        assert message_id(response) == "wamid.ABC"
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://graph.facebook.com/v18.0/1098765/messages"
        assert call["headers"]["Authorization"] == "Bearer test-token"
        assert call["json"] == {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": "15551234567",
            "type": "text",
            "text": {"body": "Hello", "preview_url": False},
        }

    def test_rate_limited_call_never_reaches_network(self):
        """Test the call after the limit fails locally without an HTTP request."""
        session = FakeSession()
        limiter = RateLimiter(limit=2, window_seconds=60, clock=FakeClock())
        client = make_client(session, rate_limiter=limiter)

        client.send_text_message("15551234567", "one")
        client.send_text_message("15551234567", "two")
        with pytest.raises(RateLimitExceeded):
            client.send_text_message("15551234567", "three")

        assert len(session.calls) == 2

    def test_429_retried_max_retries_times(self):
        """Test a throttled request is retried exactly max_retries times with backoff."""
        session = FakeSession([FakeResponse(429, {"error": {"message": "Too many", "code": 130429}})])
        sleeps = []
        client = make_client(session, sleeps=sleeps, max_retries=3, base_delay_seconds=1.0)

        with pytest.raises(GatewayError) as exc_info:
            client.send_text_message("15551234567", "Hello")

        assert exc_info.value.status_code == 429
        assert exc_info.value.error_code == 130429
        assert len(session.calls) == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_server_error_then_success(self):
        """Test a 5xx is retried and a later success is returned."""
        session = FakeSession([
            FakeResponse(503, reason="Service Unavailable"),
            FakeResponse(200, {"messages": [{"id": "wamid.OK"}]}),
        ])
        sleeps = []
        client = make_client(session, sleeps=sleeps)

        response = client.send_text_message("15551234567", "Hello")

        assert message_id(response) == "wamid.OK"
        assert len(session.calls) == 2
        assert sleeps == [1.0]

    def test_client_error_not_retried(self):
        """Test a 400 surfaces immediately with the gateway's message."""
        session = FakeSession([FakeResponse(400, {"error": {"message": "Invalid parameter", "code": 100}})])
        sleeps = []
        client = make_client(session, sleeps=sleeps)

        with pytest.raises(GatewayError) as exc_info:
            client.send_text_message("15551234567", "Hello")

        assert "Invalid parameter" in str(exc_info.value)
        assert exc_info.value.retryable is False
        assert len(session.calls) == 1
        assert sleeps == []

    def test_transport_error(self):
        """Test connection failures become non-retryable gateway errors."""
        client = make_client(FakeSession(error=requests.ConnectionError("down")))

        with pytest.raises(GatewayError) as exc_info:
            client.get_phone_number_info()

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable is False

    def test_template_and_buttons(self):
        """Test template and interactive payloads."""
        session = FakeSession()
        client = make_client(session)

        client.send_template_message("15551234567", "lead_followup", components=[{"type": "body"}])
        client.send_buttons("15551234567", "Pick one", [{"id": "yes", "title": "Yes"}], footer="Thanks")

        template = session.calls[0]["json"]["template"]
        assert template == {"name": "lead_followup", "language": {"code": "en_US"}, "components": [{"type": "body"}]}
        interactive = session.calls[1]["json"]["interactive"]
        assert interactive["action"]["buttons"] == [{"type": "reply", "reply": {"id": "yes", "title": "Yes"}}]
        assert interactive["footer"] == {"text": "Thanks"}
        assert "header" not in interactive

    def test_verify_webhook(self):
        """Test the subscription handshake against the configured token."""
        client = make_client()

        assert client.verify_webhook("subscribe", "verify-me", "12345") == "12345"
        assert client.verify_webhook("subscribe", "wrong", "12345") is None
        assert client.verify_webhook("unsubscribe", "verify-me", "12345") is None
