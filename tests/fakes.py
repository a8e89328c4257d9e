"""Test doubles for the HTTP sessions used by the gateway client and actions."""

import json
from datetime import datetime

from leadflow.core.config import (
    ComplianceSettings,
    GatewaySettings,
    LeadflowConfig,
    WhatsAppConfig,
)
from leadflow.messaging.client import WhatsAppClient
from leadflow.messaging.rate_limit import RateLimiter

NOON = datetime(2024, 6, 3, 12, 0)


class FakeResponse:
    """Just enough of requests.Response for the code under test."""

    def __init__(self, status_code=200, payload=None, reason="", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self.headers = headers or {}
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Records every request; replays queued responses, repeating the last one."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []
        self.auth = None

    def request(self, method, url, **kwargs):
        self.calls.append(dict(kwargs, method=method, url=url))
        if self.error is not None:
            raise self.error
        if not self.responses:
            return FakeResponse(200, {"messages": [{"id": f"wamid.{len(self.calls)}"}]})
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)


def whatsapp_config(**overrides):
    values = dict(
        phone_number_id="1098765",
        business_account_id="2098765",
        access_token="test-token",
        webhook_verify_token="verify-me",
        app_secret="app-secret",
        phone_number="15550001111",
        display_name="Acme Homes",
        enabled=True,
    )
    values.update(overrides)
    return WhatsAppConfig(**values)


def make_client(session=None, rate_limiter=None, sleeps=None, **settings):
    """WhatsAppClient over a fake session; sleeps are recorded instead of slept."""
    recorded = sleeps if sleeps is not None else []
    return WhatsAppClient(
        whatsapp_config(),
        GatewaySettings(**settings),
        session=session or FakeSession(),
        rate_limiter=rate_limiter or RateLimiter(limit=1000),
        sleep=recorded.append,
    )


def make_config(**whatsapp_overrides):
    """Config with WhatsApp enabled and round-the-clock business hours."""
    return LeadflowConfig(
        whatsapp=whatsapp_config(**whatsapp_overrides),
        compliance=ComplianceSettings(business_hours_start=0, business_hours_end=24),
    )
