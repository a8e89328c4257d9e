"""Tests for messaging compliance checks."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from leadflow.core.config import ComplianceSettings
from leadflow.messaging.compliance import (
    ComplianceGate,
    anonymize_phone_number,
    format_phone_number,
    is_valid_phone_number,
    validate_message_content,
)


class MovableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return MovableClock(datetime(2024, 6, 3, 12, 0))


@pytest.fixture
def gate(temp_data_dir, clock):
    """Compliance gate persisting consent to a temp file."""
    return ComplianceGate(ComplianceSettings(), temp_data_dir / "consent.json", clock=clock)


class TestPhoneHelpers:
    """Tests for phone formatting helpers."""

    def test_format_phone_number(self):
        """Test US numbers gain a country code and punctuation is stripped."""
        assert format_phone_number("(555) 123-4567") == "15551234567"
        assert format_phone_number("+44 20 7946 0958") == "442079460958"

    def test_is_valid_phone_number(self):
        """Test 10 to 15 digits are valid."""
        assert is_valid_phone_number("555-123-4567")
        assert not is_valid_phone_number("12345")
        assert not is_valid_phone_number("1234567890123456")

    def test_anonymize(self):
        """Test only the last four digits are shown."""
        assert anonymize_phone_number("555-123-4567") == "***4567"


class TestMessageContent:
    """Tests for outbound content validation."""

    def test_content_rules(self):
        """Test empty, oversized and prohibited content is refused."""
        assert validate_message_content("Hi Jo, still interested in the house?") == (True, None)
        assert validate_message_content("   ")[0] is False
        assert validate_message_content("x" * 4097)[0] is False
        assert validate_message_content("Click here for a deal")[0] is False


class TestComplianceGate:
    """Tests for ComplianceGate."""

    def test_no_opt_in_requires_opt_in(self, gate):
        """Test a number without consent cannot be contacted yet."""
        decision = gate.can_contact("5551234567")

        assert decision.allowed is False
        assert decision.requires_opt_in is True
        assert decision.reason == "No opt-in found"

    def test_opt_in_then_opt_out(self, gate):
        """Test the latest consent change wins."""
        gate.record_opt_in("5551234567", method="whatsapp")
        assert gate.can_contact("+1 555 123 4567").allowed is True

        gate.record_opt_out("15551234567")
        decision = gate.can_contact("5551234567")
        assert decision.allowed is False
        assert decision.requires_opt_in is False
        assert decision.reason == "User has opted out"

    def test_business_hours(self, gate, clock):
        """Test contact is refused outside business hours, with the end hour exclusive."""
        gate.record_opt_in("5551234567")

        clock.now = datetime(2024, 6, 3, 21, 0)
        assert gate.can_contact("5551234567").reason == "Outside business hours"

        clock.now = datetime(2024, 6, 3, 9, 0)
        assert gate.can_contact("5551234567").allowed is True

        clock.now = datetime(2024, 6, 3, 8, 59)
        assert gate.can_contact("5551234567").allowed is False

    def test_service_window(self, gate, clock):
        """Test the service window opens on inbound messages and closes after 24 hours."""
        assert gate.within_service_window("5551234567") is False

        gate.record_inbound("5551234567")
        clock.now += timedelta(hours=23)
        assert gate.within_service_window("5551234567") is True

        clock.now += timedelta(hours=2)
        assert gate.within_service_window("5551234567") is False

    def test_consent_persisted(self, gate, temp_data_dir, clock):
        """Test consent survives a reload from disk."""
        gate.record_opt_in("5551234567", method="web_form")

        reloaded = ComplianceGate(ComplianceSettings(), temp_data_dir / "consent.json", clock=clock)

        consent = reloaded.get_consent("5551234567")
        assert consent.opted_in
        assert consent.method == "web_form"
        assert consent.opted_in_at == datetime(2024, 6, 3, 12, 0)
