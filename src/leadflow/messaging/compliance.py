"""Consent, business-hour and service-window checks for outbound messaging."""

import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from ..core.config import ComplianceSettings

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096

PROHIBITED_PATTERNS = [
    re.compile(r"\b(buy now|click here|limited time)\b", re.IGNORECASE),
    re.compile(r"\b(make money fast|get rich)\b", re.IGNORECASE),
    re.compile(r"\b(pharmacy|viagra|cialis)\b", re.IGNORECASE),
    re.compile(r"\b(casino|gambling|bet)\b", re.IGNORECASE),
]

OPT_IN_REQUEST_MESSAGE = (
    "Hello! You've contacted us via WhatsApp. To continue this conversation and receive "
    "property-related messages, please reply \"YES\" to opt-in. You can opt-out at any time "
    "by replying \"STOP\"."
)


def format_phone_number(phone_number: str) -> str:
    """Digits only; 10-digit numbers are assumed to be US and get a leading 1."""
    cleaned = re.sub(r"\D", "", phone_number or "")
    if len(cleaned) == 10:
        return f"1{cleaned}"
    return cleaned


def is_valid_phone_number(phone_number: str) -> bool:
    cleaned = re.sub(r"\D", "", phone_number or "")
    return 10 <= len(cleaned) <= 15


def anonymize_phone_number(phone_number: str) -> str:
    """Show only the last four digits."""
    formatted = format_phone_number(phone_number)
    if len(formatted) < 4:
        return formatted
    return f"***{formatted[-4:]}"


def validate_message_content(content: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Check free-form message text; returns (valid, reason)."""
    if not content or not content.strip():
        return False, "Message content cannot be empty"

    if len(content) > MAX_MESSAGE_LENGTH:
        return False, f"Message content exceeds {MAX_MESSAGE_LENGTH} character limit"

    for pattern in PROHIBITED_PATTERNS:
        if pattern.search(content):
            return False, "Message contains prohibited content"

    return True, None


@dataclass
class ContactConsent:
    """Consent state for one phone number; the latest opt-in/out wins."""
    phone: str
    status: Optional[str] = None  # "opted_in" | "opted_out"
    method: Optional[str] = None
    updated_at: Optional[datetime] = None
    opted_in_at: Optional[datetime] = None
    opted_out_at: Optional[datetime] = None
    last_inbound_at: Optional[datetime] = None

    @property
    def opted_in(self) -> bool:
        return self.status == "opted_in"

    @property
    def opted_out(self) -> bool:
        return self.status == "opted_out"

    def to_dict(self) -> Dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "phone": self.phone,
            "status": self.status,
            "method": self.method,
            "updated_at": _iso(self.updated_at),
            "opted_in_at": _iso(self.opted_in_at),
            "opted_out_at": _iso(self.opted_out_at),
            "last_inbound_at": _iso(self.last_inbound_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ContactConsent":
        def _dt(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            phone=data["phone"],
            status=data.get("status"),
            method=data.get("method"),
            updated_at=_dt("updated_at"),
            opted_in_at=_dt("opted_in_at"),
            opted_out_at=_dt("opted_out_at"),
            last_inbound_at=_dt("last_inbound_at"),
        )


@dataclass
class ComplianceDecision:
    allowed: bool
    reason: str
    requires_opt_in: bool

    def to_dict(self) -> Dict:
        return {"allowed": self.allowed, "reason": self.reason, "requires_opt_in": self.requires_opt_in}


class ComplianceGate:
    """Decides whether a phone number may be contacted right now."""

    def __init__(
        self,
        settings: Optional[ComplianceSettings] = None,
        data_path: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings or ComplianceSettings()
        if data_path is None and self.settings.consent_path:
            data_path = Path(self.settings.consent_path)
        self.data_path = Path(data_path) if data_path else None
        self.clock = clock or datetime.now
        self.contacts: Dict[str, ContactConsent] = {}
        self._lock = threading.Lock()
        self._load_data()

    def _load_data(self):
        """Load consent records from disk."""
        if self.data_path and self.data_path.exists():
            try:
                with open(self.data_path, 'r') as f:
                    data = json.load(f)
                for item in data.get("contacts", []):
                    consent = ContactConsent.from_dict(item)
                    self.contacts[consent.phone] = consent
            except Exception as e:
                logger.error(f"Error loading consent records: {e}")

    def _save_data(self):
        """Save consent records to disk."""
        if not self.data_path:
            return
        self.data_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "contacts": [c.to_dict() for c in self.contacts.values()],
            "updated_at": datetime.now().isoformat(),
        }
        with open(self.data_path, 'w') as f:
            json.dump(data, f, indent=2)

    def _contact(self, phone_number: str) -> ContactConsent:
        key = format_phone_number(phone_number)
        consent = self.contacts.get(key)
        if consent is None:
            consent = ContactConsent(phone=key)
            self.contacts[key] = consent
        return consent

    def get_consent(self, phone_number: str) -> Optional[ContactConsent]:
        with self._lock:
            return self.contacts.get(format_phone_number(phone_number))

    def record_opt_in(self, phone_number: str, method: str = "web_form") -> ContactConsent:
        now = self.clock()
        with self._lock:
            consent = self._contact(phone_number)
            consent.status = "opted_in"
            consent.method = method
            consent.updated_at = now
            consent.opted_in_at = now
            self._save_data()
        logger.info(f"WhatsApp opt-in recorded for {anonymize_phone_number(phone_number)} via {method}")
        return consent

    def record_opt_out(self, phone_number: str, method: str = "sms") -> ContactConsent:
        now = self.clock()
        with self._lock:
            consent = self._contact(phone_number)
            consent.status = "opted_out"
            consent.method = method
            consent.updated_at = now
            consent.opted_out_at = now
            self._save_data()
        logger.info(f"WhatsApp opt-out recorded for {anonymize_phone_number(phone_number)} via {method}")
        return consent

    def record_inbound(self, phone_number: str, at: Optional[datetime] = None):
        """Stamp the last customer-initiated message, opening the service window."""
        with self._lock:
            consent = self._contact(phone_number)
            consent.last_inbound_at = at or self.clock()
            self._save_data()

    def has_opt_in(self, phone_number: str) -> bool:
        consent = self.get_consent(phone_number)
        return consent is not None and consent.opted_in

    def is_opted_out(self, phone_number: str) -> bool:
        consent = self.get_consent(phone_number)
        return consent is not None and consent.opted_out

    def within_business_hours(self, now: Optional[datetime] = None) -> bool:
        current = (now or self.clock()).time()
        start = time(self.settings.business_hours_start, 0)
        if self.settings.business_hours_end >= 24:
            return current >= start
        return start <= current < time(self.settings.business_hours_end, 0)

    def within_service_window(self, phone_number: str) -> bool:
        """True when the customer messaged us within the service window."""
        consent = self.get_consent(phone_number)
        if consent is None or consent.last_inbound_at is None:
            return False
        window = timedelta(hours=self.settings.service_window_hours)
        return self.clock() - consent.last_inbound_at <= window

    def can_contact(self, phone_number: str) -> ComplianceDecision:
        if self.is_opted_out(phone_number):
            return ComplianceDecision(False, "User has opted out", False)

        if not self.within_business_hours():
            return ComplianceDecision(False, "Outside business hours", False)

        has_opt_in = self.has_opt_in(phone_number)
        return ComplianceDecision(
            allowed=has_opt_in,
            reason="Valid opt-in exists" if has_opt_in else "No opt-in found",
            requires_opt_in=not has_opt_in,
        )
