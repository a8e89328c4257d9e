"""WhatsApp messaging gateway: client, rate limiting, signatures and compliance."""

from .errors import GatewayError, RateLimitExceeded, GatewayConfigError
from .rate_limit import RateLimiter, retry_with_backoff
from .client import WhatsAppClient, message_id
from .signatures import verify_signature, verify_handshake, compute_signature
from .compliance import (
    ComplianceGate,
    ComplianceDecision,
    ContactConsent,
    format_phone_number,
    is_valid_phone_number,
    anonymize_phone_number,
    validate_message_content,
)
from .templates import QuickMessage, render_quick_template, standard_template_definitions
from .delivery import MessageLog, MessageRecord

__all__ = [
    "GatewayError",
    "RateLimitExceeded",
    "GatewayConfigError",
    "RateLimiter",
    "retry_with_backoff",
    "WhatsAppClient",
    "message_id",
    "verify_signature",
    "verify_handshake",
    "compute_signature",
    "ComplianceGate",
    "ComplianceDecision",
    "ContactConsent",
    "format_phone_number",
    "is_valid_phone_number",
    "anonymize_phone_number",
    "validate_message_content",
    "QuickMessage",
    "render_quick_template",
    "standard_template_definitions",
    "MessageLog",
    "MessageRecord",
]
