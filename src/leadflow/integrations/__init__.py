"""Outbound email and SMS transports."""

from .email import EmailIntegration, EmailDeliveryError
from .twilio_sms import TwilioSMSIntegration, SMSDeliveryError

__all__ = [
    "EmailIntegration",
    "EmailDeliveryError",
    "TwilioSMSIntegration",
    "SMSDeliveryError",
]
