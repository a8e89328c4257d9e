"""Inbound webhook surface."""

from .webhook_server import WhatsAppWebhookProcessor, create_webhook_blueprint, validate_message

__all__ = ["WhatsAppWebhookProcessor", "create_webhook_blueprint", "validate_message"]
