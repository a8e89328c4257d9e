"""Channel providers used by message-sending workflow actions."""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.config import LeadflowConfig
from ..integrations.email import EmailIntegration, EmailDeliveryError
from ..integrations.twilio_sms import TwilioSMSIntegration, SMSDeliveryError
from ..messaging.client import WhatsAppClient, message_id
from ..messaging.compliance import (
    ComplianceGate,
    OPT_IN_REQUEST_MESSAGE,
    anonymize_phone_number,
    format_phone_number,
    is_valid_phone_number,
    validate_message_content,
)
from ..messaging.delivery import MessageLog
from ..messaging.errors import GatewayError
from ..messaging.templates import QuickMessage, render_quick_template
from ..storage.leads import LeadStore
from ..storage.models import Lead
from .errors import EngineError, ErrorCode
from .models import EmailActionConfig, MessageActionConfig

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class SendResult:
    """Outcome of a provider send."""
    success: bool
    message_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
        }


def lead_variables(lead: Lead) -> Dict[str, Any]:
    """Values available to ``{{placeholder}}`` substitution."""
    parts = (lead.name or "").split()
    variables = dict(lead.fields)
    variables.update({
        "id": lead.id,
        "name": lead.name or "",
        "full_name": lead.name or "",
        "first_name": parts[0] if parts else "",
        "last_name": " ".join(parts[1:]),
        "email": lead.email or "",
        "phone": lead.phone or "",
        "source": lead.source,
        "lead_source": lead.source,
        "status": lead.status,
        "score": lead.score,
    })
    return variables


def substitute_variables(text: Optional[str], lead: Lead) -> str:
    """Replace ``{{name}}``-style placeholders; unknown placeholders are left as-is."""
    if not text:
        return text or ""

    variables = lead_variables(lead)

    def _replace(match):
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, text)


class Provider(ABC):
    """A channel-specific sender invoked by a workflow action."""

    channel: str = ""
    error_code: ErrorCode = ErrorCode.EMAIL_SEND_ERROR
    contact_field: str = "email"

    def __init__(self, lead_store: LeadStore):
        self.lead_store = lead_store

    @abstractmethod
    def send(self, config: Any, lead_id: str) -> SendResult:
        """Send to the lead; raises a recoverable EngineError on failure."""
        pass

    def _error(self, message: str, lead_id: str, **context) -> EngineError:
        context["lead_id"] = lead_id
        context["channel"] = self.channel
        return EngineError(message, self.error_code, context, recoverable=True)

    def _load_lead(self, lead_id: str) -> Lead:
        lead = self.lead_store.get_lead(lead_id)
        if lead is None:
            raise self._error(f"{self.channel} send failed: lead not found", lead_id)
        if not getattr(lead, self.contact_field):
            raise self._error(
                f"{self.channel} send failed: lead has no {self.contact_field.replace('_', ' ')}", lead_id
            )
        return lead


class EmailProvider(Provider):
    """Email through SMTP/SendGrid, or log-only when no transport is configured."""

    channel = "email"
    error_code = ErrorCode.EMAIL_SEND_ERROR
    contact_field = "email"

    def __init__(self, lead_store: LeadStore, transport: Optional[EmailIntegration] = None):
        super().__init__(lead_store)
        self.transport = transport

    def send(self, config: EmailActionConfig, lead_id: str) -> SendResult:
        lead = self._load_lead(lead_id)
        subject = substitute_variables(config.subject, lead)
        body = substitute_variables(config.body, lead)

        if self.transport is None:
            logger.info(f"Email (log only) to lead {lead.id}: {subject}")
            return SendResult(True, f"email_{uuid.uuid4().hex[:12]}", detail={"logged_only": True})

        try:
            sent_id = self.transport.send_email(lead.email, subject, body, from_name=config.from_name)
        except EmailDeliveryError as e:
            raise self._error(f"Email send failed: {e}", lead_id)

        return SendResult(True, sent_id, detail={"subject": subject})


class SMSProvider(Provider):
    """SMS through Twilio, or log-only when Twilio is not configured."""

    channel = "sms"
    error_code = ErrorCode.SMS_SEND_ERROR
    contact_field = "phone"

    def __init__(self, lead_store: LeadStore, transport: Optional[TwilioSMSIntegration] = None):
        super().__init__(lead_store)
        self.transport = transport

    def send(self, config: MessageActionConfig, lead_id: str) -> SendResult:
        lead = self._load_lead(lead_id)
        body = substitute_variables(config.message, lead)

        if self.transport is None:
            logger.info(f"SMS (log only) to {anonymize_phone_number(lead.phone)}: {body[:60]}")
            return SendResult(True, f"sms_{uuid.uuid4().hex[:12]}", detail={"logged_only": True})

        try:
            result = self.transport.send_sms(lead.phone, body)
        except SMSDeliveryError as e:
            raise self._error(f"SMS send failed: {e}", lead_id)

        return SendResult(True, result.get("sid"))


class WhatsAppProvider(Provider):
    """WhatsApp sends gated by the compliance window."""

    channel = "whatsapp"
    error_code = ErrorCode.WHATSAPP_SEND_ERROR
    contact_field = "phone"

    def __init__(
        self,
        lead_store: LeadStore,
        client: WhatsAppClient,
        compliance: ComplianceGate,
        message_log: Optional[MessageLog] = None,
        sender_name: str = "Leadflow"
    ):
        super().__init__(lead_store)
        self.client = client
        self.compliance = compliance
        self.message_log = message_log or MessageLog()
        self.sender_name = sender_name

    def send(self, config: MessageActionConfig, lead_id: str) -> SendResult:
        lead = self._load_lead(lead_id)
        phone = format_phone_number(lead.phone)
        if not is_valid_phone_number(phone):
            raise self._error("WhatsApp send failed: invalid phone number format", lead_id)

        decision = self.compliance.can_contact(phone)
        if not decision.allowed:
            if decision.requires_opt_in:
                return self._request_opt_in(phone, lead, decision.reason)
            raise self._error(f"WhatsApp send blocked: {decision.reason}", lead_id, reason=decision.reason)

        message = self._build_message(config, lead)
        if message.kind == "text":
            valid, reason = validate_message_content(message.text)
            if not valid:
                raise self._error(f"WhatsApp send failed: {reason}", lead_id)
            if self.compliance.settings.enforce_service_window and not self.compliance.within_service_window(phone):
                raise self._error(
                    "WhatsApp send failed: outside the customer service window, use a template", lead_id
                )

        try:
            response = self._deliver(phone, message)
        except GatewayError as e:
            raise self._error(f"WhatsApp send failed: {e}", lead_id, status_code=e.status_code)

        sent_id = message_id(response)
        self.message_log.record_outbound(phone, message.summary, lead.id, sent_id)
        logger.info(f"WhatsApp {message.kind} sent to {anonymize_phone_number(phone)}: {sent_id}")
        return SendResult(True, sent_id, detail={"kind": message.kind})

    def _build_message(self, config: MessageActionConfig, lead: Lead) -> QuickMessage:
        if not config.template:
            return QuickMessage(kind="text", text=substitute_variables(config.message, lead))

        values = lead_variables(lead)
        values["lead_name"] = lead.name
        values.update(config.template_params)
        quick = render_quick_template(config.template, values, self.sender_name)
        if quick is not None:
            return quick

        # Not a quick template: send as an approved template by name
        return QuickMessage(
            kind="template",
            template=config.template,
            components=list(config.template_params.get("components", [])),
        )

    def _deliver(self, phone: str, message: QuickMessage) -> Dict[str, Any]:
        if message.kind == "template":
            return self.client.send_template_message(phone, message.template, "en_US", message.components)
        if message.kind == "interactive":
            return self.client.send_interactive_message(phone, message.interactive)
        return self.client.send_text_message(phone, message.text)

    def _request_opt_in(self, phone: str, lead: Lead, reason: str) -> SendResult:
        try:
            response = self.client.send_text_message(phone, OPT_IN_REQUEST_MESSAGE)
        except GatewayError as e:
            raise self._error(f"WhatsApp opt-in request failed: {e}", lead.id, reason=reason)

        sent_id = message_id(response)
        self.message_log.record_outbound(phone, OPT_IN_REQUEST_MESSAGE, lead.id, sent_id)
        logger.info(f"Sent opt-in request to {anonymize_phone_number(phone)} instead of content")
        return SendResult(False, sent_id, detail={"opt_in_requested": True, "reason": reason})


class ProviderRegistry:
    """Static channel -> provider map built at startup."""

    def __init__(self, providers: Optional[List[Provider]] = None):
        self.providers: Dict[str, Provider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: Provider):
        self.providers[provider.channel] = provider

    def get(self, channel: str) -> Optional[Provider]:
        return self.providers.get(channel)

    def channels(self) -> List[str]:
        return sorted(self.providers)

    @classmethod
    def from_config(
        cls,
        config: LeadflowConfig,
        lead_store: LeadStore,
        whatsapp_client: Optional[WhatsAppClient] = None,
        compliance: Optional[ComplianceGate] = None,
        message_log: Optional[MessageLog] = None
    ) -> "ProviderRegistry":
        """Email and SMS are always registered; WhatsApp only when enabled and fully configured."""
        email_transport = EmailIntegration(config.email) if (
            config.email.enabled and (config.email.smtp or config.email.sendgrid)
        ) else None
        sms_transport = TwilioSMSIntegration(config.twilio) if (
            config.twilio and config.twilio.enabled
        ) else None

        registry = cls([
            EmailProvider(lead_store, email_transport),
            SMSProvider(lead_store, sms_transport),
        ])

        wa = config.whatsapp
        if wa.enabled and wa.is_complete:
            registry.register(WhatsAppProvider(
                lead_store,
                whatsapp_client or WhatsAppClient(wa, config.gateway),
                compliance or ComplianceGate(config.compliance),
                message_log,
                sender_name=wa.display_name,
            ))
        else:
            logger.info("WhatsApp provider not registered (disabled or incomplete credentials)")

        return registry
