"""WhatsApp webhook receiver: handshake, signed event intake and reply handling."""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import Blueprint, Response, jsonify, request

from ..core.services import Services
from ..messaging.client import build_button_interactive, message_id
from ..messaging.compliance import (
    OPT_IN_REQUEST_MESSAGE,
    anonymize_phone_number,
    format_phone_number,
    is_valid_phone_number,
)
from ..messaging.errors import GatewayError
from ..messaging.signatures import verify_handshake, verify_signature
from ..messaging.templates import render_quick_template
from ..storage.models import Lead, LeadStatus
from ..workflows.models import TriggerType

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"

_SENDER_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
_NAME_PATTERN = re.compile(r"my name is\s+([a-zA-Z\s]+)", re.IGNORECASE)

OPT_IN_CONFIRMATION = (
    "Thank you for opting in! \U0001F389 You can now receive property-related messages. "
    "Reply STOP at any time to opt out. How can we help you today?"
)
OPT_OUT_CONFIRMATION = (
    "You've been unsubscribed. You will no longer receive messages from us. "
    "If you change your mind, reply YES to re-subscribe."
)
BUTTON_ACKNOWLEDGMENT = "Thanks for your response! We'll get back to you shortly."
GET_OFFER_REPLY = (
    "Great! Let's get you a cash offer for your property. Please provide the property "
    "address so we can schedule a quick evaluation. Reply with the full address or type "
    "\"HELP\" for assistance."
)
QUESTIONS_REPLY = (
    "We're here to help! Here are some common questions we can answer:\n\n"
    "• How does the cash offer process work?\n"
    "• What types of properties do you buy?\n"
    "• How quickly can you close?\n"
    "• Do you buy properties in any condition?\n\n"
    "What would you like to know? Just ask!"
)
PROPERTY_TYPE_BUTTONS = [
    {"id": "single_family", "title": "Single Family"},
    {"id": "condo", "title": "Condo"},
    {"id": "multi_family", "title": "Multi-Family"},
]

OPT_IN_KEYWORDS = ("yes", "start", "subscribe")
OPT_OUT_KEYWORDS = ("stop", "unsubscribe", "cancel")


def validate_message(message: Dict[str, Any]) -> List[str]:
    """Structural checks on an incoming message; returns the list of problems."""
    errors = []

    if not message.get("id"):
        errors.append("Message ID is required")

    sender = message.get("from")
    if not sender:
        errors.append("Sender phone number is required")
    elif not _SENDER_PATTERN.match(str(sender)):
        errors.append("Invalid phone number format")

    timestamp = message.get("timestamp")
    if not timestamp:
        errors.append("Message timestamp is required")
    elif not str(timestamp).strip().isdigit():
        errors.append("Invalid timestamp format")

    text = message.get("text")
    if text is not None and not (text or {}).get("body"):
        errors.append("Text message body is required")

    interactive = message.get("interactive")
    if interactive is not None:
        if not interactive.get("button_reply") and not interactive.get("list_reply"):
            errors.append("Interactive message must have button_reply or list_reply")

    return errors


def _epoch(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value))
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now()


def _item_id(item: Any) -> Optional[str]:
    return item.get("id") if isinstance(item, dict) else None


def extract_name(text: str) -> str:
    match = _NAME_PATTERN.search(text or "")
    return match.group(1).strip() if match else "Unknown"


class WhatsAppWebhookProcessor:
    """Applies incoming messages and status updates to leads, consent and workflows."""

    def __init__(self, services: Services):
        self.services = services
        self.client = services.whatsapp_client
        self.compliance = services.compliance
        self.message_log = services.message_log
        self.lead_store = services.lead_store
        self.engine = services.engine

    # Payload

    def process_payload(self, payload: Dict[str, Any]) -> Dict[str, int]:
        """Walk entry[].changes[]; only 'messages' changes are handled."""
        counts = {"messages": 0, "statuses": 0}

        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                if change.get("field") != "messages":
                    continue

                value = change.get("value") or {}
                phone_number_id = (value.get("metadata") or {}).get("phone_number_id")

                for message in value.get("messages") or []:
                    try:
                        self.process_message(message, phone_number_id)
                    except Exception:
                        logger.exception(f"Error processing WhatsApp message {_item_id(message)}")
                    counts["messages"] += 1

                for status in value.get("statuses") or []:
                    try:
                        self.process_status(status)
                    except Exception:
                        logger.exception(f"Error processing WhatsApp status {_item_id(status)}")
                    counts["statuses"] += 1

        return counts

    # Incoming messages

    def process_message(self, message: Dict[str, Any], phone_number_id: Optional[str] = None):
        errors = validate_message(message)
        if errors:
            logger.error(f"Message validation failed for {message.get('id')}: {errors}")
            return

        if message.get("interactive"):
            self.handle_interactive_reply(message)
            return

        sender = str(message["from"])
        phone = format_phone_number(sender)
        text = ((message.get("text") or {}).get("body") or "")
        masked = anonymize_phone_number(phone)
        logger.info(f"WhatsApp message from {masked}")

        if not is_valid_phone_number(phone):
            logger.error(f"Invalid phone number format from {masked}")
            return

        # Customer-initiated message opens the service window
        self.compliance.record_inbound(phone, _epoch(message.get("timestamp")))

        keyword = text.strip().lower()
        if keyword in OPT_OUT_KEYWORDS:
            self.compliance.record_opt_out(phone, method="whatsapp")
            self._reply(phone, OPT_OUT_CONFIRMATION)
            return
        if keyword in OPT_IN_KEYWORDS:
            self.compliance.record_opt_in(phone, method="whatsapp")
            self._reply(phone, OPT_IN_CONFIRMATION)
            return

        decision = self.compliance.can_contact(phone)
        if not decision.allowed:
            logger.warning(f"Compliance check blocked {masked}: {decision.reason}")
            if decision.requires_opt_in:
                self._reply(phone, OPT_IN_REQUEST_MESSAGE)
            return

        lead = self.lead_store.find_by_phone(phone)
        if lead is None:
            lead = self._create_lead(phone, text, message["id"])
            self.engine.trigger_event(TriggerType.LEAD_CREATED, lead.id, {"phone": phone}, source="whatsapp")
        else:
            self._update_lead(lead, phone, text, message["id"])

        self.engine.trigger_event(
            TriggerType.INBOUND_MESSAGE,
            lead.id,
            {"message": text, "message_id": message["id"], "phone": phone},
            source="whatsapp",
        )

    def _create_lead(self, phone: str, text: str, provider_id: str) -> Lead:
        name = extract_name(text)
        lead = self.lead_store.create_lead(Lead(
            source="whatsapp",
            name=name,
            phone=phone,
            status=LeadStatus.NEW.value,
            notes=f"Initial WhatsApp message: \"{text[:200]}\"",
        ))
        self.message_log.record_inbound(phone, text, lead.id, provider_id)
        logger.info(f"Created lead {lead.id} from WhatsApp")

        welcome = render_quick_template(
            "welcome_new_lead", {"lead_name": name}, self.services.config.whatsapp.display_name
        )
        self._send(phone, lambda: self.client.send_interactive_message(phone, welcome.interactive),
                   welcome.summary, lead.id)
        return lead

    def _update_lead(self, lead: Lead, phone: str, text: str, provider_id: str):
        self.message_log.record_inbound(phone, text, lead.id, provider_id)
        if lead.status == LeadStatus.NEW.value:
            self.lead_store.update_lead(lead.id, {"status": LeadStatus.CONTACTED.value})
        logger.info(f"Updated lead communication: {lead.id}")

    # Interactive replies

    def handle_interactive_reply(self, message: Dict[str, Any]):
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        button_id = reply.get("id")
        title = reply.get("title")
        phone = format_phone_number(str(message["from"]))

        if not button_id:
            logger.warning("Interactive message without button ID")
            return

        logger.info(f"WhatsApp interactive reply from {anonymize_phone_number(phone)}: {button_id}")

        # A button tap is customer-initiated too
        self.compliance.record_inbound(phone, _epoch(message.get("timestamp")))

        lead = self.lead_store.find_by_phone(phone)
        if lead is None:
            logger.warning(f"No lead found for phone {anonymize_phone_number(phone)}")
            return

        if button_id == "yes":
            self.compliance.record_opt_in(phone, method="whatsapp")
            self._reply(phone, OPT_IN_CONFIRMATION, lead.id)
        elif button_id == "stop":
            self.compliance.record_opt_out(phone, method="whatsapp")
            self._reply(phone, OPT_OUT_CONFIRMATION, lead.id)
        elif button_id == "get_offer":
            self._reply(phone, GET_OFFER_REPLY, lead.id)
            self._trigger_button_workflows(lead.id, button_id)
        elif button_id == "evaluation":
            interactive_reply = build_button_interactive(
                "Perfect! To provide an accurate evaluation, we need some details about your property:",
                PROPERTY_TYPE_BUTTONS,
                header="Property Type?",
                footer="Select the property type to continue",
            )
            self._send(phone, lambda: self.client.send_interactive_message(phone, interactive_reply),
                       "[interactive] Property Type?", lead.id)
            self._trigger_button_workflows(lead.id, button_id)
        elif button_id == "questions":
            self._reply(phone, QUESTIONS_REPLY, lead.id)
            self._trigger_button_workflows(lead.id, button_id)
        else:
            logger.info(f"Unknown button action: {button_id}")
            self._reply(phone, BUTTON_ACKNOWLEDGMENT, lead.id)

        self.message_log.record_inbound(phone, f"Interactive reply: {title or button_id}", lead.id, message.get("id"))

    def _trigger_button_workflows(self, lead_id: str, button_id: str):
        started = self.engine.trigger_event(
            TriggerType.WHATSAPP_ACTION,
            lead_id,
            {"trigger": f"{button_id}_initiated", "button_id": button_id, "timestamp": datetime.now().isoformat()},
            source=button_id,
        )
        if not started:
            logger.warning(f"No workflows started for WhatsApp action: {button_id}")

    # Status updates

    def process_status(self, status: Dict[str, Any]):
        errors = status.get("errors") or []
        error = errors[0] if errors else status.get("error")
        self.message_log.update_status(
            status.get("id"),
            status.get("status"),
            _epoch(status.get("timestamp")),
            error,
        )

    # Outbound replies

    def _reply(self, phone: str, text: str, lead_id: Optional[str] = None):
        self._send(phone, lambda: self.client.send_text_message(phone, text), text, lead_id)

    def _send(self, phone: str, send, summary: str, lead_id: Optional[str] = None):
        if self.client is None:
            logger.warning(f"WhatsApp client not configured, reply to {anonymize_phone_number(phone)} not sent")
            return
        try:
            response = send()
        except GatewayError as e:
            logger.error(f"Failed to send WhatsApp reply to {anonymize_phone_number(phone)}: {e}")
            return
        self.message_log.record_outbound(phone, summary, lead_id, message_id(response))


def create_webhook_blueprint(services: Services) -> Blueprint:
    """Blueprint serving GET/POST /webhook/whatsapp."""
    bp = Blueprint("whatsapp_webhook", __name__)
    processor = WhatsAppWebhookProcessor(services)
    wa = services.config.whatsapp

    @bp.route("/webhook/whatsapp", methods=["GET"])
    def verify():
        """Subscription handshake."""
        if not wa.webhook_verify_token:
            return jsonify({"error": "Webhook not configured"}), 501

        challenge = verify_handshake(
            request.args.get("hub.mode"),
            request.args.get("hub.verify_token"),
            request.args.get("hub.challenge"),
            wa.webhook_verify_token,
        )
        if challenge is None:
            logger.error("WhatsApp webhook verification failed")
            return jsonify({"error": "Verification failed"}), 403

        logger.info("WhatsApp webhook verified")
        return Response(challenge, status=200, mimetype="text/plain")

    @bp.route("/webhook/whatsapp", methods=["POST"])
    def receive():
        """Signed event intake; nothing is parsed before the signature checks out."""
        if not wa.app_secret:
            logger.error("WhatsApp webhook not configured")
            return jsonify({"error": "Webhook not configured"}), 501

        body = request.get_data()
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), wa.app_secret):
            logger.error("Invalid webhook signature")
            return jsonify({"error": "Invalid signature"}), 401

        try:
            payload = json.loads(body)
        except ValueError:
            return jsonify({"error": "Invalid payload"}), 400
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid payload"}), 400

        counts = processor.process_payload(payload)
        logger.info(f"Processed WhatsApp webhook: {counts}")
        return jsonify({"message": "Event processed successfully", **counts}), 200

    bp.processor = processor
    return bp
