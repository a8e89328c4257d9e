"""Operator WhatsApp endpoints: direct sends to a lead and template management."""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from flask import Blueprint, jsonify, request

from ..core.services import Services
from ..messaging.client import build_button_interactive, build_list_interactive, message_id
from ..messaging.compliance import (
    anonymize_phone_number,
    format_phone_number,
    is_valid_phone_number,
    validate_message_content,
)
from ..messaging.errors import GatewayError
from ..messaging.templates import standard_template_definitions

logger = logging.getLogger(__name__)

class SendRequestError(ValueError):
    """A send request that is missing or has malformed content."""
    pass


def build_outbound(client, phone: str, data: Dict[str, Any]) -> Tuple[str, Callable[[], Dict[str, Any]]]:
    """Turn a send request into (summary, send callable); raises SendRequestError."""
    message_type = data.get("messageType") or data.get("message_type") or "text"

    if message_type == "text":
        message = data.get("message")
        valid, reason = validate_message_content(message)
        if not valid:
            raise SendRequestError(reason)
        return message, lambda: client.send_text_message(phone, message)

    if message_type == "template":
        template = data.get("template")
        if not template:
            raise SendRequestError("Template name is required for template messages")
        components = data.get("templateParams") or data.get("components") or []
        language = data.get("language") or "en_US"
        return f"Template: {template}", lambda: client.send_template_message(phone, template, language, components)

    if message_type in ("interactive_buttons", "interactive_list"):
        options = data.get("interactive")
        if not isinstance(options, dict) or not options.get("body"):
            raise SendRequestError("Interactive configuration is required")

        if message_type == "interactive_buttons":
            buttons = options.get("buttons") or []
            if not buttons or any(not isinstance(b, dict) or "id" not in b or "title" not in b for b in buttons):
                raise SendRequestError("Interactive buttons need an id and title each")
            interactive = build_button_interactive(
                options["body"], buttons, options.get("header"), options.get("footer")
            )
        else:
            sections = options.get("sections") or []
            if not options.get("buttonText") or not sections or any(
                not isinstance(s, dict) or "title" not in s for s in sections
            ):
                raise SendRequestError("Interactive lists need buttonText and sections")
            interactive = build_list_interactive(
                options["body"], options["buttonText"], sections, options.get("header"), options.get("footer")
            )
        return options["body"], lambda: client.send_interactive_message(phone, interactive)

    raise SendRequestError(f"Unsupported message type: {message_type}")


def create_whatsapp_blueprint(services: Services) -> Blueprint:
    """Blueprint serving /api/whatsapp/send and /api/whatsapp/templates."""
    bp = Blueprint("whatsapp_api", __name__)

    def _client_or_error() -> Tuple[Optional[Any], Optional[Tuple]]:
        if services.whatsapp_client is None:
            return None, (jsonify({"error": "WhatsApp is not configured"}), 501)
        return services.whatsapp_client, None

    # ==================== Sending ====================

    @bp.route("/api/whatsapp/send", methods=["POST"])
    def send_message():
        """Send a message to a lead who has opted in."""
        client, error = _client_or_error()
        if error:
            return error

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Request body required"}), 400

        lead_id = data.get("leadId") or data.get("lead_id")
        if not lead_id:
            return jsonify({"error": "Lead ID is required"}), 400

        lead = services.lead_store.get_lead(str(lead_id))
        if lead is None:
            return jsonify({"error": "Lead not found"}), 404
        if not lead.phone:
            return jsonify({"error": "Lead has no phone number"}), 400

        phone = format_phone_number(lead.phone)
        if not is_valid_phone_number(phone):
            return jsonify({"error": "Invalid phone number format"}), 400

        if not services.compliance.has_opt_in(phone):
            return jsonify({"error": "Lead has not opted in for WhatsApp messages"}), 403

        try:
            summary, send = build_outbound(client, phone, data)
            response = send()
        except SendRequestError as e:
            return jsonify({"error": str(e)}), 400
        except GatewayError as e:
            logger.error(f"WhatsApp send to {anonymize_phone_number(phone)} failed: {e.message}")
            return jsonify({"error": "Failed to send WhatsApp message", "details": e.message}), 502

        provider_id = message_id(response)
        record = services.message_log.record_outbound(phone, summary, lead.id, provider_id)
        logger.info(f"WhatsApp message sent to {anonymize_phone_number(phone)} for lead {lead.id}")

        return jsonify({
            "success": True,
            "data": {
                "communication_id": record.id,
                "message_id": provider_id,
                "phone_number": phone,
                "message_type": data.get("messageType") or data.get("message_type") or "text",
                "content": summary,
            },
        })

    # ==================== Templates ====================

    @bp.route("/api/whatsapp/templates", methods=["GET"])
    def list_templates():
        client, error = _client_or_error()
        if error:
            return error
        try:
            templates = client.get_message_templates()
        except GatewayError as e:
            return jsonify({"error": "Failed to fetch WhatsApp templates", "details": e.message}), 502
        return jsonify({"success": True, "templates": templates, "total": len(templates)})

    @bp.route("/api/whatsapp/templates", methods=["POST"])
    def create_template():
        """Submit one template definition for approval."""
        client, error = _client_or_error()
        if error:
            return error

        data = request.get_json(silent=True)
        template = data.get("template") if isinstance(data, dict) else None
        if not isinstance(template, dict) or not template.get("name"):
            return jsonify({"error": "template with a name is required"}), 400

        try:
            result = client.create_message_template(template)
        except GatewayError as e:
            return jsonify({"error": "Failed to create WhatsApp template", "details": e.message}), 502
        return jsonify({"success": True, "template": result, "message": "Template created successfully"}), 201

    @bp.route("/api/whatsapp/templates", methods=["PUT"])
    def create_standard_templates():
        """Submit the standard lead templates; each one succeeds or fails on its own."""
        client, error = _client_or_error()
        if error:
            return error

        results = []
        for template in standard_template_definitions(services.config.whatsapp.display_name):
            try:
                results.append({"success": True, "template": client.create_message_template(template)})
            except GatewayError as e:
                logger.error(f"Error creating template {template['name']}: {e.message}")
                results.append({"success": False, "template": template["name"], "error": e.message})

        successful = sum(1 for r in results if r["success"])
        failed = len(results) - successful
        return jsonify({
            "success": True,
            "results": results,
            "summary": {"total": len(results), "successful": successful, "failed": failed},
            "message": f"Created {successful} templates, {failed} failed",
        })

    return bp
