"""Quick message templates for common lead conversations."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .client import build_button_interactive


@dataclass
class QuickMessage:
    """A ready-to-send message: an approved template, an interactive object or plain text."""
    kind: str  # "template" | "interactive" | "text"
    template: Optional[str] = None
    components: List[Dict[str, Any]] = field(default_factory=list)
    interactive: Optional[Dict[str, Any]] = None
    text: Optional[str] = None

    @property
    def summary(self) -> str:
        if self.kind == "template":
            return f"Template: {self.template}"
        if self.kind == "interactive":
            return self.interactive["body"]["text"]
        return self.text or ""


def _template(name: str, *values: str) -> QuickMessage:
    return QuickMessage(
        kind="template",
        template=name,
        components=[{
            "type": "body",
            "parameters": [{"type": "text", "text": str(v)} for v in values],
        }],
    )


def lead_followup(lead_name: str, property_address: str, agent_name: str) -> QuickMessage:
    return _template("lead_followup", lead_name, property_address, agent_name)


def property_evaluation(lead_name: str, property_address: str, company_name: str) -> QuickMessage:
    return _template("property_evaluation", lead_name, property_address, company_name)


def appointment_confirmation(lead_name: str, date: str, time: str, property_address: str) -> QuickMessage:
    return _template("appointment_confirmation", lead_name, date, time, property_address)


def offer_presentation(
    offer_amount: str,
    lead_name: str,
    property_address: str,
    closing_timeline: str
) -> QuickMessage:
    return _template("offer_presentation", offer_amount, lead_name, property_address, closing_timeline)


def document_request(lead_name: str, property_address: str, documents: str) -> QuickMessage:
    return _template("document_request", lead_name, property_address, documents)


def closing_reminder(lead_name: str, property_address: str, days_until_closing: str) -> QuickMessage:
    return _template("closing_reminder", lead_name, property_address, days_until_closing)


def welcome_new_lead(lead_name: str, agent_name: str, company_name: str) -> QuickMessage:
    body = (
        f"Hi {lead_name}! Welcome to {company_name}. I'm {agent_name}, your property "
        f"specialist. How can I help you today?"
    )
    return QuickMessage(
        kind="interactive",
        interactive=build_button_interactive(
            body,
            WELCOME_BUTTONS,
            header="Welcome! \U0001F3E0",
            footer="We buy properties fast & easy",
        ),
    )


def no_response_followup(lead_name: str, property_address: str) -> QuickMessage:
    return QuickMessage(
        kind="text",
        text=(
            f"Hi {lead_name}, I hope everything is going well. I wanted to follow up on my "
            f"previous message about your property at {property_address}. I understand you "
            f"might be busy, so please let me know when would be a good time to continue "
            f"our conversation."
        ),
    )


WELCOME_BUTTONS = [
    {"id": "get_offer", "title": "Get Cash Offer"},
    {"id": "evaluation", "title": "Property Evaluation"},
    {"id": "questions", "title": "General Questions"},
]

# name -> (builder, ordered parameter names)
QUICK_TEMPLATES: Dict[str, tuple] = {
    "lead_followup": (lead_followup, ["lead_name", "property_address", "agent_name"]),
    "property_evaluation": (property_evaluation, ["lead_name", "property_address", "company_name"]),
    "appointment_confirmation": (
        appointment_confirmation, ["lead_name", "date", "time", "property_address"]
    ),
    "offer_presentation": (
        offer_presentation, ["offer_amount", "lead_name", "property_address", "closing_timeline"]
    ),
    "document_request": (document_request, ["lead_name", "property_address", "documents"]),
    "closing_reminder": (closing_reminder, ["lead_name", "property_address", "days_until_closing"]),
    "welcome_new_lead": (welcome_new_lead, ["lead_name", "agent_name", "company_name"]),
    "no_response_followup": (no_response_followup, ["lead_name", "property_address"]),
}


def render_quick_template(
    name: str,
    values: Dict[str, Any],
    sender_name: str = "Leadflow"
) -> Optional[QuickMessage]:
    """Build a quick template from ``values``; None for unknown names.

    Missing parameters fall back to neutral defaults so a partially known
    lead still gets a well-formed message.
    """
    entry = QUICK_TEMPLATES.get(name)
    if entry is None:
        return None

    builder: Callable[..., QuickMessage] = entry[0]
    defaults = {
        "lead_name": "Valued Customer",
        "property_address": "Your Property",
        "agent_name": f"{sender_name} Team",
        "company_name": sender_name,
    }
    args = []
    for param in entry[1]:
        value = values.get(param)
        if value in (None, ""):
            value = defaults.get(param, "")
        args.append(str(value))
    return builder(*args)


# Template definitions submitted to the gateway for approval

def _definition(name: str, header: str, body: str, footer: str, example: List[str],
                buttons: Optional[List[str]] = None) -> Dict[str, Any]:
    components = [
        {"type": "header", "format": "TEXT", "text": header},
        {"type": "body", "text": body, "example": {"body_text": [example]}},
        {"type": "footer", "text": footer},
    ]
    if buttons:
        components.append({
            "type": "buttons",
            "buttons": [{"type": "quick_reply", "text": b} for b in buttons],
        })
    return {"name": name, "category": "UTILITY", "language": "en_US", "components": components}


def standard_template_definitions(company_name: str = "Leadflow") -> List[Dict[str, Any]]:
    """The lead follow-up, evaluation, appointment and offer templates, ready to submit."""
    return [
        _definition(
            "lead_followup",
            "Property Follow-up",
            f"Hi {{{{1}}}}, I hope you're doing well! This is {{{{2}}}} from {company_name}. "
            f"I wanted to follow up on your property at {{{{3}}}}. Do you have any questions "
            f"or would you like to discuss next steps?",
            "Reply STOP to opt out",
            ["{{1}}", "{{2}}", "{{3}}"],
            buttons=["Get Offer", "Schedule Call", "Not Interested"],
        ),
        _definition(
            "property_evaluation",
            "Property Evaluation Ready",
            "Hi {{1}}, your property evaluation for {{2}} is complete! {{3}} has prepared a "
            "comprehensive analysis. Would you like to review the results?",
            "Professional property services",
            ["{{1}}", "{{2}}", "{{3}}"],
        ),
        _definition(
            "appointment_confirmation",
            "Appointment Confirmed",
            "Hi {{1}}, your appointment is confirmed for {{2}} at {{3}} to discuss {{4}}. "
            "Please let us know if you need to reschedule.",
            "Looking forward to meeting you",
            ["{{1}}", "{{2}}", "{{3}}", "{{4}}"],
        ),
        _definition(
            "offer_presentation",
            "Purchase Offer",
            "Hi {{1}}, we're pleased to present an offer of {{2}} for your property at {{3}}. "
            "We can close in {{4}}. Would you like to discuss this offer?",
            "No obligation consultation",
            ["{{1}}", "{{2}}", "{{3}}", "{{4}}"],
        ),
    ]
