"""WhatsApp Business Cloud API client with rate limiting and retries."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from ..core.config import GatewaySettings, WhatsAppConfig
from .errors import GatewayConfigError, GatewayError, RateLimitExceeded
from .rate_limit import RateLimiter, retry_with_backoff
from .signatures import verify_handshake

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("phone_number_id", "business_account_id", "access_token", "webhook_verify_token")


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


def message_id(response: Dict[str, Any]) -> Optional[str]:
    """Extract the provider message id from a send response."""
    messages = response.get("messages") or []
    if messages:
        return messages[0].get("id")
    return None


class WhatsAppClient:
    """Client for the WhatsApp Business messaging gateway.

    Every request passes through a per-endpoint rate limiter before it is sent,
    and HTTP 429/5xx responses are retried with exponential backoff.
    """

    def __init__(
        self,
        config: WhatsAppConfig,
        settings: Optional[GatewaySettings] = None,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        missing = [name for name in REQUIRED_FIELDS if not getattr(config, name)]
        if missing:
            raise GatewayConfigError(
                f"WhatsAppClient configuration invalid. Missing fields: {', '.join(missing)}"
            )

        self.config = config
        self.settings = settings or GatewaySettings()
        self.base_url = self.settings.base_url.rstrip("/")
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or RateLimiter(limit=self.settings.max_requests_per_minute)
        self.sleep = sleep

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        key = f"{self.config.phone_number_id}:{endpoint}"
        if not self.rate_limiter.allow(key):
            raise RateLimitExceeded(key)

        return retry_with_backoff(
            lambda: self._send(method, endpoint, payload, params),
            max_retries=self.settings.max_retries,
            base_delay=self.settings.base_delay_seconds,
            sleep=self.sleep,
        )

    def _send(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                json=payload,
                params=params,
                timeout=self.settings.timeout_seconds
            )
        except requests.RequestException as e:
            raise GatewayError(f"WhatsApp API request failed: {e}")

        if response.status_code >= 400:
            message = response.reason or f"HTTP {response.status_code}"
            error_code = None
            try:
                error = response.json().get("error", {})
                message = error.get("message", message)
                error_code = error.get("code")
            except ValueError:
                pass
            raise GatewayError(
                f"WhatsApp API Error: {message} ({error_code or response.status_code})",
                status_code=response.status_code,
                error_code=error_code,
            )

        if not response.content:
            return {}
        return response.json()

    # Message sending

    def _send_message(self, to: str, message_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: content,
        }
        return self._request("POST", f"/{self.config.phone_number_id}/messages", payload)

    def send_text_message(self, to: str, text: str, preview_url: bool = False) -> Dict[str, Any]:
        return self._send_message(to, "text", {"body": text, "preview_url": preview_url})

    def send_template_message(
        self,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        return self._send_message(to, "template", {
            "name": template_name,
            "language": {"code": language_code},
            "components": components or [],
        })

    def send_image_message(self, to: str, image_url: str, caption: Optional[str] = None) -> Dict[str, Any]:
        return self._send_message(to, "image", _compact({"link": image_url, "caption": caption}))

    def send_document_message(
        self,
        to: str,
        document_url: str,
        filename: str,
        caption: Optional[str] = None
    ) -> Dict[str, Any]:
        return self._send_message(to, "document", _compact({
            "link": document_url,
            "filename": filename,
            "caption": caption,
        }))

    def send_location_message(
        self,
        to: str,
        latitude: float,
        longitude: float,
        name: Optional[str] = None,
        address: Optional[str] = None
    ) -> Dict[str, Any]:
        return self._send_message(to, "location", _compact({
            "latitude": latitude,
            "longitude": longitude,
            "name": name,
            "address": address,
        }))

    def send_interactive_message(self, to: str, interactive: Dict[str, Any]) -> Dict[str, Any]:
        """Send a prebuilt interactive (button or list) object."""
        return self._send_message(to, "interactive", interactive)

    def send_buttons(
        self,
        to: str,
        body: str,
        buttons: List[Dict[str, str]],
        header: Optional[str] = None,
        footer: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.send_interactive_message(to, build_button_interactive(body, buttons, header, footer))

    def send_list(
        self,
        to: str,
        body: str,
        button_text: str,
        sections: List[Dict[str, Any]],
        header: Optional[str] = None,
        footer: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.send_interactive_message(
            to, build_list_interactive(body, button_text, sections, header, footer)
        )

    # Account, templates and media

    def get_business_account_info(self) -> Dict[str, Any]:
        return self._request("GET", f"/{self.config.business_account_id}")

    def get_message_templates(self) -> List[Dict[str, Any]]:
        response = self._request("GET", f"/{self.config.business_account_id}/message_templates")
        return response.get("data", [])

    def create_message_template(self, template: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/{self.config.business_account_id}/message_templates", template)

    def delete_message_template(self, name: str) -> Dict[str, Any]:
        return self._request(
            "DELETE", f"/{self.config.business_account_id}/message_templates", params={"name": name}
        )

    def get_business_profile(self) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/{self.config.phone_number_id}/whatsapp_business_profile",
            params={"fields": "about,address,description,email,profile_picture_url,websites,vertical"},
        )

    def get_phone_number_info(self) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/{self.config.phone_number_id}",
            params={"fields": "display_phone_number,verified_name,quality_rating,code_verification_status"},
        )

    def get_media_url(self, media_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/{media_id}")

    def verify_webhook(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge when the subscription handshake is valid, else None."""
        return verify_handshake(mode, token, challenge, self.config.webhook_verify_token)


def build_button_interactive(
    body: str,
    buttons: List[Dict[str, str]],
    header: Optional[str] = None,
    footer: Optional[str] = None
) -> Dict[str, Any]:
    """Build a reply-button interactive object."""
    interactive = {
        "type": "button",
        "body": {"text": body},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": b["id"], "title": b["title"]}}
                for b in buttons
            ]
        },
    }
    if header:
        interactive["header"] = {"type": "text", "text": header}
    if footer:
        interactive["footer"] = {"text": footer}
    return interactive


def build_list_interactive(
    body: str,
    button_text: str,
    sections: List[Dict[str, Any]],
    header: Optional[str] = None,
    footer: Optional[str] = None
) -> Dict[str, Any]:
    """Build a list interactive object."""
    interactive = {
        "type": "list",
        "body": {"text": body},
        "action": {
            "button": button_text,
            "sections": [
                {
                    "title": section["title"],
                    "rows": [
                        _compact({"id": row["id"], "title": row["title"], "description": row.get("description")})
                        for row in section.get("rows", [])
                    ],
                }
                for section in sections
            ],
        },
    }
    if header:
        interactive["header"] = {"type": "text", "text": header}
    if footer:
        interactive["footer"] = {"text": footer}
    return interactive
