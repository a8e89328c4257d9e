"""Email transport for outreach messages (SMTP or SendGrid)."""

import logging
import smtplib
import uuid
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

import requests

from ..core.config import EmailConfig

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailDeliveryError(Exception):
    """The configured email transport refused or failed the send."""
    pass


class EmailIntegration:
    """Send email via SMTP or SendGrid."""

    def __init__(self, config: EmailConfig, session: Optional[requests.Session] = None):
        """Initialize email integration."""
        self.config = config
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        if not self.config.enabled:
            return False
        if self.config.provider == "sendgrid":
            return self.config.sendgrid is not None
        return self.config.smtp is not None

    def _send_smtp(self, to: str, subject: str, html_body: str, from_name: Optional[str] = None) -> str:
        """Send email via SMTP."""
        smtp = self.config.smtp
        if not smtp:
            raise EmailDeliveryError("SMTP not configured")

        message_id = f"<{uuid.uuid4().hex}@{smtp.host}>"
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{from_name or smtp.from_name} <{smtp.from_email}>"
        msg["To"] = to
        msg["Message-ID"] = message_id

        msg.attach(MIMEText(html_body, "html"))

        try:
            if smtp.use_tls:
                server = smtplib.SMTP(smtp.host, smtp.port, timeout=30)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=30)

            try:
                if smtp.username:
                    server.login(smtp.username, smtp.password)
                server.sendmail(smtp.from_email, to, msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP email failed: {e}")

        logger.info(f"Email sent to {to}")
        return message_id

    def _send_sendgrid(self, to: str, subject: str, html_body: str, from_name: Optional[str] = None) -> str:
        """Send email via SendGrid API."""
        sendgrid = self.config.sendgrid
        if not sendgrid:
            raise EmailDeliveryError("SendGrid not configured")

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {
                "email": sendgrid.from_email,
                "name": from_name or sendgrid.from_name,
            },
            "subject": subject,
            "content": [{"type": "text/html", "value": html_body}],
        }

        try:
            response = self.session.post(
                SENDGRID_URL,
                json=payload,
                headers={"Authorization": f"Bearer {sendgrid.api_key}"},
                timeout=30
            )
        except requests.RequestException as e:
            raise EmailDeliveryError(f"SendGrid email failed: {e}")

        if response.status_code not in (200, 202):
            raise EmailDeliveryError(f"SendGrid email failed: {response.status_code} {response.text[:200]}")

        logger.info(f"SendGrid email sent to {to}")
        return response.headers.get("X-Message-Id") or f"sendgrid_{uuid.uuid4().hex[:12]}"

    def send_email(self, to: str, subject: str, html_body: str, from_name: Optional[str] = None) -> str:
        """Send email using the configured provider; returns a message id."""
        if not self.config.enabled:
            raise EmailDeliveryError("Email disabled")

        if self.config.provider == "sendgrid":
            return self._send_sendgrid(to, subject, html_body, from_name)
        return self._send_smtp(to, subject, html_body, from_name)
