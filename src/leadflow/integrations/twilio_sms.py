"""Twilio SMS transport for outreach messages."""

import logging
from typing import Any, Dict, Optional

import requests

from ..core.config import TwilioConfig

logger = logging.getLogger(__name__)


class SMSDeliveryError(Exception):
    """Twilio rejected or failed the send."""
    pass


class TwilioSMSIntegration:
    """Send SMS via the Twilio REST API."""

    BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(self, config: TwilioConfig, session: Optional[requests.Session] = None):
        """Initialize Twilio integration."""
        self.config = config
        self.session = session or requests.Session()
        self.session.auth = (config.account_sid, config.auth_token)

    def send_sms(self, to: str, body: str) -> Dict[str, Any]:
        """Send an SMS message."""
        url = f"{self.BASE_URL}/Accounts/{self.config.account_sid}/Messages.json"

        try:
            response = self.session.post(
                url,
                data={
                    "To": to,
                    "From": self.config.from_number,
                    "Body": body,
                },
                timeout=30
            )
        except requests.RequestException as e:
            logger.error(f"Twilio request failed: {e}")
            raise SMSDeliveryError(f"Twilio request failed: {e}")

        if response.status_code >= 400:
            logger.error(f"Twilio API error: {response.status_code} - {response.text[:200]}")
            raise SMSDeliveryError(f"Twilio API error: {response.status_code}")

        result = response.json()
        logger.info(f"SMS sent: {result.get('sid')}")
        return result

    def test_connection(self) -> bool:
        """Test Twilio connection by checking account."""
        url = f"{self.BASE_URL}/Accounts/{self.config.account_sid}.json"
        try:
            response = self.session.get(url, timeout=30)
        except requests.RequestException:
            return False
        return response.status_code == 200
