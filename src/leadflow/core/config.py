"""Engine, gateway and channel configuration with JSON persistence and env overrides."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any
from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".leadflow"

REQUIRED_WHATSAPP_ENV = [
    "WHATSAPP_PHONE_NUMBER_ID",
    "WHATSAPP_BUSINESS_ACCOUNT_ID",
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_WEBHOOK_VERIFY_TOKEN",
    "WHATSAPP_APP_SECRET",
]


@dataclass
class EngineSettings:
    """Workflow engine behaviour."""

    # When True, pending/running executions count toward maxExecutionsPerLead
    count_in_flight_executions: bool = False
    webhook_timeout_seconds: int = 30
    executions_path: Optional[str] = None  # JSON mirror of execution records
    tasks_path: Optional[str] = None


@dataclass
class ComplianceSettings:
    """Outbound contact compliance windows."""

    business_hours_start: int = 9
    business_hours_end: int = 21
    service_window_hours: int = 24
    enforce_service_window: bool = False
    consent_path: Optional[str] = None


@dataclass
class GatewaySettings:
    """Messaging gateway resilience settings."""

    base_url: str = "https://graph.facebook.com/v18.0"
    max_requests_per_minute: int = 60
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    timeout_seconds: int = 30


@dataclass
class WhatsAppConfig:
    """WhatsApp Business credentials."""

    phone_number_id: str = ""
    business_account_id: str = ""
    access_token: str = ""
    webhook_verify_token: str = ""
    app_secret: str = ""
    phone_number: str = ""
    display_name: str = "Leadflow"
    enabled: bool = False

    @property
    def is_complete(self) -> bool:
        """All credentials needed to talk to the gateway are present."""
        return all([
            self.phone_number_id,
            self.business_account_id,
            self.access_token,
            self.webhook_verify_token,
        ])


@dataclass
class SMTPConfig:
    """SMTP email configuration."""

    host: str
    port: int
    username: str
    password: str
    from_email: str
    from_name: str = "Leadflow"
    use_tls: bool = True


@dataclass
class SendGridConfig:
    """SendGrid email configuration."""

    api_key: str
    from_email: str
    from_name: str = "Leadflow"


@dataclass
class EmailConfig:
    """Combined email configuration."""

    provider: str = "smtp"  # "smtp" or "sendgrid"
    smtp: Optional[SMTPConfig] = None
    sendgrid: Optional[SendGridConfig] = None
    enabled: bool = True


@dataclass
class TwilioConfig:
    """Twilio configuration."""

    account_sid: str
    auth_token: str
    from_number: str
    enabled: bool = True


@dataclass
class LeadflowConfig:
    """Top-level configuration."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    compliance: ComplianceSettings = field(default_factory=ComplianceSettings)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    twilio: Optional[TwilioConfig] = None
    db_path: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.now)

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "LeadflowConfig":
        """Override settings from environment variables."""
        env = os.environ if environ is None else environ

        wa = self.whatsapp
        wa.phone_number_id = env.get("WHATSAPP_PHONE_NUMBER_ID", wa.phone_number_id)
        wa.business_account_id = env.get("WHATSAPP_BUSINESS_ACCOUNT_ID", wa.business_account_id)
        wa.access_token = env.get("WHATSAPP_ACCESS_TOKEN", wa.access_token)
        wa.webhook_verify_token = env.get("WHATSAPP_WEBHOOK_VERIFY_TOKEN", wa.webhook_verify_token)
        wa.app_secret = env.get("WHATSAPP_APP_SECRET", wa.app_secret)
        wa.phone_number = env.get("WHATSAPP_PHONE_NUMBER", wa.phone_number)
        wa.display_name = env.get("WHATSAPP_DISPLAY_NAME", wa.display_name)
        if "WHATSAPP_ENABLED" in env:
            wa.enabled = env["WHATSAPP_ENABLED"].lower() == "true"

        if env.get("TWILIO_ACCOUNT_SID") and env.get("TWILIO_AUTH_TOKEN"):
            self.twilio = TwilioConfig(
                account_sid=env["TWILIO_ACCOUNT_SID"],
                auth_token=env["TWILIO_AUTH_TOKEN"],
                from_number=env.get("TWILIO_FROM_NUMBER", ""),
            )

        if env.get("SENDGRID_API_KEY"):
            self.email.provider = "sendgrid"
            self.email.sendgrid = SendGridConfig(
                api_key=env["SENDGRID_API_KEY"],
                from_email=env.get("SMTP_FROM_EMAIL", ""),
            )
        elif env.get("SMTP_HOST"):
            self.email.provider = "smtp"
            self.email.smtp = SMTPConfig(
                host=env["SMTP_HOST"],
                port=int(env.get("SMTP_PORT", "587")),
                username=env.get("SMTP_USERNAME", ""),
                password=env.get("SMTP_PASSWORD", ""),
                from_email=env.get("SMTP_FROM_EMAIL", ""),
            )

        self.db_path = env.get("LEADFLOW_DB_PATH", self.db_path)
        return self


def validate_whatsapp_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Report which required WhatsApp environment variables are missing."""
    env = os.environ if environ is None else environ
    missing = [key for key in REQUIRED_WHATSAPP_ENV if not env.get(key)]
    return {"valid": not missing, "missing": missing}


class ConfigManager:
    """Load and persist Leadflow configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager."""
        self.config_path = config_path or DEFAULT_CONFIG_DIR / "config.json"
        self.config = self._load_config()

    def _load_config(self) -> LeadflowConfig:
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                    return self._from_dict(data)
            except Exception as e:
                logger.error(f"Error loading config: {e}")

        return LeadflowConfig()

    def _from_dict(self, data: Dict[str, Any]) -> LeadflowConfig:
        email_data = data.get("email", {})
        twilio_data = data.get("twilio")
        return LeadflowConfig(
            engine=EngineSettings(**data.get("engine", {})),
            compliance=ComplianceSettings(**data.get("compliance", {})),
            gateway=GatewaySettings(**data.get("gateway", {})),
            whatsapp=WhatsAppConfig(**data.get("whatsapp", {})),
            email=EmailConfig(
                provider=email_data.get("provider", "smtp"),
                smtp=SMTPConfig(**email_data["smtp"]) if email_data.get("smtp") else None,
                sendgrid=SendGridConfig(**email_data["sendgrid"]) if email_data.get("sendgrid") else None,
                enabled=email_data.get("enabled", True),
            ),
            twilio=TwilioConfig(**twilio_data) if twilio_data else None,
            db_path=data.get("db_path"),
        )

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        config = self.config
        config.updated_at = datetime.now()
        data = {
            "engine": vars(config.engine),
            "compliance": vars(config.compliance),
            "gateway": vars(config.gateway),
            "whatsapp": vars(config.whatsapp),
            "email": {
                "provider": config.email.provider,
                "smtp": vars(config.email.smtp) if config.email.smtp else None,
                "sendgrid": vars(config.email.sendgrid) if config.email.sendgrid else None,
                "enabled": config.email.enabled,
            },
            "twilio": vars(config.twilio) if config.twilio else None,
            "db_path": config.db_path,
            "updated_at": config.updated_at.isoformat(),
        }
        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)


def load_config(config_path: Optional[Path] = None, use_env: bool = True) -> LeadflowConfig:
    """Load configuration from disk and apply environment overrides."""
    config = ConfigManager(config_path).config
    if use_env:
        config.apply_env()
    return config
