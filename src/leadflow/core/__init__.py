"""Configuration and service wiring."""

from .config import (
    LeadflowConfig,
    EngineSettings,
    ComplianceSettings,
    GatewaySettings,
    WhatsAppConfig,
    EmailConfig,
    TwilioConfig,
    ConfigManager,
    load_config,
    validate_whatsapp_env,
)

__all__ = [
    "LeadflowConfig",
    "EngineSettings",
    "ComplianceSettings",
    "GatewaySettings",
    "WhatsAppConfig",
    "EmailConfig",
    "TwilioConfig",
    "ConfigManager",
    "load_config",
    "validate_whatsapp_env",
]
