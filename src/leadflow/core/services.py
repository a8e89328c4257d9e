"""Wire the engine, providers and gateway together from configuration."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..messaging.client import WhatsAppClient
from ..messaging.compliance import ComplianceGate
from ..messaging.delivery import MessageLog
from ..storage.database import LeadDatabase
from ..storage.leads import LeadStore
from ..workflows.behavior import BehaviorTracker
from ..workflows.engine import WorkflowEngine
from ..workflows.providers import ProviderRegistry
from ..workflows.tasks import TaskManager
from .config import LeadflowConfig, load_config

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP surfaces and the CLI need."""
    config: LeadflowConfig
    lead_store: LeadStore
    engine: WorkflowEngine
    providers: ProviderRegistry
    compliance: ComplianceGate
    message_log: MessageLog
    behavior_tracker: BehaviorTracker
    task_manager: TaskManager
    whatsapp_client: Optional[WhatsAppClient] = None


def build_services(
    config: Optional[LeadflowConfig] = None,
    lead_store: Optional[LeadStore] = None,
    whatsapp_client: Optional[WhatsAppClient] = None
) -> Services:
    """Build the service graph; the WhatsApp client is only created when fully configured."""
    config = config or load_config()
    lead_store = lead_store or LeadDatabase(Path(config.db_path) if config.db_path else None)

    compliance = ComplianceGate(config.compliance)
    message_log = MessageLog()
    task_manager = TaskManager(config.engine.tasks_path)

    wa = config.whatsapp
    if whatsapp_client is None and wa.enabled and wa.is_complete:
        whatsapp_client = WhatsAppClient(wa, config.gateway)

    providers = ProviderRegistry.from_config(
        config,
        lead_store,
        whatsapp_client=whatsapp_client,
        compliance=compliance,
        message_log=message_log,
    )

    engine = WorkflowEngine(
        lead_store,
        providers,
        settings=config.engine,
        task_manager=task_manager,
    )

    logger.info(f"Services ready, channels: {', '.join(providers.channels())}")
    return Services(
        config=config,
        lead_store=lead_store,
        engine=engine,
        providers=providers,
        compliance=compliance,
        message_log=message_log,
        behavior_tracker=BehaviorTracker(engine, lead_store),
        task_manager=task_manager,
        whatsapp_client=whatsapp_client,
    )
