"""Workflow action execution."""

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from ..storage.leads import LeadStore
from .errors import EngineError, ErrorCode
from .models import (
    Action,
    ActionType,
    FieldUpdateConfig,
    SegmentActionConfig,
    TagActionConfig,
    TaskActionConfig,
    WaitActionConfig,
    WebhookActionConfig,
)
from .providers import ProviderRegistry
from .tasks import TaskManager

logger = logging.getLogger(__name__)

# (action, lead_id, context) -> output dict
ActionHandler = Callable[[Action, str, Dict[str, Any]], Dict[str, Any]]

SEND_CHANNELS = {
    ActionType.SEND_EMAIL.value: "email",
    ActionType.SEND_SMS.value: "sms",
    ActionType.SEND_WHATSAPP.value: "whatsapp",
}


class ActionExecutor:
    """Maps a workflow action to a provider call or a local mutation."""

    def __init__(
        self,
        providers: ProviderRegistry,
        lead_store: LeadStore,
        task_manager: Optional[TaskManager] = None,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
        webhook_timeout: int = 30
    ):
        self.providers = providers
        self.lead_store = lead_store
        self.task_manager = task_manager or TaskManager()
        self.sleep = sleep
        self.session = session or requests.Session()
        self.webhook_timeout = webhook_timeout

        self.action_handlers: Dict[str, ActionHandler] = {}
        self._register_handlers()

    def _register_handlers(self):
        """Register action handlers."""
        self.action_handlers = {
            ActionType.SEND_EMAIL.value: self._execute_send,
            ActionType.SEND_SMS.value: self._execute_send,
            ActionType.SEND_WHATSAPP.value: self._execute_send,
            ActionType.ADD_TAG.value: self._execute_tag,
            ActionType.REMOVE_TAG.value: self._execute_tag,
            ActionType.UPDATE_FIELD.value: self._execute_update_field,
            ActionType.CREATE_TASK.value: self._execute_create_task,
            ActionType.WAIT.value: self._execute_wait,
            ActionType.WEBHOOK.value: self._execute_webhook,
            ActionType.ADD_TO_SEGMENT.value: self._execute_segment,
            ActionType.REMOVE_FROM_SEGMENT.value: self._execute_segment,
        }

    def register_handler(self, action_type: str, handler: ActionHandler):
        """Register a custom action handler."""
        self.action_handlers[action_type] = handler

    def execute(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        """Run one action; raises EngineError on failure."""
        handler = self.action_handlers.get(action.type)
        if handler is None:
            logger.warning(f"Unknown action type '{action.type}' ({action.id}), skipping")
            return {"skipped": True}
        return handler(action, lead_id, context) or {}

    # Action handlers

    def _execute_send(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        channel = SEND_CHANNELS[action.type]
        provider = self.providers.get(channel)
        if provider is None:
            raise EngineError(
                f"No provider registered for channel '{channel}'",
                ErrorCode.PROVIDER_NOT_FOUND,
                {"channel": channel, "action_id": action.id},
                recoverable=False,
            )

        result = provider.send(action.config, lead_id)
        return result.to_dict()

    def _execute_tag(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        config: TagActionConfig = action.config
        # No tag storage yet
        logger.info(f"{action.type} {config.tags} for lead {lead_id} (not persisted)")
        return {"tags": list(config.tags), "persisted": False}

    def _execute_segment(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        config: SegmentActionConfig = action.config
        logger.info(f"{action.type} '{config.segment_id}' for lead {lead_id} (no segment store)")
        return {"segment_id": config.segment_id, "persisted": False}

    def _execute_update_field(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        config: FieldUpdateConfig = action.config
        self.lead_store.update_lead(lead_id, {config.field: config.value})
        logger.info(f"Updated lead {lead_id}: {config.field}={config.value!r}")
        return {"field": config.field, "value": config.value}

    def _execute_create_task(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        config: TaskActionConfig = action.config
        task = self.task_manager.create_task(
            title=config.title,
            description=config.description,
            lead_id=lead_id,
            workflow_id=context.get("workflow_id", ""),
            assigned_to=config.assignee,
            due_date=config.due_date,
            priority=config.priority,
        )
        return {"task_id": task.id}

    def _execute_wait(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        config: WaitActionConfig = action.config
        milliseconds = config.milliseconds
        if milliseconds > 0:
            logger.debug(f"Waiting {milliseconds}ms for lead {lead_id}")
            self.sleep(milliseconds / 1000)
        return {"waited_ms": milliseconds}

    def _execute_webhook(self, action: Action, lead_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        config: WebhookActionConfig = action.config
        if not config.url:
            logger.warning(f"Webhook action {action.id} has no url, skipping")
            return {"skipped": True}

        headers = {"Content-Type": "application/json"}
        headers.update(config.headers)
        payload = config.body
        if payload is None:
            payload = {
                "lead_id": lead_id,
                "workflow_id": context.get("workflow_id"),
                "execution_id": context.get("execution_id"),
                "trigger": context.get("trigger", {}),
            }

        try:
            response = self.session.request(
                method=config.method,
                url=config.url,
                headers=headers,
                json=payload,
                timeout=self.webhook_timeout
            )
        except requests.RequestException as e:
            raise EngineError(
                f"Webhook request failed: {e}",
                ErrorCode.WEBHOOK_ERROR,
                {"url": config.url, "action_id": action.id},
                recoverable=True,
            )

        if not 200 <= response.status_code < 300:
            raise EngineError(
                f"Webhook returned {response.status_code}",
                ErrorCode.WEBHOOK_ERROR,
                {"url": config.url, "status_code": response.status_code, "action_id": action.id},
                recoverable=True,
            )

        logger.info(f"Webhook {config.method} {config.url} -> {response.status_code}")
        return {"status_code": response.status_code}
