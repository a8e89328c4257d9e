"""Lead behaviour tracking that feeds workflow triggers."""

import logging
from typing import Any, Dict, List, Union

from ..storage.leads import LeadStore
from .engine import WorkflowEngine
from .errors import EngineError
from .models import LeadBehavior, Trigger, WorkflowExecution, WorkflowStatus

logger = logging.getLogger(__name__)

SYSTEM_USER_ID = 1


def matches_behavior(trigger: Trigger, behavior: LeadBehavior) -> bool:
    """A trigger matches when its event data names the behaviour's type and source."""
    return (
        trigger.event_data.get("type") == behavior.type
        and trigger.event_data.get("source") == behavior.source
    )


class BehaviorTracker:
    """Records behaviours as lead activity and re-enters them as triggers."""

    def __init__(self, engine: WorkflowEngine, lead_store: LeadStore):
        self.engine = engine
        self.lead_store = lead_store

    def track(self, behavior: Union[LeadBehavior, Dict[str, Any]]) -> List[WorkflowExecution]:
        """Record the behaviour, then start every matching active workflow.

        Failures are logged rather than raised so a tracking ping never
        breaks the caller.
        """
        if not isinstance(behavior, LeadBehavior):
            behavior = LeadBehavior.from_dict(behavior)

        try:
            self.lead_store.record_activity(
                SYSTEM_USER_ID,
                behavior.type,
                "lead",
                behavior.lead_id,
                f"{behavior.type} from {behavior.source}",
                behavior.timestamp,
            )
        except Exception:
            logger.exception(f"Failed to track behavior {behavior.id}")
            return []

        started = []
        for workflow in self.engine.list_workflows(WorkflowStatus.ACTIVE):
            if not matches_behavior(workflow.trigger, behavior):
                continue
            try:
                started.append(self.engine.trigger_workflow(workflow.id, behavior.lead_id, behavior.data))
            except EngineError as e:
                logger.warning(f"Failed to trigger workflow {workflow.id} for behavior {behavior.id}: {e.message}")

        return started
