"""Workflow automation engine."""

import json
import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.config import EngineSettings
from ..storage.executions import ExecutionStore, JsonExecutionStore
from ..storage.leads import LeadStore
from .actions import ActionExecutor
from .conditions import ConditionEvaluator
from .errors import EngineError, ErrorCode
from .models import (
    ExecutionStatus,
    TriggerType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
)
from .personalization import PersonalizationRule, Personalizer
from .providers import ProviderRegistry
from .tasks import TaskManager

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Registers workflows and runs one background thread per execution.

    The registries are guarded by a single lock. An execution is only ever
    mutated by its own worker thread once it has been handed over; readers
    get deep copies of its context.
    """

    def __init__(
        self,
        lead_store: LeadStore,
        providers: Optional[ProviderRegistry] = None,
        settings: Optional[EngineSettings] = None,
        execution_store: Optional[ExecutionStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        task_manager: Optional[TaskManager] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        action_executor: Optional[ActionExecutor] = None
    ):
        self.lead_store = lead_store
        self.settings = settings or EngineSettings()
        self.sleep = sleep

        if execution_store is None and self.settings.executions_path:
            execution_store = JsonExecutionStore(self.settings.executions_path)
        self.execution_store = execution_store

        self.conditions = condition_evaluator or ConditionEvaluator(lead_store)
        self.personalizer = Personalizer(lead_store, self.conditions)
        self.actions = action_executor or ActionExecutor(
            providers or ProviderRegistry(),
            lead_store,
            task_manager or TaskManager(self.settings.tasks_path),
            sleep=sleep,
            webhook_timeout=self.settings.webhook_timeout_seconds,
        )

        self.workflows: Dict[str, WorkflowDefinition] = {}
        self.executions: Dict[str, WorkflowExecution] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    # Registry

    def register_workflow(self, definition: Union[WorkflowDefinition, Dict[str, Any]]) -> WorkflowDefinition:
        """Insert or overwrite a workflow definition."""
        if not isinstance(definition, WorkflowDefinition):
            definition = WorkflowDefinition.from_dict(definition)

        with self._lock:
            replaced = definition.id in self.workflows
            self.workflows[definition.id] = definition

        verb = "Replaced" if replaced else "Registered"
        logger.info(f"{verb} workflow {definition.id} ({definition.status.value}, {len(definition.actions)} actions)")
        return definition

    def load_workflows(self, path: Union[str, Path]) -> List[WorkflowDefinition]:
        """Register every workflow in a JSON file (a list, or an object with a 'workflows' list)."""
        with open(path, 'r') as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("workflows", [data])

        return [self.register_workflow(item) for item in data]

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Get a workflow by ID."""
        with self._lock:
            return self.workflows.get(workflow_id)

    def list_workflows(self, status: Optional[WorkflowStatus] = None) -> List[WorkflowDefinition]:
        """List all workflows."""
        with self._lock:
            workflows = list(self.workflows.values())
        if status:
            workflows = [w for w in workflows if w.status == status]
        return workflows

    def set_workflow_status(self, workflow_id: str, status: Union[WorkflowStatus, str]) -> WorkflowDefinition:
        """Activate, pause or archive a workflow."""
        status = WorkflowStatus(status)
        with self._lock:
            workflow = self.workflows.get(workflow_id)
            if workflow is None:
                raise self._not_found(workflow_id)
            workflow.status = status
            workflow.updated_at = datetime.now()

        logger.info(f"Workflow {workflow_id} is now {status.value}")
        return workflow

    # Triggering

    def _not_found(self, workflow_id: str) -> EngineError:
        return EngineError(
            f"Workflow not found: {workflow_id}",
            ErrorCode.WORKFLOW_NOT_FOUND,
            {"workflow_id": workflow_id},
            recoverable=False,
        )

    def _counted_statuses(self):
        if self.settings.count_in_flight_executions:
            return (ExecutionStatus.PENDING, ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED)
        return (ExecutionStatus.COMPLETED,)

    def trigger_workflow(
        self,
        workflow_id: str,
        lead_id: str,
        trigger_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        """Create a pending execution and start running it in the background.

        Raises a non-recoverable EngineError when the workflow is unknown,
        not active, or the lead has used up its executions.
        """
        lead_id = str(lead_id)

        with self._lock:
            workflow = self.workflows.get(workflow_id)
            if workflow is None:
                raise self._not_found(workflow_id)

            if workflow.status != WorkflowStatus.ACTIVE:
                raise EngineError(
                    f"Workflow {workflow_id} is not active ({workflow.status.value})",
                    ErrorCode.WORKFLOW_INACTIVE,
                    {"workflow_id": workflow_id, "status": workflow.status.value},
                    recoverable=False,
                )

            settings = workflow.settings
            if not settings.allow_reentry:
                counted = self._counted_statuses()
                count = sum(
                    1 for e in self.executions.values()
                    if e.workflow_id == workflow_id and e.lead_id == lead_id and e.status in counted
                )
                if count >= settings.max_executions_per_lead:
                    raise EngineError(
                        f"Lead {lead_id} reached the execution limit for workflow {workflow_id}",
                        ErrorCode.MAX_EXECUTIONS_REACHED,
                        {"workflow_id": workflow_id, "lead_id": lead_id, "count": count},
                        recoverable=False,
                    )

            execution = WorkflowExecution(
                workflow_id=workflow_id,
                lead_id=lead_id,
                total_steps=len(workflow.actions),
            )
            execution.context = {
                "workflow_id": workflow_id,
                "execution_id": execution.id,
                "trigger": dict(trigger_data or {}),
                "outputs": {},
            }
            self.executions[execution.id] = execution

            thread = threading.Thread(
                target=self._run_execution,
                args=(execution, workflow),
                name=f"workflow-{execution.id}",
                daemon=True
            )
            self._threads[execution.id] = thread

        self._mirror(execution)
        logger.info(f"Started execution {execution.id} of {workflow_id} for lead {lead_id}")
        thread.start()
        return execution

    def trigger_event(
        self,
        trigger_type: Union[TriggerType, str],
        lead_id: str,
        payload: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None
    ) -> List[WorkflowExecution]:
        """Trigger every active workflow listening for this event; rejections are skipped."""
        trigger_type = TriggerType(trigger_type)
        started = []

        for workflow in self.list_workflows(WorkflowStatus.ACTIVE):
            if workflow.trigger.type != trigger_type:
                continue
            if workflow.trigger.source and workflow.trigger.source != source:
                continue

            data = dict(payload or {})
            data.setdefault("type", trigger_type.value)
            if source is not None:
                data.setdefault("source", source)

            try:
                started.append(self.trigger_workflow(workflow.id, lead_id, data))
            except EngineError as e:
                logger.info(f"Skipped workflow {workflow.id} for lead {lead_id}: {e.message}")

        return started

    # Execution

    def _mirror(self, execution: WorkflowExecution):
        if self.execution_store is not None:
            self.execution_store.save(execution)

    def _run_execution(self, execution: WorkflowExecution, workflow: WorkflowDefinition):
        lead_id = execution.lead_id
        try:
            execution.mark_running()
            self._mirror(execution)

            if not self.conditions.evaluate(workflow.conditions, lead_id, execution.context):
                logger.info(f"Execution {execution.id}: workflow conditions not met, nothing to do")
                execution.finish(ExecutionStatus.COMPLETED)
                return

            for index, action in enumerate(workflow.actions):
                execution.advance(index + 1)

                if not self.conditions.evaluate(action.conditions, lead_id, execution.context):
                    logger.debug(f"Execution {execution.id}: conditions not met, skipping {action.id}")
                    continue

                if action.delay > 0:
                    self.sleep(action.delay / 1000)

                self._run_action(execution, action)
                self._mirror(execution)

            execution.finish(ExecutionStatus.COMPLETED)
            logger.info(f"Execution {execution.id} completed ({execution.current_step}/{execution.total_steps})")

        except EngineError as e:
            logger.error(f"Execution {execution.id} failed: [{e.code.value}] {e.message}")
            execution.finish(ExecutionStatus.FAILED, error=e.message)
        except Exception as e:
            logger.exception(f"Execution {execution.id} failed unexpectedly")
            execution.finish(ExecutionStatus.FAILED, error=str(e) or e.__class__.__name__)
        finally:
            self._mirror(execution)

    def _run_action(self, execution: WorkflowExecution, action):
        """Run one action; recoverable and unexpected errors are logged and recorded."""
        try:
            output = self.actions.execute(action, execution.lead_id, execution.context_snapshot())
        except EngineError as e:
            if not e.recoverable:
                raise
            logger.warning(f"Execution {execution.id}: action {action.id} failed, continuing: {e.message}")
            output = {"error": e.to_dict()}
        except Exception as e:
            logger.warning(f"Execution {execution.id}: action {action.id} raised {e!r}, continuing")
            output = {"error": {"error": str(e), "code": None, "recoverable": True}}
        execution.set_output(action.id, output)

    # Personalization

    def register_personalization_rule(
        self, rule: Union[PersonalizationRule, Dict[str, Any]]
    ) -> PersonalizationRule:
        return self.personalizer.register_rule(rule)

    def get_personalized_content(
        self,
        lead_id: str,
        content_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Content from the highest-priority active rule matching the lead, or None."""
        return self.personalizer.get_content(lead_id, content_type, context)

    # Queries

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        with self._lock:
            return self.executions.get(execution_id)

    def get_executions(
        self,
        workflow_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None
    ) -> List[WorkflowExecution]:
        """Get workflow executions."""
        with self._lock:
            executions = list(self.executions.values())

        if workflow_id:
            executions = [e for e in executions if e.workflow_id == workflow_id]
        if lead_id:
            executions = [e for e in executions if e.lead_id == str(lead_id)]
        if status:
            executions = [e for e in executions if e.status == status]

        return executions

    def wait_for_execution(self, execution_id: str, timeout: Optional[float] = None) -> Optional[WorkflowExecution]:
        """Block until the execution's worker thread finishes (or the timeout passes)."""
        with self._lock:
            thread = self._threads.get(execution_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_execution(execution_id)
