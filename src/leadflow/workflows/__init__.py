"""Workflow automation: definitions, conditions, actions, providers and the engine."""

from .errors import EngineError, ErrorCode
from .models import (
    WorkflowStatus,
    TriggerType,
    ExecutionStatus,
    ActionType,
    BehaviorType,
    Trigger,
    Condition,
    Action,
    WorkflowSettings,
    WorkflowDefinition,
    WorkflowExecution,
    LeadBehavior,
    parse_duration,
    parse_timestamp,
)
from .conditions import ConditionEvaluator
from .personalization import PersonalizationRule, Personalizer, RuleStatus
from .providers import (
    Provider,
    EmailProvider,
    SMSProvider,
    WhatsAppProvider,
    ProviderRegistry,
    SendResult,
)
from .tasks import TaskManager, Task, TaskStatus, TaskPriority
from .actions import ActionExecutor
from .engine import WorkflowEngine
from .behavior import BehaviorTracker

__all__ = [
    "EngineError",
    "ErrorCode",
    "WorkflowStatus",
    "TriggerType",
    "ExecutionStatus",
    "ActionType",
    "BehaviorType",
    "Trigger",
    "Condition",
    "Action",
    "WorkflowSettings",
    "WorkflowDefinition",
    "WorkflowExecution",
    "LeadBehavior",
    "parse_duration",
    "parse_timestamp",
    "ConditionEvaluator",
    "PersonalizationRule",
    "Personalizer",
    "RuleStatus",
    "Provider",
    "EmailProvider",
    "SMSProvider",
    "WhatsAppProvider",
    "ProviderRegistry",
    "SendResult",
    "TaskManager",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "ActionExecutor",
    "WorkflowEngine",
    "BehaviorTracker",
]
