"""Workflow definitions, execution records and lead behaviours."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Union
import copy
import numbers
import threading
import uuid

from .errors import EngineError, ErrorCode


class WorkflowStatus(Enum):
    """Workflow status."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class TriggerType(Enum):
    """Event classes that can start a workflow."""
    FORM_SUBMISSION = "form_submission"
    LEAD_CREATED = "lead_created"
    LEAD_UPDATED = "lead_updated"
    EMAIL_OPENED = "email_opened"
    LINK_CLICKED = "link_clicked"
    PAGE_VIEWED = "page_viewed"
    TIME_BASED = "time_based"
    MANUAL = "manual"
    INBOUND_MESSAGE = "inbound_message"
    WHATSAPP_ACTION = "whatsapp_action"


class ExecutionStatus(Enum):
    """Workflow execution status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)


class ActionType(Enum):
    """Known workflow action types."""
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    SEND_WHATSAPP = "send_whatsapp"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    UPDATE_FIELD = "update_field"
    CREATE_TASK = "create_task"
    WAIT = "wait"
    WEBHOOK = "webhook"
    ADD_TO_SEGMENT = "add_to_segment"
    REMOVE_FROM_SEGMENT = "remove_from_segment"


class BehaviorType(Enum):
    """Tracked lead behaviours."""
    PAGE_VIEW = "page_view"
    EMAIL_OPEN = "email_open"
    LINK_CLICK = "link_click"
    FORM_SUBMISSION = "form_submission"
    PURCHASE = "purchase"
    CUSTOM = "custom"


DURATION_MULTIPLIERS_MS = {
    "minutes": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "days": 24 * 60 * 60 * 1000,
    "weeks": 7 * 24 * 60 * 60 * 1000,
}


def parse_duration(duration: Union[int, float], unit: Optional[str]) -> int:
    """Convert a duration to milliseconds; unknown units count as seconds."""
    return int((duration or 0) * DURATION_MULTIPLIERS_MS.get(unit or "", 1000))


def _pick(data: Dict[str, Any], snake: str, camel: Optional[str] = None, default: Any = None) -> Any:
    """Read a key that may be spelled snake_case or camelCase."""
    if snake in data:
        return data[snake]
    if camel and camel in data:
        return data[camel]
    return default


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or epoch milliseconds.

    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value}") from e
    if not isinstance(value, str):
        raise ValueError(f"Not a timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _parse_datetime(value: Any, name: str = "timestamp") -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise _invalid(f"Invalid {name}: {value!r}", field=name, value=value)


def _invalid(message: str, **context) -> EngineError:
    return EngineError(message, ErrorCode.INVALID_WORKFLOW, context, recoverable=False)


@dataclass
class Trigger:
    """Event class plus optional source/event-data matcher."""
    type: TriggerType
    source: Optional[str] = None
    event_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trigger":
        try:
            trigger_type = TriggerType(data.get("type", "manual"))
        except ValueError:
            raise _invalid(f"Unknown trigger type: {data.get('type')}", trigger=data.get("type"))
        return cls(
            type=trigger_type,
            source=data.get("source"),
            event_data=dict(_pick(data, "event_data", "eventData", {}) or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "source": self.source,
            "event_data": self.event_data,
        }


@dataclass
class Condition:
    """A single predicate over lead state."""
    type: str
    operator: str = "equals"
    value: Any = None
    field: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        if "type" not in data:
            raise _invalid("Condition is missing a type", condition=data)
        return cls(
            type=data["type"],
            operator=data.get("operator", "equals"),
            value=data.get("value"),
            field=data.get("field"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
        }


def _parse_conditions(items: Optional[List[Dict[str, Any]]]) -> List[Condition]:
    return [c if isinstance(c, Condition) else Condition.from_dict(c) for c in items or []]


# Typed action configs, one per action kind

@dataclass
class EmailActionConfig:
    subject: str = ""
    body: str = ""
    template_id: Optional[str] = None
    from_name: Optional[str] = None
    from_email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmailActionConfig":
        return cls(
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            template_id=_pick(data, "template_id", "templateId"),
            from_name=_pick(data, "from_name", "fromName"),
            from_email=_pick(data, "from_email", "fromEmail"),
        )


@dataclass
class MessageActionConfig:
    """SMS or WhatsApp message: free-form text or a named quick template."""
    message: str = ""
    template: Optional[str] = None
    template_params: Dict[str, Any] = field(default_factory=dict)
    language: str = "en_US"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageActionConfig":
        return cls(
            message=data.get("message", ""),
            template=data.get("template"),
            template_params=dict(_pick(data, "template_params", "templateParams", {}) or {}),
            language=data.get("language", "en_US"),
        )


@dataclass
class TagActionConfig:
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TagActionConfig":
        tags = data.get("tags")
        if tags is None and data.get("tag"):
            tags = [data["tag"]]
        return cls(tags=list(tags or []))


@dataclass
class FieldUpdateConfig:
    field: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldUpdateConfig":
        if not data.get("field"):
            raise _invalid("update_field action requires a field")
        return cls(field=data["field"], value=data.get("value"))


@dataclass
class TaskActionConfig:
    title: str = "Follow up"
    description: str = ""
    assignee: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: str = "medium"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskActionConfig":
        return cls(
            title=data.get("title", "Follow up"),
            description=data.get("description", ""),
            assignee=data.get("assignee"),
            due_date=_parse_datetime(_pick(data, "due_date", "dueDate"), "dueDate"),
            priority=data.get("priority", "medium"),
        )


@dataclass
class WaitActionConfig:
    duration: float = 0
    unit: str = "minutes"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WaitActionConfig":
        duration = data.get("duration", 0) or 0
        if not isinstance(duration, numbers.Real) or isinstance(duration, bool) or duration < 0:
            raise _invalid("wait duration must be a non-negative number", duration=duration)
        return cls(duration=duration, unit=data.get("unit", "minutes"))

    @property
    def milliseconds(self) -> int:
        return parse_duration(self.duration, self.unit)


@dataclass
class WebhookActionConfig:
    url: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookActionConfig":
        return cls(
            url=data.get("url"),
            method=(data.get("method") or "POST").upper(),
            headers=dict(data.get("headers") or {}),
            body=_pick(data, "body", "webhookBody"),
        )


@dataclass
class SegmentActionConfig:
    segment_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SegmentActionConfig":
        return cls(segment_id=_pick(data, "segment_id", "segmentId"))


@dataclass
class RawActionConfig:
    """Config of an action type the engine does not know."""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawActionConfig":
        return cls(data=dict(data))


ActionConfig = Union[
    EmailActionConfig, MessageActionConfig, TagActionConfig, FieldUpdateConfig,
    TaskActionConfig, WaitActionConfig, WebhookActionConfig, SegmentActionConfig,
    RawActionConfig,
]

CONFIG_TYPES = {
    ActionType.SEND_EMAIL.value: EmailActionConfig,
    ActionType.SEND_SMS.value: MessageActionConfig,
    ActionType.SEND_WHATSAPP.value: MessageActionConfig,
    ActionType.ADD_TAG.value: TagActionConfig,
    ActionType.REMOVE_TAG.value: TagActionConfig,
    ActionType.UPDATE_FIELD.value: FieldUpdateConfig,
    ActionType.CREATE_TASK.value: TaskActionConfig,
    ActionType.WAIT.value: WaitActionConfig,
    ActionType.WEBHOOK.value: WebhookActionConfig,
    ActionType.ADD_TO_SEGMENT.value: SegmentActionConfig,
    ActionType.REMOVE_FROM_SEGMENT.value: SegmentActionConfig,
}


def decode_action_config(action_type: str, data: Optional[Dict[str, Any]]) -> ActionConfig:
    """Decode a free-form config map into the typed config for ``action_type``."""
    config_cls = CONFIG_TYPES.get(action_type, RawActionConfig)
    return config_cls.from_dict(data or {})


def _config_to_dict(config: ActionConfig) -> Dict[str, Any]:
    if isinstance(config, RawActionConfig):
        return dict(config.data)
    data = dict(vars(config))
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


@dataclass
class Action:
    """A single step of a workflow."""
    id: str
    type: str
    config: ActionConfig = field(default_factory=RawActionConfig)
    delay: int = 0  # milliseconds
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "Action":
        action_type = data.get("type")
        if not action_type:
            raise _invalid("Action is missing a type", index=index)

        delay = data.get("delay") or 0
        if not isinstance(delay, (int, float)) or isinstance(delay, bool) or delay < 0:
            raise _invalid("Action delay must be a non-negative number of milliseconds", delay=delay)

        return cls(
            id=str(data.get("id") or f"action_{index + 1}"),
            type=action_type,
            config=decode_action_config(action_type, data.get("config")),
            delay=int(delay),
            conditions=_parse_conditions(data.get("conditions")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "config": _config_to_dict(self.config),
            "delay": self.delay,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass
class WorkflowSettings:
    """Reentry and execution limits."""
    allow_reentry: bool = False
    exit_on_conversion: bool = False
    max_executions_per_lead: int = 1
    execution_window: Optional[Dict[str, str]] = None  # start, end, timezone

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowSettings":
        max_executions = _pick(data, "max_executions_per_lead", "maxExecutionsPerLead", 1)
        if not isinstance(max_executions, int) or max_executions < 1:
            raise _invalid("maxExecutionsPerLead must be an integer >= 1", value=max_executions)
        return cls(
            allow_reentry=bool(_pick(data, "allow_reentry", "allowReentry", False)),
            exit_on_conversion=bool(_pick(data, "exit_on_conversion", "exitOnConversion", False)),
            max_executions_per_lead=max_executions,
            execution_window=_pick(data, "execution_window", "executionWindow"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allow_reentry": self.allow_reentry,
            "exit_on_conversion": self.exit_on_conversion,
            "max_executions_per_lead": self.max_executions_per_lead,
            "execution_window": self.execution_window,
        }


@dataclass
class WorkflowDefinition:
    """A complete workflow definition."""
    id: str
    name: str
    description: str = ""
    trigger: Trigger = field(default_factory=lambda: Trigger(TriggerType.MANUAL))
    conditions: List[Condition] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    status: WorkflowStatus = WorkflowStatus.DRAFT
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Parse a definition, decoding every action config once."""
        if not isinstance(data, dict):
            raise _invalid("Workflow definition must be an object")

        workflow_id = data.get("id")
        if not workflow_id:
            raise _invalid("Workflow definition requires an id")

        try:
            status = WorkflowStatus(data.get("status", "draft"))
        except ValueError:
            raise _invalid(f"Unknown workflow status: {data.get('status')}", workflow_id=workflow_id)

        try:
            return cls._parse(data, workflow_id, status)
        except (TypeError, AttributeError, ValueError) as e:
            # Wrong shapes deeper in the document, e.g. a string where an object belongs
            raise _invalid(f"Malformed workflow definition: {e}", workflow_id=workflow_id)

    @classmethod
    def _parse(cls, data: Dict[str, Any], workflow_id: Any, status: WorkflowStatus) -> "WorkflowDefinition":
        actions = [Action.from_dict(a, i) for i, a in enumerate(data.get("actions") or [])]
        seen = set()
        for action in actions:
            if action.id in seen:
                raise _invalid(f"Duplicate action id: {action.id}", workflow_id=workflow_id)
            seen.add(action.id)

        return cls(
            id=str(workflow_id),
            name=data.get("name") or str(workflow_id),
            description=data.get("description", ""),
            trigger=Trigger.from_dict(data.get("trigger") or {}),
            conditions=_parse_conditions(data.get("conditions")),
            actions=actions,
            settings=WorkflowSettings.from_dict(data.get("settings") or {}),
            status=status,
            created_at=_parse_datetime(_pick(data, "created_at", "createdAt"), "createdAt") or datetime.now(),
            updated_at=_parse_datetime(_pick(data, "updated_at", "updatedAt"), "updatedAt") or datetime.now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger.to_dict(),
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "settings": self.settings.to_dict(),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


_ALLOWED_TRANSITIONS = {
    ExecutionStatus.PENDING: (ExecutionStatus.RUNNING,) + TERMINAL_STATUSES,
    ExecutionStatus.RUNNING: TERMINAL_STATUSES,
}


@dataclass
class WorkflowExecution:
    """A single run of a workflow for one lead."""
    workflow_id: str
    lead_id: str
    total_steps: int
    id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    context: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    _context_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def set_output(self, action_id: str, output: Dict[str, Any]):
        """Record an action's output; readers only ever see copies of the context."""
        with self._context_lock:
            self.context.setdefault("outputs", {})[action_id] = output

    def context_snapshot(self) -> Dict[str, Any]:
        with self._context_lock:
            return copy.deepcopy(self.context)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, status: ExecutionStatus):
        if status not in _ALLOWED_TRANSITIONS.get(self.status, ()):
            raise ValueError(f"Illegal execution transition {self.status.value} -> {status.value}")
        self.status = status

    def mark_running(self):
        self._transition(ExecutionStatus.RUNNING)

    def advance(self, step: int):
        """Move the step pointer forward; it never moves back or past total_steps."""
        if step < self.current_step or step > self.total_steps:
            raise ValueError(f"Invalid step {step} (current {self.current_step}, total {self.total_steps})")
        self.current_step = step

    def finish(self, status: ExecutionStatus, error: Optional[str] = None, now: Optional[datetime] = None):
        """Move to a terminal status and stamp completed_at."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not a terminal status")
        self._transition(status)
        self.error = error
        self.completed_at = now or datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "lead_id": self.lead_id,
            "status": self.status.value,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "context": self.context_snapshot(),
            "error": self.error,
        }


@dataclass
class LeadBehavior:
    """A tracked lead behaviour; write-once."""
    lead_id: str
    type: str
    source: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    session_id: Optional[str] = None
    id: str = field(default_factory=lambda: f"bhv_{uuid.uuid4().hex[:12]}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadBehavior":
        lead_id = _pick(data, "lead_id", "leadId")
        if lead_id is None or not data.get("type"):
            raise ValueError("Behavior requires lead_id and type")
        try:
            BehaviorType(data["type"])
        except ValueError:
            allowed = ", ".join(t.value for t in BehaviorType)
            raise ValueError(f"Unknown behavior type: {data['type']} (expected one of {allowed})")
        kwargs = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(
            lead_id=str(lead_id),
            type=data["type"],
            source=data.get("source", ""),
            data=dict(data.get("data") or {}),
            timestamp=parse_timestamp(data["timestamp"]) if data.get("timestamp") else datetime.now(),
            session_id=_pick(data, "session_id", "sessionId"),
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lead_id": self.lead_id,
            "type": self.type,
            "source": self.source,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
        }
