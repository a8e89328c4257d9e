"""Follow-up tasks created by workflow actions."""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    """Task status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(Enum):
    """Task priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskType(Enum):
    """Types of follow-up tasks."""
    CALL = "call"
    EMAIL = "email"
    TEXT = "text"
    MEETING = "meeting"
    FOLLOW_UP = "follow_up"
    OTHER = "other"


@dataclass
class Task:
    """A follow-up task for an agent."""
    id: str
    title: str
    description: str = ""
    task_type: TaskType = TaskType.FOLLOW_UP
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING

    lead_id: str = ""
    workflow_id: str = ""
    assigned_to: str = ""

    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    automation_generated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "task_type": self.task_type.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "lead_id": self.lead_id,
            "workflow_id": self.workflow_id,
            "assigned_to": self.assigned_to,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "reminder_date": self.reminder_date.isoformat() if self.reminder_date else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "automation_generated": self.automation_generated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        def _dt(key):
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            task_type=TaskType(data.get("task_type", "follow_up")),
            priority=TaskPriority(data.get("priority", "medium")),
            status=TaskStatus(data.get("status", "pending")),
            lead_id=data.get("lead_id", ""),
            workflow_id=data.get("workflow_id", ""),
            assigned_to=data.get("assigned_to", ""),
            due_date=_dt("due_date"),
            reminder_date=_dt("reminder_date"),
            completed_at=_dt("completed_at"),
            created_at=_dt("created_at") or datetime.now(),
            updated_at=_dt("updated_at") or datetime.now(),
            automation_generated=data.get("automation_generated", False),
        )


def _priority(value: Any) -> TaskPriority:
    if isinstance(value, TaskPriority):
        return value
    try:
        return TaskPriority(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown task priority '{value}', using medium")
        return TaskPriority.MEDIUM


class TaskManager:
    """Stores follow-up tasks in memory, or in a JSON file when a path is given."""

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()
        self._load_data()

    def _load_data(self):
        """Load tasks from storage."""
        if self.storage_path is None or not self.storage_path.exists():
            return
        with open(self.storage_path, 'r') as f:
            data = json.load(f)
        for task_data in data.get('tasks', []):
            task = Task.from_dict(task_data)
            self.tasks[task.id] = task

    def _save_data(self):
        """Save tasks to storage."""
        if self.storage_path is None:
            return
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            'tasks': [t.to_dict() for t in self.tasks.values()],
            'updated_at': datetime.now().isoformat(),
        }
        with open(self.storage_path, 'w') as f:
            json.dump(data, f, indent=2)

    def create_task(
        self,
        title: str,
        description: str = "",
        lead_id: str = "",
        workflow_id: str = "",
        assigned_to: Optional[str] = None,
        due_date: Optional[datetime] = None,
        priority: Any = TaskPriority.MEDIUM,
        task_type: TaskType = TaskType.FOLLOW_UP,
        automation_generated: bool = True
    ) -> Task:
        """Create a new task; due tomorrow unless a date is given."""
        task = Task(
            id=str(uuid.uuid4())[:8],
            title=title,
            description=description,
            task_type=task_type,
            priority=_priority(priority),
            lead_id=str(lead_id or ""),
            workflow_id=workflow_id or "",
            assigned_to=assigned_to or "",
            due_date=due_date or datetime.now() + timedelta(days=1),
            automation_generated=automation_generated,
        )

        # Remind 24 hours before due
        task.reminder_date = task.due_date - timedelta(hours=24)

        with self._lock:
            self.tasks[task.id] = task
            self._save_data()

        logger.info(f"Created task {task.id} '{title}' for lead {task.lead_id or '-'}")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a task by ID."""
        return self.tasks.get(task_id)

    def complete_task(self, task_id: str) -> Optional[Task]:
        """Mark a task as completed."""
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                return None
            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now()
            task.updated_at = datetime.now()
            self._save_data()
        return task

    def get_tasks(
        self,
        lead_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        include_closed: bool = False
    ) -> List[Task]:
        """Get tasks with filters, soonest due first."""
        tasks = list(self.tasks.values())

        if lead_id:
            tasks = [t for t in tasks if t.lead_id == str(lead_id)]
        if workflow_id:
            tasks = [t for t in tasks if t.workflow_id == workflow_id]
        if status:
            tasks = [t for t in tasks if t.status == status]
        elif not include_closed:
            tasks = [t for t in tasks if t.status not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)]

        priority_order = {TaskPriority.URGENT: 0, TaskPriority.HIGH: 1, TaskPriority.MEDIUM: 2, TaskPriority.LOW: 3}
        tasks.sort(key=lambda t: (t.due_date or datetime.max, priority_order.get(t.priority, 2)))
        return tasks
