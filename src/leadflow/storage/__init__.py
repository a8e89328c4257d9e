"""Lead, activity and execution-record storage."""

from .models import Lead, LeadStatus, Activity
from .leads import LeadStore, InMemoryLeadStore
from .database import LeadDatabase
from .executions import ExecutionStore, JsonExecutionStore

__all__ = [
    "Lead",
    "LeadStatus",
    "Activity",
    "LeadStore",
    "InMemoryLeadStore",
    "LeadDatabase",
    "ExecutionStore",
    "JsonExecutionStore",
]
