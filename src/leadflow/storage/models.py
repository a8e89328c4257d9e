"""Data models for lead storage."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class LeadStatus(Enum):
    """Status of a lead in the pipeline."""

    NEW = "new"
    CONTACTED = "contacted"
    RESPONDED = "responded"
    QUALIFIED = "qualified"
    NURTURING = "nurturing"
    CONVERTED = "converted"
    LOST = "lost"
    ARCHIVED = "archived"


# Attributes stored as real columns; anything else lives in Lead.fields
LEAD_ATTRIBUTES = ("name", "email", "phone", "score", "status", "source", "tags", "notes")


@dataclass
class Lead:
    """A lead known to the outreach engine."""

    id: Optional[str] = None
    source: str = "manual"

    # Contact info
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    score: int = 0
    status: str = LeadStatus.NEW.value
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    # Free-form attributes referenced by workflow conditions
    fields: Dict[str, Any] = field(default_factory=dict)

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def display_name(self) -> str:
        """Get best available name for display."""
        return self.name or self.email or self.phone or f"Lead #{self.id}"

    @property
    def first_name(self) -> str:
        if not self.name:
            return ""
        return self.name.split()[0]

    def get(self, name: str, default: Any = None) -> Any:
        """Read an attribute or custom field by name."""
        if name in LEAD_ATTRIBUTES or name == "id":
            value = getattr(self, name)
            return default if value is None else value
        return self.fields.get(name, default)

    def apply(self, updates: Dict[str, Any]):
        """Apply a partial update to attributes and custom fields."""
        for key, value in updates.items():
            if key in LEAD_ATTRIBUTES:
                setattr(self, key, value)
            elif key != "id":
                self.fields[key] = value
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "score": self.score,
            "status": self.status,
            "tags": list(self.tags),
            "notes": self.notes,
            "fields": dict(self.fields),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Activity:
    """Record of something that happened to a lead."""

    user_id: int
    action_type: str
    target_type: str
    target_id: str
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None
