"""Lead lookup/update collaborator used by the workflow engine."""

import re
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Any

from .models import Lead, Activity


def _digits(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


class LeadStore(ABC):
    """Capability the engine needs from lead storage."""

    @abstractmethod
    def get_lead(self, lead_id: str) -> Optional[Lead]:
        """Return a lead or None when it does not exist."""
        pass

    @abstractmethod
    def update_lead(self, lead_id: str, updates: Dict[str, Any]) -> Lead:
        """Apply a partial update and return the updated lead."""
        pass

    @abstractmethod
    def create_lead(self, lead: Lead) -> Lead:
        """Store a new lead, assigning an id if it has none."""
        pass

    @abstractmethod
    def find_by_phone(self, phone: str) -> Optional[Lead]:
        """Find a lead whose phone number matches (digits only)."""
        pass

    @abstractmethod
    def record_activity(
        self,
        user_id: int,
        action_type: str,
        target_type: str,
        target_id: str,
        description: str,
        timestamp: Optional[datetime] = None
    ) -> Activity:
        """Append an activity record."""
        pass


class InMemoryLeadStore(LeadStore):
    """Thread-safe in-memory lead store."""

    def __init__(self, leads: Optional[List[Lead]] = None):
        self._lock = threading.Lock()
        self.leads: Dict[str, Lead] = {}
        self.activities: List[Activity] = []
        for lead in leads or []:
            self.create_lead(lead)

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        with self._lock:
            return self.leads.get(str(lead_id))

    def update_lead(self, lead_id: str, updates: Dict[str, Any]) -> Lead:
        with self._lock:
            lead = self.leads.get(str(lead_id))
            if lead is None:
                raise KeyError(f"Lead not found: {lead_id}")
            lead.apply(updates)
            return lead

    def create_lead(self, lead: Lead) -> Lead:
        with self._lock:
            if lead.id is None:
                lead.id = uuid.uuid4().hex[:8]
            lead.id = str(lead.id)
            self.leads[lead.id] = lead
            return lead

    def find_by_phone(self, phone: str) -> Optional[Lead]:
        wanted = _digits(phone)
        if not wanted:
            return None
        with self._lock:
            for lead in self.leads.values():
                digits = _digits(lead.phone)
                if not digits:
                    continue
                if digits == wanted:
                    return lead
                # Stored numbers may lack the country code
                if min(len(digits), len(wanted)) >= 10 and (
                    wanted.endswith(digits) or digits.endswith(wanted)
                ):
                    return lead
        return None

    def record_activity(
        self,
        user_id: int,
        action_type: str,
        target_type: str,
        target_id: str,
        description: str,
        timestamp: Optional[datetime] = None
    ) -> Activity:
        activity = Activity(
            user_id=user_id,
            action_type=action_type,
            target_type=target_type,
            target_id=str(target_id),
            description=description,
            created_at=timestamp or datetime.now(),
        )
        with self._lock:
            activity.id = len(self.activities) + 1
            self.activities.append(activity)
        return activity

    def get_activities(self, target_id: Optional[str] = None) -> List[Activity]:
        with self._lock:
            if target_id is None:
                return list(self.activities)
            return [a for a in self.activities if a.target_id == str(target_id)]
