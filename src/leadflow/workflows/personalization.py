"""Personalization rules: pick the best content variant for a lead."""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..storage.leads import LeadStore
from .conditions import ConditionEvaluator
from .models import Condition, _invalid, _parse_conditions, _parse_datetime, _pick
from .providers import substitute_variables

logger = logging.getLogger(__name__)

_UNRESOLVED = re.compile(r"\{\{\w+\}\}")


class RuleStatus(Enum):
    """Personalization rule status."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"


CONTENT_TYPES = ("text", "image", "video", "html", "component")


@dataclass
class PersonalizationRule:
    """Content shown to leads matching the rule's conditions."""
    id: str
    name: str
    content: str
    content_type: str = "text"
    priority: int = 0
    status: RuleStatus = RuleStatus.DRAFT
    segments: List[str] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)
    fallback: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonalizationRule":
        if not isinstance(data, dict) or not data.get("id"):
            raise _invalid("Personalization rule requires an id")

        content = data.get("content") or {}
        if isinstance(content, str):
            content = {"type": "text", "content": content}
        if not isinstance(content, dict) or not isinstance(content.get("content"), str):
            raise _invalid("Personalization rule requires text content", rule_id=data.get("id"))

        content_type = content.get("type", "text")
        if content_type not in CONTENT_TYPES:
            raise _invalid(f"Unknown content type: {content_type}", rule_id=data.get("id"))

        try:
            status = RuleStatus(data.get("status", "draft"))
        except ValueError:
            raise _invalid(f"Unknown rule status: {data.get('status')}", rule_id=data.get("id"))

        priority = data.get("priority", 0)
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise _invalid("Rule priority must be an integer", rule_id=data.get("id"))

        try:
            conditions = _parse_conditions(data.get("conditions"))
        except (TypeError, AttributeError) as e:
            raise _invalid(f"Malformed rule conditions: {e}", rule_id=data.get("id"))

        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            content=content["content"],
            content_type=content_type,
            priority=priority,
            status=status,
            segments=list(data.get("segments") or []),
            conditions=conditions,
            fallback=content.get("fallback"),
            created_at=_parse_datetime(_pick(data, "created_at", "createdAt"), "createdAt") or datetime.now(),
            updated_at=_parse_datetime(_pick(data, "updated_at", "updatedAt"), "updatedAt") or datetime.now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content": {"type": self.content_type, "content": self.content, "fallback": self.fallback},
            "priority": self.priority,
            "status": self.status.value,
            "segments": self.segments,
            "conditions": [c.to_dict() for c in self.conditions],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class Personalizer:
    """Holds personalization rules and renders the winning rule for a lead."""

    def __init__(self, lead_store: LeadStore, conditions: Optional[ConditionEvaluator] = None):
        self.lead_store = lead_store
        self.conditions = conditions or ConditionEvaluator(lead_store)
        self.rules: Dict[str, PersonalizationRule] = {}
        self._lock = threading.Lock()

    def register_rule(self, rule: Union[PersonalizationRule, Dict[str, Any]]) -> PersonalizationRule:
        """Insert or overwrite a rule."""
        if not isinstance(rule, PersonalizationRule):
            rule = PersonalizationRule.from_dict(rule)
        with self._lock:
            self.rules[rule.id] = rule
        logger.info(f"Registered personalization rule {rule.id} (priority {rule.priority})")
        return rule

    def list_rules(self) -> List[PersonalizationRule]:
        with self._lock:
            return sorted(self.rules.values(), key=lambda r: -r.priority)

    def get_content(
        self,
        lead_id: str,
        content_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Render the highest-priority active rule matching the lead.

        Returns None when the lead is unknown or no rule matches.
        """
        lead = self.lead_store.get_lead(str(lead_id))
        if lead is None:
            return None

        context = context or {}
        for rule in self.list_rules():
            if rule.status != RuleStatus.ACTIVE:
                continue
            if content_type and rule.content_type != content_type:
                continue
            if not self.conditions.evaluate(rule.conditions, lead.id, context):
                continue

            content = substitute_variables(rule.content, lead)
            if rule.fallback and _UNRESOLVED.search(content):
                content = substitute_variables(rule.fallback, lead)
            return {"rule_id": rule.id, "type": rule.content_type, "content": content}

        return None
