"""Condition evaluation over lead state."""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..storage.leads import LeadStore
from ..storage.models import Lead
from .models import Condition, parse_timestamp

logger = logging.getLogger(__name__)

# (condition, lead_id, lead, context) -> bool
ConditionHandler = Callable[[Condition, str, Lead, Dict[str, Any]], bool]


def _to_number(value: Any) -> float:
    """Numeric coercion; anything non-numeric becomes NaN so comparisons fail."""
    if value is None:
        return math.nan
    if isinstance(value, str) and not value.strip():
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """Apply a comparison operator; unknown operators pass."""
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "contains":
        return str(expected) in str(actual)
    if operator == "greater_than":
        return _to_number(actual) > _to_number(expected)
    if operator == "less_than":
        return _to_number(actual) < _to_number(expected)
    if operator == "in":
        return isinstance(expected, (list, tuple, set)) and actual in expected
    if operator == "not_in":
        return not (isinstance(expected, (list, tuple, set)) and actual in expected)

    logger.debug(f"Unknown condition operator '{operator}', treating as true")
    return True


class ConditionEvaluator:
    """Evaluates workflow and action conditions against the current lead."""

    def __init__(self, lead_store: LeadStore, clock: Optional[Callable[[], datetime]] = None):
        self.lead_store = lead_store
        self.clock = clock or datetime.now
        self.handlers: Dict[str, ConditionHandler] = {}
        self._register_default_handlers()

    def _register_default_handlers(self):
        self.handlers = {
            "field_value": self._field_value,
            "lead_score": self._lead_score,
            # No segment or behaviour store is wired in; these pass until one is registered
            "segment": lambda condition, lead_id, lead, context: True,
            "behavior": lambda condition, lead_id, lead, context: True,
            "time": self._time,
        }

    def register(self, condition_type: str, handler: ConditionHandler):
        """Register or replace the handler for a condition type."""
        self.handlers[condition_type] = handler

    def evaluate(self, conditions: List[Condition], lead_id: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """AND of all conditions; an empty list is true."""
        if not conditions:
            return True

        context = context or {}
        for condition in conditions:
            if not self.evaluate_condition(condition, lead_id, context):
                return False
        return True

    def evaluate_condition(self, condition: Condition, lead_id: str, context: Dict[str, Any]) -> bool:
        lead = self.lead_store.get_lead(lead_id)
        if lead is None:
            logger.warning(f"Lead {lead_id} not found while evaluating {condition.type} condition")
            return False

        handler = self.handlers.get(condition.type)
        if handler is None:
            logger.debug(f"Unknown condition type '{condition.type}', treating as true")
            return True

        return bool(handler(condition, lead_id, lead, context))

    def _field_value(self, condition: Condition, lead_id: str, lead: Lead, context: Dict[str, Any]) -> bool:
        return compare(lead.get(condition.field), condition.operator, condition.value)

    def _lead_score(self, condition: Condition, lead_id: str, lead: Lead, context: Dict[str, Any]) -> bool:
        score = lead.get("score", 0) or 0
        return compare(score, condition.operator, condition.value)

    def _time(self, condition: Condition, lead_id: str, lead: Lead, context: Dict[str, Any]) -> bool:
        value = condition.value
        try:
            target = parse_timestamp(value)
        except ValueError:
            logger.warning(f"Unparseable time condition value: {value!r}")
            return False

        now = self.clock()
        if target.tzinfo is not None and now.tzinfo is None:
            now = now.astimezone()
        elif target.tzinfo is None and now.tzinfo is not None:
            target = target.astimezone()

        if condition.operator == "greater_than":
            return now > target
        if condition.operator == "less_than":
            return now < target
        return True
