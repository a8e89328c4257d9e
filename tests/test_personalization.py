"""Tests for personalization rules."""

import pytest

from leadflow.storage.leads import InMemoryLeadStore
from leadflow.storage.models import Lead
from leadflow.workflows import EngineError, ErrorCode, PersonalizationRule, RuleStatus, WorkflowEngine


def rule(rule_id, content, priority=0, status="active", **extra):
    data = {"id": rule_id, "content": {"type": "text", "content": content}, "priority": priority, "status": status}
    data.update(extra)
    return data


@pytest.fixture
def lead_store():
    return InMemoryLeadStore([
        Lead(id="L1", name="Jo Smith", email="jo@example.com", fields={"city": "Columbus"}),
    ])


@pytest.fixture
def engine(lead_store):
    return WorkflowEngine(lead_store, sleep=lambda s: None)


class TestPersonalizationRule:
    """Tests for parsing personalization rules."""

    def test_from_dict(self):
        """Test rules accept nested content and camelCase timestamps."""
        parsed = PersonalizationRule.from_dict(rule(
            "r1", "Hi {{first_name}}", priority=5,
            conditions=[{"type": "field_value", "field": "city", "value": "Columbus"}],
            createdAt="2024-06-03T12:00:00Z",
        ))

        assert parsed.status == RuleStatus.ACTIVE
        assert parsed.priority == 5
        assert parsed.conditions[0].field == "city"
        assert parsed.created_at.year == 2024

    @pytest.mark.parametrize("data", [
        {"content": "no id"},
        {"id": "r1"},
        {"id": "r1", "content": {"type": "hologram", "content": "x"}},
        {"id": "r1", "content": "x", "status": "live"},
        {"id": "r1", "content": "x", "priority": "high"},
        {"id": "r1", "content": "x", "conditions": ["x"]},
    ])
    def test_invalid_rules(self, data):
        """Test malformed rules are rejected."""
        with pytest.raises(EngineError) as exc_info:
            PersonalizationRule.from_dict(data)

        assert exc_info.value.code == ErrorCode.INVALID_WORKFLOW


class TestPersonalizedContent:
    """Tests for WorkflowEngine.get_personalized_content."""

    def test_highest_priority_rule_wins(self, engine):
        """Test the active rule with the highest priority is used."""
        engine.register_personalization_rule(rule("low", "Hello {{name}}", priority=1))
        engine.register_personalization_rule(rule("high", "Hi {{first_name}} from {{city}}", priority=10))
        engine.register_personalization_rule(rule("draft", "Draft", priority=99, status="draft"))

        content = engine.get_personalized_content("L1")

        assert content == {"rule_id": "high", "type": "text", "content": "Hi Jo from Columbus"}

    def test_rule_conditions_filter(self, engine):
        """Test a rule whose conditions fail is passed over."""
        engine.register_personalization_rule(rule(
            "ohio", "Ohio deals", priority=10,
            conditions=[{"type": "field_value", "field": "city", "value": "Dayton"}],
        ))
        engine.register_personalization_rule(rule("generic", "Deals for you", priority=1))

        assert engine.get_personalized_content("L1")["rule_id"] == "generic"

    def test_unknown_placeholders_kept_or_fallback(self, engine):
        """Test unresolved placeholders stay put unless the rule has a fallback."""
        engine.register_personalization_rule(rule("plain", "Your agent {{agent}}", priority=1))
        assert engine.get_personalized_content("L1")["content"] == "Your agent {{agent}}"

        engine.register_personalization_rule({
            "id": "fb", "status": "active", "priority": 2,
            "content": {"type": "text", "content": "Your agent {{agent}}", "fallback": "Hi {{first_name}}!"},
        })
        assert engine.get_personalized_content("L1")["content"] == "Hi Jo!"

    def test_content_type_filter(self, engine):
        """Test an explicit content type skips rules of other types."""
        engine.register_personalization_rule({
            "id": "banner", "status": "active", "priority": 10,
            "content": {"type": "html", "content": "<b>{{name}}</b>"},
        })
        engine.register_personalization_rule(rule("text", "Plain", priority=1))

        assert engine.get_personalized_content("L1", "html")["content"] == "<b>Jo Smith</b>"
        assert engine.get_personalized_content("L1", "text")["rule_id"] == "text"
        assert engine.get_personalized_content("L1", "video") is None

    def test_no_match(self, engine):
        """Test unknown leads and empty rule sets give None."""
        assert engine.get_personalized_content("L1") is None

        engine.register_personalization_rule(rule("r1", "Hi"))
        assert engine.get_personalized_content("missing") is None
