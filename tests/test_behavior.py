"""Tests for behaviour tracking."""

import pytest

from leadflow.storage.leads import InMemoryLeadStore
from leadflow.storage.models import Lead
from leadflow.workflows import BehaviorTracker, LeadBehavior, WorkflowEngine


class BrokenActivityStore(InMemoryLeadStore):
    def record_activity(self, *args, **kwargs):
        raise RuntimeError("activity table locked")


def listening_workflow(workflow_id, event_type, source, status="active"):
    return {
        "id": workflow_id,
        "status": status,
        "trigger": {"type": "link_clicked", "eventData": {"type": event_type, "source": source}},
        "actions": [{"id": "tag", "type": "add_tag", "config": {"tag": "engaged"}}],
    }


@pytest.fixture
def lead_store():
    return InMemoryLeadStore([Lead(id="L1", name="Jo Smith")])


@pytest.fixture
def engine(lead_store):
    engine = WorkflowEngine(lead_store, sleep=lambda s: None)
    engine.register_workflow(listening_workflow("clicks", "link_click", "newsletter"))
    engine.register_workflow(listening_workflow("other_source", "link_click", "ads"))
    engine.register_workflow(listening_workflow("paused", "link_click", "newsletter", status="paused"))
    return engine


class TestBehaviorTracker:
    """Tests for BehaviorTracker."""

    def test_records_activity_and_triggers(self, engine, lead_store):
        """Test the behaviour is logged and only matching active workflows start."""
        tracker = BehaviorTracker(engine, lead_store)

        started = tracker.track({"lead_id": "L1", "type": "link_click", "source": "newsletter",
                                 "data": {"url": "https://example.com/open-house"}})

        assert [e.workflow_id for e in started] == ["clicks"]
        assert started[0].context["trigger"] == {"url": "https://example.com/open-house"}
        activity = lead_store.get_activities("L1")[0]
        assert activity.user_id == 1
        assert activity.target_type == "lead"
        assert activity.description == "link_click from newsletter"
        engine.wait_for_execution(started[0].id, 5)

    def test_rejected_trigger_is_logged(self, engine, lead_store):
        """Test a workflow at its execution limit does not break tracking."""
        tracker = BehaviorTracker(engine, lead_store)
        behavior = LeadBehavior(lead_id="L1", type="link_click", source="newsletter")

        first = tracker.track(behavior)
        engine.wait_for_execution(first[0].id, 5)

        assert tracker.track(behavior) == []
        assert len(lead_store.get_activities("L1")) == 2

    def test_storage_failure_returns_nothing(self):
        """Test an activity write failure is logged and nothing is triggered."""
        store = BrokenActivityStore([Lead(id="L1")])
        engine = WorkflowEngine(store, sleep=lambda s: None)
        engine.register_workflow(listening_workflow("clicks", "link_click", "newsletter"))

        started = BehaviorTracker(engine, store).track(
            LeadBehavior(lead_id="L1", type="link_click", source="newsletter")
        )

        assert started == []
        assert engine.get_executions() == []
