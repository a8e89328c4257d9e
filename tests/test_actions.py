"""Tests for workflow action execution."""

from datetime import datetime

import pytest
import requests

from leadflow.storage.leads import InMemoryLeadStore
from leadflow.storage.models import Lead
from leadflow.workflows import Action, ActionExecutor, EngineError, ErrorCode, ProviderRegistry, SMSProvider
from leadflow.workflows.tasks import TaskManager, TaskPriority

from fakes import FakeResponse, FakeSession


@pytest.fixture
def lead_store():
    return InMemoryLeadStore([Lead(id="L1", name="Jo Smith", phone="5551234567")])


@pytest.fixture
def session():
    return FakeSession([FakeResponse(200, {"ok": True})])


@pytest.fixture
def executor(lead_store, session):
    """Executor with an SMS provider, in-memory tasks and a fake HTTP session."""
    return ActionExecutor(
        ProviderRegistry([SMSProvider(lead_store)]),
        lead_store,
        TaskManager(),
        sleep=lambda s: None,
        session=session,
        webhook_timeout=5,
    )


def context(**extra):
    data = {"workflow_id": "wf1", "execution_id": "exec_1", "trigger": {"form": "contact"}, "outputs": {}}
    data.update(extra)
    return data


class TestSendActions:
    """Tests for message-sending actions."""

    def test_send_through_registered_provider(self, executor):
        """Test an SMS action is routed to the SMS provider."""
        action = Action.from_dict({"id": "a1", "type": "send_sms", "config": {"message": "Hi {{first_name}}"}})

        output = executor.execute(action, "L1", context())

        assert output["success"] is True
        assert output["message_id"].startswith("sms_")

    def test_missing_provider_is_fatal(self, executor):
        """Test a send for an unregistered channel raises a non-recoverable error."""
        action = Action.from_dict({"id": "a1", "type": "send_whatsapp", "config": {"message": "Hi"}})

        with pytest.raises(EngineError) as exc_info:
            executor.execute(action, "L1", context())

        assert exc_info.value.code == ErrorCode.PROVIDER_NOT_FOUND
        assert exc_info.value.recoverable is False
        assert exc_info.value.context["channel"] == "whatsapp"

    def test_provider_failure_is_recoverable(self, executor):
        """Test a lead without a phone produces a recoverable SMS error."""
        action = Action.from_dict({"id": "a1", "type": "send_sms", "config": {"message": "Hi"}})

        with pytest.raises(EngineError) as exc_info:
            executor.execute(action, "missing", context())

        assert exc_info.value.code == ErrorCode.SMS_SEND_ERROR
        assert exc_info.value.recoverable is True


class TestWebhookAction:
    """Tests for outbound webhook actions."""

    def test_default_payload(self, executor, session):
        """Test the default body carries lead, workflow, execution and trigger."""
        action = Action.from_dict({
            "id": "hook",
            "type": "webhook",
            "config": {"url": "https://crm.example.com/hook", "headers": {"X-Key": "abc"}},
        })

        output = executor.execute(action, "L1", context())

        assert output == {"status_code": 200}
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://crm.example.com/hook"
        assert call["timeout"] == 5
        assert call["headers"] == {"Content-Type": "application/json", "X-Key": "abc"}
        assert call["json"] == {
            "lead_id": "L1",
            "workflow_id": "wf1",
            "execution_id": "exec_1",
            "trigger": {"form": "contact"},
        }

    def test_custom_body_and_method(self, executor, session):
        """Test a configured body and method are sent as given."""
        action = Action.from_dict({
            "id": "hook",
            "type": "webhook",
            "config": {"url": "https://crm.example.com/hook", "method": "put", "webhookBody": {"event": "x"}},
        })

        executor.execute(action, "L1", context())

        assert session.calls[0]["method"] == "PUT"
        assert session.calls[0]["json"] == {"event": "x"}

    def test_non_2xx_raises_webhook_error(self, lead_store):
        """Test a non-2xx response becomes a recoverable WEBHOOK_ERROR."""
        executor = ActionExecutor(
            ProviderRegistry(), lead_store, session=FakeSession([FakeResponse(404, {"error": "gone"})])
        )
        action = Action.from_dict({"id": "hook", "type": "webhook", "config": {"url": "https://x.test/h"}})

        with pytest.raises(EngineError) as exc_info:
            executor.execute(action, "L1", context())

        assert exc_info.value.code == ErrorCode.WEBHOOK_ERROR
        assert exc_info.value.recoverable is True
        assert exc_info.value.context["status_code"] == 404

    def test_connection_error_raises_webhook_error(self, lead_store):
        """Test a transport failure becomes a WEBHOOK_ERROR."""
        executor = ActionExecutor(
            ProviderRegistry(), lead_store, session=FakeSession(error=requests.ConnectionError("refused"))
        )
        action = Action.from_dict({"id": "hook", "type": "webhook", "config": {"url": "https://x.test/h"}})

        with pytest.raises(EngineError) as exc_info:
            executor.execute(action, "L1", context())

        assert exc_info.value.code == ErrorCode.WEBHOOK_ERROR

    def test_missing_url_skipped(self, executor, session):
        """Test a webhook action without a url does nothing."""
        action = Action.from_dict({"id": "hook", "type": "webhook", "config": {}})

        assert executor.execute(action, "L1", context()) == {"skipped": True}
        assert session.calls == []


class TestLocalActions:
    """Tests for actions that change local state."""

    def test_update_field(self, executor, lead_store):
        """Test update_field writes to the lead store, including custom fields."""
        executor.execute(
            Action.from_dict({"id": "a", "type": "update_field", "config": {"field": "budget", "value": 450000}}),
            "L1",
            context(),
        )

        assert lead_store.get_lead("L1").get("budget") == 450000

    def test_create_task(self, executor):
        """Test create_task stores a follow-up task tied to the workflow."""
        due = datetime(2030, 1, 15, 9, 0)
        output = executor.execute(
            Action.from_dict({
                "id": "t",
                "type": "create_task",
                "config": {"title": "Call Jo", "assignee": "agent-7", "priority": "high",
                           "dueDate": due.isoformat()},
            }),
            "L1",
            context(),
        )

        task = executor.task_manager.get_task(output["task_id"])
        assert task.title == "Call Jo"
        assert task.workflow_id == "wf1"
        assert task.lead_id == "L1"
        assert task.priority == TaskPriority.HIGH
        assert task.due_date == due
        assert task.automation_generated is True

    def test_tags_and_segments_not_persisted(self, executor):
        """Test tag and segment actions report that nothing was stored."""
        tag = executor.execute(
            Action.from_dict({"id": "t", "type": "remove_tag", "config": {"tag": "cold"}}), "L1", context()
        )
        segment = executor.execute(
            Action.from_dict({"id": "s", "type": "add_to_segment", "config": {"segmentId": "vip"}}), "L1", context()
        )

        assert tag == {"tags": ["cold"], "persisted": False}
        assert segment == {"segment_id": "vip", "persisted": False}

    def test_register_custom_handler(self, executor):
        """Test a registered handler replaces the unknown-type skip."""
        executor.register_handler("score", lambda action, lead_id, ctx: {"scored": lead_id})

        output = executor.execute(Action.from_dict({"id": "x", "type": "score"}), "L1", context())

        assert output == {"scored": "L1"}
