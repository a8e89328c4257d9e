"""Tests for lead, execution and task storage."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from leadflow.core.config import ConfigManager, LeadflowConfig, load_config, validate_whatsapp_env
from leadflow.storage import JsonExecutionStore, LeadDatabase
from leadflow.storage.models import Lead
from leadflow.workflows.models import ExecutionStatus, WorkflowExecution
from leadflow.workflows.tasks import TaskManager, TaskPriority, TaskStatus


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_data_dir):
    """Create a lead database in a temp directory."""
    return LeadDatabase(temp_data_dir / "leads.db")


class TestLeadDatabase:
    """Tests for LeadDatabase."""

    def test_create_and_get(self, db):
        """Test a lead round-trips through SQLite with custom fields."""
        lead = db.create_lead(Lead(source="zillow", name="Jo Smith", phone="555-123-4567",
                                   tags=["buyer"], fields={"budget": 450000}))

        loaded = db.get_lead(lead.id)

        assert lead.id == "1"
        assert loaded.name == "Jo Smith"
        assert loaded.tags == ["buyer"]
        assert loaded.get("budget") == 450000
        assert db.get_lead("999") is None
        assert db.get_lead("not-a-number") is None

    def test_update_lead(self, db):
        """Test partial updates keep other attributes."""
        lead = db.create_lead(Lead(name="Jo Smith", email="jo@example.com"))

        updated = db.update_lead(lead.id, {"status": "contacted", "timeline": "3 months"})

        assert updated.status == "contacted"
        reloaded = db.get_lead(lead.id)
        assert reloaded.email == "jo@example.com"
        assert reloaded.get("timeline") == "3 months"

    def test_update_missing_lead(self, db):
        """Test updating an unknown lead raises KeyError."""
        with pytest.raises(KeyError):
            db.update_lead("42", {"status": "lost"})

    def test_find_by_phone_with_country_code(self, db):
        """Test phone lookup tolerates formatting and a missing country code."""
        lead = db.create_lead(Lead(name="Jo", phone="(555) 123-4567"))

        assert db.find_by_phone("+1 555 123 4567").id == lead.id
        assert db.find_by_phone("5551234567").id == lead.id
        assert db.find_by_phone("5559999999") is None
        assert db.find_by_phone("") is None

    def test_activities(self, db):
        """Test activity records are stored newest first."""
        lead = db.create_lead(Lead(name="Jo"))
        db.record_activity(1, "page_view", "lead", lead.id, "viewed", datetime(2024, 1, 1, 9, 0))
        db.record_activity(1, "link_click", "lead", lead.id, "clicked", datetime(2024, 1, 2, 9, 0))

        activities = db.get_activities(lead.id)

        assert [a.action_type for a in activities] == ["link_click", "page_view"]


class TestJsonExecutionStore:
    """Tests for the execution mirror."""

    def test_save_overwrites_snapshot(self, temp_data_dir):
        """Test repeated saves keep one record per execution."""
        store = JsonExecutionStore(str(temp_data_dir / "executions.json"))
        execution = WorkflowExecution(workflow_id="wf1", lead_id="L1", total_steps=1)

        store.save(execution)
        execution.mark_running()
        execution.finish(ExecutionStatus.COMPLETED)
        store.save(execution)

        records = JsonExecutionStore(str(temp_data_dir / "executions.json")).load_all()
        assert len(records) == 1
        assert records[0]["status"] == "completed"


class TestTaskManager:
    """Tests for TaskManager."""

    def test_defaults(self):
        """Test a task is due tomorrow with a reminder a day earlier."""
        manager = TaskManager()

        task = manager.create_task("Call Jo", lead_id="L1", priority="nonsense")

        assert task.priority == TaskPriority.MEDIUM
        assert task.due_date - datetime.now() <= timedelta(days=1)
        assert task.due_date - task.reminder_date == timedelta(hours=24)

    def test_persistence_and_filters(self, temp_data_dir):
        """Test tasks persist and closed tasks are hidden by default."""
        path = str(temp_data_dir / "tasks.json")
        manager = TaskManager(path)
        soon = manager.create_task("Soon", lead_id="L1", due_date=datetime(2030, 1, 1), priority="low")
        urgent = manager.create_task("Urgent", lead_id="L1", due_date=datetime(2030, 1, 1), priority="urgent")
        done = manager.create_task("Done", lead_id="L1", workflow_id="wf1")
        manager.complete_task(done.id)

        reloaded = TaskManager(path)

        assert [t.id for t in reloaded.get_tasks(lead_id="L1")] == [urgent.id, soon.id]
        assert [t.id for t in reloaded.get_tasks(status=TaskStatus.COMPLETED)] == [done.id]
        assert reloaded.get_task(done.id).completed_at is not None


class TestConfig:
    """Tests for configuration loading."""

    def test_env_overrides(self):
        """Test environment variables fill in WhatsApp and Twilio settings."""
        config = LeadflowConfig().apply_env({
            "WHATSAPP_PHONE_NUMBER_ID": "1",
            "WHATSAPP_BUSINESS_ACCOUNT_ID": "2",
            "WHATSAPP_ACCESS_TOKEN": "t",
            "WHATSAPP_WEBHOOK_VERIFY_TOKEN": "v",
            "WHATSAPP_ENABLED": "true",
            "TWILIO_ACCOUNT_SID": "AC1",
            "TWILIO_AUTH_TOKEN": "secret",
        })

        assert config.whatsapp.enabled is True
        assert config.whatsapp.is_complete is True
        assert config.twilio.account_sid == "AC1"

    def test_validate_whatsapp_env(self):
        """Test missing variables are listed."""
        result = validate_whatsapp_env({"WHATSAPP_ACCESS_TOKEN": "t"})

        assert result["valid"] is False
        assert "WHATSAPP_APP_SECRET" in result["missing"]
        assert "WHATSAPP_ACCESS_TOKEN" not in result["missing"]

    def test_save_and_load(self, temp_data_dir):
        """Test configuration persists to JSON."""
        path = temp_data_dir / "config.json"
        manager = ConfigManager(path)
        manager.config.engine.count_in_flight_executions = True
        manager.config.compliance.business_hours_end = 20
        manager.save_config()

        config = load_config(path, use_env=False)

        assert config.engine.count_in_flight_executions is True
        assert config.compliance.business_hours_end == 20
