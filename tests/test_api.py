"""Tests for the admin and ingest REST API."""

import pytest

from leadflow.api.app import create_app
from leadflow.core.services import build_services
from leadflow.storage.leads import InMemoryLeadStore
from leadflow.storage.models import Lead

from fakes import make_client, make_config


def workflow(**overrides):
    data = {
        "id": "wf1",
        "name": "Welcome",
        "status": "active",
        "trigger": {"type": "manual"},
        "actions": [{"id": "mark", "type": "update_field", "config": {"field": "status", "value": "contacted"}}],
    }
    data.update(overrides)
    return data


@pytest.fixture
def lead_store():
    return InMemoryLeadStore([Lead(id="L1", name="Jo Smith", phone="5551234567")])


@pytest.fixture
def services(lead_store):
    return build_services(make_config(), lead_store=lead_store, whatsapp_client=make_client())


@pytest.fixture
def client(services):
    """Flask test client."""
    app = create_app(services)
    app.config["TESTING"] = True
    return app.test_client()


def wait_all(services):
    for execution in services.engine.get_executions():
        services.engine.wait_for_execution(execution.id, 5)


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        """Test health lists the registered channels."""
        data = client.get("/api/health").get_json()

        assert data["status"] == "healthy"
        assert data["channels"] == ["email", "sms", "whatsapp"]
        assert data["workflows"] == 0


class TestWorkflowEndpoints:
    """Tests for workflow registration and triggering."""

    def test_register_and_get(self, client):
        """Test a workflow can be registered and fetched."""
        response = client.post("/api/workflows", json=workflow())

        assert response.status_code == 201
        assert response.get_json()["workflow"]["id"] == "wf1"
        assert client.get("/api/workflows/wf1").get_json()["name"] == "Welcome"
        assert client.get("/api/workflows").get_json()["count"] == 1

    def test_invalid_definition(self, client):
        """Test a malformed definition is a 400 with its error code."""
        response = client.post("/api/workflows", json={"name": "no id"})

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_WORKFLOW"

    @pytest.mark.parametrize("overrides", [
        {"actions": [{"id": "pause", "type": "wait", "config": {"duration": "5"}}]},
        {"createdAt": "yesterday"},
        {"trigger": ["manual"]},
    ])
    def test_malformed_fields_are_client_errors(self, client, overrides):
        """Test wrongly typed fields are 400 INVALID_WORKFLOW rather than server errors."""
        response = client.post("/api/workflows", json=workflow(**overrides))

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_WORKFLOW"

    def test_unknown_workflow(self, client):
        """Test missing workflows are 404s."""
        assert client.get("/api/workflows/nope").status_code == 404

        response = client.post("/api/workflows/nope/trigger", json={"lead_id": "L1"})
        assert response.status_code == 404
        assert response.get_json()["code"] == "WORKFLOW_NOT_FOUND"

    def test_filter_by_status(self, client):
        """Test the status filter and its validation."""
        client.post("/api/workflows", json=workflow())
        client.post("/api/workflows", json=workflow(id="wf2", status="draft"))

        assert client.get("/api/workflows?status=draft").get_json()["count"] == 1
        assert client.get("/api/workflows?status=bogus").status_code == 400

    def test_trigger_runs_in_background(self, client, services, lead_store):
        """Test triggering returns 202 and the execution finishes."""
        client.post("/api/workflows", json=workflow())

        response = client.post("/api/workflows/wf1/trigger", json={"lead_id": "L1", "data": {"why": "test"}})

        assert response.status_code == 202
        execution_id = response.get_json()["execution"]["id"]
        services.engine.wait_for_execution(execution_id, 5)
        data = client.get(f"/api/executions/{execution_id}").get_json()
        assert data["status"] == "completed"
        assert data["context"]["trigger"] == {"why": "test"}
        assert lead_store.get_lead("L1").status == "contacted"

    def test_trigger_rejections(self, client, services):
        """Test inactive workflows and exhausted limits are 409s."""
        client.post("/api/workflows", json=workflow(status="paused"))
        response = client.post("/api/workflows/wf1/trigger", json={"lead_id": "L1"})
        assert response.status_code == 409
        assert response.get_json()["code"] == "WORKFLOW_INACTIVE"

        client.post("/api/workflows/wf1/status", json={"status": "active"})
        client.post("/api/workflows/wf1/trigger", json={"lead_id": "L1"})
        wait_all(services)
        response = client.post("/api/workflows/wf1/trigger", json={"lead_id": "L1"})
        assert response.status_code == 409
        assert response.get_json()["code"] == "MAX_EXECUTIONS_REACHED"

    def test_trigger_requires_lead(self, client):
        """Test lead_id is required."""
        client.post("/api/workflows", json=workflow())

        assert client.post("/api/workflows/wf1/trigger", json={}).status_code == 400

    def test_set_status_validation(self, client):
        """Test an unknown status value is a 400."""
        client.post("/api/workflows", json=workflow())

        assert client.post("/api/workflows/wf1/status", json={"status": "sleeping"}).status_code == 400
        assert client.post("/api/workflows/wf1/status", json={"status": "archived"}).get_json()["workflow"][
            "status"] == "archived"


class TestExecutionEndpoints:
    """Tests for execution queries."""

    def test_list_with_filters(self, client, services):
        """Test executions can be filtered by workflow, lead and status."""
        client.post("/api/workflows", json=workflow())
        client.post("/api/workflows/wf1/trigger", json={"lead_id": "L1"})
        wait_all(services)

        assert client.get("/api/executions?workflow_id=wf1&lead_id=L1").get_json()["count"] == 1
        assert client.get("/api/executions?status=failed").get_json()["count"] == 0
        assert client.get("/api/executions?status=nope").status_code == 400
        assert client.get("/api/executions/exec_missing").status_code == 404


class TestIngestEndpoints:
    """Tests for behaviour and form ingest."""

    def test_track_behavior(self, client, services, lead_store):
        """Test a behaviour is recorded and matching workflows start."""
        client.post("/api/workflows", json=workflow(
            id="viewer",
            trigger={"type": "page_viewed", "eventData": {"type": "page_view", "source": "listing"}},
        ))

        response = client.post("/api/behaviors", json={
            "leadId": "L1", "type": "page_view", "source": "listing", "data": {"url": "/homes/12"},
        })

        assert response.status_code == 202
        assert len(response.get_json()["executions"]) == 1
        assert lead_store.get_activities("L1")[0].action_type == "page_view"
        wait_all(services)

    def test_track_behavior_invalid(self, client):
        """Test a behaviour without a lead is a 400."""
        assert client.post("/api/behaviors", json={"type": "page_view"}).status_code == 400

    def test_form_creates_lead(self, client, services, lead_store):
        """Test a form submission from a new contact creates the lead and fires form workflows."""
        client.post("/api/workflows", json=workflow(
            id="contact", trigger={"type": "form_submission", "source": "contact_form"},
        ))

        response = client.post("/api/forms/contact_form/submit", json={
            "name": "Sam Lee", "email": "sam@example.com", "phone": "614-555-0199", "budget": 300000,
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data["status"] == "created"
        assert len(data["executions"]) == 1
        lead = lead_store.get_lead(data["lead_id"])
        assert lead.source == "contact_form"
        assert lead.get("budget") == 300000
        wait_all(services)

    def test_form_updates_existing_lead(self, client, lead_store):
        """Test a submission matching a known phone updates that lead."""
        response = client.post("/api/forms/contact_form/submit", json={"phone": "(555) 123-4567", "email": "jo@x.com"})

        assert response.status_code == 200
        assert response.get_json()["lead_id"] == "L1"
        assert lead_store.get_lead("L1").email == "jo@x.com"

    def test_form_requires_contact(self, client):
        """Test at least one contact field is required."""
        assert client.post("/api/forms/contact_form/submit", json={"budget": 1}).status_code == 400


class TestPersonalizationEndpoints:
    """Tests for personalization rule and content endpoints."""

    def test_register_and_fetch_content(self, client):
        """Test a registered rule renders for the lead."""
        response = client.post("/api/personalization/rules", json={
            "id": "hello", "status": "active", "content": "Hi {{first_name}}",
        })
        assert response.status_code == 201

        rules = client.get("/api/personalization/rules").get_json()
        assert rules["count"] == 1

        content = client.get("/api/leads/L1/personalized-content").get_json()
        assert content == {"rule_id": "hello", "type": "text", "content": "Hi Jo"}

    def test_invalid_rule(self, client):
        """Test a malformed rule is a 400."""
        response = client.post("/api/personalization/rules", json={"id": "r1", "content": "x", "status": "live"})

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_WORKFLOW"

    def test_no_content(self, client):
        """Test leads without matching content get a 404."""
        assert client.get("/api/leads/L1/personalized-content?type=html").status_code == 404
