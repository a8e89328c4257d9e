"""Admin and ingest REST API for Leadflow."""

import logging
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from ..automation.webhook_server import create_webhook_blueprint
from ..core.services import Services, build_services
from ..storage.models import Lead
from ..workflows.errors import EngineError, ErrorCode
from ..workflows.models import ExecutionStatus, LeadBehavior, TriggerType, WorkflowStatus
from .whatsapp import create_whatsapp_blueprint

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorCode.WORKFLOW_NOT_FOUND: 404,
    ErrorCode.WORKFLOW_INACTIVE: 409,
    ErrorCode.MAX_EXECUTIONS_REACHED: 409,
    ErrorCode.INVALID_WORKFLOW: 400,
}

FORM_FIELDS = ("name", "email", "phone")


def _enum_arg(enum_cls, value):
    """Parse an optional enum query value; raises ValueError for unknown values."""
    return enum_cls(value) if value else None


def create_app(services: Optional[Services] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    services = services or build_services()
    engine = services.engine

    # Enable CORS
    CORS(app, origins=["*"], supports_credentials=True)

    app.register_blueprint(create_webhook_blueprint(services))
    app.register_blueprint(create_whatsapp_blueprint(services))

    # ==================== Health ====================

    @app.route("/api/health", methods=["GET"])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "channels": services.providers.channels(),
            "workflows": len(engine.list_workflows()),
        })

    # ==================== Workflows ====================

    @app.route("/api/workflows", methods=["GET"])
    def list_workflows():
        """List workflows, optionally by status."""
        try:
            status = _enum_arg(WorkflowStatus, request.args.get("status"))
        except ValueError:
            return jsonify({"error": f"Unknown status: {request.args.get('status')}"}), 400

        workflows = engine.list_workflows(status)
        return jsonify({"workflows": [w.to_dict() for w in workflows], "count": len(workflows)})

    @app.route("/api/workflows", methods=["POST"])
    def register_workflow():
        """Register (or replace) a workflow definition."""
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        workflow = engine.register_workflow(data)
        return jsonify({"success": True, "workflow": workflow.to_dict()}), 201

    @app.route("/api/workflows/<workflow_id>", methods=["GET"])
    def get_workflow(workflow_id: str):
        workflow = engine.get_workflow(workflow_id)
        if workflow is None:
            return jsonify({"error": "Workflow not found"}), 404
        return jsonify(workflow.to_dict())

    @app.route("/api/workflows/<workflow_id>/status", methods=["POST"])
    def set_workflow_status(workflow_id: str):
        data = request.get_json(silent=True) or {}
        try:
            status = WorkflowStatus(data.get("status"))
        except ValueError:
            return jsonify({"error": f"Unknown status: {data.get('status')}"}), 400

        workflow = engine.set_workflow_status(workflow_id, status)
        return jsonify({"success": True, "workflow": workflow.to_dict()})

    @app.route("/api/workflows/<workflow_id>/trigger", methods=["POST"])
    def trigger_workflow(workflow_id: str):
        """Start an execution for a lead; it runs in the background."""
        data = request.get_json(silent=True) or {}
        lead_id = data.get("lead_id")
        if lead_id is None:
            return jsonify({"error": "lead_id required"}), 400

        execution = engine.trigger_workflow(workflow_id, str(lead_id), data.get("data") or {})
        return jsonify({"success": True, "execution": execution.to_dict()}), 202

    # ==================== Executions ====================

    @app.route("/api/executions", methods=["GET"])
    def list_executions():
        try:
            status = _enum_arg(ExecutionStatus, request.args.get("status"))
        except ValueError:
            return jsonify({"error": f"Unknown status: {request.args.get('status')}"}), 400

        executions = engine.get_executions(
            workflow_id=request.args.get("workflow_id"),
            lead_id=request.args.get("lead_id"),
            status=status,
        )
        return jsonify({"executions": [e.to_dict() for e in executions], "count": len(executions)})

    @app.route("/api/executions/<execution_id>", methods=["GET"])
    def get_execution(execution_id: str):
        execution = engine.get_execution(execution_id)
        if execution is None:
            return jsonify({"error": "Execution not found"}), 404
        return jsonify(execution.to_dict())

    # ==================== Ingest ====================

    @app.route("/api/behaviors", methods=["POST"])
    def track_behavior():
        """Record a lead behaviour and start any matching workflows."""
        data = request.get_json(silent=True)
        if not data or not isinstance(data, dict):
            return jsonify({"error": "Request body required"}), 400

        try:
            behavior = LeadBehavior.from_dict(data)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        started = services.behavior_tracker.track(behavior)
        return jsonify({
            "success": True,
            "behavior_id": behavior.id,
            "executions": [e.id for e in started],
        }), 202

    @app.route("/api/forms/<form_id>/submit", methods=["POST"])
    def submit_form(form_id: str):
        """Create or update the lead, then fire form_submission workflows for this form."""
        data = request.get_json(silent=True)
        if not data or not isinstance(data, dict):
            return jsonify({"error": "Request body required"}), 400
        if not any(data.get(f) for f in FORM_FIELDS):
            return jsonify({"error": f"At least one of {', '.join(FORM_FIELDS)} required"}), 400

        lead_store = services.lead_store
        updates = {k: v for k, v in data.items() if v not in (None, "") and k != "id"}

        lead = lead_store.find_by_phone(data["phone"]) if data.get("phone") else None
        created = lead is None
        if created:
            lead = Lead(source=form_id)
            lead.apply(updates)
            lead = lead_store.create_lead(lead)
            engine.trigger_event(TriggerType.LEAD_CREATED, lead.id, dict(data), source=form_id)
        else:
            lead = lead_store.update_lead(lead.id, updates)

        started = engine.trigger_event(TriggerType.FORM_SUBMISSION, lead.id, dict(data), source=form_id)
        logger.info(f"Form {form_id} submitted for lead {lead.id} ({'created' if created else 'updated'})")

        return jsonify({
            "success": True,
            "lead_id": lead.id,
            "status": "created" if created else "updated",
            "executions": [e.id for e in started],
        }), 201 if created else 200

    # ==================== Personalization ====================

    @app.route("/api/personalization/rules", methods=["GET"])
    def list_personalization_rules():
        rules = engine.personalizer.list_rules()
        return jsonify({"rules": [r.to_dict() for r in rules], "count": len(rules)})

    @app.route("/api/personalization/rules", methods=["POST"])
    def register_personalization_rule():
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        rule = engine.register_personalization_rule(data)
        return jsonify({"success": True, "rule": rule.to_dict()}), 201

    @app.route("/api/leads/<lead_id>/personalized-content", methods=["GET"])
    def personalized_content(lead_id: str):
        """Content from the best matching rule; 404 when nothing matches."""
        content = engine.get_personalized_content(lead_id, request.args.get("type"), dict(request.args))
        if content is None:
            return jsonify({"error": "No personalized content for lead"}), 404
        return jsonify(content)

    # ==================== Error Handlers ====================

    @app.errorhandler(EngineError)
    def engine_error(error: EngineError):
        status = ERROR_STATUS.get(error.code, 500)
        if status >= 500:
            logger.error(f"Engine error: {error!r}")
        body = error.to_dict()
        body.pop("recoverable", None)
        return jsonify(body), status

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    app.services = services
    return app


def run_api_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False, services: Optional[Services] = None):
    """Run the API server."""
    app = create_app(services)
    app.run(host=host, port=port, debug=debug)
