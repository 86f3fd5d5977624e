"""
Onboarding Blueprint - instructor onboarding program API.

Endpoints:
  GET    /api/v1/onboarding/templates                    - List templates
  POST   /api/v1/onboarding/templates                    - Create template (admin)
  GET    /api/v1/onboarding/templates/:id                - Template with phases, tasks, dependencies
  PATCH  /api/v1/onboarding/templates/:id                - Retire / reactivate template (admin)
  POST   /api/v1/onboarding/templates/:id/phases         - Add phase (admin)
  POST   /api/v1/onboarding/phases/:id/tasks             - Add task (admin)
  POST   /api/v1/onboarding/tasks/:id/dependencies       - Add dependency (admin)
  DELETE /api/v1/onboarding/dependencies/:id             - Remove dependency (admin)

  GET    /api/v1/onboarding/assignments                  - List assignments (admin)
  POST   /api/v1/onboarding/assignments                  - Assign instructor (admin)
  DELETE /api/v1/onboarding/assignments/:id              - Delete assignment (admin)
  POST   /api/v1/onboarding/assignments/:id/status       - Pause / resume / complete / cancel (admin)
  GET    /api/v1/onboarding/assignments/:id/dashboard    - Dashboard (instructor / mentor / admin)
  GET    /api/v1/onboarding/assignments/:id/events       - Event log (admin)
  GET    /api/v1/onboarding/dashboard?email=             - Dashboard of an instructor's open assignment

  GET    /api/v1/onboarding/progress/:id                 - Task progress detail
  PATCH  /api/v1/onboarding/progress/:id                 - Status / notes / time update
  GET    /api/v1/onboarding/progress/:id/evidence        - List evidence
  POST   /api/v1/onboarding/progress/:id/evidence        - Record evidence upload
"""

import logging

from flask import Blueprint, g, jsonify, request

from pmi_tools.auth import require_identity, require_role
from pmi_tools.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    TransitionGateError,
    UnexpectedError,
    ValidationError,
)
from pmi_tools.models.onboarding import ASSIGNMENT_STATUSES
from pmi_tools.services import (
    assignment_service,
    evidence_service,
    progression_service,
    template_service,
)

logger = logging.getLogger(__name__)

onboarding_bp = Blueprint("onboarding", __name__, url_prefix="/api/v1/onboarding")


# ═══════════════════════════════════════════════════════════════
# Error Handlers
# ═══════════════════════════════════════════════════════════════
@onboarding_bp.errorhandler(AuthenticationError)
def _handle_unauthenticated(error: AuthenticationError):
    return jsonify({"error": str(error)}), 401


@onboarding_bp.errorhandler(ForbiddenError)
def _handle_forbidden(error: ForbiddenError):
    return jsonify({"error": str(error)}), 403


@onboarding_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return jsonify({"error": str(error)}), 404


@onboarding_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return jsonify({"error": str(error), "field": error.field}), 409


@onboarding_bp.errorhandler(InvalidTransitionError)
def _handle_invalid_transition(error: InvalidTransitionError):
    return jsonify({"error": str(error), "details": error.details}), 409


@onboarding_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return jsonify({"error": str(error), "details": error.details}), 422


@onboarding_bp.errorhandler(TransitionGateError)
def _handle_gate(error: TransitionGateError):
    return jsonify(error.to_dict()), 422


@onboarding_bp.errorhandler(UnexpectedError)
def _handle_storage_failure(error: UnexpectedError):
    return jsonify({"error": str(error)}), 500


@onboarding_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in onboarding_bp endpoint=%s", request.endpoint)
    return jsonify({"error": "Internal server error"}), 500


def _json_body():
    """Parsed JSON object body, or None when the body is missing or malformed."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data


def _bad_request(message="Request body must be a JSON object"):
    return jsonify({"error": message}), 400


# ═══════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════
@onboarding_bp.route("/templates", methods=["GET"])
@require_identity
def list_templates():
    active_only = request.args.get("active_only", "false").lower() == "true"
    return jsonify({"templates": template_service.list_templates(active_only=active_only)}), 200


@onboarding_bp.route("/templates", methods=["POST"])
@require_identity
@require_role("admin")
def create_template():
    data = _json_body()
    if data is None:
        return _bad_request()
    template = template_service.create_template(data, created_by=g.current_user.email)
    return jsonify(template.to_dict()), 201


@onboarding_bp.route("/templates/<int:template_id>", methods=["GET"])
@require_identity
def get_template(template_id):
    """Template with phases, tasks and dependency edges, in display order."""
    return jsonify(template_service.get_template(template_id)), 200


@onboarding_bp.route("/templates/<int:template_id>", methods=["PATCH"])
@require_identity
@require_role("admin")
def update_template(template_id):
    """Retire or reactivate a template; only ``is_active`` is editable."""
    data = _json_body()
    if data is None or not isinstance(data.get("is_active"), bool):
        return _bad_request("Body must be {\"is_active\": true|false}")
    template = template_service.set_template_active(template_id, data["is_active"])
    return jsonify(template.to_dict()), 200


@onboarding_bp.route("/templates/<int:template_id>/phases", methods=["POST"])
@require_identity
@require_role("admin")
def add_phase(template_id):
    data = _json_body()
    if data is None:
        return _bad_request()
    phase = template_service.add_phase(template_id, data)
    return jsonify(phase.to_dict()), 201


@onboarding_bp.route("/phases/<int:phase_id>/tasks", methods=["POST"])
@require_identity
@require_role("admin")
def add_task(phase_id):
    data = _json_body()
    if data is None:
        return _bad_request()
    task = template_service.add_task(phase_id, data)
    return jsonify(task.to_dict()), 201


@onboarding_bp.route("/tasks/<int:task_id>/dependencies", methods=["POST"])
@require_identity
@require_role("admin")
def add_dependency(task_id):
    data = _json_body()
    if data is None:
        return _bad_request()
    depends_on = data.get("depends_on_task_id")
    if not isinstance(depends_on, int) or isinstance(depends_on, bool):
        return _bad_request("depends_on_task_id must be an integer")
    dep = template_service.add_dependency(task_id, depends_on, gate_type=data.get("gate_type", "hard"))
    return jsonify(dep.to_dict()), 201


@onboarding_bp.route("/dependencies/<int:dependency_id>", methods=["DELETE"])
@require_identity
@require_role("admin")
def remove_dependency(dependency_id):
    template_service.remove_dependency(dependency_id)
    return jsonify({"message": "Dependency removed"}), 200


# ═══════════════════════════════════════════════════════════════
# Assignments
# ═══════════════════════════════════════════════════════════════
@onboarding_bp.route("/assignments", methods=["GET"])
@require_identity
@require_role("admin")
def list_assignments():
    status = request.args.get("status")
    if status and status not in ASSIGNMENT_STATUSES:
        return _bad_request(f"Unknown status filter '{status}'")
    return jsonify({"assignments": assignment_service.list_assignments(status=status)}), 200


@onboarding_bp.route("/assignments", methods=["POST"])
@require_identity
@require_role("admin")
def create_assignment():
    """
    Assign an instructor to a template.

    Body: instructor_email (required), template_id, mentor_email,
    instructor_type, start_date, target_completion_date.
    """
    data = _json_body()
    if data is None:
        return _bad_request()
    instructor_email = (data.get("instructor_email") or "").strip()
    if not instructor_email:
        return _bad_request("instructor_email is required")

    assignment = assignment_service.create_assignment(
        instructor_email=instructor_email,
        assigned_by=g.current_user.email,
        template_id=data.get("template_id"),
        mentor_email=(data.get("mentor_email") or "").strip() or None,
        instructor_type=data.get("instructor_type", "new_hire"),
        start_date=data.get("start_date"),
        target_completion_date=data.get("target_completion_date"),
    )
    body = assignment.to_dict()
    body["summary"] = assignment_service.progress_summary(assignment.progress)
    return jsonify(body), 201


@onboarding_bp.route("/assignments/<int:assignment_id>", methods=["DELETE"])
@require_identity
@require_role("admin")
def delete_assignment(assignment_id):
    assignment_service.delete_assignment(assignment_id, deleted_by=g.current_user.email)
    return jsonify({"message": "Assignment deleted"}), 200


@onboarding_bp.route("/assignments/<int:assignment_id>/status", methods=["POST"])
@require_identity
@require_role("admin")
def update_assignment_status(assignment_id):
    data = _json_body()
    if data is None:
        return _bad_request()
    new_status = data.get("status")
    if new_status not in ASSIGNMENT_STATUSES:
        return _bad_request(f"status must be one of: {', '.join(sorted(ASSIGNMENT_STATUSES))}")
    assignment = assignment_service.update_assignment_status(
        assignment_id, new_status, actor_email=g.current_user.email,
    )
    return jsonify(assignment.to_dict()), 200


@onboarding_bp.route("/assignments/<int:assignment_id>/dashboard", methods=["GET"])
@require_identity
def assignment_dashboard(assignment_id):
    return jsonify(progression_service.get_dashboard(assignment_id, g.current_user_email)), 200


@onboarding_bp.route("/assignments/<int:assignment_id>/events", methods=["GET"])
@require_identity
@require_role("admin")
def assignment_events(assignment_id):
    return jsonify({"events": progression_service.list_events(assignment_id)}), 200


@onboarding_bp.route("/dashboard", methods=["GET"])
@require_identity
def instructor_dashboard():
    """Dashboard of the caller's open assignment, or ?email= for someone else's."""
    email = (request.args.get("email") or "").strip() or None
    return jsonify(progression_service.get_dashboard_for_instructor(email, g.current_user_email)), 200


# ═══════════════════════════════════════════════════════════════
# Task progress
# ═══════════════════════════════════════════════════════════════
@onboarding_bp.route("/progress/<int:progress_id>", methods=["GET"])
@require_identity
def get_progress(progress_id):
    return jsonify(progression_service.get_task_progress_detail(progress_id, g.current_user_email)), 200


@onboarding_bp.route("/progress/<int:progress_id>", methods=["PATCH"])
@require_identity
def update_progress(progress_id):
    """
    Request a status change and/or update notes and time spent.

    Body: status, notes, time_spent_minutes (all optional).
    Gate rejections return 422 with blocked_by / requires_* fields.
    """
    data = _json_body()
    if data is None:
        return _bad_request()
    status = data.get("status")
    if status is not None and not isinstance(status, str):
        return _bad_request("status must be a string")

    payload = {k: data[k] for k in ("notes", "time_spent_minutes") if k in data}
    result = progression_service.request_transition(
        progress_id, status, g.current_user_email, payload=payload,
    )
    return jsonify(result), 200


@onboarding_bp.route("/progress/<int:progress_id>/evidence", methods=["GET"])
@require_identity
def list_evidence(progress_id):
    return jsonify({"evidence": evidence_service.list_evidence(progress_id, g.current_user_email)}), 200


@onboarding_bp.route("/progress/<int:progress_id>/evidence", methods=["POST"])
@require_identity
def add_evidence(progress_id):
    data = _json_body()
    if data is None:
        return _bad_request()
    evidence = evidence_service.add_evidence(progress_id, g.current_user_email, data)
    return jsonify(evidence.to_dict()), 201
