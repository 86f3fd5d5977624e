"""
Onboarding Task Progression Engine - Service Layer.

Decides whether a requested TaskProgress status change is allowed, applies
it, and derives read models (blocked state, next task, dashboard).

Transition pipeline (request_transition):
    1. resolve actor, lock assignment row then progress row
    2. actor must be the instructor, the assignment's mentor, or admin-tier
    3. same status (or no status) → payload-only update, never a status event
    4. edge must exist in PROGRESS_TRANSITIONS; waive is admin-tier only
    5. hard dependencies must be completed or waived (in_progress/completed)
    6. completion gates in order: evidence, sign-off, director endorsement
    7. apply field changes, append event, commit
    8. soft dependencies produce advisory warnings

Design decisions:
    - Blocked state is never stored. ``evaluate_blocking`` is a pure function
      over dependency edges and sibling statuses; every read recomputes it.
    - Rejections raise typed errors before any write and roll back the
      transaction, releasing the row locks.
    - TaskProgress.version guards against writers the row lock cannot see
      (SQLite, or rows updated outside this service); a stale write becomes
      ConflictError and the event is rolled back with it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased
from sqlalchemy.orm.exc import StaleDataError

from pmi_tools.auth import is_admin_tier
from pmi_tools.core.exceptions import (
    AuthenticationError,
    BlockedError,
    ConflictError,
    DirectorEndorsementRequiredError,
    EvidenceRequiredError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SignOffRequiredError,
    TransitionGateError,
    UnexpectedError,
    ValidationError,
)
from pmi_tools.models import db
from pmi_tools.models.auth import User
from pmi_tools.models.onboarding import (
    PROGRESS_STATUSES,
    SATISFIED_STATUSES,
    DirectorGate,
    EvidenceGate,
    OnboardingAssignment,
    OnboardingEvent,
    OnboardingPhase,
    OnboardingTask,
    SignOffGate,
    TaskDependency,
    TaskProgress,
    validate_progress_transition,
    write_event,
)
from pmi_tools.services import assignment_service, evidence_service, identity_service

logger = logging.getLogger(__name__)

LANE_ORDER = ("institutional", "operational", "mentorship")

MAX_TIME_SPENT_MINUTES = 100_000


# ═════════════════════════════════════════════════════════════════════════════
# Pure gate evaluation
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DependencyEdge:
    """One prerequisite of a task, as seen from the dependent task."""
    depends_on_task_id: int
    depends_on_title: str
    gate_type: str


@dataclass(frozen=True)
class BlockingInfo:
    task_id: int
    title: str
    gate_type: str

    def to_dict(self) -> dict:
        return {"id": self.task_id, "title": self.title, "gate_type": self.gate_type}


def evaluate_blocking(edges, statuses) -> BlockingInfo | None:
    """
    First unmet hard prerequisite, in edge order, or None.

    Args:
        edges: DependencyEdge list for one task.
        statuses: task_id → TaskProgress status within one assignment.
                  Prerequisites absent from the map were not seeded for the
                  assignment (not applicable to its instructor type) and are
                  skipped.
    """
    for edge in edges:
        if edge.gate_type != "hard":
            continue
        status = statuses.get(edge.depends_on_task_id)
        # Not seeded for this instructor type. The default program has "Final
        # Mentor Sign-Off" depend on "FF Module 4: Self-Reflection", which a
        # lab_only assignment never gets
        if status is None:
            continue
        if status not in SATISFIED_STATUSES:
            return BlockingInfo(edge.depends_on_task_id, edge.depends_on_title, edge.gate_type)
    return None


def soft_dependency_warnings(edges, statuses) -> list[str]:
    """Advisory messages for unmet soft prerequisites. Never blocks."""
    warnings = []
    for edge in edges:
        if edge.gate_type != "soft":
            continue
        status = statuses.get(edge.depends_on_task_id)
        # Unseeded prerequisites are skipped here too, as in evaluate_blocking
        if status is not None and status not in SATISFIED_STATUSES:
            warnings.append(f"Recommended: complete {edge.depends_on_title} first.")
    return warnings


def can_sign_off(sign_off_role: str, standing: "ActorStanding") -> bool:
    """
    Mentor sign-off: the assignment's mentor or any admin-tier actor.
    Program director / admin sign-off: admin-tier actors only.
    """
    if standing.is_admin:
        return True
    if sign_off_role == "mentor":
        return standing.is_mentor
    return False


# ═════════════════════════════════════════════════════════════════════════════
# Loading helpers
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ActorStanding:
    user: User
    is_admin: bool
    is_instructor: bool
    is_mentor: bool

    @property
    def may_act(self) -> bool:
        return self.is_admin or self.is_instructor or self.is_mentor


def _standing(actor: User, assignment: OnboardingAssignment) -> ActorStanding:
    email = actor.email.lower()
    return ActorStanding(
        user=actor,
        is_admin=is_admin_tier(actor.role),
        is_instructor=email == (assignment.instructor_email or "").lower(),
        is_mentor=bool(assignment.mentor_email) and email == assignment.mentor_email.lower(),
    )


def _require_standing(actor_email: str, assignment: OnboardingAssignment) -> ActorStanding:
    actor = identity_service.require_user(actor_email)
    standing = _standing(actor, assignment)
    if not standing.may_act:
        raise ForbiddenError("Not permitted to act on this onboarding assignment", actor=actor.email)
    return standing


def _edges_for_tasks(task_ids) -> dict[int, list[DependencyEdge]]:
    """task_id → its prerequisites, in creation order."""
    if not task_ids:
        return {}
    prereq = aliased(OnboardingTask)
    rows = db.session.execute(
        select(TaskDependency.task_id, TaskDependency.depends_on_task_id, TaskDependency.gate_type, prereq.title)
        .join(prereq, TaskDependency.depends_on_task_id == prereq.id)
        .where(TaskDependency.task_id.in_(list(task_ids)))
        .order_by(TaskDependency.id)
    ).all()
    edges: dict[int, list[DependencyEdge]] = {}
    for task_id, depends_on_id, gate_type, title in rows:
        edges.setdefault(task_id, []).append(DependencyEdge(depends_on_id, title, gate_type))
    return edges


def _status_map(assignment_id: int) -> dict[int, str]:
    rows = db.session.execute(
        select(TaskProgress.task_id, TaskProgress.status).where(TaskProgress.assignment_id == assignment_id)
    ).all()
    return {task_id: status for task_id, status in rows}


def _ordered_progress(assignment_id: int) -> list[tuple[TaskProgress, OnboardingTask, OnboardingPhase]]:
    return [
        tuple(row)
        for row in db.session.execute(
            select(TaskProgress, OnboardingTask, OnboardingPhase)
            .join(OnboardingTask, TaskProgress.task_id == OnboardingTask.id)
            .join(OnboardingPhase, OnboardingTask.phase_id == OnboardingPhase.id)
            .where(TaskProgress.assignment_id == assignment_id)
            .order_by(OnboardingPhase.sort_order, OnboardingTask.sort_order, OnboardingTask.id)
        ).all()
    ]


def _get_progress_or_404(progress_id: int) -> TaskProgress:
    progress = db.session.get(TaskProgress, progress_id)
    if progress is None:
        raise NotFoundError(resource="TaskProgress", resource_id=progress_id)
    return progress


def _blocked_fields(blocking: BlockingInfo | None) -> dict:
    return {
        "is_blocked": blocking is not None,
        "blocked_by": blocking.to_dict() if blocking else None,
        "gate_type": blocking.gate_type if blocking else None,
    }


def _task_view(progress: TaskProgress, task: OnboardingTask, blocking: BlockingInfo | None) -> dict:
    d = {
        "progress_id": progress.id,
        "task_id": task.id,
        "status": progress.status,
        "started_at": progress.started_at.isoformat() if progress.started_at else None,
        "completed_at": progress.completed_at.isoformat() if progress.completed_at else None,
        "signed_off_by": progress.signed_off_by,
        "signed_off_at": progress.signed_off_at.isoformat() if progress.signed_off_at else None,
        "time_spent_minutes": progress.time_spent_minutes,
        "notes": progress.notes,
        "version": progress.version,
        "title": task.title,
        "description": task.description,
        "task_type": task.task_type,
        "resource_url": task.resource_url,
        "sort_order": task.sort_order,
        "is_required": task.is_required,
        "estimated_minutes": task.estimated_minutes,
        "lane": task.lane,
        "kind": task.kind,
        "requires_evidence": task.requires_evidence,
        "requires_sign_off": task.requires_sign_off,
        "sign_off_role": task.sign_off_role,
        "requires_director": task.requires_director,
    }
    d.update(_blocked_fields(blocking))
    return d


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


def compute_blocked(progress_id: int) -> dict:
    """``{is_blocked, blocked_by, gate_type}`` for one TaskProgress."""
    progress = _get_progress_or_404(progress_id)
    edges = _edges_for_tasks([progress.task_id]).get(progress.task_id, [])
    return _blocked_fields(evaluate_blocking(edges, _status_map(progress.assignment_id)))


def _first_actionable(rows, edges, statuses):
    for progress, task, phase in rows:
        if progress.status not in ("pending", "in_progress"):
            continue
        if evaluate_blocking(edges.get(task.id, []), statuses) is None:
            return progress, task, phase
    return None


def derive_next_task(assignment_id: int) -> dict | None:
    """
    First pending or in-progress task, by phase order then task order,
    that is not blocked. None when nothing is actionable.
    """
    assignment_service.get_assignment_or_404(assignment_id)
    rows = _ordered_progress(assignment_id)
    edges = _edges_for_tasks([task.id for _, task, _ in rows])
    statuses = {task.id: progress.status for progress, task, _ in rows}
    found = _first_actionable(rows, edges, statuses)
    if found is None:
        return None
    progress, task, phase = found
    view = _task_view(progress, task, None)
    view["phase_id"] = phase.id
    view["phase_name"] = phase.name
    return view


def get_task_progress_detail(progress_id: int, viewer_email: str) -> dict:
    """Progress + task + phase + blocked state + evidence for one row."""
    progress = _get_progress_or_404(progress_id)
    assignment = progress.assignment
    _require_standing(viewer_email, assignment)

    task = progress.task
    edges = _edges_for_tasks([task.id]).get(task.id, [])
    blocking = evaluate_blocking(edges, _status_map(assignment.id))

    view = _task_view(progress, task, blocking)
    view["phase"] = {"id": task.phase.id, "name": task.phase.name, "sort_order": task.phase.sort_order}
    view["assignment"] = {
        "id": assignment.id,
        "instructor_email": assignment.instructor_email,
        "mentor_email": assignment.mentor_email,
        "assigned_by": assignment.assigned_by,
        "status": assignment.status,
    }
    view["dependencies"] = [
        {"id": e.depends_on_task_id, "title": e.depends_on_title, "gate_type": e.gate_type} for e in edges
    ]
    view["evidence"] = [e.to_dict() for e in progress.evidence]
    return view


def _build_dashboard(assignment: OnboardingAssignment) -> dict:
    rows = _ordered_progress(assignment.id)
    edges = _edges_for_tasks([task.id for _, task, _ in rows])
    statuses = {task.id: progress.status for progress, task, _ in rows}

    tasks_by_phase: dict[int, list[dict]] = {}
    blocked_count = 0
    for progress, task, phase in rows:
        blocking = evaluate_blocking(edges.get(task.id, []), statuses)
        if blocking is not None and progress.status in ("pending", "in_progress"):
            blocked_count += 1
        tasks_by_phase.setdefault(phase.id, []).append(_task_view(progress, task, blocking))

    phases = []
    for phase in assignment.template.phases:
        phase_tasks = tasks_by_phase.get(phase.id, [])
        done = sum(1 for t in phase_tasks if t["status"] in SATISFIED_STATUSES)
        phases.append({
            "id": phase.id,
            "name": phase.name,
            "description": phase.description,
            "sort_order": phase.sort_order,
            "target_days_start": phase.target_days_start,
            "target_days_end": phase.target_days_end,
            "tasks": phase_tasks,
            "completed_count": done,
            "total_count": len(phase_tasks),
            "progress_percent": round(done * 100 / len(phase_tasks)) if phase_tasks else 0,
        })

    lane_progress = []
    for lane in LANE_ORDER:
        lane_rows = [p for p, t, _ in rows if t.lane == lane]
        if not lane_rows:
            continue
        done = sum(1 for p in lane_rows if p.status in SATISFIED_STATUSES)
        lane_progress.append({
            "lane": lane,
            "total_tasks": len(lane_rows),
            "completed_tasks": done,
            "progress_percent": round(done * 100 / len(lane_rows)),
        })

    last_activity = db.session.execute(
        select(func.max(OnboardingEvent.created_at)).where(OnboardingEvent.assignment_id == assignment.id)
    ).scalar_one_or_none()

    summary = assignment_service.progress_summary([p for p, _, _ in rows])
    summary["blocked_tasks"] = blocked_count
    summary["last_activity"] = last_activity.isoformat() if last_activity else None

    next_task = None
    found = _first_actionable(rows, edges, statuses)
    if found is not None:
        progress, task, phase = found
        next_task = _task_view(progress, task, None)
        next_task["phase_id"] = phase.id
        next_task["phase_name"] = phase.name

    assignment_view = assignment.to_dict()
    assignment_view["instructor_name"] = identity_service.display_name(assignment.instructor_email)
    assignment_view["mentor_name"] = identity_service.display_name(assignment.mentor_email)
    assignment_view["assigned_by_name"] = identity_service.display_name(assignment.assigned_by)

    return {
        "has_active_assignment": assignment.status in ("active", "paused"),
        "assignment": assignment_view,
        "phases": phases,
        "next_task": next_task,
        "summary": summary,
        "lane_progress": lane_progress,
    }


def get_dashboard(assignment_id: int, viewer_email: str) -> dict:
    """Dashboard for one assignment; instructor, mentor or admin-tier only."""
    assignment = assignment_service.get_assignment_or_404(assignment_id)
    _require_standing(viewer_email, assignment)
    return _build_dashboard(assignment)


def get_dashboard_for_instructor(instructor_email: str | None, viewer_email: str) -> dict:
    """
    Dashboard for an instructor's open assignment.

    Viewing someone else requires admin-tier or being the mentor on that
    instructor's open assignment.
    """
    viewer = identity_service.require_user(viewer_email)
    target = (instructor_email or viewer.email).strip()
    assignment = assignment_service.find_open_assignment(target)

    if target.lower() != viewer.email.lower():
        is_mentor = (
            assignment is not None
            and (assignment.mentor_email or "").lower() == viewer.email.lower()
        )
        if not is_admin_tier(viewer.role) and not is_mentor:
            raise ForbiddenError("Not permitted to view this instructor's onboarding", actor=viewer.email)

    if assignment is None:
        return {
            "has_active_assignment": False,
            "assignment": None,
            "phases": [],
            "next_task": None,
            "summary": None,
            "lane_progress": [],
        }
    return _build_dashboard(assignment)


def list_events(assignment_id: int) -> list[dict]:
    assignment_service.get_assignment_or_404(assignment_id)
    events = db.session.execute(
        select(OnboardingEvent)
        .where(OnboardingEvent.assignment_id == assignment_id)
        .order_by(OnboardingEvent.created_at, OnboardingEvent.id)
    ).scalars()
    return [e.to_dict() for e in events]


# ═════════════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════════════


def _payload_changes(progress: TaskProgress, payload: dict) -> dict:
    """Validated notes / time_spent_minutes changes as {field: (old, new)}."""
    changes = {}
    if "notes" in payload:
        notes = payload["notes"]
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string", details={"notes": "string expected"})
        if notes != progress.notes:
            changes["notes"] = (progress.notes, notes)
    if "time_spent_minutes" in payload:
        minutes = payload["time_spent_minutes"]
        if (
            isinstance(minutes, bool)
            or not isinstance(minutes, int)
            or minutes < 0
            or minutes > MAX_TIME_SPENT_MINUTES
        ):
            raise ValidationError(
                "time_spent_minutes must be a non-negative integer",
                details={"time_spent_minutes": minutes},
            )
        if minutes != progress.time_spent_minutes:
            changes["time_spent_minutes"] = (progress.time_spent_minutes, minutes)
    return changes


def _completion_snapshot(progress: TaskProgress) -> dict:
    """Completion/sign-off fields as written by a status change (None once cleared)."""
    return {
        field: value.isoformat() if isinstance(value, datetime) else value
        for field, value in (
            ("started_at", progress.started_at),
            ("completed_at", progress.completed_at),
            ("signed_off_by", progress.signed_off_by),
            ("signed_off_at", progress.signed_off_at),
        )
    }


def _lock_for_transition(progress_id: int) -> tuple[OnboardingAssignment, TaskProgress]:
    """Lock the owning assignment, then the progress row (fixed order)."""
    assignment_id = db.session.execute(
        select(TaskProgress.assignment_id).where(TaskProgress.id == progress_id)
    ).scalar_one_or_none()
    if assignment_id is None:
        raise NotFoundError(resource="TaskProgress", resource_id=progress_id)

    assignment = db.session.execute(
        select(OnboardingAssignment)
        .where(OnboardingAssignment.id == assignment_id)
        .with_for_update()
    ).scalar_one()
    progress = db.session.execute(
        select(TaskProgress)
        .where(TaskProgress.id == progress_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if progress is None:
        raise NotFoundError(resource="TaskProgress", resource_id=progress_id)
    return assignment, progress


def _check_completion_gates(task: OnboardingTask, progress: TaskProgress, standing: ActorStanding):
    """Raise the first failing completion gate; return the sign-off gate if one applied."""
    applied_sign_off = None
    for gate in task.completion_gates:
        if isinstance(gate, EvidenceGate):
            if not evidence_service.has_evidence(progress.id):
                raise EvidenceRequiredError()
        elif isinstance(gate, SignOffGate):
            if not can_sign_off(gate.role, standing):
                raise SignOffRequiredError(gate.role)
            applied_sign_off = gate
        elif isinstance(gate, DirectorGate):
            if not identity_service.has_active_director_endorsement(standing.user.id):
                raise DirectorEndorsementRequiredError()
    return applied_sign_off


def _transition(progress_id: int, requested_status: str | None, actor_email: str, payload: dict) -> dict:
    actor = identity_service.require_user(actor_email)
    assignment, progress = _lock_for_transition(progress_id)
    standing = _standing(actor, assignment)
    if not standing.may_act:
        raise ForbiddenError("Not permitted to update this task", actor=actor.email)

    old_status = progress.status
    changes = _payload_changes(progress, payload)
    now = datetime.now(timezone.utc)

    # Same status: only notes / time may change, and the event says so
    if requested_status is None or requested_status == old_status:
        if changes:
            for field, (_, new) in changes.items():
                setattr(progress, field, new)
            write_event(
                assignment.id, "update", actor.email,
                task_progress_id=progress.id,
                old_status=old_status, new_status=old_status,
                metadata={"changes": {f: {"from": o, "to": n} for f, (o, n) in changes.items()}},
            )
        db.session.commit()
        return {"task_progress": progress.to_dict(), "warnings": [], "changed": bool(changes)}

    if requested_status not in PROGRESS_STATUSES:
        raise ValidationError(
            f"Invalid status '{requested_status}'",
            details={"status": f"Must be one of: {', '.join(sorted(PROGRESS_STATUSES))}"},
        )
    if not validate_progress_transition(old_status, requested_status):
        raise InvalidTransitionError("task", old_status, requested_status)
    if requested_status == "waived" and not standing.is_admin:
        raise ForbiddenError("Only administrators may waive onboarding tasks", actor=actor.email)

    task = progress.task
    edges = _edges_for_tasks([task.id]).get(task.id, [])
    statuses = _status_map(assignment.id)

    if requested_status in ("in_progress", "completed"):
        blocking = evaluate_blocking(edges, statuses)
        if blocking is not None:
            raise BlockedError(blocking.task_id, blocking.title, blocking.gate_type)

    sign_off = None
    if requested_status == "completed":
        sign_off = _check_completion_gates(task, progress, standing)

    progress.status = requested_status
    if requested_status == "in_progress" and progress.started_at is None:
        progress.started_at = now
    if requested_status == "completed":
        progress.completed_at = now
        if sign_off is not None:
            progress.signed_off_by = actor.email
            progress.signed_off_at = now
    else:
        progress.completed_at = None
        progress.signed_off_by = None
        progress.signed_off_at = None
    for field, (_, new) in changes.items():
        setattr(progress, field, new)

    write_event(
        assignment.id, "status_change", actor.email,
        task_progress_id=progress.id,
        old_status=old_status, new_status=requested_status,
        metadata={
            "task_id": task.id,
            "task_title": task.title,
            "signed_off": sign_off is not None,
            "changes": {f: {"from": o, "to": n} for f, (o, n) in changes.items()},
            "fields": _completion_snapshot(progress),
        },
    )
    db.session.commit()

    logger.info(
        "Task progress %s: %s → %s by %s", progress.id, old_status, requested_status, actor.email,
        extra={
            "event_type": "status_change",
            "assignment_id": assignment.id,
            "progress_id": progress.id,
            "actor": actor.email,
        },
    )

    warnings = []
    if requested_status in ("in_progress", "completed"):
        warnings = soft_dependency_warnings(edges, statuses)
    return {"task_progress": progress.to_dict(), "warnings": warnings, "changed": True}


def request_transition(
    progress_id: int,
    requested_status: str | None,
    actor_email: str,
    payload: dict | None = None,
) -> dict:
    """
    Request a TaskProgress status change (and/or notes / time update).

    Args:
        progress_id: TaskProgress PK.
        requested_status: Target status, or None for a notes/time-only update.
        actor_email: Acting principal.
        payload: Optional ``notes`` and ``time_spent_minutes``.

    Returns:
        ``{"task_progress": dict, "warnings": [str], "changed": bool}``

    Raises:
        AuthenticationError, ForbiddenError, NotFoundError, ValidationError,
        InvalidTransitionError, BlockedError, EvidenceRequiredError,
        SignOffRequiredError, DirectorEndorsementRequiredError,
        ConflictError (concurrent modification), UnexpectedError.
        Nothing is written when any of these is raised.
    """
    try:
        return _transition(progress_id, requested_status, actor_email, payload or {})
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent modification of task progress %s", progress_id,
            extra={"event_type": "stale_progress", "progress_id": progress_id, "actor": actor_email},
        )
        raise ConflictError(
            "TaskProgress", "version", progress_id,
            message="Task progress was modified concurrently; reload and retry",
        )
    except (
        AuthenticationError, ForbiddenError, NotFoundError, ValidationError, TransitionGateError,
    ) as exc:
        db.session.rollback()
        logger.info(
            "Transition rejected progress_id=%s status=%s: %s", progress_id, requested_status, exc,
            extra={"event_type": "transition_rejected", "progress_id": progress_id, "actor": actor_email},
        )
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception(
            "Transition failed progress_id=%s status=%s", progress_id, requested_status,
            extra={"progress_id": progress_id, "actor": actor_email},
        )
        raise UnexpectedError("Failed to update task progress") from exc
