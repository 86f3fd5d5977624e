"""
Onboarding Assignment Manager - Service Layer.

Creates, ends and lists instructor assignments.

Design decisions:
    - An assignment and its full TaskProgress set are written in ONE unit of
      work. Any storage failure rolls back both; a half-seeded assignment
      can never be observed.
    - One open (active or paused) assignment per instructor. Checked here,
      and backed by a partial unique index for concurrent creators.
    - Notifications go out only after commit and never fail the operation.
"""

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pmi_tools.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnexpectedError,
    ValidationError,
)
from pmi_tools.models import db
from pmi_tools.models.onboarding import (
    OPEN_ASSIGNMENT_STATUSES,
    OnboardingAssignment,
    OnboardingEvent,
    OnboardingEvidence,
    OnboardingTemplate,
    TaskProgress,
    normalize_instructor_type,
    validate_assignment_transition,
    write_event,
)
from pmi_tools.services import identity_service, template_service
from pmi_tools.services.notification import NotificationService

logger = logging.getLogger(__name__)

ONBOARDING_LINK = "/onboarding"


def get_assignment_or_404(assignment_id: int) -> OnboardingAssignment:
    assignment = db.session.get(OnboardingAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="OnboardingAssignment", resource_id=assignment_id)
    return assignment


def find_open_assignment(instructor_email: str) -> OnboardingAssignment | None:
    """Most recent active or paused assignment for the instructor."""
    return db.session.execute(
        select(OnboardingAssignment)
        .where(
            db.func.lower(OnboardingAssignment.instructor_email) == instructor_email.strip().lower(),
            OnboardingAssignment.status.in_(OPEN_ASSIGNMENT_STATUSES),
        )
        .order_by(OnboardingAssignment.created_at.desc(), OnboardingAssignment.id.desc())
        .limit(1)
    ).scalar_one_or_none()


OPEN_ASSIGNMENT_INDEX = "uq_onboarding_open_assignment"


def _violates_open_assignment_index(exc: IntegrityError) -> bool:
    """
    True when ``exc`` comes from the one-open-assignment index.

    PostgreSQL reports the index name; SQLite only reports the column, and
    the partial index is the sole uniqueness rule on instructor_email.
    """
    diag = getattr(exc.orig, "diag", None)
    if getattr(diag, "constraint_name", None) == OPEN_ASSIGNMENT_INDEX:
        return True
    message = str(exc.orig)
    return OPEN_ASSIGNMENT_INDEX in message or (
        "UNIQUE constraint failed" in message and "onboarding_assignments.instructor_email" in message
    )


def _parse_date(value, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={field: value})


def _resolve_template(template_id: int | None) -> OnboardingTemplate:
    if template_id is None:
        template = template_service.get_default_template()
        if template is None:
            raise NotFoundError(resource="Active OnboardingTemplate")
        return template
    template = db.session.get(OnboardingTemplate, template_id)
    if template is None or not template.is_active:
        raise NotFoundError(resource="Active OnboardingTemplate", resource_id=template_id)
    return template


# ── Create ───────────────────────────────────────────────────────────────────


def create_assignment(
    instructor_email: str,
    assigned_by: str,
    template_id: int | None = None,
    mentor_email: str | None = None,
    instructor_type: str | None = "new_hire",
    start_date=None,
    target_completion_date=None,
) -> OnboardingAssignment:
    """
    Bind an instructor to a template and seed their TaskProgress set.

    Args:
        instructor_email: Must resolve to a known user.
        assigned_by: Email of the admin performing the assignment.
        template_id: Active template; defaults to the earliest active one.
        mentor_email: Optional; must resolve to a known user when given.
        instructor_type: full_time | part_time | lab_only | adjunct (new_hire → full_time).
        start_date: ISO date, defaults to today.
        target_completion_date: ISO date, defaults to start + ONBOARDING_DEFAULT_TARGET_DAYS.

    Raises:
        NotFoundError: instructor, mentor or active template missing.
        ValidationError: unknown instructor type, bad dates, cyclic template graph.
        ConflictError: instructor already has an active or paused assignment.
        UnexpectedError: storage failure; nothing was written.
    """
    instructor = identity_service.get_user_or_404(instructor_email, label="Instructor")
    mentor = None
    if mentor_email:
        mentor = identity_service.get_user_or_404(mentor_email, label="Mentor")
    resolved_type = normalize_instructor_type(instructor_type)
    template = _resolve_template(template_id)

    start = _parse_date(start_date, "start_date") or date.today()
    target = _parse_date(target_completion_date, "target_completion_date")
    if target is None:
        target = start + timedelta(days=current_app.config.get("ONBOARDING_DEFAULT_TARGET_DAYS", 180))
    if target < start:
        raise ValidationError(
            "target_completion_date must not precede start_date",
            details={"start_date": start.isoformat(), "target_completion_date": target.isoformat()},
        )

    existing = find_open_assignment(instructor.email)
    if existing is not None:
        raise ConflictError(
            "OnboardingAssignment", "instructor_email", instructor.email,
            message=f"Instructor already has an {existing.status} onboarding assignment",
        )

    # Seeding walks the graph, so refuse a template whose graph is broken
    template_service.validate_template_graph(template.id)
    tasks = [t for t in template_service.template_tasks(template.id) if t.applies_to(resolved_type)]

    try:
        assignment = OnboardingAssignment(
            template_id=template.id,
            instructor_email=instructor.email,
            instructor_type=resolved_type,
            mentor_email=mentor.email if mentor else None,
            assigned_by=assigned_by,
            start_date=start,
            target_completion_date=target,
            status="active",
        )
        db.session.add(assignment)
        db.session.flush()

        for task in tasks:
            db.session.add(TaskProgress(
                assignment_id=assignment.id,
                task_id=task.id,
                status="pending",
                time_spent_minutes=0,
            ))

        write_event(
            assignment.id, "assignment_created", assigned_by,
            new_status="active",
            metadata={
                "instructor_email": instructor.email,
                "template_id": template.id,
                "template_name": template.name,
                "mentor_email": assignment.mentor_email,
                "instructor_type": resolved_type,
                "task_count": len(tasks),
            },
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if not _violates_open_assignment_index(exc):
            logger.exception(
                "Assignment creation hit an integrity error instructor=%s template_id=%s",
                instructor.email, template.id,
                extra={"event_type": "assignment_create_failed", "actor": assigned_by},
            )
            raise UnexpectedError("Failed to create onboarding assignment") from exc
        raise ConflictError(
            "OnboardingAssignment", "instructor_email", instructor.email,
            message="Instructor already has an active onboarding assignment",
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception(
            "Assignment creation failed instructor=%s template_id=%s", instructor.email, template.id,
            extra={"event_type": "assignment_create_failed", "actor": assigned_by},
        )
        raise UnexpectedError("Failed to create onboarding assignment") from exc

    logger.info(
        "Onboarding assignment created id=%s instructor=%s tasks=%d",
        assignment.id, instructor.email, len(tasks),
        extra={"event_type": "assignment_created", "assignment_id": assignment.id, "actor": assigned_by},
    )

    mentor_line = f" Your mentor is {mentor.name or mentor.email}." if mentor else ""
    NotificationService.notify(
        instructor.email,
        "Onboarding Program Assigned",
        f'You have been assigned to the "{template.name}" onboarding program.{mentor_line}',
        category="onboarding",
        link_url=ONBOARDING_LINK,
        reference_type="onboarding_assignment",
        reference_id=assignment.id,
    )
    return assignment


# ── Delete ───────────────────────────────────────────────────────────────────


def delete_assignment(assignment_id: int, deleted_by: str) -> None:
    """Remove an assignment with its events, progress and evidence in one unit of work."""
    assignment = get_assignment_or_404(assignment_id)
    instructor_email = assignment.instructor_email
    template_name = assignment.template.name if assignment.template else "onboarding"

    progress_ids = select(TaskProgress.id).where(TaskProgress.assignment_id == assignment_id)
    try:
        db.session.execute(
            delete(OnboardingEvent).where(OnboardingEvent.assignment_id == assignment_id)
        )
        db.session.execute(
            delete(OnboardingEvidence).where(OnboardingEvidence.task_progress_id.in_(progress_ids))
        )
        db.session.execute(
            delete(TaskProgress).where(TaskProgress.assignment_id == assignment_id)
        )
        db.session.execute(
            delete(OnboardingAssignment).where(OnboardingAssignment.id == assignment_id)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Assignment deletion failed id=%s", assignment_id)
        raise UnexpectedError("Failed to delete onboarding assignment") from exc

    logger.info(
        "Onboarding assignment deleted id=%s instructor=%s", assignment_id, instructor_email,
        extra={"event_type": "assignment_deleted", "assignment_id": assignment_id, "actor": deleted_by},
    )
    NotificationService.notify(
        instructor_email,
        "Onboarding Assignment Removed",
        f'Your "{template_name}" onboarding assignment has been removed.',
        category="onboarding",
        reference_type="onboarding_assignment",
        reference_id=assignment_id,
    )


# ── Lifecycle ────────────────────────────────────────────────────────────────


def update_assignment_status(assignment_id: int, new_status: str, actor_email: str) -> OnboardingAssignment:
    """
    Move an assignment through active ⇄ paused → completed | cancelled.

    Entering ``completed`` stamps actual_completion_date.
    """
    assignment = get_assignment_or_404(assignment_id)
    old = assignment.status
    if not validate_assignment_transition(old, new_status):
        raise InvalidTransitionError("assignment", old, new_status)

    if new_status == "active":
        other = find_open_assignment(assignment.instructor_email)
        if other is not None and other.id != assignment.id:
            raise ConflictError(
                "OnboardingAssignment", "instructor_email", assignment.instructor_email,
                message="Instructor already has another open onboarding assignment",
            )

    assignment.status = new_status
    if new_status == "completed":
        assignment.actual_completion_date = date.today()

    write_event(
        assignment.id, "assignment_status_change", actor_email,
        old_status=old, new_status=new_status,
    )
    db.session.commit()

    logger.info(
        "Assignment %s status %s → %s", assignment.id, old, new_status,
        extra={"event_type": "assignment_status_change", "assignment_id": assignment.id, "actor": actor_email},
    )
    NotificationService.notify(
        assignment.instructor_email,
        "Onboarding Status Updated",
        f"Your onboarding assignment is now {new_status}.",
        category="onboarding",
        link_url=ONBOARDING_LINK,
        reference_type="onboarding_assignment",
        reference_id=assignment.id,
    )
    return assignment


# ── Query ────────────────────────────────────────────────────────────────────


def progress_summary(progress_rows: list[TaskProgress]) -> dict:
    total = len(progress_rows)
    completed = sum(1 for p in progress_rows if p.status == "completed")
    waived = sum(1 for p in progress_rows if p.status == "waived")
    in_progress = sum(1 for p in progress_rows if p.status == "in_progress")
    done = completed + waived
    return {
        "total_tasks": total,
        "completed_tasks": completed,
        "waived_tasks": waived,
        "in_progress_tasks": in_progress,
        "pending_tasks": total - done - in_progress,
        "progress_percent": round(done * 100 / total) if total else 0,
        "total_minutes_spent": sum(p.time_spent_minutes or 0 for p in progress_rows),
    }


def list_assignments(status: str | None = None) -> list[dict]:
    """Assignments newest first, each with names and a progress summary."""
    stmt = select(OnboardingAssignment).order_by(
        OnboardingAssignment.created_at.desc(), OnboardingAssignment.id.desc()
    )
    if status:
        stmt = stmt.where(OnboardingAssignment.status == status)

    items = []
    for assignment in db.session.execute(stmt).scalars():
        d = assignment.to_dict()
        d["instructor_name"] = identity_service.display_name(assignment.instructor_email)
        d["mentor_name"] = identity_service.display_name(assignment.mentor_email)
        d["summary"] = progress_summary(assignment.progress)
        items.append(d)
    return items
