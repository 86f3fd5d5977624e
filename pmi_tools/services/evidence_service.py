"""
Evidence Store - metadata for files uploaded against a task progress row.

The file bytes live in object storage; this service records where they
are. The progression engine only asks ``has_evidence``.
"""

import logging

from sqlalchemy import func, select

from pmi_tools.auth import is_admin_tier
from pmi_tools.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from pmi_tools.models import db
from pmi_tools.models.onboarding import OnboardingEvidence, TaskProgress
from pmi_tools.services.identity_service import require_user

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024


def has_evidence(task_progress_id: int) -> bool:
    count = db.session.execute(
        select(func.count(OnboardingEvidence.id)).where(
            OnboardingEvidence.task_progress_id == task_progress_id
        )
    ).scalar_one()
    return count > 0


def _get_progress_for_actor(progress_id: int, actor_email: str) -> TaskProgress:
    actor = require_user(actor_email)
    progress = db.session.get(TaskProgress, progress_id)
    if progress is None:
        raise NotFoundError(resource="TaskProgress", resource_id=progress_id)

    assignment = progress.assignment
    email = actor.email.lower()
    if not (
        is_admin_tier(actor.role)
        or email == (assignment.instructor_email or "").lower()
        or email == (assignment.mentor_email or "").lower()
    ):
        raise ForbiddenError("Not permitted to access evidence for this task", actor=actor.email)
    return progress


def list_evidence(progress_id: int, actor_email: str) -> list[dict]:
    progress = _get_progress_for_actor(progress_id, actor_email)
    return [e.to_dict() for e in progress.evidence]


def add_evidence(progress_id: int, actor_email: str, data: dict) -> OnboardingEvidence:
    """
    Record an evidence upload for a task progress row and commit.

    Args:
        progress_id: TaskProgress PK.
        actor_email: Uploader; must be the instructor, the mentor or admin-tier.
        data: file_name and storage_path (required), file_type,
              file_size_bytes, notes.
    """
    progress = _get_progress_for_actor(progress_id, actor_email)

    errors = {}
    for field in ("file_name", "storage_path"):
        if not (data.get(field) or "").strip():
            errors[field] = f"{field} is required"
    size = data.get("file_size_bytes")
    if size is not None and (not isinstance(size, int) or size < 0 or size > MAX_FILE_SIZE_BYTES):
        errors["file_size_bytes"] = f"Must be an integer between 0 and {MAX_FILE_SIZE_BYTES}"
    if errors:
        raise ValidationError("Invalid evidence payload", details=errors)

    evidence = OnboardingEvidence(
        task_progress_id=progress.id,
        file_name=data["file_name"].strip()[:300],
        file_type=data.get("file_type"),
        file_size_bytes=size,
        storage_path=data["storage_path"].strip()[:500],
        uploaded_by=actor_email,
        notes=data.get("notes"),
    )
    db.session.add(evidence)
    db.session.commit()

    logger.info(
        "Evidence uploaded progress_id=%s file=%s", progress.id, evidence.file_name,
        extra={"event_type": "evidence_uploaded", "progress_id": progress.id, "actor": actor_email},
    )
    return evidence
