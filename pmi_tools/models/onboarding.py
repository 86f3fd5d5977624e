"""
PMI Paramedic Tools
Instructor onboarding domain models.

Models:
    - OnboardingTemplate:    reusable onboarding program (one per instructor track)
    - OnboardingPhase:       ordered grouping of tasks (Week 1, Months 2–3, ...)
    - OnboardingTask:        single unit of onboarding work with completion rules
    - TaskDependency:        task → prerequisite edge with a hard or soft gate
    - OnboardingAssignment:  one instructor's live instance of a template
    - TaskProgress:          per-assignment, per-task completion record
    - OnboardingEvidence:    uploaded proof attached to a task progress row
    - OnboardingEvent:       append-only audit trail of state changes

Architecture:
    OnboardingTemplate ──1:N──▶ OnboardingPhase ──1:N──▶ OnboardingTask
    OnboardingTask ──N:M──▶ OnboardingTask  (via TaskDependency)
    OnboardingTemplate ──1:N──▶ OnboardingAssignment ──1:N──▶ TaskProgress
    TaskProgress ──1:N──▶ OnboardingEvidence
    OnboardingAssignment ──1:N──▶ OnboardingEvent

Lifecycle states:
    OnboardingAssignment:  active ⇄ paused → completed | cancelled
    TaskProgress:          pending → in_progress → completed, waived from any
                           open state; completed/waived may be reopened
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar

from pmi_tools.core.exceptions import ValidationError
from pmi_tools.models import db


# ── Constants ────────────────────────────────────────────────────────────────

INSTRUCTOR_TYPES = {"full_time", "part_time", "lab_only", "adjunct"}

# Legacy intake forms still send "new_hire"
INSTRUCTOR_TYPE_ALIASES = {"new_hire": "full_time"}

TEMPLATE_INSTRUCTOR_TYPES = INSTRUCTOR_TYPES | {"all"}

TASK_TYPES = {"checklist", "document", "video", "form", "observation", "sign_off"}

TASK_LANES = {"institutional", "operational", "mentorship"}

SIGN_OFF_ROLES = {"mentor", "program_director", "admin"}

GATE_TYPES = {"hard", "soft"}

ASSIGNMENT_STATUSES = {"active", "paused", "completed", "cancelled"}

# Statuses that occupy an instructor's single open onboarding slot
OPEN_ASSIGNMENT_STATUSES = ("active", "paused")

PROGRESS_STATUSES = {"pending", "in_progress", "completed", "waived"}

# Statuses that satisfy a dependent task's gate
SATISFIED_STATUSES = frozenset({"completed", "waived"})

EVENT_TYPES = {"assignment_created", "assignment_status_change", "status_change", "update"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

ASSIGNMENT_TRANSITIONS = {
    "active":    ["paused", "completed", "cancelled"],
    "paused":    ["active", "cancelled"],
    "completed": [],
    "cancelled": [],
}

PROGRESS_TRANSITIONS = {
    "pending":     ["in_progress", "completed", "waived"],
    "in_progress": ["pending", "completed", "waived"],
    "completed":   ["in_progress", "pending", "waived"],
    "waived":      ["pending", "in_progress", "completed"],
}


def validate_assignment_transition(old_status, new_status):
    """Return True if OnboardingAssignment status transition is valid."""
    return new_status in ASSIGNMENT_TRANSITIONS.get(old_status, [])


def validate_progress_transition(old_status, new_status):
    """Return True if TaskProgress status transition is valid."""
    return new_status in PROGRESS_TRANSITIONS.get(old_status, [])


def normalize_instructor_type(instructor_type: str | None) -> str:
    """Resolve aliases and reject unknown instructor types."""
    resolved = INSTRUCTOR_TYPE_ALIASES.get(instructor_type or "new_hire", instructor_type)
    if resolved not in INSTRUCTOR_TYPES:
        raise ValidationError(
            f"Invalid instructor_type '{instructor_type}'",
            details={"instructor_type": f"Must be one of: {', '.join(sorted(INSTRUCTOR_TYPES))}"},
        )
    return resolved


# ── Completion gates ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EvidenceGate:
    """At least one evidence upload must exist before completion."""
    kind: ClassVar[str] = "evidence"


@dataclass(frozen=True)
class SignOffGate:
    """Completion must be performed by someone authorised for ``role``."""
    role: str
    kind: ClassVar[str] = "sign_off"


@dataclass(frozen=True)
class DirectorGate:
    """Completion requires an active director endorsement on the actor."""
    kind: ClassVar[str] = "director"


CompletionGate = EvidenceGate | SignOffGate | DirectorGate


def build_completion_gates(
    requires_evidence: bool = False,
    requires_sign_off: bool = False,
    sign_off_role: str | None = None,
    requires_director: bool = False,
) -> tuple[CompletionGate, ...]:
    """
    Translate task rule flags into gate variants, evaluated in this order.

    Raises ValidationError for combinations a task may not carry, e.g.
    a sign-off requirement without a role or a role without the requirement.
    """
    gates: list[CompletionGate] = []
    if requires_evidence:
        gates.append(EvidenceGate())
    if requires_sign_off:
        if sign_off_role not in SIGN_OFF_ROLES:
            raise ValidationError(
                "sign_off_role is required when requires_sign_off is set",
                details={"sign_off_role": f"Must be one of: {', '.join(sorted(SIGN_OFF_ROLES))}"},
            )
        gates.append(SignOffGate(role=sign_off_role))
    elif sign_off_role:
        raise ValidationError(
            "sign_off_role given for a task that does not require sign-off",
            details={"sign_off_role": "Set requires_sign_off or omit the role"},
        )
    if requires_director:
        gates.append(DirectorGate())
    return tuple(gates)


def topological_order(task_ids, edges):
    """
    Kahn's algorithm over ``edges`` of (task_id, depends_on_task_id).

    Returns task ids with every prerequisite before its dependents; ties keep
    the order of ``task_ids``. Raises ValidationError naming the tasks left on
    a cycle.
    """
    order_index = {tid: i for i, tid in enumerate(task_ids)}
    indegree = {tid: 0 for tid in task_ids}
    dependents: dict[int, list[int]] = {tid: [] for tid in task_ids}
    for task_id, depends_on in edges:
        if task_id not in indegree or depends_on not in indegree:
            continue
        indegree[task_id] += 1
        dependents[depends_on].append(task_id)

    ready = sorted((tid for tid, deg in indegree.items() if deg == 0), key=order_index.get)
    ordered = []
    while ready:
        current = ready.pop(0)
        ordered.append(current)
        for nxt in dependents[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                ready.append(nxt)
        ready.sort(key=order_index.get)

    if len(ordered) != len(task_ids):
        stuck = sorted((tid for tid, deg in indegree.items() if deg > 0), key=order_index.get)
        raise ValidationError(
            "Task dependencies contain a cycle",
            details={"task_ids": stuck},
        )
    return ordered


# ═════════════════════════════════════════════════════════════════════════════
# 1. OnboardingTemplate
# ═════════════════════════════════════════════════════════════════════════════


class OnboardingTemplate(db.Model):
    """
    Reusable onboarding program.
    The earliest-created active template is the default for new assignments.
    """

    __tablename__ = "onboarding_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    instructor_type = db.Column(
        db.String(20), nullable=False, default="all",
        comment="full_time | part_time | lab_only | adjunct | all",
    )
    created_by = db.Column(db.String(200), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    phases = db.relationship(
        "OnboardingPhase", back_populates="template",
        cascade="all, delete-orphan", order_by="OnboardingPhase.sort_order",
    )

    def to_dict(self, include_phases=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "instructor_type": self.instructor_type,
            "created_by": self.created_by,
            "is_active": self.is_active,
            "phase_count": len(self.phases),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_phases:
            d["phases"] = [p.to_dict(include_tasks=True) for p in self.phases]
        return d

    def __repr__(self):
        return f"<OnboardingTemplate {self.id}: {self.name[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. OnboardingPhase
# ═════════════════════════════════════════════════════════════════════════════


class OnboardingPhase(db.Model):
    """Ordered grouping of tasks. Order drives display only, never gating."""

    __tablename__ = "onboarding_phases"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    target_days_start = db.Column(db.Integer, default=0, comment="Days after start_date")
    target_days_end = db.Column(db.Integer, default=7, comment="Days after start_date")

    template = db.relationship("OnboardingTemplate", back_populates="phases")
    tasks = db.relationship(
        "OnboardingTask", back_populates="phase",
        cascade="all, delete-orphan", order_by="OnboardingTask.sort_order",
    )

    def to_dict(self, include_tasks=False):
        d = {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "sort_order": self.sort_order,
            "target_days_start": self.target_days_start,
            "target_days_end": self.target_days_end,
        }
        if include_tasks:
            d["tasks"] = [t.to_dict() for t in self.tasks]
        return d

    def __repr__(self):
        return f"<OnboardingPhase {self.sort_order}: {self.name[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. OnboardingTask
# ═════════════════════════════════════════════════════════════════════════════


class OnboardingTask(db.Model):
    """
    A single onboarding step.

    The rule flags are stored flat for querying; callers use
    ``completion_gates`` to work with them. ``sign_off_role`` is present
    exactly when ``requires_sign_off`` is set (enforced by a check constraint
    and by ``build_completion_gates`` at authoring time).
    """

    __tablename__ = "onboarding_tasks"

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_phases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    task_type = db.Column(
        db.String(20), nullable=False, default="checklist",
        comment="checklist | document | video | form | observation | sign_off",
    )
    resource_url = db.Column(db.String(500), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    estimated_minutes = db.Column(db.Integer, nullable=True)
    lane = db.Column(
        db.String(20), nullable=False, default="operational",
        comment="institutional | operational | mentorship",
    )

    # Completion rules
    requires_evidence = db.Column(db.Boolean, nullable=False, default=False)
    requires_sign_off = db.Column(db.Boolean, nullable=False, default=False)
    sign_off_role = db.Column(
        db.String(30), nullable=True,
        comment="mentor | program_director | admin - set iff requires_sign_off",
    )
    requires_director = db.Column(db.Boolean, nullable=False, default=False)
    applicable_types = db.Column(
        db.JSON, nullable=False, default=list,
        comment="Instructor types this task applies to; empty list = all",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    phase = db.relationship("OnboardingPhase", back_populates="tasks")
    dependencies = db.relationship(
        "TaskDependency", foreign_keys="TaskDependency.task_id",
        back_populates="task", cascade="all, delete-orphan",
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "(requires_sign_off AND sign_off_role IS NOT NULL) "
            "OR (NOT requires_sign_off AND sign_off_role IS NULL)",
            name="ck_onboarding_task_sign_off_role",
        ),
    )

    @property
    def completion_gates(self) -> tuple[CompletionGate, ...]:
        return build_completion_gates(
            requires_evidence=bool(self.requires_evidence),
            requires_sign_off=bool(self.requires_sign_off),
            sign_off_role=self.sign_off_role,
            requires_director=bool(self.requires_director),
        )

    @property
    def kind(self) -> str:
        """``plain`` or the gate kinds joined by ``+`` (e.g. ``evidence+sign_off``)."""
        gates = self.completion_gates
        return "+".join(g.kind for g in gates) if gates else "plain"

    def applies_to(self, instructor_type: str) -> bool:
        types = self.applicable_types or []
        return not types or instructor_type in types

    def to_dict(self):
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "title": self.title,
            "description": self.description,
            "task_type": self.task_type,
            "resource_url": self.resource_url,
            "sort_order": self.sort_order,
            "is_required": self.is_required,
            "estimated_minutes": self.estimated_minutes,
            "lane": self.lane,
            "kind": self.kind,
            "requires_evidence": self.requires_evidence,
            "requires_sign_off": self.requires_sign_off,
            "sign_off_role": self.sign_off_role,
            "requires_director": self.requires_director,
            "applicable_types": list(self.applicable_types or []),
            "dependencies": [d.to_dict() for d in self.dependencies],
        }

    def __repr__(self):
        return f"<OnboardingTask {self.id}: {self.title[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. TaskDependency
# ═════════════════════════════════════════════════════════════════════════════


class TaskDependency(db.Model):
    """
    Task → prerequisite edge.
    A ``hard`` gate blocks progress until the prerequisite is completed or
    waived; a ``soft`` gate only produces a recommendation.
    """

    __tablename__ = "onboarding_task_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_task_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    gate_type = db.Column(db.String(10), nullable=False, default="hard", comment="hard | soft")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    task = db.relationship("OnboardingTask", foreign_keys=[task_id], back_populates="dependencies")
    depends_on = db.relationship("OnboardingTask", foreign_keys=[depends_on_task_id])

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint(
            "task_id", "depends_on_task_id",
            name="uq_onboarding_task_dep",
        ),
        db.CheckConstraint(
            "task_id != depends_on_task_id",
            name="ck_onboarding_dep_no_self_loop",
        ),
        db.CheckConstraint(
            "gate_type IN ('hard', 'soft')",
            name="ck_onboarding_dep_gate_type",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "depends_on_task_id": self.depends_on_task_id,
            "depends_on_title": self.depends_on.title if self.depends_on else None,
            "gate_type": self.gate_type,
        }

    def __repr__(self):
        return f"<TaskDependency {self.task_id} → {self.depends_on_task_id} ({self.gate_type})>"


# ═════════════════════════════════════════════════════════════════════════════
# 5. OnboardingAssignment
# ═════════════════════════════════════════════════════════════════════════════


class OnboardingAssignment(db.Model):
    """
    One instructor's instance of a template.
    At most one assignment per instructor may be active or paused; the
    partial unique index backs up the service-level check under concurrency.
    """

    __tablename__ = "onboarding_assignments"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_templates.id"),
        nullable=False, index=True,
    )
    instructor_email = db.Column(db.String(200), nullable=False, index=True)
    instructor_type = db.Column(
        db.String(20), nullable=False, default="full_time",
        comment="full_time | part_time | lab_only | adjunct",
    )
    mentor_email = db.Column(db.String(200), nullable=True, index=True)
    assigned_by = db.Column(db.String(200), nullable=True)

    start_date = db.Column(db.Date, nullable=False)
    target_completion_date = db.Column(db.Date, nullable=True)
    actual_completion_date = db.Column(db.Date, nullable=True)

    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | paused | completed | cancelled",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    template = db.relationship("OnboardingTemplate")
    progress = db.relationship(
        "TaskProgress", back_populates="assignment",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active', 'paused', 'completed', 'cancelled')",
            name="ck_onboarding_assignment_status",
        ),
        db.Index(
            "uq_onboarding_open_assignment", "instructor_email",
            unique=True,
            sqlite_where=db.text("status IN ('active', 'paused')"),
            postgresql_where=db.text("status IN ('active', 'paused')"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": self.template.name if self.template else None,
            "instructor_email": self.instructor_email,
            "instructor_type": self.instructor_type,
            "mentor_email": self.mentor_email,
            "assigned_by": self.assigned_by,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "target_completion_date": (
                self.target_completion_date.isoformat() if self.target_completion_date else None
            ),
            "actual_completion_date": (
                self.actual_completion_date.isoformat() if self.actual_completion_date else None
            ),
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<OnboardingAssignment {self.id}: {self.instructor_email} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 6. TaskProgress
# ═════════════════════════════════════════════════════════════════════════════


class TaskProgress(db.Model):
    """
    Completion record for one task within one assignment.

    ``version`` is the optimistic-lock counter: every flush issues
    ``UPDATE ... WHERE version = :seen`` and a concurrent writer surfaces
    as ``StaleDataError``.
    """

    __tablename__ = "onboarding_task_progress"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_assignments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    task_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_tasks.id"),
        nullable=False, index=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | completed | waived",
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signed_off_by = db.Column(db.String(200), nullable=True)
    signed_off_at = db.Column(db.DateTime(timezone=True), nullable=True)
    time_spent_minutes = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignment = db.relationship("OnboardingAssignment", back_populates="progress")
    task = db.relationship("OnboardingTask")
    evidence = db.relationship(
        "OnboardingEvidence", back_populates="task_progress",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="OnboardingEvidence.uploaded_at.desc()",
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint("assignment_id", "task_id", name="uq_onboarding_progress_task"),
        db.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'waived')",
            name="ck_onboarding_progress_status",
        ),
        db.CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status != 'completed' AND completed_at IS NULL)",
            name="ck_onboarding_progress_completed_at",
        ),
        db.CheckConstraint(
            "status = 'completed' OR (signed_off_by IS NULL AND signed_off_at IS NULL)",
            name="ck_onboarding_progress_sign_off",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "task_id": self.task_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "signed_off_by": self.signed_off_by,
            "signed_off_at": self.signed_off_at.isoformat() if self.signed_off_at else None,
            "time_spent_minutes": self.time_spent_minutes,
            "notes": self.notes,
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TaskProgress {self.id}: task={self.task_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 7. OnboardingEvidence
# ═════════════════════════════════════════════════════════════════════════════


class OnboardingEvidence(db.Model):
    """Metadata for a file uploaded as proof of task completion."""

    __tablename__ = "onboarding_evidence"

    id = db.Column(db.Integer, primary_key=True)
    task_progress_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_task_progress.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    file_name = db.Column(db.String(300), nullable=False)
    file_type = db.Column(db.String(100), nullable=True)
    file_size_bytes = db.Column(db.Integer, nullable=True)
    storage_path = db.Column(db.String(500), nullable=False)
    uploaded_by = db.Column(db.String(200), nullable=False)
    uploaded_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    notes = db.Column(db.Text, nullable=True)

    task_progress = db.relationship("TaskProgress", back_populates="evidence")

    def to_dict(self):
        return {
            "id": self.id,
            "task_progress_id": self.task_progress_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size_bytes": self.file_size_bytes,
            "storage_path": self.storage_path,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<OnboardingEvidence {self.id}: {self.file_name[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 8. OnboardingEvent
# ═════════════════════════════════════════════════════════════════════════════


class OnboardingEvent(db.Model):
    """
    APPEND-ONLY audit record of an onboarding state change.
    Rows are only removed together with their assignment.
    """

    __tablename__ = "onboarding_event_log"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_assignments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    task_progress_id = db.Column(
        db.Integer, db.ForeignKey("onboarding_task_progress.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    event_type = db.Column(
        db.String(40), nullable=False,
        comment="assignment_created | assignment_status_change | status_change | update",
    )
    old_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=True)
    triggered_by = db.Column(db.String(200), nullable=False)
    event_metadata = db.Column("metadata", db.JSON, nullable=False, default=dict)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "task_progress_id": self.task_progress_id,
            "event_type": self.event_type,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "triggered_by": self.triggered_by,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OnboardingEvent {self.event_type} {self.old_status} → {self.new_status}>"


def write_event(
    assignment_id: int,
    event_type: str,
    triggered_by: str,
    *,
    task_progress_id: int | None = None,
    old_status: str | None = None,
    new_status: str | None = None,
    metadata: dict | None = None,
) -> OnboardingEvent:
    """
    Append an event to the current session.

    Flushes but never commits: the event belongs to the caller's unit of work
    and disappears with it on rollback.
    """
    event = OnboardingEvent(
        assignment_id=assignment_id,
        task_progress_id=task_progress_id,
        event_type=event_type,
        old_status=old_status,
        new_status=new_status,
        triggered_by=triggered_by,
        event_metadata=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
