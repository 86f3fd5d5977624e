"""
Onboarding Template Catalog - Service Layer.

Business logic for:
    - Template authoring:   templates, phases, tasks with validated gate flags
    - Dependency authoring: same-template edges, no duplicates, no cycles
    - Graph validation:     Kahn topological order over a whole template
    - Default template:     earliest-created active template
    - Seeding:              the standard paramedic instructor program

Structural edits (new tasks, dependency changes) are refused once any
assignment references the template, so live TaskProgress sets never drift
from the graph they were seeded from.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from pmi_tools.core.exceptions import ConflictError, NotFoundError, ValidationError
from pmi_tools.models import db
from pmi_tools.models.onboarding import (
    GATE_TYPES,
    INSTRUCTOR_TYPES,
    TASK_LANES,
    TASK_TYPES,
    TEMPLATE_INSTRUCTOR_TYPES,
    OnboardingAssignment,
    OnboardingPhase,
    OnboardingTask,
    OnboardingTemplate,
    TaskDependency,
    build_completion_gates,
    topological_order,
)

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_template_or_404(template_id: int) -> OnboardingTemplate:
    template = db.session.get(OnboardingTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="OnboardingTemplate", resource_id=template_id)
    return template


def get_default_template() -> OnboardingTemplate | None:
    """Earliest-created active template, or None."""
    return db.session.execute(
        select(OnboardingTemplate)
        .where(OnboardingTemplate.is_active.is_(True))
        .order_by(OnboardingTemplate.created_at.asc(), OnboardingTemplate.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def template_tasks(template_id: int) -> list[OnboardingTask]:
    """All tasks of a template in phase order, then task order."""
    return list(
        db.session.execute(
            select(OnboardingTask)
            .join(OnboardingPhase, OnboardingTask.phase_id == OnboardingPhase.id)
            .where(OnboardingPhase.template_id == template_id)
            .order_by(OnboardingPhase.sort_order, OnboardingTask.sort_order, OnboardingTask.id)
        ).scalars()
    )


def template_dependencies(template_id: int) -> list[TaskDependency]:
    return list(
        db.session.execute(
            select(TaskDependency)
            .join(OnboardingTask, TaskDependency.task_id == OnboardingTask.id)
            .join(OnboardingPhase, OnboardingTask.phase_id == OnboardingPhase.id)
            .where(OnboardingPhase.template_id == template_id)
            .order_by(TaskDependency.id)
        ).scalars()
    )


def _template_id_for_task(task: OnboardingTask) -> int:
    return task.phase.template_id


def _ensure_not_in_use(template_id: int) -> None:
    in_use = db.session.execute(
        select(func.count(OnboardingAssignment.id)).where(
            OnboardingAssignment.template_id == template_id
        )
    ).scalar_one()
    if in_use:
        raise ConflictError(
            "OnboardingTemplate", "id", template_id,
            message="Template is referenced by assignments; structural edits are not allowed",
        )


# ── Template / Phase / Task authoring ────────────────────────────────────────


def list_templates(active_only: bool = False) -> list[dict]:
    stmt = select(OnboardingTemplate).order_by(OnboardingTemplate.created_at, OnboardingTemplate.id)
    if active_only:
        stmt = stmt.where(OnboardingTemplate.is_active.is_(True))
    return [t.to_dict() for t in db.session.execute(stmt).scalars()]


def get_template(template_id: int) -> dict:
    """Template with nested phases, tasks and each task's dependencies."""
    template = get_template_or_404(template_id)
    return template.to_dict(include_phases=True)


def create_template(data: dict, created_by: str) -> OnboardingTemplate:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Template name is required", details={"name": "required"})
    instructor_type = data.get("instructor_type") or "all"
    if instructor_type not in TEMPLATE_INSTRUCTOR_TYPES:
        raise ValidationError(
            f"Invalid instructor_type '{instructor_type}'",
            details={"instructor_type": f"Must be one of: {', '.join(sorted(TEMPLATE_INSTRUCTOR_TYPES))}"},
        )

    template = OnboardingTemplate(
        name=name[:200],
        description=data.get("description", ""),
        instructor_type=instructor_type,
        created_by=created_by,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(template)
    db.session.commit()
    logger.info("Onboarding template created id=%s name=%r", template.id, template.name)
    return template


def set_template_active(template_id: int, is_active: bool) -> OnboardingTemplate:
    template = get_template_or_404(template_id)
    template.is_active = bool(is_active)
    db.session.commit()
    logger.info("Onboarding template id=%s is_active=%s", template.id, template.is_active)
    return template


def add_phase(template_id: int, data: dict) -> OnboardingPhase:
    template = get_template_or_404(template_id)
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Phase name is required", details={"name": "required"})

    start = data.get("target_days_start", 0)
    end = data.get("target_days_end", 7)
    if not isinstance(start, int) or not isinstance(end, int) or start < 0 or end < start:
        raise ValidationError(
            "Phase target days must satisfy 0 <= target_days_start <= target_days_end",
            details={"target_days_start": start, "target_days_end": end},
        )

    sort_order = data.get("sort_order")
    if sort_order is None:
        sort_order = len(template.phases) + 1

    phase = OnboardingPhase(
        template_id=template.id,
        name=name[:200],
        description=data.get("description", ""),
        sort_order=sort_order,
        target_days_start=start,
        target_days_end=end,
    )
    db.session.add(phase)
    db.session.commit()
    return phase


def add_task(phase_id: int, data: dict) -> OnboardingTask:
    """
    Add a task to a phase.

    Gate flags are validated through build_completion_gates so an illegal
    combination never reaches the table.
    """
    phase = db.session.get(OnboardingPhase, phase_id)
    if phase is None:
        raise NotFoundError(resource="OnboardingPhase", resource_id=phase_id)
    _ensure_not_in_use(phase.template_id)

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Task title is required", details={"title": "required"})

    task_type = data.get("task_type", "checklist")
    if task_type not in TASK_TYPES:
        raise ValidationError(
            f"Invalid task_type '{task_type}'",
            details={"task_type": f"Must be one of: {', '.join(sorted(TASK_TYPES))}"},
        )
    lane = data.get("lane", "operational")
    if lane not in TASK_LANES:
        raise ValidationError(
            f"Invalid lane '{lane}'",
            details={"lane": f"Must be one of: {', '.join(sorted(TASK_LANES))}"},
        )
    applicable_types = data.get("applicable_types") or []
    if not isinstance(applicable_types, list) or any(t not in INSTRUCTOR_TYPES for t in applicable_types):
        raise ValidationError(
            "applicable_types must be a list of instructor types",
            details={"applicable_types": f"Allowed: {', '.join(sorted(INSTRUCTOR_TYPES))}"},
        )

    requires_sign_off = bool(data.get("requires_sign_off", False))
    sign_off_role = data.get("sign_off_role") or None
    build_completion_gates(
        requires_evidence=bool(data.get("requires_evidence", False)),
        requires_sign_off=requires_sign_off,
        sign_off_role=sign_off_role,
        requires_director=bool(data.get("requires_director", False)),
    )

    sort_order = data.get("sort_order")
    if sort_order is None:
        sort_order = len(phase.tasks) + 1

    task = OnboardingTask(
        phase_id=phase.id,
        title=title[:300],
        description=data.get("description", ""),
        task_type=task_type,
        resource_url=data.get("resource_url"),
        sort_order=sort_order,
        is_required=bool(data.get("is_required", True)),
        estimated_minutes=data.get("estimated_minutes"),
        lane=lane,
        requires_evidence=bool(data.get("requires_evidence", False)),
        requires_sign_off=requires_sign_off,
        sign_off_role=sign_off_role,
        requires_director=bool(data.get("requires_director", False)),
        applicable_types=list(applicable_types),
    )
    db.session.add(task)
    db.session.commit()
    return task


# ── Dependency authoring ─────────────────────────────────────────────────────


def add_dependency(task_id: int, depends_on_task_id: int, gate_type: str = "hard") -> TaskDependency:
    """
    Make ``task_id`` depend on ``depends_on_task_id``.

    Raises:
        NotFoundError: either task missing.
        ValidationError: bad gate type, tasks in different templates,
                         self-dependency or an edge that would close a cycle.
        ConflictError: edge already exists, or template already assigned.
    """
    if gate_type not in GATE_TYPES:
        raise ValidationError(
            f"Invalid gate_type '{gate_type}'",
            details={"gate_type": "Must be 'hard' or 'soft'"},
        )
    task = db.session.get(OnboardingTask, task_id)
    if task is None:
        raise NotFoundError(resource="OnboardingTask", resource_id=task_id)
    depends_on = db.session.get(OnboardingTask, depends_on_task_id)
    if depends_on is None:
        raise NotFoundError(resource="OnboardingTask", resource_id=depends_on_task_id)

    template_id = _template_id_for_task(task)
    if _template_id_for_task(depends_on) != template_id:
        raise ValidationError(
            "Dependencies must connect tasks of the same template",
            details={"task_id": task_id, "depends_on_task_id": depends_on_task_id},
        )
    _ensure_not_in_use(template_id)

    if task_id == depends_on_task_id:
        raise ValidationError("A task cannot depend on itself", details={"task_id": task_id})

    existing = db.session.execute(
        select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.depends_on_task_id == depends_on_task_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("TaskDependency", "depends_on_task_id", depends_on_task_id)

    edges = [(d.task_id, d.depends_on_task_id) for d in template_dependencies(template_id)]
    try:
        topological_order(
            [t.id for t in template_tasks(template_id)],
            edges + [(task_id, depends_on_task_id)],
        )
    except ValidationError:
        raise ValidationError(
            f'Adding this dependency would create a cycle: "{depends_on.title}" '
            f'already depends on "{task.title}"',
            details={"task_id": task_id, "depends_on_task_id": depends_on_task_id},
        ) from None

    dep = TaskDependency(task_id=task_id, depends_on_task_id=depends_on_task_id, gate_type=gate_type)
    db.session.add(dep)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("TaskDependency", "depends_on_task_id", depends_on_task_id)

    logger.info(
        "Dependency added task_id=%s depends_on=%s gate=%s", task_id, depends_on_task_id, gate_type,
    )
    return dep


def remove_dependency(dependency_id: int) -> None:
    dep = db.session.get(TaskDependency, dependency_id)
    if dep is None:
        raise NotFoundError(resource="TaskDependency", resource_id=dependency_id)
    _ensure_not_in_use(_template_id_for_task(dep.task))
    db.session.delete(dep)
    db.session.commit()


# ── Graph validation ─────────────────────────────────────────────────────────


def topological_task_order(template_id: int) -> list[int]:
    """
    Task ids of a template with prerequisites first.

    Raises ValidationError if the stored graph contains a cycle.
    """
    get_template_or_404(template_id)
    task_ids = [t.id for t in template_tasks(template_id)]
    edges = [(d.task_id, d.depends_on_task_id) for d in template_dependencies(template_id)]
    return topological_order(task_ids, edges)


def validate_template_graph(template_id: int) -> None:
    topological_task_order(template_id)


# ── Seed Helpers ─────────────────────────────────────────────────────────────

DEFAULT_TEMPLATE_NAME = "Paramedic Instructor Onboarding"

_FULL_AND_PART_TIME = ["full_time", "part_time"]

# (name, target_days_start, target_days_end, tasks)
# task: (title, task_type, estimated_minutes, lane, extra flags)
DEFAULT_PROGRAM = [
    ("Week 1: Orientation & Foundations", 0, 7, [
        ("Campus Tour & Office Setup", "checklist", 120, "operational",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
        ("System Access: PMI Email, Portal, Dashboard", "checklist", 15, "operational", {}),
        ("System Access: Blackboard LMS", "checklist", 15, "operational", {}),
        ("System Access: PMI Paramedic Tools", "checklist", 15, "operational", {}),
        ("Review: PMI Faculty Handbook", "document", 45, "operational", {}),
        ("Review: Program Outline & Course Syllabi", "document", 60, "operational", {}),
        ("Meet Mentor & Program Director", "sign_off", 30, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "program_director"}),
        ("Shadow: Program Faculty Session #1", "observation", 120, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
        ("Begin Faculty Fundamentals Module 1", "video", 90, "institutional", {}),
        ("Week 1 Wrap-Up & Debrief with PD", "sign_off", 30, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "program_director"}),
    ]),
    ("Week 2: Guided Practice & Setup", 8, 14, [
        ("Blackboard Training", "video", 180, "operational", {}),
        ("DE Training (if applicable)", "video", 120, "operational",
         {"is_required": False, "applicable_types": _FULL_AND_PART_TIME}),
        ("Create: Sample Course Calendar", "form", 90, "operational",
         {"requires_evidence": True, "requires_sign_off": True, "sign_off_role": "program_director"}),
        ("Create: Sample Lesson Plan", "form", 90, "operational",
         {"requires_evidence": True, "requires_sign_off": True, "sign_off_role": "program_director"}),
        ("Observe: Open Lab Session", "observation", 60, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
        ("FF Module 1: Classroom Expectations Competency", "form", 45, "institutional", {}),
    ]),
    ("Weeks 3–4: Supervised Instruction", 15, 28, [
        ("First Solo Instruction Session (PD Observed)", "observation", 180, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "program_director"}),
        ("Faculty Observation of Your Teaching", "observation", 180, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
        ("FF Module 1: Lesson Plan Competency", "form", 60, "institutional",
         {"requires_evidence": True}),
        ("FF Module 1: Teaching Aids (PPT) Competency", "form", 45, "institutional", {}),
    ]),
    ("Months 2–3: Independent Instruction & Module 2", 29, 90, [
        ("30-Day Faculty Observation", "sign_off", 60, "institutional",
         {"requires_evidence": True, "requires_sign_off": True, "sign_off_role": "program_director"}),
        ("FF Module 2: Blackboard Set-Up Competency", "form", 60, "institutional", {}),
        ("FF Module 2: Student Support Competency", "form", 60, "institutional", {}),
        ("Lab Skills Demonstration", "sign_off", 120, "operational",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
        ("Submit Complete Course Calendars", "form", 60, "operational",
         {"requires_sign_off": True, "sign_off_role": "admin"}),
        ("30-Day Mentor Check-in", "sign_off", 45, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
    ]),
    ("Months 4–5: Refinement & Module 3", 91, 150, [
        ("FF Module 3: Effective Feedback Competency", "form", 60, "institutional",
         {"applicable_types": _FULL_AND_PART_TIME}),
        ("FF Module 3: Grading Rubric Competency", "form", 60, "institutional",
         {"requires_evidence": True, "applicable_types": _FULL_AND_PART_TIME}),
        ("Month 4 Mentor Check-in", "sign_off", 30, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
    ]),
    ("Month 6: Advanced Techniques & Completion", 151, 180, [
        ("FF Module 4: Self-Reflection", "form", 90, "institutional",
         {"requires_evidence": True, "applicable_types": _FULL_AND_PART_TIME}),
        ("Final Mentor Sign-Off", "sign_off", 30, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "mentor"}),
        ("Program Director Final Review", "sign_off", 30, "mentorship",
         {"requires_sign_off": True, "sign_off_role": "program_director", "requires_director": True}),
    ]),
]

# (dependent title or prefix, prerequisite title, gate_type)
DEFAULT_DEPENDENCIES = [
    ("FF Module 3:", "30-Day Faculty Observation", "hard"),
    ("Final Mentor Sign-Off", "FF Module 4: Self-Reflection", "hard"),
    ("Program Director Final Review", "FF Module 4: Self-Reflection", "hard"),
    ("FF Module 2:", "FF Module 1: Teaching Aids (PPT) Competency", "soft"),
]


def seed_default_template(created_by: str = "system") -> OnboardingTemplate | None:
    """
    Create the standard paramedic instructor program.

    Idempotent: returns None when a template with the default name exists.
    Runs as one unit of work and validates the graph before committing.
    """
    existing = db.session.execute(
        select(OnboardingTemplate).where(OnboardingTemplate.name == DEFAULT_TEMPLATE_NAME)
    ).scalar_one_or_none()
    if existing is not None:
        return None

    template = OnboardingTemplate(
        name=DEFAULT_TEMPLATE_NAME,
        description=(
            "Onboarding for new paramedic program instructors: a structured "
            "4-week ramp-up and 6-month completion timeline integrating "
            "Faculty Fundamentals competencies."
        ),
        instructor_type="all",
        created_by=created_by,
    )
    db.session.add(template)

    by_title = {}
    for phase_order, (phase_name, day_start, day_end, tasks) in enumerate(DEFAULT_PROGRAM, start=1):
        phase = OnboardingPhase(
            template=template,
            name=phase_name,
            sort_order=phase_order,
            target_days_start=day_start,
            target_days_end=day_end,
        )
        db.session.add(phase)
        for task_order, (title, task_type, minutes, lane, flags) in enumerate(tasks, start=1):
            task = OnboardingTask(
                phase=phase,
                title=title,
                task_type=task_type,
                sort_order=task_order,
                estimated_minutes=minutes,
                lane=lane,
                is_required=flags.get("is_required", True),
                requires_evidence=flags.get("requires_evidence", False),
                requires_sign_off=flags.get("requires_sign_off", False),
                sign_off_role=flags.get("sign_off_role"),
                requires_director=flags.get("requires_director", False),
                applicable_types=list(flags.get("applicable_types", [])),
            )
            db.session.add(task)
            by_title[title] = task
    db.session.flush()

    edges = []
    for dependent, prerequisite, gate_type in DEFAULT_DEPENDENCIES:
        prereq = by_title[prerequisite]
        for title, task in by_title.items():
            if title == dependent or (dependent.endswith(":") and title.startswith(dependent)):
                db.session.add(TaskDependency(task=task, depends_on=prereq, gate_type=gate_type))
                edges.append((task.id, prereq.id))
    topological_order([t.id for t in by_title.values()], edges)

    db.session.commit()
    logger.info(
        "Seeded default onboarding template id=%s tasks=%d dependencies=%d",
        template.id, len(by_title), len(edges),
    )
    return template
