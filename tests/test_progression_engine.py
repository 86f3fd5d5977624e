"""
Task progression engine: dependency gates, completion gates, reversals,
idempotence, concurrency and the derived read models.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from pmi_tools.core.exceptions import (
    AuthenticationError,
    BlockedError,
    ConflictError,
    DirectorEndorsementRequiredError,
    EvidenceRequiredError,
    ForbiddenError,
    NotFoundError,
    SignOffRequiredError,
    UnexpectedError,
    ValidationError,
)
from pmi_tools.models import db
from pmi_tools.models.onboarding import OnboardingEvent, TaskProgress
from pmi_tools.services import (
    assignment_service,
    evidence_service,
    identity_service,
    progression_service,
)
from pmi_tools.services.progression_service import (
    DependencyEdge,
    evaluate_blocking,
    soft_dependency_warnings,
)

pytestmark = pytest.mark.unit


def _status_events(assignment_id):
    return (
        db.session.query(OnboardingEvent)
        .filter_by(assignment_id=assignment_id, event_type="status_change")
        .order_by(OnboardingEvent.id)
        .all()
    )


def _evidence(progress_id, actor_email):
    return evidence_service.add_evidence(progress_id, actor_email, {
        "file_name": "lesson-plan.pdf",
        "file_type": "application/pdf",
        "file_size_bytes": 2048,
        "storage_path": f"onboarding/{progress_id}/lesson-plan.pdf",
    })


@pytest.fixture()
def abc(build_template, link, admin, instructor, mentor, progress_for):
    """A (no deps), B hard-depends on A, C soft-depends on A; assigned to the instructor."""
    template, tasks = build_template([{"title": "A"}, {"title": "B"}, {"title": "C"}])
    link(tasks, "B", "A", "hard")
    link(tasks, "C", "A", "soft")
    assignment = assignment_service.create_assignment(
        instructor.email, admin.email, template_id=template.id, mentor_email=mentor.email,
    )
    progress = {title: progress_for(assignment, task) for title, task in tasks.items()}
    return assignment, progress


# ═════════════════════════════════════════════════════════════════════════════
# Pure evaluation
# ═════════════════════════════════════════════════════════════════════════════


class TestEvaluateBlocking:
    def test_first_unmet_hard_edge_wins(self):
        edges = [
            DependencyEdge(1, "Tour", "hard"),
            DependencyEdge(2, "Badge", "hard"),
        ]
        blocking = evaluate_blocking(edges, {1: "completed", 2: "pending"})
        assert (blocking.task_id, blocking.title) == (2, "Badge")

    def test_waived_satisfies(self):
        assert evaluate_blocking([DependencyEdge(1, "Tour", "hard")], {1: "waived"}) is None

    def test_in_progress_does_not_satisfy(self):
        assert evaluate_blocking([DependencyEdge(1, "Tour", "hard")], {1: "in_progress"}) is not None

    def test_soft_edges_never_block(self):
        assert evaluate_blocking([DependencyEdge(1, "Tour", "soft")], {1: "pending"}) is None

    def test_unseeded_prerequisite_is_ignored(self):
        assert evaluate_blocking([DependencyEdge(9, "Rubric", "hard")], {}) is None

    def test_soft_warning_text(self):
        edges = [DependencyEdge(1, "Tour", "soft"), DependencyEdge(2, "Badge", "soft")]
        assert soft_dependency_warnings(edges, {1: "pending", 2: "completed"}) == [
            "Recommended: complete Tour first.",
        ]


# ═════════════════════════════════════════════════════════════════════════════
# Dependency gates
# ═════════════════════════════════════════════════════════════════════════════


class TestDependencyScenario:
    def test_all_tasks_start_pending(self, abc):
        _, progress = abc
        assert {p.status for p in progress.values()} == {"pending"}

    def test_hard_dependency_blocks_then_releases(self, abc, instructor):
        assignment, progress = abc

        with pytest.raises(BlockedError) as exc:
            progression_service.request_transition(progress["B"].id, "completed", instructor.email)
        assert exc.value.blocking_task_title == "A"
        assert exc.value.to_dict()["blocked_by"] == progress["A"].task_id
        assert db.session.get(TaskProgress, progress["B"].id).status == "pending"
        assert _status_events(assignment.id) == []

        progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        result = progression_service.request_transition(progress["B"].id, "completed", instructor.email)
        assert result["task_progress"]["status"] == "completed"
        assert result["warnings"] == []

    def test_hard_dependency_blocks_starting(self, abc, instructor):
        _, progress = abc
        with pytest.raises(BlockedError):
            progression_service.request_transition(progress["B"].id, "in_progress", instructor.email)

    def test_soft_dependency_warns_but_succeeds(self, abc, instructor):
        _, progress = abc
        result = progression_service.request_transition(progress["C"].id, "completed", instructor.email)
        assert result["task_progress"]["status"] == "completed"
        assert result["warnings"] == ["Recommended: complete A first."]

    def test_waived_prerequisite_releases_dependent(self, abc, admin, instructor):
        _, progress = abc
        progression_service.request_transition(progress["A"].id, "waived", admin.email)
        result = progression_service.request_transition(progress["B"].id, "in_progress", instructor.email)
        assert result["task_progress"]["status"] == "in_progress"

    def test_reopened_prerequisite_blocks_again(self, abc, instructor):
        _, progress = abc
        progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        progression_service.request_transition(progress["A"].id, "in_progress", instructor.email)
        with pytest.raises(BlockedError):
            progression_service.request_transition(progress["B"].id, "completed", instructor.email)

    def test_moving_back_to_pending_is_never_blocked(self, abc, admin, instructor):
        _, progress = abc
        progression_service.request_transition(progress["B"].id, "waived", admin.email)
        result = progression_service.request_transition(progress["B"].id, "pending", instructor.email)
        assert result["task_progress"]["status"] == "pending"

    def test_prerequisite_not_applicable_to_instructor_type(
        self, build_template, link, admin, make_user, progress_for,
    ):
        template, tasks = build_template([
            {"title": "Grading Rubric", "applicable_types": ["full_time"]},
            {"title": "Lab Skills Demo"},
        ])
        link(tasks, "Lab Skills Demo", "Grading Rubric")
        lab = make_user("lab.tech@pmi.edu")
        assignment = assignment_service.create_assignment(
            lab.email, admin.email, template_id=template.id, instructor_type="lab_only",
        )
        assert progress_for(assignment, tasks["Grading Rubric"]) is None

        demo = progress_for(assignment, tasks["Lab Skills Demo"])
        assert progression_service.compute_blocked(demo.id)["is_blocked"] is False
        result = progression_service.request_transition(demo.id, "completed", lab.email)
        assert result["task_progress"]["status"] == "completed"


# ═════════════════════════════════════════════════════════════════════════════
# Completion gates
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def gated(build_template, admin, instructor, mentor, progress_for):
    template, tasks = build_template([
        {"title": "Lesson Plan", "requires_evidence": True},
        {"title": "Shadow Session", "requires_sign_off": True, "sign_off_role": "mentor"},
        {"title": "Solo Session", "requires_sign_off": True, "sign_off_role": "program_director"},
        {"title": "Calendar", "requires_evidence": True,
         "requires_sign_off": True, "sign_off_role": "mentor"},
        {"title": "Final Review", "requires_director": True},
    ])
    assignment = assignment_service.create_assignment(
        instructor.email, admin.email, template_id=template.id, mentor_email=mentor.email,
    )
    return assignment, {title: progress_for(assignment, task) for title, task in tasks.items()}


class TestEvidenceGate:
    def test_rejected_without_evidence_then_accepted(self, gated, instructor):
        _, progress = gated
        lesson = progress["Lesson Plan"]

        with pytest.raises(EvidenceRequiredError) as exc:
            progression_service.request_transition(lesson.id, "completed", instructor.email)
        assert exc.value.to_dict()["requires_evidence"] is True

        _evidence(lesson.id, instructor.email)
        result = progression_service.request_transition(lesson.id, "completed", instructor.email)
        assert result["task_progress"]["status"] == "completed"

    def test_evidence_checked_before_sign_off(self, gated, mentor):
        _, progress = gated
        with pytest.raises(EvidenceRequiredError):
            progression_service.request_transition(progress["Calendar"].id, "completed", mentor.email)

    def test_evidence_not_needed_to_start(self, gated, instructor):
        _, progress = gated
        result = progression_service.request_transition(
            progress["Lesson Plan"].id, "in_progress", instructor.email,
        )
        assert result["task_progress"]["started_at"] is not None


class TestSignOffGate:
    def test_instructor_cannot_sign_off_own_task(self, gated, instructor):
        _, progress = gated
        with pytest.raises(SignOffRequiredError) as exc:
            progression_service.request_transition(progress["Shadow Session"].id, "completed", instructor.email)
        assert exc.value.to_dict()["sign_off_role"] == "mentor"

    def test_assigned_mentor_signs_off(self, gated, mentor):
        _, progress = gated
        result = progression_service.request_transition(
            progress["Shadow Session"].id, "completed", mentor.email,
        )
        tp = result["task_progress"]
        assert tp["status"] == "completed"
        assert tp["signed_off_by"] == mentor.email
        assert tp["signed_off_at"] is not None

    def test_admin_tier_signs_off_mentor_task(self, gated, admin):
        _, progress = gated
        result = progression_service.request_transition(
            progress["Shadow Session"].id, "completed", admin.email,
        )
        assert result["task_progress"]["signed_off_by"] == admin.email

    def test_unrelated_lead_instructor_has_no_standing(self, gated, make_user):
        _, progress = gated
        other = make_user("other.lead@pmi.edu", role="lead_instructor")
        with pytest.raises(ForbiddenError):
            progression_service.request_transition(progress["Shadow Session"].id, "completed", other.email)

    def test_program_director_sign_off_needs_admin_tier(self, gated, mentor, admin):
        _, progress = gated
        solo = progress["Solo Session"]
        with pytest.raises(SignOffRequiredError):
            progression_service.request_transition(solo.id, "completed", mentor.email)
        result = progression_service.request_transition(solo.id, "completed", admin.email)
        assert result["task_progress"]["signed_off_by"] == admin.email

    def test_plain_completion_records_no_sign_off(self, abc, instructor):
        _, progress = abc
        result = progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        assert result["task_progress"]["signed_off_by"] is None


class TestDirectorGate:
    def test_rejected_without_endorsement_then_accepted(self, gated, admin):
        _, progress = gated
        review = progress["Final Review"]

        with pytest.raises(DirectorEndorsementRequiredError) as exc:
            progression_service.request_transition(review.id, "completed", admin.email)
        assert exc.value.to_dict()["requires_director"] is True

        identity_service.grant_endorsement(admin.id, "director", granted_by="dean@pmi.edu",
                                           title="Program Director, Paramedic")
        result = progression_service.request_transition(review.id, "completed", admin.email)
        assert result["task_progress"]["status"] == "completed"

    def test_expired_endorsement_does_not_count(self, gated, admin):
        _, progress = gated
        identity_service.grant_endorsement(
            admin.id, "director", granted_by="dean@pmi.edu",
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
        with pytest.raises(DirectorEndorsementRequiredError):
            progression_service.request_transition(progress["Final Review"].id, "completed", admin.email)

    def test_other_endorsement_types_do_not_count(self, gated, admin):
        _, progress = gated
        identity_service.grant_endorsement(admin.id, "mentor", granted_by="dean@pmi.edu")
        with pytest.raises(DirectorEndorsementRequiredError):
            progression_service.request_transition(progress["Final Review"].id, "completed", admin.email)


# ═════════════════════════════════════════════════════════════════════════════
# State machine, reversal, idempotence
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitions:
    def test_revert_clears_completion_fields(self, gated, mentor, instructor):
        _, progress = gated
        shadow = progress["Shadow Session"]
        progression_service.request_transition(shadow.id, "in_progress", instructor.email)
        progression_service.request_transition(shadow.id, "completed", mentor.email)

        result = progression_service.request_transition(shadow.id, "in_progress", instructor.email)
        tp = result["task_progress"]
        assert tp["status"] == "in_progress"
        assert tp["completed_at"] is None
        assert tp["signed_off_by"] is None
        assert tp["signed_off_at"] is None
        assert tp["started_at"] is not None

    def test_revert_to_pending(self, abc, instructor):
        _, progress = abc
        progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        result = progression_service.request_transition(progress["A"].id, "pending", instructor.email)
        assert result["task_progress"]["completed_at"] is None

    def test_same_status_is_a_no_op(self, abc, instructor):
        assignment, progress = abc
        progression_service.request_transition(progress["A"].id, "in_progress", instructor.email)
        result = progression_service.request_transition(progress["A"].id, "in_progress", instructor.email)

        assert result["changed"] is False
        assert result["task_progress"]["status"] == "in_progress"
        assert len(_status_events(assignment.id)) == 1

    def test_same_status_with_notes_records_update(self, abc, instructor):
        assignment, progress = abc
        result = progression_service.request_transition(
            progress["A"].id, "pending", instructor.email,
            payload={"notes": "Waiting on badge office", "time_spent_minutes": 20},
        )
        assert result["changed"] is True
        assert result["task_progress"]["notes"] == "Waiting on badge office"
        assert result["task_progress"]["time_spent_minutes"] == 20

        updates = db.session.query(OnboardingEvent).filter_by(
            assignment_id=assignment.id, event_type="update",
        ).all()
        assert len(updates) == 1
        assert updates[0].old_status == updates[0].new_status == "pending"
        assert updates[0].event_metadata["changes"]["time_spent_minutes"] == {"from": 0, "to": 20}
        assert _status_events(assignment.id) == []

    def test_status_change_event_records_old_and_new(self, abc, instructor):
        assignment, progress = abc
        progression_service.request_transition(progress["A"].id, "in_progress", instructor.email)
        progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        events = _status_events(assignment.id)
        assert [(e.old_status, e.new_status) for e in events] == [
            ("pending", "in_progress"), ("in_progress", "completed"),
        ]
        assert all(e.triggered_by == instructor.email for e in events)
        assert events[0].task_progress_id == progress["A"].id

    def test_waiving_a_completed_task_clears_completion_fields(self, gated, admin):
        _, progress = gated
        shadow = progress["Shadow Session"]
        done = progression_service.request_transition(shadow.id, "completed", admin.email)
        assert done["task_progress"]["signed_off_by"] == admin.email

        tp = progression_service.request_transition(shadow.id, "waived", admin.email)["task_progress"]
        assert tp["status"] == "waived"
        assert tp["completed_at"] is None
        assert tp["signed_off_by"] is None
        assert tp["signed_off_at"] is None

    def test_completing_a_waived_task_runs_completion_gates(self, gated, admin, instructor, mentor):
        _, progress = gated
        shadow = progress["Shadow Session"]
        progression_service.request_transition(shadow.id, "waived", admin.email)

        with pytest.raises(SignOffRequiredError):
            progression_service.request_transition(shadow.id, "completed", instructor.email)
        tp = progression_service.request_transition(shadow.id, "completed", mentor.email)["task_progress"]
        assert tp["status"] == "completed"
        assert tp["signed_off_by"] == mentor.email

    def test_status_event_snapshots_completion_fields(self, gated, mentor, instructor):
        assignment, progress = gated
        shadow = progress["Shadow Session"]
        progression_service.request_transition(shadow.id, "completed", mentor.email)
        progression_service.request_transition(shadow.id, "pending", instructor.email)

        completed, reverted = _status_events(assignment.id)
        assert completed.event_metadata["fields"]["signed_off_by"] == mentor.email
        assert completed.event_metadata["fields"]["completed_at"] is not None
        assert reverted.event_metadata["fields"] == {
            "started_at": None, "completed_at": None, "signed_off_by": None, "signed_off_at": None,
        }

    def test_unknown_status(self, abc, instructor):
        _, progress = abc
        with pytest.raises(ValidationError):
            progression_service.request_transition(progress["A"].id, "archived", instructor.email)

    def test_only_admin_tier_waives(self, abc, instructor, mentor, admin):
        _, progress = abc
        for actor in (instructor, mentor):
            with pytest.raises(ForbiddenError):
                progression_service.request_transition(progress["A"].id, "waived", actor.email)
        result = progression_service.request_transition(progress["A"].id, "waived", admin.email)
        assert result["task_progress"]["status"] == "waived"

    def test_bad_time_spent(self, abc, instructor):
        _, progress = abc
        with pytest.raises(ValidationError):
            progression_service.request_transition(
                progress["A"].id, None, instructor.email, payload={"time_spent_minutes": -5},
            )

    def test_unknown_actor(self, abc):
        _, progress = abc
        with pytest.raises(AuthenticationError):
            progression_service.request_transition(progress["A"].id, "completed", "ghost@pmi.edu")

    def test_inactive_actor(self, abc, make_user):
        _, progress = abc
        gone = make_user("former@pmi.edu", role="admin", is_active=False)
        with pytest.raises(AuthenticationError):
            progression_service.request_transition(progress["A"].id, "completed", gone.email)

    def test_unknown_progress(self, instructor):
        with pytest.raises(NotFoundError):
            progression_service.request_transition(9999, "completed", instructor.email)

    def test_progress_stays_editable_when_assignment_paused(self, abc, admin, instructor):
        assignment, progress = abc
        assignment_service.update_assignment_status(assignment.id, "paused", admin.email)
        result = progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        assert result["task_progress"]["status"] == "completed"


class TestConcurrency:
    def test_version_bump_mid_transition_conflicts(self, gated, instructor, monkeypatch):
        assignment, progress = gated
        lesson_id = progress["Lesson Plan"].id
        table = TaskProgress.__table__

        def _has_evidence_with_concurrent_writer(task_progress_id):
            # Another writer commits between our read and our write
            db.session.execute(
                table.update().where(table.c.id == task_progress_id).values(version=table.c.version + 1)
            )
            return True

        monkeypatch.setattr(evidence_service, "has_evidence", _has_evidence_with_concurrent_writer)

        with pytest.raises(ConflictError):
            progression_service.request_transition(lesson_id, "completed", instructor.email)

        assert _status_events(assignment.id) == []
        row = db.session.get(TaskProgress, lesson_id)
        assert row.status == "pending"
        assert row.completed_at is None

    def test_storage_failure_leaves_row_untouched(self, abc, instructor, monkeypatch):
        assignment, progress = abc

        def _failing_write_event(*args, **kwargs):
            raise OperationalError("INSERT INTO onboarding_events", {}, Exception("disk I/O error"))

        monkeypatch.setattr(progression_service, "write_event", _failing_write_event)

        with pytest.raises(UnexpectedError):
            progression_service.request_transition(progress["A"].id, "completed", instructor.email)

        row = db.session.get(TaskProgress, progress["A"].id)
        assert row.status == "pending"
        assert row.completed_at is None
        assert _status_events(assignment.id) == []

    def test_version_increments_on_each_write(self, abc, instructor):
        _, progress = abc
        first = progression_service.request_transition(progress["A"].id, "in_progress", instructor.email)
        second = progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        assert second["task_progress"]["version"] == first["task_progress"]["version"] + 1


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


class TestReadModels:
    def test_compute_blocked(self, abc, instructor):
        _, progress = abc
        blocked = progression_service.compute_blocked(progress["B"].id)
        assert blocked["is_blocked"] is True
        assert blocked["blocked_by"]["title"] == "A"
        assert blocked["gate_type"] == "hard"
        assert progression_service.compute_blocked(progress["C"].id)["is_blocked"] is False

        progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        assert progression_service.compute_blocked(progress["B"].id) == {
            "is_blocked": False, "blocked_by": None, "gate_type": None,
        }

    def test_next_task_skips_blocked(self, build_template, link, admin, instructor, progress_for):
        template, tasks = build_template(
            [{"title": "Teach"}, {"title": "Shadow"}],
            [{"title": "Badge"}],
        )
        link(tasks, "Teach", "Shadow")
        assignment = assignment_service.create_assignment(instructor.email, admin.email,
                                                          template_id=template.id)
        # Teach sorts first but is blocked by Shadow
        assert progression_service.derive_next_task(assignment.id)["title"] == "Shadow"

        progression_service.request_transition(progress_for(assignment, tasks["Shadow"]).id,
                                               "in_progress", instructor.email)
        # Shadow is in progress, so it is still the next thing to do
        assert progression_service.derive_next_task(assignment.id)["title"] == "Shadow"

        progression_service.request_transition(progress_for(assignment, tasks["Shadow"]).id,
                                               "completed", instructor.email)
        assert progression_service.derive_next_task(assignment.id)["title"] == "Teach"

    def test_next_task_none_when_all_done(self, abc, admin):
        assignment, progress = abc
        for title in ("A", "B", "C"):
            progression_service.request_transition(progress[title].id, "waived", admin.email)
        assert progression_service.derive_next_task(assignment.id) is None

    def test_dashboard_shape(self, abc, instructor):
        assignment, progress = abc
        progression_service.request_transition(progress["C"].id, "completed", instructor.email)

        dash = progression_service.get_dashboard(assignment.id, instructor.email)
        assert dash["has_active_assignment"] is True
        assert dash["assignment"]["instructor_name"] == "Ian Instructor"
        assert dash["assignment"]["mentor_name"] == "Morgan Mentor"

        tasks = dash["phases"][0]["tasks"]
        assert [t["title"] for t in tasks] == ["A", "B", "C"]
        by_title = {t["title"]: t for t in tasks}
        assert by_title["B"]["is_blocked"] is True
        assert by_title["B"]["blocked_by"]["title"] == "A"
        assert by_title["A"]["is_blocked"] is False

        summary = dash["summary"]
        assert summary["total_tasks"] == 3
        assert summary["completed_tasks"] == 1
        assert summary["blocked_tasks"] == 1
        assert summary["progress_percent"] == 33
        assert summary["last_activity"] is not None
        assert dash["phases"][0]["completed_count"] == 1
        assert dash["next_task"]["title"] == "A"
        assert dash["lane_progress"] == [{
            "lane": "operational", "total_tasks": 3, "completed_tasks": 1, "progress_percent": 33,
        }]

    def test_dashboard_standing(self, abc, mentor, make_user):
        assignment, _ = abc
        assert progression_service.get_dashboard(assignment.id, mentor.email)["assignment"]["id"] == assignment.id
        outsider = make_user("outsider@pmi.edu")
        with pytest.raises(ForbiddenError):
            progression_service.get_dashboard(assignment.id, outsider.email)

    def test_dashboard_for_instructor(self, abc, instructor, mentor, admin, make_user):
        assignment, _ = abc
        own = progression_service.get_dashboard_for_instructor(None, instructor.email)
        assert own["assignment"]["id"] == assignment.id
        assert progression_service.get_dashboard_for_instructor(instructor.email, mentor.email)["has_active_assignment"]
        assert progression_service.get_dashboard_for_instructor(instructor.email, admin.email)["has_active_assignment"]

        outsider = make_user("outsider@pmi.edu")
        with pytest.raises(ForbiddenError):
            progression_service.get_dashboard_for_instructor(instructor.email, outsider.email)

        empty = progression_service.get_dashboard_for_instructor(None, outsider.email)
        assert empty["has_active_assignment"] is False
        assert empty["phases"] == []

    def test_task_progress_detail(self, gated, instructor):
        _, progress = gated
        lesson = progress["Lesson Plan"]
        _evidence(lesson.id, instructor.email)

        detail = progression_service.get_task_progress_detail(lesson.id, instructor.email)
        assert detail["title"] == "Lesson Plan"
        assert detail["kind"] == "evidence"
        assert detail["phase"]["name"] == "Phase 1"
        assert detail["assignment"]["instructor_email"] == instructor.email
        assert [e["file_name"] for e in detail["evidence"]] == ["lesson-plan.pdf"]

    def test_event_log(self, abc, instructor):
        assignment, progress = abc
        progression_service.request_transition(progress["A"].id, "completed", instructor.email)
        events = progression_service.list_events(assignment.id)
        assert [e["event_type"] for e in events] == ["assignment_created", "status_change"]
        assert events[1]["metadata"]["task_title"] == "A"


class TestEvidenceStore:
    def test_outsider_cannot_upload(self, gated, make_user):
        _, progress = gated
        outsider = make_user("outsider@pmi.edu")
        with pytest.raises(ForbiddenError):
            _evidence(progress["Lesson Plan"].id, outsider.email)

    def test_missing_fields(self, gated, instructor):
        _, progress = gated
        with pytest.raises(ValidationError) as exc:
            evidence_service.add_evidence(progress["Lesson Plan"].id, instructor.email, {"file_name": "x.pdf"})
        assert "storage_path" in exc.value.details

    def test_oversized_file(self, gated, instructor):
        _, progress = gated
        with pytest.raises(ValidationError):
            evidence_service.add_evidence(progress["Lesson Plan"].id, instructor.email, {
                "file_name": "huge.mov", "storage_path": "x/huge.mov", "file_size_bytes": 10 ** 9,
            })

    def test_list_evidence(self, gated, mentor, instructor):
        _, progress = gated
        _evidence(progress["Lesson Plan"].id, instructor.email)
        items = evidence_service.list_evidence(progress["Lesson Plan"].id, mentor.email)
        assert [e["uploaded_by"] for e in items] == [instructor.email]
        assert evidence_service.has_evidence(progress["Lesson Plan"].id)
        assert not evidence_service.has_evidence(progress["Calendar"].id)
