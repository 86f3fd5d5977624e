"""
Template catalog: authoring validation, dependency graph rules and seeding.
"""

import pytest

from pmi_tools.core.exceptions import ConflictError, NotFoundError, ValidationError
from pmi_tools.models import db
from pmi_tools.models.onboarding import OnboardingTask, TaskDependency
from pmi_tools.services import assignment_service, template_service
from pmi_tools.services.template_service import DEFAULT_PROGRAM, DEFAULT_TEMPLATE_NAME

pytestmark = pytest.mark.unit


def _chain(build_template):
    return build_template([{"title": "A"}, {"title": "B"}, {"title": "C"}])


class TestAuthoring:
    def test_create_template_requires_name(self):
        with pytest.raises(ValidationError):
            template_service.create_template({"name": "  "}, created_by="director@pmi.edu")

    def test_create_template_rejects_unknown_instructor_type(self):
        with pytest.raises(ValidationError):
            template_service.create_template({"name": "X", "instructor_type": "volunteer"}, created_by="x")

    def test_phase_default_sort_order_appends(self):
        template = template_service.create_template({"name": "Ramp-up"}, created_by="x")
        first = template_service.add_phase(template.id, {"name": "Week 1"})
        second = template_service.add_phase(template.id, {"name": "Week 2", "target_days_start": 8,
                                                          "target_days_end": 14})
        assert (first.sort_order, second.sort_order) == (1, 2)

    def test_phase_rejects_inverted_day_window(self):
        template = template_service.create_template({"name": "Ramp-up"}, created_by="x")
        with pytest.raises(ValidationError):
            template_service.add_phase(template.id, {"name": "Bad", "target_days_start": 10,
                                                     "target_days_end": 3})

    def test_add_task_validates_gate_flags(self):
        template = template_service.create_template({"name": "Ramp-up"}, created_by="x")
        phase = template_service.add_phase(template.id, {"name": "Week 1"})
        with pytest.raises(ValidationError):
            template_service.add_task(phase.id, {"title": "Sign me", "requires_sign_off": True})
        assert db.session.query(OnboardingTask).count() == 0

    def test_add_task_rejects_unknown_lane_and_type(self):
        template = template_service.create_template({"name": "Ramp-up"}, created_by="x")
        phase = template_service.add_phase(template.id, {"name": "Week 1"})
        with pytest.raises(ValidationError):
            template_service.add_task(phase.id, {"title": "T", "lane": "sideways"})
        with pytest.raises(ValidationError):
            template_service.add_task(phase.id, {"title": "T", "task_type": "podcast"})
        with pytest.raises(ValidationError):
            template_service.add_task(phase.id, {"title": "T", "applicable_types": ["volunteer"]})

    def test_add_task_to_missing_phase(self):
        with pytest.raises(NotFoundError):
            template_service.add_task(999, {"title": "T"})

    def test_task_kind_reflects_gates(self):
        template = template_service.create_template({"name": "Ramp-up"}, created_by="x")
        phase = template_service.add_phase(template.id, {"name": "Week 1"})
        task = template_service.add_task(phase.id, {
            "title": "Lesson plan", "requires_evidence": True,
            "requires_sign_off": True, "sign_off_role": "mentor",
        })
        assert task.kind == "evidence+sign_off"
        assert task.to_dict()["sign_off_role"] == "mentor"


class TestDependencies:
    def test_hard_and_soft_edges(self, build_template):
        _, tasks = _chain(build_template)
        hard = template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        soft = template_service.add_dependency(tasks["C"].id, tasks["B"].id, gate_type="soft")
        assert hard.gate_type == "hard"
        assert soft.to_dict()["depends_on_title"] == "B"

    def test_self_dependency_rejected(self, build_template):
        _, tasks = _chain(build_template)
        with pytest.raises(ValidationError):
            template_service.add_dependency(tasks["A"].id, tasks["A"].id)

    def test_direct_cycle_rejected(self, build_template):
        _, tasks = _chain(build_template)
        template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        with pytest.raises(ValidationError, match="cycle"):
            template_service.add_dependency(tasks["A"].id, tasks["B"].id)

    def test_transitive_cycle_rejected(self, build_template):
        _, tasks = _chain(build_template)
        template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        template_service.add_dependency(tasks["C"].id, tasks["B"].id)
        with pytest.raises(ValidationError, match="cycle") as exc_info:
            template_service.add_dependency(tasks["A"].id, tasks["C"].id)
        assert exc_info.value.details == {
            "task_id": tasks["A"].id,
            "depends_on_task_id": tasks["C"].id,
        }
        assert db.session.query(TaskDependency).count() == 2

    def test_diamond_is_not_a_cycle(self, build_template):
        template, tasks = build_template([{"title": "A"}, {"title": "B"}, {"title": "C"}, {"title": "D"}])
        template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        template_service.add_dependency(tasks["C"].id, tasks["A"].id)
        template_service.add_dependency(tasks["D"].id, tasks["B"].id)
        template_service.add_dependency(tasks["D"].id, tasks["C"].id)

        order = template_service.topological_task_order(template.id)
        assert order[0] == tasks["A"].id
        assert order[-1] == tasks["D"].id

    def test_duplicate_edge_conflicts(self, build_template):
        _, tasks = _chain(build_template)
        template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        with pytest.raises(ConflictError):
            template_service.add_dependency(tasks["B"].id, tasks["A"].id, gate_type="soft")

    def test_cross_template_edge_rejected(self, build_template):
        _, first = build_template([{"title": "A"}], name="First")
        _, second = build_template([{"title": "B"}], name="Second")
        with pytest.raises(ValidationError):
            template_service.add_dependency(second["B"].id, first["A"].id)

    def test_bad_gate_type_rejected(self, build_template):
        _, tasks = _chain(build_template)
        with pytest.raises(ValidationError):
            template_service.add_dependency(tasks["B"].id, tasks["A"].id, gate_type="medium")

    def test_remove_dependency(self, build_template):
        _, tasks = _chain(build_template)
        dep = template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        template_service.remove_dependency(dep.id)
        assert db.session.get(TaskDependency, dep.id) is None
        with pytest.raises(NotFoundError):
            template_service.remove_dependency(dep.id)

    def test_structural_edits_refused_once_assigned(self, build_template, admin, instructor):
        template, tasks = _chain(build_template)
        assignment_service.create_assignment(instructor.email, admin.email, template_id=template.id)

        with pytest.raises(ConflictError):
            template_service.add_dependency(tasks["B"].id, tasks["A"].id)
        with pytest.raises(ConflictError):
            template_service.add_task(tasks["A"].phase_id, {"title": "Late addition"})


class TestTemplateDetail:
    def test_detail_orders_phases_and_tasks(self, build_template, link):
        template, tasks = build_template(
            [{"title": "Tour", "sort_order": 2}, {"title": "Badge", "sort_order": 1}],
            [{"title": "Teach"}],
        )
        link(tasks, "Teach", "Tour")

        detail = template_service.get_template(template.id)
        assert [p["name"] for p in detail["phases"]] == ["Phase 1", "Phase 2"]
        assert [t["title"] for t in detail["phases"][0]["tasks"]] == ["Badge", "Tour"]
        teach = detail["phases"][1]["tasks"][0]
        assert teach["dependencies"] == [{
            "id": teach["dependencies"][0]["id"],
            "task_id": tasks["Teach"].id,
            "depends_on_task_id": tasks["Tour"].id,
            "depends_on_title": "Tour",
            "gate_type": "hard",
        }]

    def test_missing_template(self):
        with pytest.raises(NotFoundError):
            template_service.get_template(404)

    def test_default_template_is_earliest_active(self, build_template):
        build_template([{"title": "A"}], name="Retired", is_active=False)
        first, _ = build_template([{"title": "A"}], name="Current")
        build_template([{"title": "A"}], name="Newer")
        assert template_service.get_default_template().id == first.id

    def test_retired_template_is_no_longer_default(self, build_template):
        first, _ = build_template([{"title": "A"}], name="Current")
        second, _ = build_template([{"title": "A"}], name="Newer")
        template_service.set_template_active(first.id, False)
        assert template_service.get_default_template().id == second.id
        assert [t["name"] for t in template_service.list_templates(active_only=True)] == ["Newer"]


class TestSeedDefaultTemplate:
    def test_seed_creates_full_program(self):
        template = template_service.seed_default_template(created_by="director@pmi.edu")

        assert template.name == DEFAULT_TEMPLATE_NAME
        assert len(template.phases) == len(DEFAULT_PROGRAM)
        expected_tasks = sum(len(tasks) for _, _, _, tasks in DEFAULT_PROGRAM)
        assert len(template_service.template_tasks(template.id)) == expected_tasks

    def test_seed_is_idempotent(self):
        assert template_service.seed_default_template() is not None
        assert template_service.seed_default_template() is None

    def test_seeded_dependencies(self):
        template = template_service.seed_default_template()
        by_title = {t.title: t for t in template_service.template_tasks(template.id)}
        deps = template_service.template_dependencies(template.id)
        edges = {(d.task_id, d.depends_on_task_id): d.gate_type for d in deps}

        observation = by_title["30-Day Faculty Observation"].id
        assert edges[(by_title["FF Module 3: Effective Feedback Competency"].id, observation)] == "hard"
        assert edges[(by_title["FF Module 3: Grading Rubric Competency"].id, observation)] == "hard"
        ppt = by_title["FF Module 1: Teaching Aids (PPT) Competency"].id
        assert edges[(by_title["FF Module 2: Blackboard Set-Up Competency"].id, ppt)] == "soft"
        final = by_title["Program Director Final Review"]
        assert final.requires_director and final.sign_off_role == "program_director"

        template_service.validate_template_graph(template.id)
