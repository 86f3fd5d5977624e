"""
Shared pytest fixtures for the PMI Paramedic Tools test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / auth_header: identity helpers
    - admin, instructor, mentor: pre-created users
    - build_template / link / progress_for: onboarding graph helpers

ORM helpers commit rather than flush: the services roll back the session on
every rejected request, which would discard merely flushed fixture rows.
"""

import pytest
from sqlalchemy import select

from pmi_tools import create_app
from pmi_tools.models import db as _db
from pmi_tools.models.auth import User
from pmi_tools.models.onboarding import (
    OnboardingPhase,
    OnboardingTask,
    OnboardingTemplate,
    TaskDependency,
    TaskProgress,
)
from pmi_tools.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity helpers ─────────────────────────────────────────────────────


def _make_user(email, role="instructor", name=None, is_active=True):
    user = User(email=email, role=role, name=name or email.split("@")[0].title(), is_active=is_active)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def make_user():
    """Factory: make_user(email, role="instructor", name=None, is_active=True)."""
    return _make_user


@pytest.fixture()
def auth_header():
    """Factory: auth_header(email) → {"Authorization": "Bearer <jwt>"}."""
    def _header(email):
        return {"Authorization": f"Bearer {generate_access_token(email)}"}
    return _header


@pytest.fixture()
def admin():
    return _make_user("director@pmi.edu", role="admin", name="Dana Director")


@pytest.fixture()
def instructor():
    return _make_user("new.instructor@pmi.edu", role="instructor", name="Ian Instructor")


@pytest.fixture()
def mentor():
    return _make_user("mentor@pmi.edu", role="lead_instructor", name="Morgan Mentor")


# ── Onboarding graph helpers ─────────────────────────────────────────────


def _build_template(*phases, name="Test Program", is_active=True):
    """
    Build a template directly through the ORM.

    Each positional argument is one phase: a list of task dicts holding
    ``title`` plus any OnboardingTask column. Returns (template, {title: task}).
    """
    template = OnboardingTemplate(name=name, instructor_type="all", created_by="tests", is_active=is_active)
    _db.session.add(template)
    tasks = {}
    for phase_order, phase_tasks in enumerate(phases, start=1):
        phase = OnboardingPhase(
            template=template, name=f"Phase {phase_order}", sort_order=phase_order,
            target_days_start=(phase_order - 1) * 7, target_days_end=phase_order * 7,
        )
        _db.session.add(phase)
        for task_order, fields in enumerate(phase_tasks, start=1):
            fields = dict(fields)
            task = OnboardingTask(
                phase=phase,
                sort_order=fields.pop("sort_order", task_order),
                applicable_types=fields.pop("applicable_types", []),
                **fields,
            )
            _db.session.add(task)
            tasks[task.title] = task
    _db.session.commit()
    return template, tasks


def _link(tasks, dependent, prerequisite, gate_type="hard"):
    dep = TaskDependency(
        task_id=tasks[dependent].id,
        depends_on_task_id=tasks[prerequisite].id,
        gate_type=gate_type,
    )
    _db.session.add(dep)
    _db.session.commit()
    return dep


def _progress_for(assignment, task):
    return _db.session.execute(
        select(TaskProgress).where(
            TaskProgress.assignment_id == assignment.id,
            TaskProgress.task_id == task.id,
        )
    ).scalar_one_or_none()


@pytest.fixture()
def build_template():
    """Factory: build_template([{"title": ...}, ...], [...], name=...)."""
    return _build_template


@pytest.fixture()
def link():
    """Factory: link(tasks, dependent_title, prerequisite_title, gate_type="hard")."""
    return _link


@pytest.fixture()
def progress_for():
    """Factory: progress_for(assignment, task) → TaskProgress or None."""
    return _progress_for
