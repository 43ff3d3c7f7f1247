# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from database import MemoryBackend
from schemas import Course, CourseOutcome, GradeBand, GradingScale, Student
from store import RecordStore


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return RecordStore(backend, "autom8-store")


@pytest.fixture
def course():
    return Course(
        id="c1",
        code="CS101",
        name="Intro to Programming",
        semester=1,
        outcomes=[
            CourseOutcome(id="co1", code="CO1", target=70),
            CourseOutcome(id="co2", code="CO2", target=60),
        ],
    )


@pytest.fixture
def scale():
    return GradingScale(
        id="g1",
        name="Standard",
        grades=[
            GradeBand(grade="A+", min_marks=90, max_marks=100, points=4.0),
            GradeBand(grade="A", min_marks=80, max_marks=89, points=3.7),
            GradeBand(grade="B", min_marks=60, max_marks=79, points=3.0),
            GradeBand(grade="F", min_marks=0, max_marks=49, points=0.0),
        ],
    )


@pytest.fixture
def seeded(store, course, scale):
    store.add_course(course)
    store.add_grading_scale(scale)
    store.add_student(Student(id="s1", roll_number="R1", name="Ada"))
    store.add_student(Student(id="s2", roll_number="R2", name="Grace"))
    return store


@pytest.fixture
def client(store):
    from main import app, get_store

    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
