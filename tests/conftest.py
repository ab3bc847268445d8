"""Shared fixtures: an in-memory Mongo database, users, factories and an HTTP client."""
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from gradeflow.assignments.assignment_models import Assignment
from gradeflow.common.permissions import UserContext
from gradeflow.common.roster import EnrollmentRoster
from gradeflow.common.utils import generate_id, utcnow
from gradeflow.config import JWT_ALGORITHM, JWT_SECRET_KEY
from gradeflow.database import create_indexes, get_db
from gradeflow.main import create_app
from gradeflow.submissions.submission_models import Submission
from gradeflow.system.rate_limiter import RateLimiter

COURSE_ID = "CRS_PHYS101"
TEACHER_ID = "USR_TEACHER"
OTHER_TEACHER_ID = "USR_TEACHER_2"
ADMIN_ID = "USR_ADMIN"
STUDENT_ID = "USR_STUDENT"
OTHER_STUDENT_ID = "USR_STUDENT_2"
OUTSIDER_ID = "USR_OUTSIDER"


@pytest_asyncio.fixture
async def db():
    """Fresh database with indexes, one course and four enrolled students"""
    client = AsyncMongoMockClient()
    database = client["gradeflow_test"]
    await create_indexes(database)

    await database.courses.insert_one({"course_id": COURSE_ID, "title": "Physics 101"})
    for student_id in (STUDENT_ID, OTHER_STUDENT_ID, "USR_STUDENT_3", "USR_STUDENT_4"):
        await database.course_enrollments.insert_one({
            "course_id": COURSE_ID,
            "student_id": student_id,
            "is_active": True
        })
    await database.course_enrollments.insert_one({
        "course_id": COURSE_ID,
        "student_id": "USR_DROPPED",
        "is_active": False
    })

    yield database


@pytest.fixture
def roster(db):
    return EnrollmentRoster(db)


@pytest.fixture
def teacher():
    return UserContext(TEACHER_ID, "teacher")


@pytest.fixture
def other_teacher():
    return UserContext(OTHER_TEACHER_ID, "teacher")


@pytest.fixture
def admin():
    return UserContext(ADMIN_ID, "admin")


@pytest.fixture
def student():
    return UserContext(STUDENT_ID, "student")


@pytest.fixture
def other_student():
    return UserContext(OTHER_STUDENT_ID, "student")


@pytest.fixture
def outsider():
    return UserContext(OUTSIDER_ID, "student")


@pytest.fixture
def make_assignment(db):
    """Insert a published assignment that is open now and due in a week"""
    async def _make(**overrides) -> Assignment:
        now = utcnow()
        fields = {
            "assignment_id": generate_id("ASG"),
            "course_id": COURSE_ID,
            "instructor_id": TEACHER_ID,
            "title": "Kinematics problem set",
            "due_date": now + timedelta(days=7),
            "available_from": now - timedelta(days=1),
            "is_published": True,
        }
        fields.update(overrides)
        assignment = Assignment(**fields)
        await db.assignments.insert_one(assignment.model_dump())
        return assignment
    return _make


@pytest.fixture
def make_submission(db):
    """Insert a submitted attempt directly, bypassing the submission rules"""
    async def _make(assignment: Assignment, student_id: str = STUDENT_ID, **overrides) -> Submission:
        fields = {
            "submission_id": generate_id("SUB"),
            "assignment_id": assignment.assignment_id,
            "student_id": student_id,
            "course_id": assignment.course_id,
        }
        fields.update(overrides)
        submission = Submission(**fields).derive_fields()
        await db.submissions.insert_one(submission.model_dump())
        return submission
    return _make


def auth_header(user_id: str, role: str) -> dict:
    token = jwt.encode({"sub": user_id, "role": role}, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(db):
    application = create_app(rate_limiter=RateLimiter(1000, 60), use_lifespan=False)

    async def override_get_db():
        return db

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
