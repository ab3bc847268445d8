import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from gradeflow.config import MONGO_URL, MONGO_DB_NAME

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]


# ==================== DEPENDENCY FUNCTIONS ====================

async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return db


async def create_indexes(database: AsyncIOMotorDatabase):
    """
    Create database indexes, including the unique constraints the
    grading invariants rely on. Called during application startup.
    """
    # Assignments
    await database.assignments.create_index("assignment_id", unique=True)
    await database.assignments.create_index([("course_id", 1), ("is_active", 1)])
    await database.assignments.create_index("instructor_id")

    # Submissions: one row per attempt
    await database.submissions.create_index("submission_id", unique=True)
    await database.submissions.create_index(
        [("assignment_id", 1), ("student_id", 1), ("attempt_number", 1)],
        unique=True
    )
    await database.submissions.create_index([("assignment_id", 1), ("status", 1)])
    await database.submissions.create_index("student_id")

    # Grades: at most one per student and assignment
    await database.grades.create_index("grade_id", unique=True)
    await database.grades.create_index(
        [("student_id", 1), ("assignment_id", 1)],
        unique=True
    )
    await database.grades.create_index("submission_id")
    await database.grades.create_index([("course_id", 1), ("student_id", 1)])
    await database.grades.create_index([("instructor_id", 1), ("timeline.graded_at", -1)])

    # Roster
    await database.course_enrollments.create_index(
        [("course_id", 1), ("student_id", 1)],
        unique=True
    )
    await database.courses.create_index("course_id", unique=True)

    # Audit logs
    await database.audit_logs.create_index([("target_type", 1), ("target_id", 1)])
    await database.audit_logs.create_index([("actor_user_id", 1), ("timestamp", -1)])

    logger.info("Gradeflow indexes created")
