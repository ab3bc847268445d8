import logging
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase

from gradeflow.assignments.assignment_models import Assignment
from gradeflow.assignments.statistics_service import refresh_assignment_statistics
from gradeflow.common.audit import log_audit
from gradeflow.common.errors import NotFound, ValidationFailed
from gradeflow.common.permissions import UserContext, verify_assignment_ownership
from gradeflow.common.roster import EnrollmentRoster
from gradeflow.common.utils import deep_merge, generate_id, strip_mongo_id, utcnow

logger = logging.getLogger(__name__)


def to_response(assignment: Assignment) -> dict:
    doc = assignment.model_dump()
    doc["status"] = assignment.status_at()
    return doc


async def load_assignment(db: AsyncIOMotorDatabase, assignment_id: str) -> Assignment:
    """Fetch an assignment or raise 404"""
    doc = await db.assignments.find_one({"assignment_id": assignment_id})
    if not doc:
        raise NotFound("Assignment not found")
    return Assignment.model_validate(strip_mongo_id(doc))


async def _save(db: AsyncIOMotorDatabase, assignment: Assignment):
    assignment.updated_at = utcnow()
    # statistics are owned by statistics_service
    await db.assignments.update_one(
        {"assignment_id": assignment.assignment_id},
        {"$set": assignment.model_dump(exclude={"assignment_id", "statistics"})}
    )

# ==================== ASSIGNMENT MANAGEMENT ====================

async def create_assignment(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    user: UserContext,
    data: dict
) -> dict:
    """Create an assignment owned by the calling instructor"""
    if not await roster.course_exists(data["course_id"]):
        raise NotFound("Course not found")

    data = {k: v for k, v in data.items() if v is not None}
    assignment = Assignment(
        assignment_id=generate_id("ASG"),
        instructor_id=user.user_id,
        **data
    )

    await db.assignments.insert_one(assignment.model_dump())
    await log_audit(db, user, "create_assignment", "assignment", assignment.assignment_id)
    logger.info("Assignment %s created in course %s", assignment.assignment_id, assignment.course_id)

    return to_response(assignment)


async def get_assignment(db: AsyncIOMotorDatabase, assignment_id: str) -> dict:
    return to_response(await load_assignment(db, assignment_id))


async def list_course_assignments(
    db: AsyncIOMotorDatabase,
    course_id: str,
    include_inactive: bool = False
) -> List[dict]:
    """Assignments for a course, soonest due first"""
    query = {"course_id": course_id}
    if not include_inactive:
        query["is_active"] = True

    docs = await db.assignments.find(query).sort("due_date", 1).to_list(length=None)
    return [to_response(Assignment.model_validate(strip_mongo_id(doc))) for doc in docs]


async def update_assignment(
    db: AsyncIOMotorDatabase,
    assignment_id: str,
    user: UserContext,
    patch: dict
) -> dict:
    """
    Patch an assignment. Write rules (availability clamp, passing grade
    default) are re-applied by rebuilding the model from the merged document.
    """
    current = await load_assignment(db, assignment_id)
    verify_assignment_ownership(current.model_dump(), user)

    merged = deep_merge(current.model_dump(), patch)
    if "max_grade" in patch and "passing_grade" not in patch:
        merged["passing_grade"] = None

    try:
        assignment = Assignment.model_validate(merged)
    except ValueError as e:
        raise ValidationFailed(str(e))

    await _save(db, assignment)
    await log_audit(db, user, "update_assignment", "assignment", assignment_id, {"fields": list(patch)})

    return to_response(assignment)


async def publish_assignment(db: AsyncIOMotorDatabase, assignment_id: str, user: UserContext) -> dict:
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    if not assignment.is_published:
        assignment.is_published = True
        assignment.published_at = utcnow()
        await _save(db, assignment)
        await log_audit(db, user, "publish_assignment", "assignment", assignment_id)

    return to_response(assignment)


async def delete_assignment(db: AsyncIOMotorDatabase, assignment_id: str, user: UserContext):
    """Soft delete: the assignment stays for its submissions and grades"""
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    await db.assignments.update_one(
        {"assignment_id": assignment_id},
        {"$set": {"is_active": False, "updated_at": utcnow()}}
    )
    await log_audit(db, user, "delete_assignment", "assignment", assignment_id)


async def refresh_statistics(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    assignment_id: str,
    user: UserContext
) -> dict:
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    statistics = await refresh_assignment_statistics(db, assignment_id, roster)
    return {**statistics, "assignment_id": assignment_id, "refreshed_at": utcnow()}
