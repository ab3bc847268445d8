import logging
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from gradeflow.assignments.assignment_models import Assignment
from gradeflow.assignments.assignment_service import load_assignment
from gradeflow.assignments.statistics_service import refresh_assignment_statistics
from gradeflow.common.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from gradeflow.common.permissions import UserContext, ensure_owner, verify_assignment_ownership
from gradeflow.common.roster import EnrollmentRoster
from gradeflow.common.utils import generate_id, strip_mongo_id, utcnow
from gradeflow.submissions.submission_models import (
    Submission, SubmissionContent, SubmissionStatus, select_effective_attempt
)

logger = logging.getLogger(__name__)


# ==================== HELPERS ====================

async def load_submission(db: AsyncIOMotorDatabase, submission_id: str) -> Submission:
    """Fetch a submission or raise 404"""
    doc = await db.submissions.find_one({"submission_id": submission_id})
    if not doc:
        raise NotFound("Submission not found")
    return Submission.model_validate(strip_mongo_id(doc))


async def save_submission(db: AsyncIOMotorDatabase, submission: Submission):
    """Recompute derived fields and write the whole submission back"""
    submission.derive_fields()
    await db.submissions.update_one(
        {"submission_id": submission.submission_id},
        {"$set": submission.model_dump(exclude={"submission_id"})}
    )


async def last_attempt_number(db: AsyncIOMotorDatabase, assignment_id: str, student_id: str) -> int:
    """
    Highest attempt number stored for the student, 0 before the first.

    This is the attempt count checked against attempts.allowed, so
    withdrawing an earlier attempt does not free a slot.
    """
    docs = await db.submissions.find(
        {"assignment_id": assignment_id, "student_id": student_id},
        {"attempt_number": 1}
    ).sort("attempt_number", -1).limit(1).to_list(length=1)
    return docs[0]["attempt_number"] if docs else 0


async def refresh_statistics_quietly(db: AsyncIOMotorDatabase, roster: EnrollmentRoster, assignment_id: str):
    """
    Statistics are a display cache: a failed refresh leaves them stale
    until the next one, it never fails the submission itself.
    """
    try:
        await refresh_assignment_statistics(db, assignment_id, roster)
    except PyMongoError:
        logger.warning("Statistics for assignment %s left stale", assignment_id, exc_info=True)


def check_can_submit(assignment: Assignment, attempts_used: int) -> Tuple[bool, Optional[str]]:
    """
    Validates if a student can start another attempt

    Returns:
        tuple: (can_submit: bool, reason: str or None)
    """
    if not assignment.is_accepting_submissions():
        return False, "Assignment is not accepting submissions"

    if attempts_used >= assignment.attempts.allowed:
        return False, "Maximum submission attempts exceeded"

    return True, None


def _attempt_limit_message(assignment: Assignment) -> str:
    if assignment.attempts.allowed == 1:
        return "You have already submitted this assignment"
    return f"Maximum of {assignment.attempts.allowed} attempts reached for this assignment"


def _check_is_owner(submission: Submission, user: UserContext):
    if submission.student_id != user.user_id:
        raise Forbidden("Not authorized to modify this submission")


# ==================== SUBMISSION LIFECYCLE ====================

async def _create_attempt(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    assignment: Assignment,
    user: UserContext,
    course_id: str,
    content: SubmissionContent,
    submission_type: str,
    started_at=None,
    draft: bool = False
) -> dict:
    attempts = await last_attempt_number(db, assignment.assignment_id, user.user_id)
    if attempts >= assignment.attempts.allowed:
        raise Conflict(_attempt_limit_message(assignment))

    if not assignment.is_accepting_submissions():
        raise InvalidState("Assignment is not accepting submissions")

    attempt_number = attempts + 1
    if draft:
        status = SubmissionStatus.DRAFT
    elif attempt_number > 1:
        status = SubmissionStatus.RESUBMITTED
    else:
        status = SubmissionStatus.SUBMITTED

    submission = Submission(
        submission_id=generate_id("SUB"),
        assignment_id=assignment.assignment_id,
        student_id=user.user_id,
        course_id=course_id,
        attempt_number=attempt_number,
        submission_type=submission_type,
        content=content,
        status=status
    )
    submission.timing.started_at = started_at
    submission.apply_late_penalty(assignment)
    submission.record("draft_saved" if draft else status.value, user.user_id,
                      {"attempt_number": attempt_number, "is_late": submission.flags.is_late})

    if not draft and assignment.settings.auto_grade and submission.auto_grade():
        submission.grading.graded_by = "system"
        submission.apply_late_penalty(assignment)

    submission.derive_fields()
    try:
        await db.submissions.insert_one(submission.model_dump())
    except DuplicateKeyError:
        # Two concurrent requests raced for the same attempt number
        raise Conflict("Another submission for this attempt was recorded first")

    logger.info(
        "Submission %s created (assignment=%s student=%s attempt=%d late=%s)",
        submission.submission_id, assignment.assignment_id, user.user_id,
        attempt_number, submission.flags.is_late
    )

    await refresh_statistics_quietly(db, roster, assignment.assignment_id)
    return submission.model_dump()


async def create_submission(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    user: UserContext,
    assignment_id: str,
    course_id: str,
    content: SubmissionContent,
    files: list = None,
    submission_type: str = "mixed",
    started_at=None,
    draft: bool = False
) -> dict:
    """
    Student submits work for an assignment

    Raises:
        404: Assignment or course missing
        422: Assignment belongs to another course
        403: Student not enrolled in the course
        409: Attempt limit reached, or assignment closed/unpublished
    """
    assignment = await load_assignment(db, assignment_id)

    if not assignment.is_published or not assignment.is_active:
        raise InvalidState("Assignment is not published")

    if not await roster.course_exists(course_id):
        raise NotFound("Course not found")

    if assignment.course_id != course_id:
        raise ValidationFailed("Assignment does not belong to this course")

    if not await roster.is_enrolled(course_id, user.user_id):
        raise Forbidden("Not enrolled in this course. Please enroll first.")

    if files:
        content.files.extend(files)

    return await _create_attempt(
        db, roster, assignment, user, course_id, content,
        submission_type, started_at=started_at, draft=draft
    )


async def update_submission_content(
    db: AsyncIOMotorDatabase,
    submission_id: str,
    user: UserContext,
    content: SubmissionContent,
    files: list = None
) -> dict:
    """
    Replace the content of an ungraded submission. Grading freezes content;
    later changes must go through resubmit as a new attempt.
    """
    submission = await load_submission(db, submission_id)
    _check_is_owner(submission, user)

    assignment = await load_assignment(db, submission.assignment_id)

    if submission.is_locked:
        attempts = await last_attempt_number(db, submission.assignment_id, user.user_id)
        if attempts < assignment.attempts.allowed:
            raise InvalidState("Submission has been graded; resubmit to start a new attempt")
        raise InvalidState("Submission has been graded and can no longer be changed")

    if not assignment.is_accepting_submissions():
        raise InvalidState("Assignment is not accepting submissions")

    if files:
        content.files.extend(files)

    submission.content = content
    submission.timing.submitted_at = utcnow()
    submission.apply_late_penalty(assignment)
    if submission.status != SubmissionStatus.DRAFT.value:
        submission.record("resubmitted", user.user_id, {"is_late": submission.flags.is_late})

    await save_submission(db, submission)
    return submission.model_dump()


async def submit_draft(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    submission_id: str,
    user: UserContext
) -> dict:
    """Turn a saved draft into a submitted attempt"""
    submission = await load_submission(db, submission_id)
    _check_is_owner(submission, user)

    assignment = await load_assignment(db, submission.assignment_id)
    if not assignment.is_accepting_submissions():
        raise InvalidState("Assignment is not accepting submissions")

    if submission.attempt_number > 1:
        target = SubmissionStatus.RESUBMITTED.value
    else:
        target = SubmissionStatus.SUBMITTED.value
    submission.transition(target, user.user_id)
    submission.timing.submitted_at = utcnow()
    submission.apply_late_penalty(assignment)

    if assignment.settings.auto_grade and submission.auto_grade():
        submission.grading.graded_by = "system"
        submission.apply_late_penalty(assignment)

    await save_submission(db, submission)
    await refresh_statistics_quietly(db, roster, assignment.assignment_id)
    return submission.model_dump()


async def can_resubmit(db: AsyncIOMotorDatabase, submission_id: str) -> bool:
    """
    True while the assignment still takes submissions (on time or late)
    and the student has attempts left.
    """
    submission = await load_submission(db, submission_id)

    doc = await db.assignments.find_one({"assignment_id": submission.assignment_id})
    if not doc:
        return False
    assignment = Assignment.model_validate(strip_mongo_id(doc))

    attempts = await last_attempt_number(db, submission.assignment_id, submission.student_id)
    allowed, _ = check_can_submit(assignment, attempts)
    return allowed


async def resubmit_eligibility(db: AsyncIOMotorDatabase, submission_id: str, user: UserContext) -> dict:
    """can_resubmit for the submitting student or the owning instructor"""
    submission = await load_submission(db, submission_id)
    await _check_can_view(db, submission, user)

    return {
        "submission_id": submission_id,
        "can_resubmit": await can_resubmit(db, submission_id)
    }


async def resubmit(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    submission_id: str,
    user: UserContext,
    content: SubmissionContent,
    files: list = None,
    started_at=None
) -> dict:
    """Start a new attempt based on an earlier one"""
    previous = await load_submission(db, submission_id)
    _check_is_owner(previous, user)

    if not await can_resubmit(db, submission_id):
        raise Conflict("Resubmission not allowed: no attempts left or assignment closed")

    assignment = await load_assignment(db, previous.assignment_id)
    if files:
        content.files.extend(files)

    return await _create_attempt(
        db, roster, assignment, user, previous.course_id, content,
        previous.submission_type, started_at=started_at
    )


async def auto_grade_submission(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    submission_id: str,
    user: UserContext
) -> dict:
    """
    Score multiple-choice/true-false answers and code test results.
    A submission with nothing scorable is returned unchanged.
    """
    submission = await load_submission(db, submission_id)
    assignment = await load_assignment(db, submission.assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    if not submission.auto_grade():
        return submission.model_dump()

    submission.grading.graded_by = user.user_id
    submission.apply_late_penalty(assignment)
    await save_submission(db, submission)

    logger.info(
        "Submission %s auto-graded: %s/%s",
        submission_id, submission.grading.raw_score, submission.grading.max_score
    )
    await refresh_statistics_quietly(db, roster, assignment.assignment_id)
    return submission.model_dump()


async def delete_submission(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    submission_id: str,
    user: UserContext
):
    """Withdraw an ungraded submission. Graded work is never deleted."""
    submission = await load_submission(db, submission_id)
    ensure_owner(submission.student_id, user, "Not authorized to delete this submission")

    if submission.grading.is_graded or submission.grade_id or submission.is_locked:
        raise InvalidState("Graded submissions cannot be deleted")

    await db.submissions.delete_one({"submission_id": submission_id})
    logger.info("Submission %s deleted by %s", submission_id, user.user_id)
    await refresh_statistics_quietly(db, roster, submission.assignment_id)


# ==================== QUERIES ====================

async def _check_can_view(db: AsyncIOMotorDatabase, submission: Submission, user: UserContext):
    if submission.student_id != user.user_id:
        assignment = await load_assignment(db, submission.assignment_id)
        ensure_owner(assignment.instructor_id, user, "Not authorized to access this submission")


async def get_submission(db: AsyncIOMotorDatabase, submission_id: str, user: UserContext) -> dict:
    submission = await load_submission(db, submission_id)
    await _check_can_view(db, submission, user)
    return submission.model_dump()


async def list_assignment_submissions(
    db: AsyncIOMotorDatabase,
    assignment_id: str,
    user: UserContext,
    status: str = None
) -> List[dict]:
    """All attempts for an assignment, newest first (instructor view)"""
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    query = {"assignment_id": assignment_id}
    if status:
        query["status"] = status

    docs = await db.submissions.find(query).sort("timing.submitted_at", -1).to_list(length=None)
    return [strip_mongo_id(doc) for doc in docs]


async def list_my_attempts(db: AsyncIOMotorDatabase, assignment_id: str, user: UserContext) -> dict:
    assignment = await load_assignment(db, assignment_id)

    docs = await db.submissions.find({
        "assignment_id": assignment_id,
        "student_id": user.user_id
    }).sort("attempt_number", 1).to_list(length=None)
    attempts = [strip_mongo_id(doc) for doc in docs]

    effective = select_effective_attempt(attempts, assignment.attempts.keep_highest)
    return {
        "assignment_id": assignment_id,
        "attempts_used": max((a["attempt_number"] for a in attempts), default=0),
        "attempts_allowed": assignment.attempts.allowed,
        "effective_submission_id": effective["submission_id"] if effective else None,
        "submissions": attempts,
    }
