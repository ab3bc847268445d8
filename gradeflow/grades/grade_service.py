import logging
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from gradeflow.assignments.assignment_models import Assignment
from gradeflow.assignments.assignment_service import load_assignment
from gradeflow.assignments.statistics_service import (
    compute_grade_distribution, compute_letter_counts, course_grade_average,
    refresh_grade_statistics, summarize_grades
)
from gradeflow.common.audit import get_audit_trail, log_audit
from gradeflow.common.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from gradeflow.common.permissions import UserContext, ensure_owner, verify_assignment_ownership
from gradeflow.common.roster import EnrollmentRoster
from gradeflow.common.utils import deep_merge, generate_id, strip_mongo_id
from gradeflow.grades.grade_models import (
    Bonus, Comment, Grade, GradeStatus, Penalty, ScorePoints, Scores
)
from gradeflow.grades.grade_scale import is_valid_letter, letter_grade_of, percentage_of
from gradeflow.submissions.submission_models import Submission, SubmissionStatus
from gradeflow.submissions.submission_service import load_submission, save_submission

logger = logging.getLogger(__name__)

GRADABLE_STATUSES = {SubmissionStatus.SUBMITTED.value, SubmissionStatus.RESUBMITTED.value}


# ==================== HELPERS ====================

async def load_grade(db: AsyncIOMotorDatabase, grade_id: str) -> Grade:
    """Fetch a grade or raise 404"""
    doc = await db.grades.find_one({"grade_id": grade_id})
    if not doc:
        raise NotFound("Grade not found")
    return Grade.model_validate(strip_mongo_id(doc))


async def _write_grade(db: AsyncIOMotorDatabase, grade: Grade):
    grade.prepare_save()
    await db.grades.update_one(
        {"grade_id": grade.grade_id},
        {"$set": grade.model_dump(exclude={"grade_id"})}
    )


async def _load_owned(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext):
    grade = await load_grade(db, grade_id)
    assignment = await load_assignment(db, grade.assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)
    return grade, assignment


async def _find_existing_grade(db: AsyncIOMotorDatabase, student_id: str, assignment_id: str):
    return await db.grades.find_one(
        {"student_id": student_id, "assignment_id": assignment_id},
        {"grade_id": 1}
    )


async def _refresh_statistics(db: AsyncIOMotorDatabase, assignment_id: str):
    try:
        await refresh_grade_statistics(db, assignment_id)
    except PyMongoError:
        # grade and submission are already consistent; the cache heals on the next refresh
        logger.warning("Grade statistics for assignment %s left stale", assignment_id, exc_info=True)


def _resolve_letter(letter_grade: Optional[str], percentage: int) -> str:
    if letter_grade is None:
        return letter_grade_of(percentage)
    if not is_valid_letter(letter_grade):
        raise ValidationFailed(f"Unknown letter grade '{letter_grade}'")
    return letter_grade


def _link_submission(submission: Submission, grade: Grade, assignment: Assignment, user: UserContext):
    """Move the submission to graded and mirror the grade's scores onto it"""
    if submission.status in GRADABLE_STATUSES:
        submission.transition(SubmissionStatus.GRADED.value, user.user_id, {"grade_id": grade.grade_id})
    else:
        # auto-graded earlier: the instructor's grade supersedes the automatic score
        submission.record("graded", user.user_id, {"grade_id": grade.grade_id})

    submission.grade_id = grade.grade_id
    _mirror_scores(submission, grade, assignment, user)


def _mirror_scores(submission: Submission, grade: Grade, assignment: Assignment, user: UserContext):
    grading = submission.grading
    grading.is_graded = True
    grading.auto_graded = False
    grading.graded_by = user.user_id
    grading.graded_at = grade.timeline.graded_at
    grading.raw_score = grade.scores.raw
    grading.max_score = grade.scores.points.possible
    submission.feedback = grade.feedback.overall
    submission.apply_late_penalty(assignment)


def _unlink_submission(submission: Submission, user: UserContext):
    submission.transition(SubmissionStatus.SUBMITTED.value, user.user_id, {"grade_id": submission.grade_id})
    submission.grade_id = None
    submission.feedback = None
    submission.grading.is_graded = False
    submission.grading.auto_graded = False
    submission.grading.graded_by = None
    submission.grading.graded_at = None
    submission.grading.raw_score = None
    submission.grading.max_score = None
    submission.grading.percentage = None
    submission.grading.letter_grade = None
    submission.grading.final_grade = None
    submission.grading.late_penalty.points_deducted = 0


# ==================== GRADE LIFECYCLE ====================

async def create_grade(
    db: AsyncIOMotorDatabase,
    user: UserContext,
    student_id: str,
    assignment_id: str,
    submission_id: str,
    scores: dict,
    letter_grade: str = None,
    feedback: dict = None,
    rubric_scores: list = None,
    status: str = None,
    visibility: dict = None,
    refresh_statistics: bool = True
) -> dict:
    """
    Issue the authoritative grade for a student's submission.

    The grade insert and the submission link form one unit: if linking
    the submission fails, the inserted grade is deleted again.

    Raises:
        404: Assignment or submission missing
        403: Caller does not own the assignment
        422: Submission belongs to another student/assignment, bad scores
        409: A grade already exists for this student and assignment,
             or the submission is not in a gradable state
    """
    assignment = await load_assignment(db, assignment_id)
    submission = await load_submission(db, submission_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    if submission.student_id != student_id or submission.assignment_id != assignment_id:
        raise ValidationFailed("Submission does not belong to this student and assignment")

    if await _find_existing_grade(db, student_id, assignment_id):
        raise Conflict("Grade already exists for this student and assignment")

    if submission.status not in GRADABLE_STATUSES and not (
        submission.status == SubmissionStatus.GRADED.value and submission.grading.auto_graded
    ):
        raise InvalidState(f"A '{submission.status}' submission cannot be graded")

    if submission.attempt_number > assignment.attempts.allowed:
        raise InvalidState("Submission exceeds the assignment's attempt limit")

    raw = scores["raw"]
    points = scores.get("points") or {"earned": raw, "possible": assignment.max_grade}
    if points["earned"] > points["possible"]:
        raise ValidationFailed("Earned points cannot exceed possible points")

    try:
        grade = Grade(
            grade_id=generate_id("GRD"),
            student_id=student_id,
            course_id=assignment.course_id,
            assignment_id=assignment_id,
            submission_id=submission_id,
            instructor_id=user.user_id,
            scores=Scores(raw=raw, points=ScorePoints(**points)),
            letter_grade=_resolve_letter(
                letter_grade, percentage_of(points["earned"], points["possible"])
            ),
            feedback=feedback or {},
            rubric_scores=rubric_scores or [],
            status=status or GradeStatus.DRAFT,
            visibility=visibility or {}
        )
    except ValidationError as e:
        raise ValidationFailed(str(e))
    grade.prepare_save()

    _link_submission(submission, grade, assignment, user)

    try:
        await db.grades.insert_one(grade.model_dump())
    except DuplicateKeyError:
        raise Conflict("Grade already exists for this student and assignment")

    try:
        await save_submission(db, submission)
    except Exception:
        await db.grades.delete_one({"grade_id": grade.grade_id})
        logger.warning(
            "Grade %s rolled back: submission %s could not be linked",
            grade.grade_id, submission_id
        )
        raise

    logger.info(
        "Grade %s created for student %s on %s: %s (%s%%)",
        grade.grade_id, student_id, assignment_id, grade.letter_grade, grade.scores.percentage
    )

    if refresh_statistics:
        await _refresh_statistics(db, assignment_id)
    await log_audit(db, user, "create_grade", "grade", grade.grade_id, {
        "submission_id": submission_id,
        "percentage": grade.scores.percentage,
        "letter_grade": grade.letter_grade
    })

    return grade.model_dump()


async def update_grade(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext, patch: dict) -> dict:
    """
    Merge score, letter, feedback, status or visibility changes into a grade

    Raises:
        404: Grade missing
        403: Caller does not own the assignment
        409: Grade is final
    """
    grade, assignment = await _load_owned(db, grade_id, user)

    if grade.is_final:
        raise InvalidState("Final grades cannot be modified")

    previous_status = grade.status
    score_patch = patch.get("scores") or {}
    if "raw" in score_patch and "points" not in score_patch:
        score_patch = {**score_patch, "points": {"earned": score_patch["raw"]}}

    try:
        updated = Grade.model_validate(deep_merge(grade.model_dump(), {**patch, "scores": score_patch}))
    except ValidationError as e:
        raise ValidationFailed(str(e))

    points = updated.scores.points
    if points.earned > points.possible:
        raise ValidationFailed("Earned points cannot exceed possible points")

    if score_patch:
        updated.scores.adjusted = None
        if updated.penalties or updated.bonuses:
            updated.recalculate_adjusted()
        elif "letter_grade" not in patch:
            updated.letter_grade = letter_grade_of(percentage_of(points.earned, points.possible))
    if "letter_grade" in patch:
        if updated.penalties or updated.bonuses:
            raise ValidationFailed("Letter grade follows the adjusted score while penalties or bonuses apply")
        updated.letter_grade = _resolve_letter(patch["letter_grade"], 0)

    updated.analytics.revision_count += 1
    await _write_grade(db, updated)

    await _sync_submission(db, updated, assignment, user, previous_status, bool(score_patch))
    await _refresh_statistics(db, grade.assignment_id)
    await log_audit(db, user, "update_grade", "grade", grade_id, {"fields": list(patch)})

    logger.info("Grade %s updated (revision %d)", grade_id, updated.analytics.revision_count)
    return updated.model_dump()


async def _sync_submission(
    db: AsyncIOMotorDatabase,
    grade: Grade,
    assignment: Assignment,
    user: UserContext,
    previous_status: str,
    scores_changed: bool
):
    returned = GradeStatus.RETURNED.value
    target = None
    if grade.status == returned and previous_status != returned:
        target = SubmissionStatus.RETURNED.value
    elif previous_status == returned and grade.status != returned:
        target = SubmissionStatus.GRADED.value

    if target is None and not scores_changed:
        return

    try:
        submission = await load_submission(db, grade.submission_id)
    except NotFound:
        logger.warning("Grade %s points at missing submission %s", grade.grade_id, grade.submission_id)
        return

    if target:
        submission.transition(target, user.user_id, {"grade_id": grade.grade_id})
    if scores_changed:
        _mirror_scores(submission, grade, assignment, user)

    await save_submission(db, submission)


async def delete_grade(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext):
    """
    Remove a grade and revert its submission to submitted. If the
    submission cannot be reverted the grade is restored.
    """
    grade, _ = await _load_owned(db, grade_id, user)
    grade_doc = grade.model_dump()

    await db.grades.delete_one({"grade_id": grade_id})

    try:
        submission = await load_submission(db, grade.submission_id)
        if submission.grade_id == grade_id:
            _unlink_submission(submission, user)
            await save_submission(db, submission)
    except NotFound:
        logger.warning("Grade %s deleted without a submission to revert", grade_id)
    except Exception:
        await db.grades.insert_one(grade_doc)
        logger.warning("Grade %s restored: submission %s could not be reverted", grade_id, grade.submission_id)
        raise

    await _refresh_statistics(db, grade.assignment_id)
    await log_audit(db, user, "delete_grade", "grade", grade_id, {"submission_id": grade.submission_id})
    logger.info("Grade %s deleted", grade_id)


async def add_penalty(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext, penalty: dict) -> dict:
    grade, _ = await _load_owned(db, grade_id, user)
    if grade.is_final:
        raise InvalidState("Final grades cannot be modified")

    grade.add_penalty(Penalty(**penalty))
    grade.analytics.revision_count += 1
    await _write_grade(db, grade)

    await _refresh_statistics(db, grade.assignment_id)
    await log_audit(db, user, "add_penalty", "grade", grade_id, {
        "type": penalty["type"],
        "points_deducted": penalty["points_deducted"]
    })
    return grade.model_dump()


async def add_bonus(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext, bonus: dict) -> dict:
    grade, _ = await _load_owned(db, grade_id, user)
    if grade.is_final:
        raise InvalidState("Final grades cannot be modified")

    grade.add_bonus(Bonus(**bonus))
    grade.analytics.revision_count += 1
    await _write_grade(db, grade)

    await _refresh_statistics(db, grade.assignment_id)
    await log_audit(db, user, "add_bonus", "grade", grade_id, {
        "type": bonus["type"],
        "points_added": bonus["points_added"]
    })
    return grade.model_dump()


async def add_comment(
    db: AsyncIOMotorDatabase,
    grade_id: str,
    user: UserContext,
    content: str,
    comment_type: str = "question",
    is_private: bool = False
) -> dict:
    """
    Append a comment. The graded student, the owning instructor and
    admins may comment; only staff comments can be private.
    """
    grade = await load_grade(db, grade_id)

    is_student = grade.student_id == user.user_id
    if is_student:
        _check_visible(grade)
    else:
        assignment = await load_assignment(db, grade.assignment_id)
        ensure_owner(assignment.instructor_id, user, "Not authorized to comment on this grade")

    grade.add_comment(Comment(
        author_id=user.user_id,
        author_role=user.role,
        content=content,
        type=comment_type,
        is_private=is_private and not is_student
    ))
    await _write_grade(db, grade)

    return grade.student_view() if is_student else grade.model_dump()


async def mark_viewed(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext) -> dict:
    """Student opened the grade: stamp the view and bump the counter"""
    grade = await load_grade(db, grade_id)
    if grade.student_id != user.user_id:
        raise Forbidden("Only the graded student can mark a grade as viewed")
    _check_visible(grade)

    grade.mark_viewed()
    await db.grades.update_one(
        {"grade_id": grade_id},
        {
            "$set": {
                "timeline.viewed_by_student_at": grade.timeline.viewed_by_student_at,
                "analytics.last_viewed_at": grade.analytics.last_viewed_at
            },
            "$inc": {"analytics.student_view_count": 1}
        }
    )
    return grade.student_view()


async def bulk_create_grades(
    db: AsyncIOMotorDatabase,
    user: UserContext,
    assignment_id: str,
    items: List[dict]
) -> dict:
    """
    Create several grades for one assignment. Each item succeeds or fails
    on its own; statistics are refreshed once at the end.
    """
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    created, errors = [], []
    for item in items:
        try:
            grade = await create_grade(
                db, user,
                student_id=item["student_id"],
                assignment_id=assignment_id,
                submission_id=item["submission_id"],
                scores=item["scores"],
                letter_grade=item.get("letter_grade"),
                feedback=item.get("feedback"),
                status=item.get("status"),
                refresh_statistics=False
            )
            created.append(grade)
        except HTTPException as e:
            errors.append({
                "student_id": item["student_id"],
                "submission_id": item["submission_id"],
                "status_code": e.status_code,
                "error": e.detail
            })

    await _refresh_statistics(db, assignment_id)
    logger.info("Bulk grading on %s: %d created, %d failed", assignment_id, len(created), len(errors))

    return {"created": created, "errors": errors}


# ==================== QUERIES ====================

def _check_visible(grade: Grade):
    if not grade.visibility.student or grade.status == GradeStatus.DRAFT.value:
        raise NotFound("Grade not found")


async def get_grade(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext) -> dict:
    grade = await load_grade(db, grade_id)

    if grade.student_id == user.user_id and not user.is_instructor:
        _check_visible(grade)
        return grade.student_view()

    assignment = await load_assignment(db, grade.assignment_id)
    ensure_owner(assignment.instructor_id, user, "Not authorized to access this grade")
    return grade.model_dump()


async def get_grade_history(db: AsyncIOMotorDatabase, grade_id: str, user: UserContext, limit: int = 100) -> List[dict]:
    """Audit entries for a grade, newest first. Survives grade deletion."""
    doc = await db.grades.find_one({"grade_id": grade_id}, {"assignment_id": 1})
    if doc:
        assignment = await load_assignment(db, doc["assignment_id"])
        verify_assignment_ownership(assignment.model_dump(), user)
    elif not user.is_admin:
        raise NotFound("Grade not found")

    return await get_audit_trail(db, "grade", grade_id, limit)


async def list_assignment_grades(db: AsyncIOMotorDatabase, assignment_id: str, user: UserContext) -> dict:
    """Grades for an assignment with summary statistics and A-F distribution"""
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_ownership(assignment.model_dump(), user)

    cursor = db.grades.find({"assignment_id": assignment_id}).sort("scores.percentage", -1)
    docs = await cursor.to_list(length=None)
    grades = [strip_mongo_id(doc) for doc in docs]

    return {
        "assignment_id": assignment_id,
        "statistics": summarize_grades(grades),
        "distribution": compute_grade_distribution(grades),
        "grades": grades,
    }


async def list_student_grades(
    db: AsyncIOMotorDatabase,
    student_id: str,
    user: UserContext,
    course_id: str = None
) -> dict:
    """
    A student's grades with total, average, highest, lowest and the A-F
    distribution. Students see only their own released grades;
    instructors see the grades they issued; admins see everything.
    """
    query = {"student_id": student_id}
    if course_id:
        query["course_id"] = course_id

    if user.user_id == student_id and not user.is_instructor:
        query["visibility.student"] = True
        query["status"] = {"$ne": GradeStatus.DRAFT.value}
    elif not user.is_instructor:
        raise Forbidden("Not authorized to view these grades")
    elif not user.is_admin:
        query["instructor_id"] = user.user_id

    docs = await db.grades.find(query).sort("timeline.graded_at", -1).to_list(length=None)
    grades = [Grade.model_validate(strip_mongo_id(doc)) for doc in docs]

    if user.user_id == student_id and not user.is_instructor:
        listed = [g.student_view() for g in grades]
    else:
        listed = [g.model_dump() for g in grades]

    return {
        "student_id": student_id,
        "grades": listed,
        "statistics": {
            **summarize_grades(listed),
            "distribution": compute_grade_distribution(listed),
        },
    }


async def list_course_grades(
    db: AsyncIOMotorDatabase,
    roster: EnrollmentRoster,
    course_id: str,
    user: UserContext
) -> dict:
    """
    Grades in a course with the course average and per-letter counts.

    Instructors see the grades they issued and admins see all of them.
    Enrolled students see only their own released grades.

    Raises:
        404: Course missing
        403: Student not enrolled in the course
    """
    if not await roster.course_exists(course_id):
        raise NotFound("Course not found")

    query = {"course_id": course_id}
    as_student = not user.is_instructor
    if as_student:
        if not await roster.is_enrolled(course_id, user.user_id):
            raise Forbidden("Not enrolled in this course")
        query["student_id"] = user.user_id
        query["visibility.student"] = True
        query["status"] = {"$ne": GradeStatus.DRAFT.value}
    elif not user.is_admin:
        query["instructor_id"] = user.user_id

    docs = await db.grades.find(query).sort("timeline.graded_at", -1).to_list(length=None)
    grades = [Grade.model_validate(strip_mongo_id(doc)) for doc in docs]
    listed = [g.student_view() if as_student else g.model_dump() for g in grades]

    return {
        "course_id": course_id,
        "grades": listed,
        "average": course_grade_average(listed),
        "letter_distribution": compute_letter_counts(listed),
    }
