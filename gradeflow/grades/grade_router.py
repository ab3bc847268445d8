from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from gradeflow.common.audit import AuditLog
from gradeflow.common.permissions import UserContext, get_current_user, require_instructor
from gradeflow.common.roster import EnrollmentRoster, get_roster
from gradeflow.database import get_db
from gradeflow.grades import grade_service as service
from gradeflow.grades.grade_schemas import (
    AssignmentGradesResponse, BonusCreate, BulkGradeCreate, BulkGradeResult,
    CommentCreate, CourseGradesResponse, GradeCreate, GradeResponse, GradeUpdate,
    PenaltyCreate, StudentGradesResponse
)
from gradeflow.system.rate_limiter import enforce_rate_limit


router = APIRouter(
    prefix="/grades",
    tags=["Grades"]
)

# ==================== GRADING ====================

@router.post(
    "",
    response_model=GradeResponse,
    status_code=201,
    dependencies=[Depends(enforce_rate_limit)]
)
async def create_grade(
    data: GradeCreate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Grade a student's submission. One grade per student and assignment.
    """
    return await service.create_grade(
        db, user,
        student_id=data.student_id,
        assignment_id=data.assignment_id,
        submission_id=data.submission_id,
        scores=data.scores.model_dump(exclude_none=True),
        letter_grade=data.letter_grade,
        feedback=data.feedback.model_dump() if data.feedback else None,
        rubric_scores=[r.model_dump() for r in data.rubric_scores],
        status=data.status.value,
        visibility=data.visibility.model_dump() if data.visibility else None
    )


@router.post(
    "/bulk",
    response_model=BulkGradeResult,
    dependencies=[Depends(enforce_rate_limit)]
)
async def bulk_create_grades(
    data: BulkGradeCreate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Grade many submissions of one assignment; failures are reported per item
    """
    items = [item.model_dump(mode="json", exclude_none=True) for item in data.grades]
    return await service.bulk_create_grades(db, user, data.assignment_id, items)


@router.get("/assignment/{assignment_id}", response_model=AssignmentGradesResponse)
async def list_assignment_grades(
    assignment_id: str,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    All grades for an assignment with statistics and letter distribution
    """
    return await service.list_assignment_grades(db, assignment_id, user)


@router.get("/student/{student_id}", response_model=StudentGradesResponse)
async def list_student_grades(
    student_id: str,
    course_id: Optional[str] = Query(None),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    A student's grades with summary statistics and the A-F distribution
    """
    return await service.list_student_grades(db, student_id, user, course_id)


@router.get("/course/{course_id}", response_model=CourseGradesResponse)
async def list_course_grades(
    course_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Grades in a course with the course average and letter counts
    """
    return await service.list_course_grades(db, roster, course_id, user)


@router.get("/{grade_id}", response_model=GradeResponse)
async def get_grade(
    grade_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await service.get_grade(db, grade_id, user)


@router.put(
    "/{grade_id}",
    response_model=GradeResponse,
    dependencies=[Depends(enforce_rate_limit)]
)
async def update_grade(
    grade_id: str,
    data: GradeUpdate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Update scores, feedback, status or visibility
    """
    return await service.update_grade(db, grade_id, user, data.model_dump(exclude_unset=True, exclude_none=True))


@router.delete(
    "/{grade_id}",
    status_code=204,
    dependencies=[Depends(enforce_rate_limit)]
)
async def delete_grade(
    grade_id: str,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Remove a grade; the submission goes back to submitted
    """
    await service.delete_grade(db, grade_id, user)
    return None


@router.get("/{grade_id}/audit", response_model=List[AuditLog])
async def get_grade_history(
    grade_id: str,
    limit: int = Query(100, ge=1, le=500),
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Who changed this grade and when
    """
    return await service.get_grade_history(db, grade_id, user, limit)

# ==================== ADJUSTMENTS ====================

@router.post(
    "/{grade_id}/penalties",
    response_model=GradeResponse,
    dependencies=[Depends(enforce_rate_limit)]
)
async def add_penalty(
    grade_id: str,
    data: PenaltyCreate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await service.add_penalty(db, grade_id, user, data.model_dump(mode="json"))


@router.post(
    "/{grade_id}/bonuses",
    response_model=GradeResponse,
    dependencies=[Depends(enforce_rate_limit)]
)
async def add_bonus(
    grade_id: str,
    data: BonusCreate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await service.add_bonus(db, grade_id, user, data.model_dump(mode="json"))

# ==================== STUDENT INTERACTION ====================

@router.post("/{grade_id}/comments", response_model=GradeResponse, status_code=201)
async def add_comment(
    grade_id: str,
    data: CommentCreate,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Ask a question about or dispute a grade
    """
    return await service.add_comment(
        db, grade_id, user, data.content, data.type.value, data.is_private
    )


@router.post("/{grade_id}/view", response_model=GradeResponse)
async def mark_viewed(
    grade_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await service.mark_viewed(db, grade_id, user)
