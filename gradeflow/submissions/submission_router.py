from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from gradeflow.common.permissions import (
    UserContext, get_current_user, require_instructor, require_student
)
from gradeflow.common.roster import EnrollmentRoster, get_roster
from gradeflow.database import get_db
from gradeflow.submissions import submission_service as service
from gradeflow.submissions.submission_schemas import (
    AttemptsResponse, ResubmissionCreate, ResubmitEligibility,
    SubmissionContentUpdate, SubmissionCreate, SubmissionResponse
)
from gradeflow.system.rate_limiter import enforce_rate_limit


router = APIRouter(prefix="/submissions", tags=["Submissions"])


@router.post(
    "",
    response_model=SubmissionResponse,
    status_code=201,
    dependencies=[Depends(enforce_rate_limit)]
)
async def create_submission(
    data: SubmissionCreate,
    user: UserContext = Depends(require_student),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Submit work for an assignment (or save a draft)
    """
    return await service.create_submission(
        db, roster, user,
        assignment_id=data.assignment_id,
        course_id=data.course_id,
        content=data.content,
        files=data.files,
        submission_type=data.submission_type.value,
        started_at=data.started_at,
        draft=data.draft
    )


@router.get("/assignment/{assignment_id}", response_model=List[SubmissionResponse])
async def list_assignment_submissions(
    assignment_id: str,
    status: Optional[str] = Query(None),
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    All submissions for an assignment (instructor view)
    """
    return await service.list_assignment_submissions(db, assignment_id, user, status)


@router.get("/assignment/{assignment_id}/mine", response_model=AttemptsResponse)
async def list_my_attempts(
    assignment_id: str,
    user: UserContext = Depends(require_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    The caller's attempts for an assignment and which one counts
    """
    return await service.list_my_attempts(db, assignment_id, user)


@router.get("/{submission_id}", response_model=SubmissionResponse)
async def get_submission(
    submission_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await service.get_submission(db, submission_id, user)


@router.put(
    "/{submission_id}",
    response_model=SubmissionResponse,
    dependencies=[Depends(enforce_rate_limit)]
)
async def update_submission(
    submission_id: str,
    data: SubmissionContentUpdate,
    user: UserContext = Depends(require_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Replace the content of an ungraded submission
    """
    return await service.update_submission_content(db, submission_id, user, data.content, data.files)


@router.post(
    "/{submission_id}/submit",
    response_model=SubmissionResponse,
    dependencies=[Depends(enforce_rate_limit)]
)
async def submit_draft(
    submission_id: str,
    user: UserContext = Depends(require_student),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    return await service.submit_draft(db, roster, submission_id, user)


@router.get("/{submission_id}/can-resubmit", response_model=ResubmitEligibility)
async def can_resubmit(
    submission_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Whether the submitting student can still start another attempt
    """
    return await service.resubmit_eligibility(db, submission_id, user)


@router.post(
    "/{submission_id}/resubmit",
    response_model=SubmissionResponse,
    status_code=201,
    dependencies=[Depends(enforce_rate_limit)]
)
async def resubmit(
    submission_id: str,
    data: ResubmissionCreate,
    user: UserContext = Depends(require_student),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Start a new attempt when the assignment allows more than one
    """
    return await service.resubmit(
        db, roster, submission_id, user, data.content, data.files, data.started_at
    )


@router.post("/{submission_id}/auto-grade", response_model=SubmissionResponse)
async def auto_grade(
    submission_id: str,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Score objective answers and code test results
    """
    return await service.auto_grade_submission(db, roster, submission_id, user)


@router.delete("/{submission_id}", status_code=204)
async def delete_submission(
    submission_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Withdraw an ungraded submission
    """
    await service.delete_submission(db, roster, submission_id, user)
    return None
