from typing import List, Optional

from pydantic import BaseModel, Field

from gradeflow.common.utils import UTCDateTime
from gradeflow.submissions.submission_models import (
    FileAttachment, Submission, SubmissionContent, SubmissionType
)


class SubmissionCreate(BaseModel):
    assignment_id: str
    course_id: str
    submission_type: SubmissionType = SubmissionType.MIXED
    content: SubmissionContent = Field(default_factory=SubmissionContent)
    files: List[FileAttachment] = []
    started_at: Optional[UTCDateTime] = None
    draft: bool = False


class SubmissionContentUpdate(BaseModel):
    content: SubmissionContent
    files: List[FileAttachment] = []


class ResubmissionCreate(SubmissionContentUpdate):
    started_at: Optional[UTCDateTime] = None


class SubmissionResponse(Submission):
    pass


class ResubmitEligibility(BaseModel):
    submission_id: str
    can_resubmit: bool


class AttemptsResponse(BaseModel):
    assignment_id: str
    attempts_used: int
    attempts_allowed: int
    effective_submission_id: Optional[str] = None
    submissions: List[SubmissionResponse]
