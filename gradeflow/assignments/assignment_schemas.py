from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from gradeflow.assignments.assignment_models import (
    Assignment, AssignmentType, SubmissionFormat, Question, AssignmentStatistics
)
from gradeflow.common.utils import UTCDateTime

# ==================== POLICY PATCHES ====================

class AttemptPolicyUpdate(BaseModel):
    allowed: Optional[int] = Field(None, ge=1, le=10)
    keep_highest: Optional[bool] = None

class LatePenaltyUpdate(BaseModel):
    enabled: Optional[bool] = None
    percentage: Optional[float] = Field(None, ge=0, le=100)
    per_day: Optional[bool] = None

class SettingsUpdate(BaseModel):
    allow_late_submission: Optional[bool] = None
    auto_grade: Optional[bool] = None
    show_grade_immediately: Optional[bool] = None
    late_penalty: Optional[LatePenaltyUpdate] = None

# ==================== ASSIGNMENT SCHEMAS ====================

class AssignmentCreate(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=5000)
    assignment_type: AssignmentType = AssignmentType.HOMEWORK
    submission_format: SubmissionFormat = SubmissionFormat.MIXED
    max_grade: float = Field(100, gt=0, le=1000)
    passing_grade: Optional[float] = Field(None, ge=0)
    due_date: UTCDateTime
    available_from: Optional[UTCDateTime] = None
    available_until: Optional[UTCDateTime] = None
    attempts: Optional[AttemptPolicyUpdate] = None
    settings: Optional[SettingsUpdate] = None
    questions: List[Question] = []
    is_published: bool = False

    @model_validator(mode="after")
    def check_window(self):
        if self.available_from and self.available_from > self.due_date:
            raise ValueError("available_from must not be after due_date")
        if self.passing_grade is not None and self.passing_grade > self.max_grade:
            raise ValueError("passing_grade cannot exceed max_grade")
        return self

class AssignmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    max_grade: Optional[float] = Field(None, gt=0, le=1000)
    passing_grade: Optional[float] = Field(None, ge=0)
    due_date: Optional[UTCDateTime] = None
    available_from: Optional[UTCDateTime] = None
    available_until: Optional[UTCDateTime] = None
    attempts: Optional[AttemptPolicyUpdate] = None
    settings: Optional[SettingsUpdate] = None
    questions: Optional[List[Question]] = None

class AssignmentResponse(Assignment):
    status: str

class StatisticsResponse(AssignmentStatistics):
    assignment_id: str
    refreshed_at: datetime
