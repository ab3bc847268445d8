import math
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from gradeflow.common.utils import UTCDateTime, utcnow
from gradeflow.config import DEFAULT_MAX_GRADE, PASSING_GRADE_RATIO

# ==================== ENUMS ====================

class AssignmentType(str, Enum):
    HOMEWORK = "homework"
    QUIZ = "quiz"
    EXAM = "exam"
    PROJECT = "project"
    LAB = "lab"
    ESSAY = "essay"
    PRESENTATION = "presentation"
    OTHER = "other"

class SubmissionFormat(str, Enum):
    FILE = "file"
    TEXT = "text"
    QUIZ = "quiz"
    CODE = "code"
    MIXED = "mixed"

class AssignmentState(str, Enum):
    """Status derived from publication flags and the availability window"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    CLOSED = "closed"
    OVERDUE = "overdue"
    ACTIVE = "active"

# ==================== EMBEDDED DOCUMENTS ====================

class AttemptPolicy(BaseModel):
    allowed: int = Field(1, ge=1, le=10)
    keep_highest: bool = True

class LatePenaltyPolicy(BaseModel):
    enabled: bool = False
    percentage: float = Field(10, ge=0, le=100)
    per_day: bool = True

class AssignmentSettings(BaseModel):
    allow_late_submission: bool = True
    auto_grade: bool = False
    show_grade_immediately: bool = False
    late_penalty: LatePenaltyPolicy = Field(default_factory=LatePenaltyPolicy)

class Question(BaseModel):
    question_id: str
    question_type: str  # multiple-choice, true-false, short-answer, essay, code
    prompt: Optional[str] = None
    points: float = Field(1, ge=0)

class AssignmentStatistics(BaseModel):
    """Denormalized cache, always rebuilt from the grades/submissions collections"""
    total_submissions: int = 0
    graded_submissions: int = 0
    total_graded: int = 0
    average_grade: float = 0
    highest_grade: float = 0
    lowest_grade: float = 0
    submission_rate: float = 0
    average_time_spent: float = 0

# ==================== DATABASE MODELS ====================

class Assignment(BaseModel):
    model_config = ConfigDict(use_enum_values=True, extra="ignore")

    assignment_id: str  # ASG_XXXXXX
    course_id: str
    instructor_id: str
    title: str
    description: str = ""
    assignment_type: AssignmentType = AssignmentType.HOMEWORK
    submission_format: SubmissionFormat = SubmissionFormat.MIXED
    max_grade: float = Field(DEFAULT_MAX_GRADE, gt=0, le=1000)
    passing_grade: Optional[float] = None
    due_date: UTCDateTime
    available_from: UTCDateTime = Field(default_factory=utcnow)
    available_until: Optional[UTCDateTime] = None
    attempts: AttemptPolicy = Field(default_factory=AttemptPolicy)
    settings: AssignmentSettings = Field(default_factory=AssignmentSettings)
    questions: List[Question] = []
    statistics: AssignmentStatistics = Field(default_factory=AssignmentStatistics)
    is_published: bool = False
    published_at: Optional[UTCDateTime] = None
    is_active: bool = True
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def apply_write_rules(self):
        if self.available_until is None or self.available_until < self.due_date:
            self.available_until = self.due_date
        if self.passing_grade is None:
            self.passing_grade = self.max_grade * PASSING_GRADE_RATIO
        if self.is_published and self.published_at is None:
            self.published_at = utcnow()
        return self

    # ---------- availability ----------

    def is_available_for_submission(self, now: datetime = None) -> bool:
        now = now or utcnow()
        return (
            self.is_published
            and self.is_active
            and self.available_from <= now <= self.available_until
        )

    def accepts_late_submission(self, now: datetime = None) -> bool:
        now = now or utcnow()
        return (
            self.settings.allow_late_submission
            and now > self.due_date
            and now <= self.available_until
        )

    def is_accepting_submissions(self, now: datetime = None) -> bool:
        now = now or utcnow()
        return self.is_available_for_submission(now) or (
            self.is_published and self.is_active and self.accepts_late_submission(now)
        )

    def status_at(self, now: datetime = None) -> str:
        now = now or utcnow()
        if not self.is_published:
            return AssignmentState.DRAFT.value
        if now < self.available_from:
            return AssignmentState.SCHEDULED.value
        if now > self.available_until:
            return AssignmentState.CLOSED.value
        if now > self.due_date:
            return AssignmentState.OVERDUE.value
        return AssignmentState.ACTIVE.value

    # ---------- late policy ----------

    def calculate_late_penalty(self, submitted_at: datetime) -> float:
        """
        Penalty percentage in [0, 100] for a submission made at submitted_at.

        Per-day policies multiply the percentage by the number of started
        days past the due date; flat policies apply it once.
        """
        policy = self.settings.late_penalty
        if not policy.enabled or submitted_at <= self.due_date:
            return 0

        days_late = math.ceil((submitted_at - self.due_date) / timedelta(days=1))

        if policy.per_day:
            return min(days_late * policy.percentage, 100)
        return policy.percentage
