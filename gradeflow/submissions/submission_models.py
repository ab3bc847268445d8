from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gradeflow.assignments.assignment_models import Assignment
from gradeflow.common.errors import InvalidState
from gradeflow.common.utils import UTCDateTime, utcnow
from gradeflow.config import DEFAULT_CODE_MAX_SCORE
from gradeflow.grades.grade_scale import letter_grade_of, percentage_of, round_half_up

# ==================== ENUMS ====================

class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    GRADED = "graded"
    RETURNED = "returned"
    RESUBMITTED = "resubmitted"

class SubmissionType(str, Enum):
    FILE = "file"
    TEXT = "text"
    QUIZ = "quiz"
    CODE = "code"
    MIXED = "mixed"

# Objectively scored answer types
AUTO_SCORED_TYPES = {"multiple-choice", "true-false"}

# Allowed status moves. Grade deletion is the only way back to submitted.
SUBMISSION_TRANSITIONS = {
    SubmissionStatus.DRAFT.value: {SubmissionStatus.SUBMITTED.value, SubmissionStatus.RESUBMITTED.value},
    SubmissionStatus.SUBMITTED.value: {SubmissionStatus.GRADED.value},
    SubmissionStatus.RESUBMITTED.value: {SubmissionStatus.GRADED.value},
    SubmissionStatus.GRADED.value: {SubmissionStatus.RETURNED.value, SubmissionStatus.SUBMITTED.value},
    SubmissionStatus.RETURNED.value: {SubmissionStatus.GRADED.value, SubmissionStatus.SUBMITTED.value},
}

LOCKED_STATUSES = {SubmissionStatus.GRADED.value, SubmissionStatus.RETURNED.value}

# ==================== EMBEDDED DOCUMENTS ====================

class FileAttachment(BaseModel):
    """Metadata only, the bytes live in external storage"""
    filename: str
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: int = Field(0, ge=0)
    url: Optional[str] = None
    uploaded_at: UTCDateTime = Field(default_factory=utcnow)

class Answer(BaseModel):
    question_id: str
    question_type: str
    answer: Any = None
    is_correct: Optional[bool] = None
    points: float = Field(0, ge=0)

class CodeTestResult(BaseModel):
    test_case: str
    passed: bool
    output: Optional[str] = None
    expected_output: Optional[str] = None
    execution_time: Optional[float] = None

class CodeContent(BaseModel):
    language: str
    source_code: str = ""
    test_results: List[CodeTestResult] = []

class SubmissionContent(BaseModel):
    text: Optional[str] = Field(None, max_length=10000)
    files: List[FileAttachment] = []
    answers: List[Answer] = []
    code: Optional[CodeContent] = None

class SubmissionTiming(BaseModel):
    started_at: Optional[UTCDateTime] = None
    submitted_at: UTCDateTime = Field(default_factory=utcnow)
    time_spent: int = 0  # minutes
    time_limit_exceeded: bool = False

class LatePenaltyDetail(BaseModel):
    applied: bool = False
    percentage: float = 0
    points_deducted: float = 0

class SubmissionGrading(BaseModel):
    is_graded: bool = False
    graded_by: Optional[str] = None
    graded_at: Optional[UTCDateTime] = None
    auto_graded: bool = False
    raw_score: Optional[float] = None
    max_score: Optional[float] = None
    percentage: Optional[int] = None
    letter_grade: Optional[str] = None
    final_grade: Optional[float] = None
    late_penalty: LatePenaltyDetail = Field(default_factory=LatePenaltyDetail)

class SubmissionFlags(BaseModel):
    is_late: bool = False
    needs_review: bool = False

class HistoryEntry(BaseModel):
    action: str  # submitted, resubmitted, graded, returned, auto_graded, ungraded
    performed_by: Optional[str] = None
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    details: Dict[str, Any] = {}

# ==================== DATABASE MODELS ====================

class Submission(BaseModel):
    model_config = ConfigDict(use_enum_values=True, extra="ignore")

    submission_id: str  # SUB_XXXXXX
    assignment_id: str
    student_id: str
    course_id: str
    attempt_number: int = Field(1, ge=1)
    submission_type: SubmissionType = SubmissionType.MIXED
    content: SubmissionContent = Field(default_factory=SubmissionContent)
    timing: SubmissionTiming = Field(default_factory=SubmissionTiming)
    grading: SubmissionGrading = Field(default_factory=SubmissionGrading)
    grade_id: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    flags: SubmissionFlags = Field(default_factory=SubmissionFlags)
    feedback: Optional[str] = None
    history: List[HistoryEntry] = []
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def is_locked(self) -> bool:
        return self.status in LOCKED_STATUSES

    def derive_fields(self) -> "Submission":
        """Recompute every derived value. Call before each write."""
        grading = self.grading
        if grading.is_graded and grading.max_score and grading.raw_score is not None:
            grading.percentage = percentage_of(grading.raw_score, grading.max_score)
            grading.letter_grade = letter_grade_of(grading.percentage)
            grading.final_grade = grading.raw_score - grading.late_penalty.points_deducted

        timing = self.timing
        if timing.started_at and timing.submitted_at:
            minutes = (timing.submitted_at - timing.started_at) / timedelta(minutes=1)
            timing.time_spent = int(round_half_up(max(minutes, 0)))

        self.updated_at = utcnow()
        return self

    def transition(self, target: str, performed_by: str = None, details: dict = None):
        allowed = SUBMISSION_TRANSITIONS.get(self.status, set())
        if target not in allowed:
            raise InvalidState(f"Submission cannot move from '{self.status}' to '{target}'")
        self.status = target
        action = "ungraded" if target == SubmissionStatus.SUBMITTED.value else target
        self.record(action, performed_by, details)

    def record(self, action: str, performed_by: str = None, details: dict = None):
        self.history.append(HistoryEntry(action=action, performed_by=performed_by, details=details or {}))

    def apply_late_penalty(self, assignment: Assignment) -> "Submission":
        """
        Stamp the late flag and the point deduction implied by the
        assignment's policy. The deduction needs a raw score, so an
        ungraded submission only gets the flag and percentage.
        """
        submitted_at = self.timing.submitted_at
        self.flags.is_late = submitted_at > assignment.due_date

        penalty = assignment.calculate_late_penalty(submitted_at)
        detail = self.grading.late_penalty
        if penalty > 0:
            detail.applied = True
            detail.percentage = penalty
            raw = self.grading.raw_score or 0
            detail.points_deducted = round_half_up(raw * penalty / 100)
        else:
            detail.applied = False
            detail.percentage = 0
            detail.points_deducted = 0
        return self

    def auto_grade(self, now: datetime = None) -> bool:
        """
        Score the objectively checkable parts of the submission.

        Returns True when anything was scorable, in which case the
        submission moves to graded with auto_graded set.
        """
        total_points = 0.0
        max_points = 0.0

        for answer in self.content.answers:
            if answer.question_type in AUTO_SCORED_TYPES:
                max_points += answer.points
                if answer.is_correct:
                    total_points += answer.points

        code = self.content.code
        if code and code.test_results:
            code_max = self.grading.max_score or DEFAULT_CODE_MAX_SCORE
            passed = sum(1 for result in code.test_results if result.passed)
            total_points += passed / len(code.test_results) * code_max
            max_points += code_max

        if max_points <= 0:
            return False

        self.transition(SubmissionStatus.GRADED.value, details={"auto": True})
        self.grading.raw_score = round_half_up(total_points, 2)
        self.grading.max_score = max_points
        self.grading.is_graded = True
        self.grading.auto_graded = True
        self.grading.graded_at = now or utcnow()
        return True


def select_effective_attempt(attempts: List[dict], keep_highest: bool) -> Optional[dict]:
    """
    The attempt that counts for a student: the best graded one when the
    assignment keeps the highest score, otherwise the latest.
    """
    if not attempts:
        return None

    if keep_highest:
        graded = [a for a in attempts if a.get("grading", {}).get("is_graded")]
        if graded:
            return max(
                graded,
                key=lambda a: (a["grading"].get("final_grade") or 0, a["attempt_number"])
            )

    return max(attempts, key=lambda a: a["attempt_number"])
