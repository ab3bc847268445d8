from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gradeflow.common.utils import UTCDateTime, generate_id, utcnow
from gradeflow.grades.grade_scale import (
    grade_points_of, letter_grade_of, percentage_of
)

# ==================== ENUMS ====================

class GradeStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    RETURNED = "returned"
    DISPUTED = "disputed"
    FINAL = "final"

class GradingMethod(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"
    HYBRID = "hybrid"

class PenaltyType(str, Enum):
    LATE = "late"
    PLAGIARISM = "plagiarism"
    FORMAT = "format"
    LENGTH = "length"
    OTHER = "other"

class BonusType(str, Enum):
    EARLY = "early"
    EXTRA_CREDIT = "extra-credit"
    PARTICIPATION = "participation"
    CREATIVITY = "creativity"
    OTHER = "other"

class CommentType(str, Enum):
    QUESTION = "question"
    CLARIFICATION = "clarification"
    DISPUTE = "dispute"
    APPRECIATION = "appreciation"

# ==================== EMBEDDED DOCUMENTS ====================

class ScorePoints(BaseModel):
    earned: float = Field(..., ge=0)
    possible: float = Field(..., gt=0)

class Scores(BaseModel):
    raw: float = Field(..., ge=0)
    adjusted: Optional[float] = None
    percentage: int = 0
    points: ScorePoints

class Feedback(BaseModel):
    overall: Optional[str] = Field(None, max_length=2000)
    strengths: List[str] = []
    improvements: List[str] = []
    suggestions: List[str] = []
    private: Optional[str] = Field(None, max_length=1000)  # instructor-only note

class RubricScore(BaseModel):
    criterion: str
    points: float = Field(..., ge=0)
    max_points: float = Field(..., ge=0)
    feedback: Optional[str] = None

class Penalty(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    type: PenaltyType
    description: Optional[str] = None
    points_deducted: float = Field(..., ge=0)
    applied_at: UTCDateTime = Field(default_factory=utcnow)

class Bonus(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    type: BonusType
    description: Optional[str] = None
    points_added: float = Field(..., ge=0)
    applied_at: UTCDateTime = Field(default_factory=utcnow)

class Visibility(BaseModel):
    student: bool = True
    parents: bool = False
    public: bool = False

class Timeline(BaseModel):
    graded_at: UTCDateTime = Field(default_factory=utcnow)
    published_at: Optional[UTCDateTime] = None
    viewed_by_student_at: Optional[UTCDateTime] = None
    last_modified_at: UTCDateTime = Field(default_factory=utcnow)

class GradeFlags(BaseModel):
    is_exceptional: bool = False
    needs_review: bool = False
    is_disputed: bool = False
    has_comments: bool = False

class GradeAnalytics(BaseModel):
    revision_count: int = 0
    student_view_count: int = 0
    last_viewed_at: Optional[UTCDateTime] = None

class Comment(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    comment_id: str = Field(default_factory=lambda: generate_id("CMT"))
    author_id: str
    author_role: str
    content: str = Field(..., min_length=1, max_length=1000)
    type: CommentType = CommentType.QUESTION
    is_private: bool = False
    created_at: UTCDateTime = Field(default_factory=utcnow)

# ==================== DATABASE MODELS ====================

class Grade(BaseModel):
    model_config = ConfigDict(use_enum_values=True, extra="ignore")

    grade_id: str  # GRD_XXXXXX
    student_id: str
    course_id: str
    assignment_id: str
    submission_id: str
    instructor_id: str
    scores: Scores
    letter_grade: str
    grade_points: float = 0
    feedback: Feedback = Field(default_factory=Feedback)
    rubric_scores: List[RubricScore] = []
    penalties: List[Penalty] = []
    bonuses: List[Bonus] = []
    grading_method: GradingMethod = GradingMethod.MANUAL
    status: GradeStatus = GradeStatus.DRAFT
    visibility: Visibility = Field(default_factory=Visibility)
    timeline: Timeline = Field(default_factory=Timeline)
    flags: GradeFlags = Field(default_factory=GradeFlags)
    analytics: GradeAnalytics = Field(default_factory=GradeAnalytics)
    comments: List[Comment] = []
    metadata: Dict[str, Any] = {}

    @property
    def is_final(self) -> bool:
        return self.status == GradeStatus.FINAL.value

    def prepare_save(self) -> "Grade":
        """
        Derived fields that must hold on every write: percentage from
        points, grade points from the letter, timeline stamps, flags.
        """
        points = self.scores.points
        self.scores.percentage = percentage_of(points.earned, points.possible)
        if self.scores.adjusted is None:
            self.scores.adjusted = self.scores.raw

        self.grade_points = grade_points_of(self.letter_grade)

        now = utcnow()
        if self.status == GradeStatus.PUBLISHED.value and self.timeline.published_at is None:
            self.timeline.published_at = now
        self.timeline.last_modified_at = now

        self.flags.has_comments = bool(self.comments)
        return self

    def recalculate_adjusted(self) -> "Grade":
        """
        adjusted = max(0, raw - penalties) + bonuses, capped at the possible
        points. Earned points follow the adjusted score and the letter
        grade is re-derived from the resulting percentage.
        """
        total_penalty = sum(p.points_deducted for p in self.penalties)
        total_bonus = sum(b.points_added for b in self.bonuses)

        adjusted = max(0.0, self.scores.raw - total_penalty) + total_bonus
        adjusted = min(adjusted, self.scores.points.possible)

        self.scores.adjusted = adjusted
        self.scores.points.earned = adjusted
        self.scores.percentage = percentage_of(adjusted, self.scores.points.possible)
        self.letter_grade = letter_grade_of(self.scores.percentage)
        return self

    def add_penalty(self, penalty: Penalty) -> "Grade":
        self.penalties.append(penalty)
        return self.recalculate_adjusted()

    def add_bonus(self, bonus: Bonus) -> "Grade":
        self.bonuses.append(bonus)
        return self.recalculate_adjusted()

    def add_comment(self, comment: Comment) -> "Grade":
        self.comments.append(comment)
        if comment.type == CommentType.DISPUTE.value:
            self.flags.is_disputed = True
            if self.status == GradeStatus.PUBLISHED.value:
                self.status = GradeStatus.DISPUTED.value
        return self

    def mark_viewed(self) -> "Grade":
        now = utcnow()
        self.timeline.viewed_by_student_at = now
        self.analytics.last_viewed_at = now
        self.analytics.student_view_count += 1
        return self

    def student_view(self) -> dict:
        """Document as shown to the student: no private notes or comments"""
        doc = self.model_dump()
        doc["feedback"].pop("private", None)
        doc["comments"] = [c for c in doc["comments"] if not c["is_private"]]
        return doc
