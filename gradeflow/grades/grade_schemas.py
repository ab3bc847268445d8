from typing import Annotated, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator

from gradeflow.grades.grade_models import (
    BonusType, CommentType, Feedback, Grade, GradeStatus, PenaltyType, RubricScore, Visibility
)
from gradeflow.grades.grade_scale import LETTER_GRADES


class PointsInput(BaseModel):
    earned: float = Field(..., ge=0)
    possible: float = Field(..., gt=0)


class ScoresInput(BaseModel):
    raw: float = Field(..., ge=0)
    points: Optional[PointsInput] = None


class ScoresPatch(BaseModel):
    raw: Optional[float] = Field(None, ge=0)
    points: Optional[PointsInput] = None


def _check_letter(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in LETTER_GRADES:
        raise ValueError(f"letter_grade must be one of {', '.join(LETTER_GRADES)}")
    return value


LetterGrade = Annotated[Optional[str], AfterValidator(_check_letter)]


class GradeCreate(BaseModel):
    student_id: str
    assignment_id: str
    submission_id: str
    scores: ScoresInput
    letter_grade: LetterGrade = None
    feedback: Optional[Feedback] = None
    rubric_scores: List[RubricScore] = []
    status: GradeStatus = GradeStatus.DRAFT
    visibility: Optional[Visibility] = None


class GradeUpdate(BaseModel):
    scores: Optional[ScoresPatch] = None
    letter_grade: LetterGrade = None
    feedback: Optional[Feedback] = None
    rubric_scores: Optional[List[RubricScore]] = None
    status: Optional[GradeStatus] = None
    visibility: Optional[Visibility] = None

    @model_validator(mode="after")
    def not_empty(self):
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        return self


class PenaltyCreate(BaseModel):
    type: PenaltyType
    description: Optional[str] = Field(None, max_length=500)
    points_deducted: float = Field(..., ge=0)


class BonusCreate(BaseModel):
    type: BonusType
    description: Optional[str] = Field(None, max_length=500)
    points_added: float = Field(..., ge=0)


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)
    type: CommentType = CommentType.QUESTION
    is_private: bool = False


class BulkGradeItem(BaseModel):
    student_id: str
    submission_id: str
    scores: ScoresInput
    letter_grade: LetterGrade = None
    feedback: Optional[Feedback] = None
    status: GradeStatus = GradeStatus.DRAFT


class BulkGradeCreate(BaseModel):
    assignment_id: str
    grades: List[BulkGradeItem] = Field(..., min_length=1, max_length=500)


class GradeResponse(Grade):
    pass


class BulkGradeError(BaseModel):
    student_id: str
    submission_id: str
    status_code: int
    error: str


class BulkGradeResult(BaseModel):
    created: List[GradeResponse]
    errors: List[BulkGradeError]


class GradeSummary(BaseModel):
    total_graded: int
    average_grade: float
    highest_grade: float
    lowest_grade: float


class AssignmentGradesResponse(BaseModel):
    assignment_id: str
    statistics: GradeSummary
    distribution: Dict[str, int]
    grades: List[GradeResponse]


class StudentGradeStatistics(GradeSummary):
    distribution: Dict[str, int]


class StudentGradesResponse(BaseModel):
    student_id: str
    grades: List[GradeResponse]
    statistics: StudentGradeStatistics


class CourseAverage(BaseModel):
    total_grades: int
    average_percentage: float
    average_grade_points: float


class CourseGradesResponse(BaseModel):
    course_id: str
    grades: List[GradeResponse]
    average: CourseAverage
    letter_distribution: Dict[str, int]
