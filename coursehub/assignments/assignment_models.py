from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from coursehub.database import UtcDatetime


# ==================== ENUMS ====================

class AssignmentType(str, Enum):
    ESSAY = "essay"
    FILE_UPLOAD = "file_upload"
    QUIZ = "quiz"
    PROJECT = "project"
    PRESENTATION = "presentation"


class AssignmentStatus(str, Enum):
    DRAFT = "draft"
    INACTIVE = "inactive"
    SCHEDULED = "scheduled"
    EXPIRED = "expired"
    ACTIVE = "active"
    PUBLISHED = "published"


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    GRADED = "graded"
    RETURNED = "returned"


# ==================== ASSIGNMENT MODELS ====================

class RubricItem(BaseModel):
    criteria: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    marks: float = Field(..., gt=0)


class AttachmentRef(BaseModel):
    name: str
    url: str
    type: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)


class AssignmentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    instructions: Optional[str] = Field(None, max_length=5000)
    type: AssignmentType
    course: str
    chapter: Optional[str] = None
    lesson: Optional[str] = None
    total_marks: float = Field(..., ge=1, le=10000)
    passing_marks: Optional[float] = Field(None, ge=0)
    start_date: Optional[UtcDatetime] = None
    due_date: UtcDatetime
    is_active: bool = True
    is_published: bool = False
    allow_late_submission: bool = False
    late_penalty_percentage: float = Field(0, ge=0, le=100)
    max_attempts: int = Field(1, ge=1, le=10)
    allowed_file_types: List[str] = []
    max_file_size: float = Field(10, gt=0, le=100)
    attachments: List[AttachmentRef] = []
    rubric: List[RubricItem] = []

    @model_validator(mode="after")
    def check_marks_and_dates(self):
        check_assignment_rules(self.total_marks, self.passing_marks, self.start_date, self.due_date)
        return self


class AssignmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    instructions: Optional[str] = Field(None, max_length=5000)
    type: Optional[AssignmentType] = None
    chapter: Optional[str] = None
    lesson: Optional[str] = None
    total_marks: Optional[float] = Field(None, ge=1, le=10000)
    passing_marks: Optional[float] = Field(None, ge=0)
    start_date: Optional[UtcDatetime] = None
    due_date: Optional[UtcDatetime] = None
    is_active: Optional[bool] = None
    is_published: Optional[bool] = None
    allow_late_submission: Optional[bool] = None
    late_penalty_percentage: Optional[float] = Field(None, ge=0, le=100)
    max_attempts: Optional[int] = Field(None, ge=1, le=10)
    allowed_file_types: Optional[List[str]] = None
    max_file_size: Optional[float] = Field(None, gt=0, le=100)
    attachments: Optional[List[AttachmentRef]] = None
    rubric: Optional[List[RubricItem]] = None


def check_assignment_rules(total_marks, passing_marks, start_date, due_date):
    if passing_marks is not None and passing_marks > total_marks:
        raise ValueError("Passing marks cannot exceed total marks")
    if start_date and due_date and start_date >= due_date:
        raise ValueError("Due date must be after start date")


# ==================== SUBMISSION MODELS ====================

class SubmittedFile(BaseModel):
    name: str = Field(..., min_length=1)
    url: str
    type: Optional[str] = None
    size: int = Field(0, ge=0)


class SubmissionCreate(BaseModel):
    content: Optional[str] = Field(None, max_length=50000)
    files: List[SubmittedFile] = []
    answers: Optional[Dict[str, Any]] = None
    time_spent: int = Field(0, ge=0)


class RubricScore(BaseModel):
    criteria: str
    score: float
    feedback: Optional[str] = None


class GradeRequest(BaseModel):
    score: float
    feedback: Optional[str] = Field(None, max_length=5000)
    rubric_scores: List[RubricScore] = []
    status: SubmissionStatus = SubmissionStatus.GRADED
