from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from coursehub.database import UtcDatetime


# ==================== ENUMS ====================

class QuestionType(str, Enum):
    MCQ = "mcq"
    WRITTEN = "written"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    ESSAY = "essay"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ExamType(str, Enum):
    MCQ = "mcq"
    WRITTEN = "written"
    MIXED = "mixed"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    TIMEOUT = "timeout"


OPTION_TYPES = {QuestionType.MCQ.value, QuestionType.TRUE_FALSE.value}
TEXT_TYPES = {QuestionType.WRITTEN.value, QuestionType.ESSAY.value, QuestionType.FILL_BLANK.value}
MANUAL_TYPES = {QuestionType.WRITTEN.value, QuestionType.ESSAY.value}


def check_question_rules(qtype: str, options: list, correct_answer: Optional[str]):
    """
    Raises ValueError when the options or answer don't fit the question type.
    Options may be dicts or QuestionOption models.
    """
    qtype = getattr(qtype, "value", qtype)
    flags = [o["is_correct"] if isinstance(o, dict) else o.is_correct for o in options or []]

    if qtype == QuestionType.MCQ.value:
        if not 2 <= len(flags) <= 6:
            raise ValueError("MCQ questions need between 2 and 6 options")
        if not any(flags):
            raise ValueError("MCQ questions need at least one correct option")
    elif qtype == QuestionType.TRUE_FALSE.value:
        if len(flags) != 2 or sum(flags) != 1:
            raise ValueError("True/false questions need exactly 2 options with one correct")
    elif not (correct_answer and correct_answer.strip()):
        raise ValueError(f"{qtype} questions need a correct answer")


# ==================== QUESTIONS ====================

class QuestionOption(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)
    is_correct: bool = False
    explanation: Optional[str] = Field(None, max_length=500)


class ExamQuestionCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    type: QuestionType
    marks: float = Field(1, ge=0.5, le=100)
    difficulty: Difficulty = Difficulty.MEDIUM
    category: Optional[str] = Field(None, max_length=100)
    tags: List[str] = []
    options: List[QuestionOption] = []
    correct_answer: Optional[str] = Field(None, max_length=2000)
    explanation: Optional[str] = Field(None, max_length=2000)
    hints: List[str] = []
    time_limit: Optional[int] = Field(None, ge=1, le=60)
    is_active: bool = True
    exam: Optional[str] = None

    @model_validator(mode="after")
    def check_type_rules(self):
        check_question_rules(self.type, self.options, self.correct_answer)
        return self


class BulkExamQuestionCreate(BaseModel):
    exam: Optional[str] = None
    questions: List[ExamQuestionCreate] = Field(..., min_length=1)


class ExamQuestionUpdate(BaseModel):
    question: Optional[str] = Field(None, min_length=1, max_length=2000)
    type: Optional[QuestionType] = None
    marks: Optional[float] = Field(None, ge=0.5, le=100)
    difficulty: Optional[Difficulty] = None
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[List[str]] = None
    options: Optional[List[QuestionOption]] = None
    correct_answer: Optional[str] = Field(None, max_length=2000)
    explanation: Optional[str] = Field(None, max_length=2000)
    hints: Optional[List[str]] = None
    time_limit: Optional[int] = Field(None, ge=1, le=60)
    is_active: Optional[bool] = None


# ==================== EXAMS ====================

def check_exam_rules(total_marks, passing_marks, start_date, end_date):
    if total_marks is not None and passing_marks is not None and passing_marks > total_marks:
        raise ValueError("Passing marks cannot exceed total marks")
    if start_date and end_date and end_date <= start_date:
        raise ValueError("End date must be after start date")


class ExamCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: ExamType
    duration: int = Field(..., ge=1, le=1440)
    total_marks: float = Field(..., ge=1, le=10000)
    passing_marks: float = Field(..., ge=0)
    instructions: Optional[str] = Field(None, max_length=2000)
    is_active: bool = True
    is_published: bool = False
    start_date: UtcDatetime
    end_date: UtcDatetime
    course: Optional[str] = None
    questions: List[str] = []
    max_attempts: int = Field(1, ge=1, le=10)
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_correct_answers: bool = False
    show_results: bool = True
    allow_review: bool = True
    time_limit: bool = True

    @model_validator(mode="after")
    def check_marks_and_dates(self):
        check_exam_rules(self.total_marks, self.passing_marks, self.start_date, self.end_date)
        return self


class ExamUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: Optional[ExamType] = None
    duration: Optional[int] = Field(None, ge=1, le=1440)
    total_marks: Optional[float] = Field(None, ge=1, le=10000)
    passing_marks: Optional[float] = Field(None, ge=0)
    instructions: Optional[str] = Field(None, max_length=2000)
    is_active: Optional[bool] = None
    is_published: Optional[bool] = None
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None
    course: Optional[str] = None
    max_attempts: Optional[int] = Field(None, ge=1, le=10)
    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    show_correct_answers: Optional[bool] = None
    show_results: Optional[bool] = None
    allow_review: Optional[bool] = None
    time_limit: Optional[bool] = None


class QuestionLinkRequest(BaseModel):
    question_ids: List[str] = Field(..., min_length=1)


# ==================== ATTEMPTS ====================

class ExamAnswer(BaseModel):
    question_id: str
    selected_option: Optional[int] = Field(None, ge=0)
    written_answer: Optional[str] = Field(None, max_length=10000)


class AttemptStart(BaseModel):
    exam: str


class AttemptSave(BaseModel):
    answers: List[ExamAnswer] = []
    abandon: bool = False


class AnswerGrade(BaseModel):
    question_id: str
    marks_obtained: float = Field(..., ge=0)
    feedback: Optional[str] = Field(None, max_length=2000)


class AttemptGradeRequest(BaseModel):
    grades: List[AnswerGrade] = Field(..., min_length=1)
