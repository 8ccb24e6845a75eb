from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from coursehub.database import UtcDatetime


class QuestionCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=1000)
    options: List[str]
    correct_option_index: int = Field(..., ge=0)
    explanation: Optional[str] = Field(None, max_length=2000)
    is_active: bool = True

    @field_validator("options")
    @classmethod
    def clean_options(cls, v):
        options = [o.strip() for o in v]
        if len(options) < 2 or any(not o for o in options):
            raise ValueError("At least 2 non-empty options are required")
        return options

    @model_validator(mode="after")
    def check_index(self):
        if self.correct_option_index >= len(self.options):
            raise ValueError("correct_option_index must point at one of the options")
        return self


class BulkQuestionCreate(BaseModel):
    questions: List[QuestionCreate] = Field(..., min_length=1)


class QuestionUpdate(BaseModel):
    question: Optional[str] = Field(None, min_length=1, max_length=1000)
    options: Optional[List[str]] = None
    correct_option_index: Optional[int] = Field(None, ge=0)
    explanation: Optional[str] = Field(None, max_length=2000)
    is_active: Optional[bool] = None

    @field_validator("options")
    @classmethod
    def clean_options(cls, v):
        if v is None:
            return v
        options = [o.strip() for o in v]
        if len(options) < 2 or any(not o for o in options):
            raise ValueError("At least 2 non-empty options are required")
        return options


class QuizAnswer(BaseModel):
    question_id: str
    selected_index: int


class QuizSubmission(BaseModel):
    answers: List[QuizAnswer] = []
    is_practice_mode: bool = False
    started_at: Optional[UtcDatetime] = None
