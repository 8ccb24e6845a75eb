from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class CompletionType(str, Enum):
    LESSON = "lesson"
    CHAPTER = "chapter"


class LessonProgressWrite(BaseModel):
    course: str
    lesson: str
    is_completed: Optional[bool] = None
    progress_percentage: Optional[float] = Field(None, ge=0, le=100)
    time_spent: Optional[int] = Field(None, ge=0)


class LessonProgressUpdate(BaseModel):
    is_completed: Optional[bool] = None
    progress_percentage: Optional[float] = Field(None, ge=0, le=100)
    time_spent: Optional[int] = Field(None, ge=0)


class CompletionRequest(BaseModel):
    type: CompletionType = CompletionType.LESSON
    course: str
    chapter: Optional[str] = None
    lesson: Optional[str] = None
    is_completed: bool = False
    progress_percentage: float = Field(0, ge=0, le=100)
    time_spent: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_target(self):
        if self.type == CompletionType.LESSON and not self.lesson:
            raise ValueError("Lesson is required for lesson completion")
        if self.type == CompletionType.CHAPTER and not self.chapter:
            raise ValueError("Chapter is required for chapter completion")
        return self
