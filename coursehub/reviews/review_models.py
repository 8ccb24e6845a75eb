from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class ReviewType(str, Enum):
    TEXT = "text"
    VIDEO = "video"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    DISAPPROVE = "disapprove"
    MAKE_PUBLIC = "make_public"
    MAKE_PRIVATE = "make_private"
    DISPLAY = "display"
    HIDE = "hide"
    RESET_REPORTS = "reset_reports"


class ReviewCreate(BaseModel):
    course: str
    rating: int = Field(..., ge=1, le=5)
    review_type: ReviewType = ReviewType.TEXT
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    video_url: Optional[str] = None
    video_thumbnail: Optional[str] = None
    is_public: bool = True

    @model_validator(mode="after")
    def check_body(self):
        if self.review_type == ReviewType.TEXT and not (self.comment and self.comment.strip()):
            raise ValueError("Comment is required for text reviews")
        if self.review_type == ReviewType.VIDEO and not self.video_url:
            raise ValueError("Video URL is required for video reviews")
        return self


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)


class VoteRequest(BaseModel):
    is_helpful: Any = None


class ReportRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AdminReviewUpdate(BaseModel):
    action: Optional[ReviewAction] = None
    is_approved: Optional[bool] = None
    is_public: Optional[bool] = None
    is_displayed: Optional[bool] = None
    display_order: Optional[int] = Field(None, ge=0)


class BlockReviewsRequest(BaseModel):
    block: Any = None
    reason: Optional[str] = Field(None, max_length=500)


# ==================== LESSON REVIEWS ====================

class LessonReviewCreate(BaseModel):
    lesson: str
    course: str
    rating: int = Field(..., ge=1, le=5)
    review_type: ReviewType = ReviewType.TEXT
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    video_url: Optional[str] = None
    video_thumbnail: Optional[str] = None
    is_public: bool = True

    @model_validator(mode="after")
    def check_body(self):
        if self.review_type == ReviewType.TEXT and not (self.comment and self.comment.strip()):
            raise ValueError("Comment is required for text reviews")
        if self.review_type == ReviewType.VIDEO and not self.video_url:
            raise ValueError("Video URL is required for video reviews")
        return self


class LessonReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    review_type: Optional[ReviewType] = None
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    video_url: Optional[str] = None
    is_public: Optional[bool] = None
    is_approved: Optional[bool] = None
