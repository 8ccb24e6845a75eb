import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

YOUTUBE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{10,15}$")
HEX_COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")

# ==================== ENUMS ====================

class CourseStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class PricingFilter(str, Enum):
    ALL = "all"
    FREE = "free"
    PAID = "paid"


# ==================== YOUTUBE ====================

def extract_youtube_id(value: Optional[str]) -> Optional[str]:
    """
    Accepts a bare video id or any youtube link
    (watch?v=, youtu.be/, embed/) and returns the id
    """
    if not value:
        return None
    value = value.strip()

    for pattern in (r"v=([^&]+)", r"youtu\.be/([^?&/]+)", r"embed/([^?&/]+)"):
        match = re.search(pattern, value)
        if match:
            value = match.group(1)
            break

    if not YOUTUBE_ID_PATTERN.match(value):
        raise ValueError("Invalid YouTube video ID format")
    return value


def youtube_urls(video_id: Optional[str]) -> dict:
    if not video_id:
        return {"embed_url": None, "watch_url": None, "thumbnail_url": None}
    return {
        "embed_url": f"https://www.youtube.com/embed/{video_id}",
        "watch_url": f"https://www.youtube.com/watch?v={video_id}",
        "thumbnail_url": f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg",
    }


# ==================== CATEGORY MODELS ====================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    color: str = "#3B82F6"
    icon: Optional[str] = None
    is_active: bool = True

    @field_validator("color")
    @classmethod
    def validate_color(cls, v):
        if not HEX_COLOR_PATTERN.match(v):
            raise ValueError("Please enter a valid hex color code")
        return v


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v):
        if v is not None and not HEX_COLOR_PATTERN.match(v):
            raise ValueError("Please enter a valid hex color code")
        return v


# ==================== COURSE MODELS ====================

class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    short_description: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    category: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_paid: bool = False
    price: float = Field(0, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    status: CourseStatus = CourseStatus.DRAFT
    instructor: Optional[str] = None
    tags: List[str] = []

    @model_validator(mode="after")
    def check_pricing(self):
        validate_pricing(self.is_paid, self.price, self.sale_price)
        return self


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    short_description: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    category: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_paid: Optional[bool] = None
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    status: Optional[CourseStatus] = None
    instructor: Optional[str] = None
    tags: Optional[List[str]] = None


def validate_pricing(is_paid: bool, price: float, sale_price: Optional[float]):
    if is_paid and (not price or price <= 0):
        raise ValueError("Paid courses must have a price greater than 0")
    if sale_price is not None and price and sale_price >= price:
        raise ValueError("Sale price must be less than regular price")


# ==================== CHAPTER MODELS ====================

class ChapterCreate(BaseModel):
    course: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    order: Optional[int] = Field(None, ge=1)
    is_published: bool = False


class ChapterUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    order: Optional[int] = Field(None, ge=1)
    is_published: Optional[bool] = None


# ==================== LESSON MODELS ====================

class Attachment(BaseModel):
    name: str
    url: str
    type: Optional[str] = None
    size: Optional[int] = None


class LessonCreate(BaseModel):
    chapter: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = Field(None, ge=1)
    duration: int = Field(0, ge=0)
    youtube_video_id: Optional[str] = None
    video_url: Optional[str] = None
    video_duration: Optional[int] = Field(None, ge=0)
    attachments: List[Attachment] = []
    is_published: bool = False
    is_free: bool = False

    @field_validator("youtube_video_id")
    @classmethod
    def validate_video(cls, v):
        return extract_youtube_id(v)


class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = Field(None, ge=1)
    duration: Optional[int] = Field(None, ge=0)
    youtube_video_id: Optional[str] = None
    video_url: Optional[str] = None
    video_duration: Optional[int] = Field(None, ge=0)
    attachments: Optional[List[Attachment]] = None
    is_published: Optional[bool] = None
    is_free: Optional[bool] = None

    @field_validator("youtube_video_id")
    @classmethod
    def validate_video(cls, v):
        return extract_youtube_id(v)


class ReorderPayload(BaseModel):
    order: List[str] = Field(..., min_length=1)


# ==================== FAQS ====================

class FaqCreate(BaseModel):
    course: str
    question: str = Field(..., min_length=1, max_length=500)
    answer: str = Field(..., min_length=1, max_length=5000)
    order: Optional[int] = Field(None, ge=0)


class FaqUpdate(BaseModel):
    question: Optional[str] = Field(None, min_length=1, max_length=500)
    answer: Optional[str] = Field(None, min_length=1, max_length=5000)
    order: Optional[int] = Field(None, ge=0)


class FaqPair(BaseModel):
    question: str = Field("", max_length=500)
    answer: str = Field("", max_length=5000)


class FaqBulkCreate(BaseModel):
    course: str
    faqs: List[FaqPair]
