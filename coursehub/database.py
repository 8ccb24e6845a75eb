import logging
import math
import re
import uuid
from datetime import datetime, timezone
from typing import Annotated, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic import AfterValidator
from pymongo import ASCENDING, DESCENDING

from coursehub.config import MONGO_URL, MONGO_DB_NAME, MAX_PAGE_SIZE

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URL)
    return _client


async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_client()[MONGO_DB_NAME]


# ==================== HELPERS ====================

def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12].upper()}"


def serialize_mongo(doc: dict) -> dict:
    if doc and "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def serialize_many(docs: list[dict]) -> list[dict]:
    return [serialize_mongo(doc) for doc in docs]


def clamp_page(page: int, limit: int) -> Tuple[int, int, int]:
    """Returns (page, limit, skip) with limit capped at MAX_PAGE_SIZE"""
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return page, limit, (page - 1) * limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def sort_spec(sort_by: Optional[str], sort_order: str, allowed: set, default: str) -> List[tuple]:
    field = sort_by if sort_by in allowed else default
    direction = ASCENDING if sort_order == "asc" else DESCENDING
    return [(field, direction)]


def search_regex(term: str) -> dict:
    return {"$regex": re.escape(term.strip()), "$options": "i"}


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; keep incoming ones comparable"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(naive_utc)]


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    result = math.floor(value * scale + 0.5) / scale
    return int(result) if digits == 0 else result


def percent(part: float, total: float, digits: int = 0) -> float:
    """part / total as a percentage, rounded half-up. 0 when total is 0."""
    if not total:
        return 0
    return round_half_up(part / total * 100, digits)


# ==================== INDEXES ====================

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create all collection indexes. Called on startup."""
    await db.users.create_index("user_id", unique=True)
    await db.users.create_index("phone", unique=True)

    await db.course_categories.create_index("category_id", unique=True)
    await db.course_categories.create_index("name_lower", unique=True)

    await db.courses.create_index("course_id", unique=True)
    await db.courses.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    await db.chapters.create_index("chapter_id", unique=True)
    await db.chapters.create_index([("course", ASCENDING), ("order", ASCENDING)], unique=True)
    await db.lessons.create_index("lesson_id", unique=True)
    await db.lessons.create_index([("chapter", ASCENDING), ("order", ASCENDING)], unique=True)

    await db.enrollments.create_index("enrollment_id", unique=True)
    await db.enrollments.create_index([("student", ASCENDING), ("course", ASCENDING)], unique=True)

    await db.lesson_progress.create_index([("user", ASCENDING), ("lesson", ASCENDING)], unique=True)
    await db.chapter_progress.create_index([("user", ASCENDING), ("chapter", ASCENDING)], unique=True)
    await db.course_progress.create_index([("user", ASCENDING), ("course", ASCENDING)], unique=True)

    await db.lesson_quiz_questions.create_index([("lesson", ASCENDING), ("is_active", ASCENDING)])
    await db.lesson_quiz_results.create_index([("user", ASCENDING), ("lesson", ASCENDING), ("submitted_at", DESCENDING)])

    await db.course_reviews.create_index("review_id", unique=True)
    await db.course_reviews.create_index([("course", ASCENDING), ("student", ASCENDING)], unique=True)
    await db.course_reviews.create_index([("course", ASCENDING), ("is_approved", ASCENDING), ("is_public", ASCENDING)])

    await db.assignments.create_index("assignment_id", unique=True)
    await db.assignment_submissions.create_index(
        [("assignment", ASCENDING), ("student", ASCENDING), ("attempt_number", ASCENDING)],
        unique=True
    )

    await db.course_faqs.create_index("faq_id", unique=True)
    await db.course_faqs.create_index([("course", ASCENDING), ("order", ASCENDING)])

    await db.lesson_reviews.create_index("review_id", unique=True)
    await db.lesson_reviews.create_index([("lesson", ASCENDING), ("student", ASCENDING)], unique=True)

    await db.exams.create_index("exam_id", unique=True)
    await db.exam_questions.create_index("question_id", unique=True)
    await db.exam_questions.create_index([("created_by", ASCENDING), ("type", ASCENDING)])
    await db.exam_attempts.create_index("attempt_id", unique=True)
    await db.exam_attempts.create_index(
        [("exam", ASCENDING), ("student", ASCENDING), ("attempt_number", ASCENDING)],
        unique=True
    )

    logger.info("MongoDB indexes ensured")

