"""
Lesson-level reviews.

Unlike course reviews these are published straight away; anonymous
callers see a review while it is public and approved.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import (
    UserContext, get_current_student, get_current_user, get_optional_user
)
from coursehub.database import get_db, clamp_page, generate_id, pagination_meta
from coursehub.enrollments.enrollment_service import require_enrollment
from coursehub.reviews.review_models import LessonReviewCreate, LessonReviewUpdate, ReviewType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lesson-reviews", tags=["Lesson Reviews"])

VISIBLE_FILTER = {"is_public": True, "is_approved": True}
ADMIN_ONLY_FIELDS = {"is_approved", "is_public"}


async def load_lesson_review(db: AsyncIOMotorDatabase, review_id: str) -> dict:
    review = await db.lesson_reviews.find_one({"review_id": review_id}, {"_id": 0})
    if not review:
        raise HTTPException(status_code=404, detail="Lesson review not found")
    return review


@router.get("")
async def list_lesson_reviews(
    lesson: Optional[str] = None,
    course: Optional[str] = None,
    student: Optional[str] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    review_type: Optional[ReviewType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {}
    if lesson:
        query["lesson"] = lesson
    if course:
        query["course"] = course
    if rating:
        query["rating"] = rating
    if review_type:
        query["review_type"] = review_type.value

    if user is None:
        query.update(VISIBLE_FILTER)
    elif user.is_admin:
        if student:
            query["student"] = student
    elif user.is_student:
        query["student"] = user.user_id
    else:
        query.update(VISIBLE_FILTER)

    page, limit, skip = clamp_page(page, limit)
    total = await db.lesson_reviews.count_documents(query)
    reviews = await db.lesson_reviews.find(query, {"_id": 0}) \
        .sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)

    return {"success": True, "data": reviews, "pagination": pagination_meta(page, limit, total)}


@router.post("", status_code=201)
async def create_lesson_review(
    data: LessonReviewCreate,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if student.is_blocked_from_reviews:
        raise HTTPException(status_code=403, detail="You have been blocked from writing reviews")

    lesson = await db.lessons.find_one({"lesson_id": data.lesson, "course": data.course})
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found in this course")

    await require_enrollment(
        db, student.user_id, data.course,
        message="You must be enrolled in this course to review its lessons"
    )

    if await db.lesson_reviews.find_one({"lesson": data.lesson, "student": student.user_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this lesson")

    now = datetime.utcnow()
    review = {
        "review_id": generate_id("LREV"),
        **data.model_dump(mode="json"),
        "student": student.user_id,
        "student_name": student.name,
        "is_verified": True,
        "helpful_votes": 0,
        "reported_count": 0,
        "is_approved": True,
        "created_at": now,
        "updated_at": now,
    }
    await db.lesson_reviews.insert_one(review)
    review.pop("_id", None)
    logger.info("Lesson review %s created for %s by %s", review["review_id"], data.lesson, student.user_id)

    return {"success": True, "message": "Lesson review submitted", "data": review}


@router.get("/{review_id}")
async def get_lesson_review(
    review_id: str,
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await load_lesson_review(db, review_id)
    visible = review.get("is_public") and review.get("is_approved")
    if not visible and not (user and (user.is_admin or review["student"] == user.user_id)):
        raise HTTPException(status_code=404, detail="Lesson review not found")
    return {"success": True, "data": review}


@router.put("/{review_id}")
async def update_lesson_review(
    review_id: str,
    data: LessonReviewUpdate,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await load_lesson_review(db, review_id)
    if review["student"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="You can only edit your own lesson reviews")

    updates = data.model_dump(mode="json", exclude_unset=True)
    if not user.is_admin:
        for field in updates.keys() & ADMIN_ONLY_FIELDS:
            updates.pop(field)

    merged = {**review, **updates}
    if merged.get("review_type") == ReviewType.TEXT.value and not (merged.get("comment") or "").strip():
        raise HTTPException(status_code=400, detail="Comment is required for text reviews")
    if merged.get("review_type") == ReviewType.VIDEO.value and not merged.get("video_url"):
        raise HTTPException(status_code=400, detail="Video URL is required for video reviews")

    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.lesson_reviews.update_one({"review_id": review_id}, {"$set": updates})

    return {
        "success": True,
        "message": "Lesson review updated",
        "data": await load_lesson_review(db, review_id)
    }


@router.delete("/{review_id}")
async def delete_lesson_review(
    review_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await load_lesson_review(db, review_id)
    if review["student"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="You can only delete your own lesson reviews")

    await db.lesson_reviews.delete_one({"review_id": review_id})
    return {"success": True, "message": "Lesson review deleted"}
