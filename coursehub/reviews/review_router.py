from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import (
    UserContext, get_current_student, get_current_user, get_optional_user
)
from coursehub.catalog.models import CourseStatus
from coursehub.database import get_db, clamp_page, pagination_meta, search_regex
from coursehub.reviews import review_service as service
from coursehub.reviews.review_models import ReportRequest, ReviewCreate, ReviewUpdate, VoteRequest

router = APIRouter(tags=["Course Reviews"])


def review_filter(course: Optional[str], rating: Optional[int], search: Optional[str]) -> dict:
    query = {}
    if course:
        query["course"] = course
    if rating:
        query["rating"] = rating
    if search:
        regex = search_regex(search)
        query["$or"] = [{"title": regex}, {"comment": regex}]
    return query


# ==================== REVIEWS ====================

@router.get("/course-reviews")
async def list_reviews(
    course: Optional[str] = None,
    student: Optional[str] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Anonymous -> publicly visible reviews
    Signed in -> own reviews only
    Admin     -> everything
    """
    query = review_filter(course, rating, search)
    if user is None:
        query.update(service.PUBLIC_FILTER)
    elif not user.is_admin:
        query["student"] = user.user_id
    elif student:
        query["student"] = student

    page, limit, skip = clamp_page(page, limit)
    total = await db.course_reviews.count_documents(query)
    reviews = await db.course_reviews.find(query, service.HIDDEN_REVIEW_FIELDS) \
        .sort([("display_order", 1), ("created_at", -1)]) \
        .skip(skip).limit(limit).to_list(length=limit)

    return {"success": True, "data": reviews, "pagination": pagination_meta(page, limit, total)}


@router.post("/course-reviews", status_code=201)
async def create_review(
    data: ReviewCreate,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await service.create_review(db, student, data)
    return {
        "success": True,
        "message": "Review submitted and awaiting approval",
        "data": review
    }


@router.get("/course-reviews/{review_id}")
async def get_review(
    review_id: str,
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await service.load_review(db, review_id)
    is_owner = user is not None and review["student"] == user.user_id
    if not (service.is_publicly_visible(review) or is_owner or (user and user.is_admin)):
        raise HTTPException(status_code=404, detail="Review not found")

    review.pop("reports", None)
    return {"success": True, "data": review}


@router.put("/course-reviews/{review_id}")
async def update_review(
    review_id: str,
    data: ReviewUpdate,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await service.load_review(db, review_id)
    if review["student"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="You can only edit your own reviews")

    updates = data.model_dump(exclude_unset=True)
    if review.get("review_type") == "text" and "comment" in updates and not (updates["comment"] or "").strip():
        raise HTTPException(status_code=400, detail="Comment is required for text reviews")

    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.course_reviews.update_one({"review_id": review_id}, {"$set": updates})

    updated = await db.course_reviews.find_one({"review_id": review_id}, service.HIDDEN_REVIEW_FIELDS)
    return {"success": True, "message": "Review updated", "data": updated}


@router.delete("/course-reviews/{review_id}")
async def delete_review(
    review_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await service.load_review(db, review_id)
    if review["student"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="You can only delete your own reviews")

    await db.course_reviews.delete_one({"review_id": review_id})
    return {"success": True, "message": "Review deleted"}


@router.post("/course-reviews/{review_id}/vote")
async def vote_review(
    review_id: str,
    data: VoteRequest,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if not isinstance(data.is_helpful, bool):
        raise HTTPException(status_code=400, detail="is_helpful must be a boolean")

    review = await service.load_review(db, review_id)
    if review["student"] == student.user_id:
        raise HTTPException(status_code=400, detail="You cannot vote on your own review")

    votes = await service.vote(db, review_id, data.is_helpful)
    return {"success": True, "data": {"helpful_votes": votes}}


@router.post("/course-reviews/{review_id}/report")
async def report_review(
    review_id: str,
    data: ReportRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    reason = (data.reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Report reason is required")

    review = await db.course_reviews.find_one({"review_id": review_id})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    if review["student"] == user.user_id:
        raise HTTPException(status_code=400, detail="You cannot report your own review")

    result = await service.report(db, review, user.user_id, reason)
    return {"success": True, "message": "Review reported", "data": result}


# ==================== COURSE PAGE ====================

@router.get("/courses/{course_id}/reviews")
async def course_reviews(
    course_id: str,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await db.courses.find_one({"course_id": course_id})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    if course.get("status") != CourseStatus.PUBLISHED.value and not (user and user.is_staff):
        raise HTTPException(status_code=404, detail="Course not found")

    query = {"course": course_id, **service.PUBLIC_FILTER}
    if rating:
        query["rating"] = rating

    page, limit, skip = clamp_page(page, limit)
    total = await db.course_reviews.count_documents(query)
    reviews = await db.course_reviews.find(query, service.HIDDEN_REVIEW_FIELDS) \
        .sort([("display_order", 1), ("helpful_votes", -1), ("created_at", -1)]) \
        .skip(skip).limit(limit).to_list(length=limit)

    return {
        "success": True,
        "data": {
            "reviews": reviews,
            "stats": await service.rating_stats(db, course_id),
            "pagination": pagination_meta(page, limit, total),
        }
    }
