import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_current_admin
from coursehub.database import get_db, clamp_page, pagination_meta
from coursehub.reviews import review_service as service
from coursehub.reviews.review_models import AdminReviewUpdate, BlockReviewsRequest
from coursehub.reviews.review_router import review_filter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Review Moderation"])


# ==================== REVIEW MODERATION ====================

@router.get("/course-reviews")
async def admin_list_reviews(
    course: Optional[str] = None,
    student: Optional[str] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    is_approved: Optional[bool] = None,
    is_public: Optional[bool] = None,
    is_displayed: Optional[bool] = None,
    min_reported: Optional[int] = Query(None, ge=0),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = review_filter(course, rating, search)
    if student:
        query["student"] = student
    if is_approved is not None:
        query["is_approved"] = is_approved
    if is_public is not None:
        query["is_public"] = is_public
    if is_displayed is not None:
        query["is_displayed"] = is_displayed
    if min_reported is not None:
        query["reported_count"] = {"$gte": min_reported}

    page, limit, skip = clamp_page(page, limit)
    total = await db.course_reviews.count_documents(query)
    reviews = await db.course_reviews.find(query, {"_id": 0}) \
        .sort([("reported_count", -1), ("created_at", -1)]) \
        .skip(skip).limit(limit).to_list(length=limit)

    summary = {
        "pending": await db.course_reviews.count_documents({"is_approved": False}),
        "approved": await db.course_reviews.count_documents({"is_approved": True}),
        "reported": await db.course_reviews.count_documents({"reported_count": {"$gt": 0}}),
        "displayed": await db.course_reviews.count_documents({"is_displayed": True}),
    }

    return {
        "success": True,
        "data": reviews,
        "summary": summary,
        "pagination": pagination_meta(page, limit, total)
    }


@router.get("/course-reviews/{review_id}")
async def admin_get_review(
    review_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    review = await service.load_review(db, review_id)
    return {"success": True, "data": review}


@router.put("/course-reviews/{review_id}")
async def admin_update_review(
    review_id: str,
    data: AdminReviewUpdate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await service.load_review(db, review_id)
    fields = data.model_dump(exclude_unset=True, exclude={"action"})
    review = await service.moderate(db, review_id, admin.user_id, action=data.action, fields=fields)
    return {"success": True, "message": "Review updated", "data": review}


@router.delete("/course-reviews/{review_id}")
async def admin_delete_review(
    review_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await service.load_review(db, review_id)
    await db.course_reviews.delete_one({"review_id": review_id})
    logger.info("Review %s deleted by admin %s", review_id, admin.user_id)
    return {"success": True, "message": "Review deleted"}


# ==================== STUDENT REVIEW BLOCKS ====================

@router.put("/students/{student_id}/block-reviews")
async def block_reviews(
    student_id: str,
    data: BlockReviewsRequest,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if not isinstance(data.block, bool):
        raise HTTPException(status_code=400, detail="block must be a boolean")

    student = await db.users.find_one({"user_id": student_id})
    if not student:
        raise HTTPException(status_code=404, detail="User not found")
    if student.get("role") != "student":
        raise HTTPException(status_code=400, detail="Only students can be blocked from reviews")

    now = datetime.utcnow()
    await db.users.update_one(
        {"user_id": student_id},
        {"$set": {
            "is_blocked_from_reviews": data.block,
            "review_block_reason": data.reason if data.block else None,
            "review_blocked_at": now if data.block else None,
            "review_blocked_by": admin.user_id if data.block else None,
            "updated_at": now,
        }}
    )
    logger.info("Student %s %s from reviews by %s", student_id, "blocked" if data.block else "unblocked", admin.user_id)

    return {
        "success": True,
        "message": "Student blocked from reviews" if data.block else "Student unblocked from reviews",
        "data": {"user_id": student_id, "is_blocked_from_reviews": data.block}
    }
