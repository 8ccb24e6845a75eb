"""
Course review moderation.

Visibility: a review is public iff is_public and is_approved and
is_displayed is not False. New reviews start unapproved and hidden.
Reports past REVIEW_REPORT_THRESHOLD pull a review's approval.
"""

import logging
from datetime import datetime
from typing import List

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from coursehub.config import REVIEW_REPORT_THRESHOLD
from coursehub.database import generate_id, round_half_up
from coursehub.enrollments.enrollment_service import require_enrollment
from coursehub.reviews.review_models import ReviewAction, ReviewCreate

logger = logging.getLogger(__name__)

PUBLIC_FILTER = {"is_public": True, "is_approved": True, "is_displayed": {"$ne": False}}
HIDDEN_REVIEW_FIELDS = {"_id": 0, "reports": 0}

ACTION_UPDATES = {
    ReviewAction.APPROVE: {"is_approved": True},
    ReviewAction.DISAPPROVE: {"is_approved": False},
    ReviewAction.MAKE_PUBLIC: {"is_public": True},
    ReviewAction.MAKE_PRIVATE: {"is_public": False},
    ReviewAction.DISPLAY: {"is_displayed": True},
    ReviewAction.HIDE: {"is_displayed": False},
    ReviewAction.RESET_REPORTS: {"reported_count": 0, "reports": []},
}


def is_publicly_visible(review: dict) -> bool:
    return bool(review.get("is_public") and review.get("is_approved") and review.get("is_displayed") is not False)


async def load_review(db: AsyncIOMotorDatabase, review_id: str) -> dict:
    review = await db.course_reviews.find_one({"review_id": review_id}, {"_id": 0})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


# ==================== CREATE ====================

async def create_review(db: AsyncIOMotorDatabase, student, data: ReviewCreate) -> dict:
    """
    Raises:
        404: Course not found
        403: Blocked from reviewing / not enrolled
        400: Already reviewed
    """
    course = await db.courses.find_one({"course_id": data.course})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    if student.is_blocked_from_reviews:
        raise HTTPException(status_code=403, detail="You have been blocked from writing reviews")

    await require_enrollment(
        db, student.user_id, data.course,
        message="You must be enrolled in this course to review it"
    )

    if await db.course_reviews.find_one({"course": data.course, "student": student.user_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this course")

    now = datetime.utcnow()
    review = {
        "review_id": generate_id("REV"),
        **data.model_dump(mode="json"),
        "student": student.user_id,
        "student_name": student.name,
        "is_verified": True,
        "helpful_votes": 0,
        "reported_count": 0,
        "reports": [],
        "is_approved": False,
        "is_displayed": False,
        "display_order": 0,
        "created_at": now,
        "updated_at": now,
    }
    await db.course_reviews.insert_one(review)
    logger.info("Review %s created for course %s by %s", review["review_id"], data.course, student.user_id)

    review.pop("_id", None)
    review.pop("reports", None)
    return review


# ==================== VOTES & REPORTS ====================

async def vote(db: AsyncIOMotorDatabase, review_id: str, is_helpful: bool) -> int:
    if is_helpful:
        await db.course_reviews.update_one({"review_id": review_id}, {"$inc": {"helpful_votes": 1}})
    else:
        await db.course_reviews.update_one(
            {"review_id": review_id, "helpful_votes": {"$gt": 0}},
            {"$inc": {"helpful_votes": -1}}
        )
    review = await db.course_reviews.find_one({"review_id": review_id})
    return review["helpful_votes"]


async def report(db: AsyncIOMotorDatabase, review: dict, user_id: str, reason: str) -> dict:
    updated = await db.course_reviews.find_one_and_update(
        {"review_id": review["review_id"], "reports.user": {"$ne": user_id}},
        {
            "$inc": {"reported_count": 1},
            "$push": {"reports": {"user": user_id, "reason": reason, "created_at": datetime.utcnow()}},
        },
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise HTTPException(status_code=400, detail="You have already reported this review")

    if updated["reported_count"] >= REVIEW_REPORT_THRESHOLD and updated.get("is_approved"):
        await db.course_reviews.update_one(
            {"review_id": review["review_id"]},
            {"$set": {"is_approved": False, "updated_at": datetime.utcnow()}}
        )
        updated["is_approved"] = False
        logger.warning("Review %s unapproved after %s reports", review["review_id"], updated["reported_count"])

    return {"reported_count": updated["reported_count"], "is_approved": updated.get("is_approved", False)}


# ==================== MODERATION ====================

async def moderate(db: AsyncIOMotorDatabase, review_id: str, admin_id: str, action=None, fields: dict = None) -> dict:
    """Apply a named action, or direct field updates when no action is given"""
    updates = dict(ACTION_UPDATES[action]) if action else dict(fields or {})
    if not updates:
        raise HTTPException(status_code=400, detail="No moderation changes supplied")

    now = datetime.utcnow()
    if updates.get("is_approved") is True:
        updates["approved_by"] = admin_id
        updates["approved_at"] = now
    updates["moderated_by"] = admin_id
    updates["updated_at"] = now

    await db.course_reviews.update_one({"review_id": review_id}, {"$set": updates})
    logger.info("Review %s moderated by %s: %s", review_id, admin_id, action.value if action else sorted(fields))
    return await db.course_reviews.find_one({"review_id": review_id}, HIDDEN_REVIEW_FIELDS)


# ==================== STATS ====================

async def rating_stats(db: AsyncIOMotorDatabase, course_id: str) -> dict:
    """Rating summary over approved public reviews"""
    rows = await db.course_reviews.aggregate([
        {"$match": {"course": course_id, "is_public": True, "is_approved": True}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}}
    ]).to_list(length=None)

    distribution = {str(star): 0 for star in range(1, 6)}
    total = 0
    weighted = 0
    for row in rows:
        if row["_id"] in range(1, 6):
            distribution[str(row["_id"])] = row["count"]
            total += row["count"]
            weighted += row["_id"] * row["count"]

    return {
        "total_reviews": total,
        "average_rating": round_half_up(weighted / total, 1) if total else 0,
        "rating_distribution": distribution,
    }


def strip_internal(reviews: List[dict]) -> List[dict]:
    for review in reviews:
        review.pop("_id", None)
        review.pop("reports", None)
    return reviews
