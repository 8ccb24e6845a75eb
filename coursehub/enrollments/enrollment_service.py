import logging
from datetime import datetime
from typing import Iterable, List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.catalog.database import final_price
from coursehub.database import generate_id, percent, round_half_up, search_regex
from coursehub.enrollments.enrollment_models import (
    EnrollmentFilters, EnrollmentStatus, PaymentStatus
)

logger = logging.getLogger(__name__)

LEARNING_STATUSES = (EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value)


# ==================== LOOKUPS ====================

async def get_enrollment(db: AsyncIOMotorDatabase, student_id: str, course_id: str) -> Optional[dict]:
    return await db.enrollments.find_one({"student": student_id, "course": course_id})


async def require_enrollment(
    db: AsyncIOMotorDatabase,
    student_id: str,
    course_id: str,
    statuses: Iterable[str] = LEARNING_STATUSES,
    message: str = "You must be enrolled in this course"
) -> dict:
    """
    Raises:
        403: No enrollment in one of the given statuses
    """
    enrollment = await db.enrollments.find_one({
        "student": student_id,
        "course": course_id,
        "status": {"$in": list(statuses)}
    })
    if not enrollment:
        raise HTTPException(status_code=403, detail=message)
    return enrollment


# ==================== STATE ====================

def status_change(new_status: str, current: Optional[dict] = None) -> dict:
    """
    Field updates that accompany a status transition.
    completed -> completed_at + progress 100
    dropped   -> dropped_at
    suspended -> suspended_at
    active    -> clears completed_at
    """
    now = datetime.utcnow()
    updates = {"status": new_status, "last_accessed_at": now}

    if new_status == EnrollmentStatus.COMPLETED.value:
        if not (current and current.get("completed_at")):
            updates["completed_at"] = now
        updates["progress"] = 100
    elif new_status == EnrollmentStatus.DROPPED.value:
        updates["dropped_at"] = now
    elif new_status == EnrollmentStatus.SUSPENDED.value:
        updates["suspended_at"] = now
    elif new_status == EnrollmentStatus.ACTIVE.value:
        updates["completed_at"] = None

    return updates


async def create_enrollment(
    db: AsyncIOMotorDatabase,
    student_id: str,
    course: dict,
    status: str = EnrollmentStatus.ACTIVE.value,
    payment_status: str = PaymentStatus.PENDING.value,
    payment_amount: Optional[float] = None,
    payment_method: Optional[str] = None,
    payment_id: Optional[str] = None,
    notes: Optional[str] = None
) -> dict:
    if await get_enrollment(db, student_id, course["course_id"]):
        raise HTTPException(status_code=409, detail="Student is already enrolled in this course")

    if payment_amount is None:
        payment_amount = final_price(course)

    now = datetime.utcnow()
    enrollment = {
        "enrollment_id": generate_id("ENR"),
        "student": student_id,
        "course": course["course_id"],
        "enrolled_at": now,
        "status": EnrollmentStatus.ACTIVE.value,
        "progress": 0,
        "last_accessed_at": now,
        "completed_at": None,
        "dropped_at": None,
        "suspended_at": None,
        "payment_status": payment_status,
        "payment_amount": payment_amount,
        "payment_method": payment_method,
        "payment_id": payment_id,
        "notes": notes,
        "created_at": now,
        "updated_at": now,
    }
    if status != EnrollmentStatus.ACTIVE.value:
        enrollment.update(status_change(status))

    await db.enrollments.insert_one(enrollment)
    logger.info("Enrollment %s: student %s -> course %s", enrollment["enrollment_id"], student_id, course["course_id"])
    return enrollment


async def update_enrollment(db: AsyncIOMotorDatabase, enrollment: dict, updates: dict) -> dict:
    if "status" in updates and updates["status"] != enrollment.get("status"):
        updates.update(status_change(updates["status"], enrollment))
    elif "progress" in updates:
        updates["last_accessed_at"] = datetime.utcnow()

    updates["updated_at"] = datetime.utcnow()
    await db.enrollments.update_one({"enrollment_id": enrollment["enrollment_id"]}, {"$set": updates})
    return await db.enrollments.find_one({"enrollment_id": enrollment["enrollment_id"]}, {"_id": 0})


# ==================== LISTING ====================

async def build_filter(db: AsyncIOMotorDatabase, filters: EnrollmentFilters, course_scope: Optional[List[str]] = None) -> dict:
    query = {}

    if filters.student:
        query["student"] = filters.student
    if filters.course:
        query["course"] = filters.course
    if filters.status:
        query["status"] = filters.status.value
    if filters.payment_status:
        query["payment_status"] = filters.payment_status.value

    if filters.enrolled_after or filters.enrolled_before:
        query["enrolled_at"] = {}
        if filters.enrolled_after:
            query["enrolled_at"]["$gte"] = filters.enrolled_after
        if filters.enrolled_before:
            query["enrolled_at"]["$lte"] = filters.enrolled_before

    if filters.progress_min is not None or filters.progress_max is not None:
        query["progress"] = {}
        if filters.progress_min is not None:
            query["progress"]["$gte"] = filters.progress_min
        if filters.progress_max is not None:
            query["progress"]["$lte"] = filters.progress_max

    if filters.search:
        regex = search_regex(filters.search)
        students = await db.users.find(
            {"$or": [{"first_name": regex}, {"last_name": regex}, {"email": regex}, {"phone": regex}]},
            {"user_id": 1}
        ).to_list(length=None)
        courses = await db.courses.find(
            {"$or": [{"title": regex}, {"description": regex}]},
            {"course_id": 1}
        ).to_list(length=None)
        query["$or"] = [
            {"student": {"$in": [s["user_id"] for s in students]}},
            {"course": {"$in": [c["course_id"] for c in courses]}},
        ]

    if course_scope is not None:
        if "course" in query and query["course"] not in course_scope:
            query["course"] = {"$in": []}
        elif "course" not in query:
            query["course"] = {"$in": course_scope}

    return query


async def attach_names(db: AsyncIOMotorDatabase, enrollments: List[dict]) -> List[dict]:
    student_ids = list({e["student"] for e in enrollments})
    course_ids = list({e["course"] for e in enrollments})

    students = {
        u["user_id"]: u for u in await db.users.find(
            {"user_id": {"$in": student_ids}}, {"_id": 0, "password_hash": 0}
        ).to_list(length=None)
    }
    courses = {
        c["course_id"]: c for c in await db.courses.find(
            {"course_id": {"$in": course_ids}}, {"_id": 0, "course_id": 1, "title": 1, "thumbnail_url": 1, "is_paid": 1, "price": 1, "sale_price": 1}
        ).to_list(length=None)
    }

    for e in enrollments:
        e.pop("_id", None)
        s = students.get(e["student"])
        e["student_info"] = {
            "user_id": s["user_id"],
            "name": f"{s.get('first_name', '')} {s.get('last_name', '')}".strip(),
            "email": s.get("email"),
        } if s else None
        e["course_info"] = courses.get(e["course"])
    return enrollments


# ==================== STATS ====================

async def enrollment_stats(db: AsyncIOMotorDatabase, match: dict) -> dict:
    by_status = await db.enrollments.aggregate([
        {"$match": match},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "progress": {"$sum": "$progress"}}}
    ]).to_list(length=None)
    by_payment = await db.enrollments.aggregate([
        {"$match": match},
        {"$group": {"_id": "$payment_status", "count": {"$sum": 1}, "amount": {"$sum": "$payment_amount"}}}
    ]).to_list(length=None)

    status_counts = {s.value: 0 for s in EnrollmentStatus}
    progress_total = 0
    for row in by_status:
        status_counts[row["_id"]] = row["count"]
        progress_total += row["progress"] or 0

    payment_counts = {p.value: 0 for p in PaymentStatus}
    revenue = 0
    for row in by_payment:
        payment_counts[row["_id"]] = row["count"]
        if row["_id"] == PaymentStatus.PAID.value:
            revenue = row["amount"] or 0

    total = sum(status_counts.values())
    return {
        "total": total,
        **status_counts,
        **payment_counts,
        "total_revenue": revenue,
        "average_progress": round_half_up(progress_total / total, 2) if total else 0,
        "completion_rate": percent(status_counts["completed"], total, 2),
        "drop_rate": percent(status_counts["dropped"], total, 2),
    }
