"""
Enrollment routes.

Students self-enroll in free published courses; paid courses answer 402
until an admin records the enrollment (payment happens outside this API).
Admins manage every enrollment, instructors see the ones in their courses.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import (
    UserContext, get_current_admin, get_current_staff, get_current_student
)
from coursehub.catalog.database import decorate_course, get_course
from coursehub.catalog.models import CourseStatus
from coursehub.database import get_db, clamp_page, pagination_meta, sort_spec
from coursehub.enrollments import enrollment_service as service
from coursehub.enrollments.enrollment_models import (
    EnrollmentCreate, EnrollmentFilters, EnrollmentStatus, EnrollmentUpdate,
    PaymentStatus, SelfEnrollRequest, StatsType
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])

ENROLLMENT_SORT_FIELDS = {"enrolled_at", "progress", "last_accessed_at", "payment_amount", "status"}


async def staff_course_scope(db: AsyncIOMotorDatabase, user: UserContext) -> Optional[List[str]]:
    """None for admins, otherwise the instructor's course ids"""
    if user.is_admin:
        return None
    courses = await db.courses.find(
        {"$or": [{"created_by": user.user_id}, {"instructor": user.user_id}]},
        {"course_id": 1}
    ).to_list(length=None)
    return [c["course_id"] for c in courses]


async def load_enrollment(db: AsyncIOMotorDatabase, enrollment_id: str) -> dict:
    enrollment = await db.enrollments.find_one({"enrollment_id": enrollment_id})
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return enrollment


# ==================== STUDENT ====================

@router.post("/enroll")
async def enroll(
    data: SelfEnrollRequest,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Self-enroll in a free course.
    Already enrolled -> returns the existing enrollment.
    """
    course = await get_course(db, data.course)
    if not course or course.get("status") != CourseStatus.PUBLISHED.value:
        raise HTTPException(status_code=404, detail="Course not found")

    existing = await service.get_enrollment(db, student.user_id, data.course)
    if existing:
        existing.pop("_id", None)
        return {"success": True, "message": "Already enrolled", "data": existing}

    if course.get("is_paid"):
        raise HTTPException(status_code=402, detail="Payment required to enroll in this course")

    enrollment = await service.create_enrollment(
        db, student.user_id, course,
        payment_status=PaymentStatus.PAID.value,
        payment_amount=0,
        payment_method="free"
    )
    enrollment.pop("_id", None)
    return {"success": True, "message": "Enrolled successfully", "data": enrollment}


@router.get("/my")
async def my_enrollments(
    status: Optional[EnrollmentStatus] = None,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"student": student.user_id}
    if status:
        query["status"] = status.value

    enrollments = await db.enrollments.find(query, {"_id": 0}).sort("enrolled_at", -1).to_list(length=None)

    course_ids = [e["course"] for e in enrollments]
    courses = {
        c["course_id"]: decorate_course(c)
        for c in await db.courses.find({"course_id": {"$in": course_ids}}).to_list(length=None)
    }
    for e in enrollments:
        e["course_info"] = courses.get(e["course"])

    return {"success": True, "data": enrollments}


# ==================== STAFF ====================

@router.get("/stats")
async def stats(
    type: StatsType = StatsType.GENERAL,
    course: Optional[str] = None,
    student: Optional[str] = None,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    match = {}
    if type == StatsType.COURSE:
        if not course:
            raise HTTPException(status_code=400, detail="course is required for course stats")
        match["course"] = course
    elif type == StatsType.STUDENT:
        if not student:
            raise HTTPException(status_code=400, detail="student is required for student stats")
        match["student"] = student

    scope = await staff_course_scope(db, user)
    if scope is not None:
        if course and course not in scope:
            raise HTTPException(status_code=403, detail="Not authorized to view this course")
        if "course" not in match:
            match["course"] = {"$in": scope}

    return {"success": True, "data": await service.enrollment_stats(db, match)}


@router.get("")
async def list_enrollments(
    filters: EnrollmentFilters = Depends(),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: str = "enrolled_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    scope = await staff_course_scope(db, user)
    query = await service.build_filter(db, filters, scope)

    page, limit, skip = clamp_page(page, limit)
    total = await db.enrollments.count_documents(query)
    enrollments = await db.enrollments.find(query) \
        .sort(sort_spec(sort_by, sort_order, ENROLLMENT_SORT_FIELDS, "enrolled_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    return {
        "success": True,
        "data": await service.attach_names(db, enrollments),
        "pagination": pagination_meta(page, limit, total),
        "stats": await service.enrollment_stats(db, query),
    }


@router.post("", status_code=201)
async def create_enrollment(
    data: EnrollmentCreate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    student = await db.users.find_one({"user_id": data.student})
    if not student or student.get("role") != "student":
        raise HTTPException(status_code=400, detail="Student not found")

    course = await get_course(db, data.course)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    enrollment = await service.create_enrollment(
        db, data.student, course,
        status=data.status.value,
        payment_status=data.payment_status.value,
        payment_amount=data.payment_amount,
        payment_method=data.payment_method,
        payment_id=data.payment_id,
        notes=data.notes
    )
    enrollment.pop("_id", None)
    return {"success": True, "message": "Enrollment created successfully", "data": enrollment}


@router.get("/{enrollment_id}")
async def get_enrollment(
    enrollment_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    enrollment = await load_enrollment(db, enrollment_id)
    scope = await staff_course_scope(db, user)
    if scope is not None and enrollment["course"] not in scope:
        raise HTTPException(status_code=403, detail="Not authorized to view this enrollment")

    [enrollment] = await service.attach_names(db, [enrollment])
    return {"success": True, "data": enrollment}


@router.put("/{enrollment_id}")
async def update_enrollment(
    enrollment_id: str,
    data: EnrollmentUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    enrollment = await load_enrollment(db, enrollment_id)
    scope = await staff_course_scope(db, user)
    if scope is not None and enrollment["course"] not in scope:
        raise HTTPException(status_code=403, detail="Not authorized to update this enrollment")

    updates = data.model_dump(mode="json", exclude_unset=True)
    if not user.is_admin and set(updates) - {"status", "progress", "notes"}:
        raise HTTPException(status_code=403, detail="Only admins can change payment details")

    updated = await service.update_enrollment(db, enrollment, updates)
    logger.info("Enrollment %s updated by %s: %s", enrollment_id, user.user_id, sorted(updates))
    return {"success": True, "message": "Enrollment updated successfully", "data": updated}


@router.delete("/{enrollment_id}")
async def delete_enrollment(
    enrollment_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_enrollment(db, enrollment_id)
    await db.enrollments.delete_one({"enrollment_id": enrollment_id})
    return {"success": True, "message": "Enrollment deleted successfully"}
