from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_current_staff, verify_course_manager
from coursehub.catalog import database as catalog
from coursehub.catalog.models import CourseCreate, CourseUpdate, CourseStatus, PricingFilter, validate_pricing
from coursehub.database import (
    get_db, clamp_page, pagination_meta, sort_spec, search_regex
)

router = APIRouter(prefix="/courses", tags=["Course Management"])

COURSE_SORT_FIELDS = {"created_at", "updated_at", "title", "price"}


def pricing_query(pricing: PricingFilter) -> dict:
    if pricing == PricingFilter.FREE:
        return {"is_paid": {"$ne": True}}
    if pricing == PricingFilter.PAID:
        return {"is_paid": True}
    return {}


# ==================== COURSE CRUD ====================

@router.get("")
async def list_courses(
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[CourseStatus] = None,
    pricing: PricingFilter = PricingFilter.ALL,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = pricing_query(pricing)
    clauses = []

    if not user.is_admin:
        clauses.append({"$or": [{"created_by": user.user_id}, {"instructor": user.user_id}]})
    if search:
        regex = search_regex(search)
        clauses.append({"$or": [{"title": regex}, {"description": regex}, {"short_description": regex}]})
    if clauses:
        query["$and"] = clauses
    if category and category != "all":
        query["category"] = category
    if status:
        query["status"] = status.value

    page, limit, skip = clamp_page(page, limit)
    total = await db.courses.count_documents(query)
    courses = await db.courses.find(query) \
        .sort(sort_spec(sort_by, sort_order, COURSE_SORT_FIELDS, "created_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    return {
        "success": True,
        "data": [catalog.decorate_course(c) for c in courses],
        "pagination": pagination_meta(page, limit, total)
    }


@router.post("", status_code=201)
async def create_course(
    data: CourseCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    payload = data.model_dump(mode="json")
    if user.is_instructor and not payload.get("instructor"):
        payload["instructor"] = user.user_id

    course = await catalog.create_course(db, payload, user.user_id)
    return {"success": True, "message": "Course created successfully", "data": course}


@router.get("/{course_id}")
async def get_course(
    course_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await verify_course_manager(db, course_id, user)
    course = catalog.decorate_course(course)
    course.update(await catalog.course_counts(db, course_id))
    course["enrollment_count"] = await db.enrollments.count_documents({"course": course_id})
    return {"success": True, "data": course}


@router.put("/{course_id}")
async def update_course(
    course_id: str,
    data: CourseUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await verify_course_manager(db, course_id, user)
    updates = data.model_dump(mode="json", exclude_unset=True)

    merged = {**course, **updates}
    try:
        validate_pricing(merged.get("is_paid", False), merged.get("price", 0), merged.get("sale_price"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    course = await catalog.update_course(db, course, updates)
    return {"success": True, "message": "Course updated successfully", "data": course}


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_course_manager(db, course_id, user)
    await catalog.delete_course(db, course_id)
    return {"success": True, "message": "Course deleted successfully"}
