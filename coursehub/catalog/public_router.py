from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_optional_user
from coursehub.catalog import database as catalog
from coursehub.catalog.course_router import pricing_query, COURSE_SORT_FIELDS
from coursehub.catalog.models import CourseStatus, PricingFilter
from coursehub.database import (
    get_db, clamp_page, pagination_meta, sort_spec, search_regex
)
from coursehub.reviews.review_service import rating_stats

router = APIRouter(prefix="/public", tags=["Public Catalog"])

LOCKED_LESSON_FIELDS = ("content", "attachments", "youtube_video_id", "video_url")


async def _attach_people(db: AsyncIOMotorDatabase, courses: list):
    """Resolve category and instructor names for a page of courses"""
    category_ids = {c.get("category") for c in courses if c.get("category")}
    instructor_ids = {c.get("instructor") for c in courses if c.get("instructor")}

    categories = {}
    if category_ids:
        for cat in await db.course_categories.find({"category_id": {"$in": list(category_ids)}}).to_list(length=None):
            categories[cat["category_id"]] = {"name": cat["name"], "color": cat.get("color"), "icon": cat.get("icon")}

    instructors = {}
    if instructor_ids:
        for u in await db.users.find({"user_id": {"$in": list(instructor_ids)}}).to_list(length=None):
            instructors[u["user_id"]] = f"{u.get('first_name', '')} {u.get('last_name', '')}".strip()

    for course in courses:
        course["category_info"] = categories.get(course.get("category"))
        course["instructor_name"] = instructors.get(course.get("instructor"))


@router.get("/courses")
async def browse_courses(
    search: Optional[str] = None,
    category: Optional[str] = None,
    pricing: PricingFilter = PricingFilter.ALL,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"status": CourseStatus.PUBLISHED.value, **pricing_query(pricing)}

    if search:
        regex = search_regex(search)
        query["$or"] = [{"title": regex}, {"description": regex}, {"short_description": regex}]
    if category and category != "all":
        query["category"] = category

    page, limit, skip = clamp_page(page, limit)
    total = await db.courses.count_documents(query)
    courses = await db.courses.find(query) \
        .sort(sort_spec(sort_by, sort_order, COURSE_SORT_FIELDS, "created_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    courses = [catalog.decorate_course(c) for c in courses]
    await _attach_people(db, courses)

    return {
        "success": True,
        "data": courses,
        "pagination": pagination_meta(page, limit, total)
    }


@router.get("/courses/{course_id}")
async def course_detail(
    course_id: str,
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await db.courses.find_one({"course_id": course_id, "status": CourseStatus.PUBLISHED.value})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    course = catalog.decorate_course(course)
    await _attach_people(db, [course])

    enrollment = None
    if user:
        enrollment = await db.enrollments.find_one(
            {"student": user.user_id, "course": course_id}, {"_id": 0}
        )
    has_access = bool(enrollment and enrollment.get("status") in ("active", "completed"))

    chapters = await catalog.get_curriculum(db, course_id, published_only=True)
    total_duration = 0
    lesson_count = 0
    for chapter in chapters:
        for lesson in chapter["lessons"]:
            total_duration += lesson.get("duration") or 0
            lesson_count += 1
            if not (has_access or lesson.get("is_free")):
                for field in LOCKED_LESSON_FIELDS:
                    lesson.pop(field, None)
                lesson["youtube"] = None

    course["chapters"] = chapters
    course["chapter_count"] = len(chapters)
    course["lesson_count"] = lesson_count
    course["total_duration"] = total_duration
    course["enrollment_count"] = await db.enrollments.count_documents({"course": course_id})
    course["rating"] = await rating_stats(db, course_id)
    course["enrollment"] = enrollment
    course["is_enrolled"] = has_access

    return {"success": True, "data": course}
