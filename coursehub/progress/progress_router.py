from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_current_user
from coursehub.database import (
    get_db, clamp_page, pagination_meta, percent, round_half_up, serialize_many, serialize_mongo, sort_spec
)
from coursehub.progress import progress_service as service
from coursehub.progress.progress_models import (
    CompletionRequest, CompletionType, LessonProgressUpdate, LessonProgressWrite
)

router = APIRouter(prefix="/progress", tags=["Progress"])

PROGRESS_SORT_FIELDS = {"updated_at", "created_at", "last_accessed_at", "progress_percentage", "time_spent", "completed_at"}
PROGRESS_FIELDS = {"is_completed", "progress_percentage", "time_spent"}


def resolve_target_user(user: UserContext, requested: Optional[str]) -> str:
    """Admins may read another user's progress"""
    if requested and requested != user.user_id:
        if not user.is_admin:
            raise HTTPException(status_code=403, detail="Not authorized to view other users' progress")
        return requested
    return user.user_id


async def load_progress(db: AsyncIOMotorDatabase, progress_id: str, user: UserContext) -> dict:
    record = await db.lesson_progress.find_one({"progress_id": progress_id})
    if not record:
        raise HTTPException(status_code=404, detail="Progress not found")
    if record["user"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to access this progress")
    return record


async def progress_stats(db: AsyncIOMotorDatabase, collection, query: dict, time_field: str) -> dict:
    rows = await collection.aggregate([
        {"$match": query},
        {"$group": {
            "_id": "$is_completed",
            "count": {"$sum": 1},
            "percentage": {"$sum": "$progress_percentage"},
            "time": {"$sum": f"${time_field}"},
        }}
    ]).to_list(length=None)

    total = sum(r["count"] for r in rows)
    completed = sum(r["count"] for r in rows if r["_id"] is True)
    pct_sum = sum(r["percentage"] or 0 for r in rows)
    time_sum = sum(r["time"] or 0 for r in rows)

    return {
        "total_progress": total,
        "completed_progress": completed,
        "average_progress_percentage": round_half_up(pct_sum / total, 2) if total else 0,
        "total_time_spent": time_sum,
        "average_time_spent": round_half_up(time_sum / total, 2) if total else 0,
        "completion_rate": percent(completed, total),
    }


# ==================== LESSON PROGRESS ====================

@router.post("")
async def save_progress(
    data: LessonProgressWrite,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await service.resolve_lesson(db, data.course, data.lesson)
    await service.verify_learning_access(db, user, lesson)

    record = await service.write_lesson_progress(
        db, user.user_id, lesson,
        data.model_dump(include=PROGRESS_FIELDS)
    )
    quiz = await service.quiz_trigger(db, data.lesson, record["is_completed"])

    return {"success": True, "data": record, "quiz": quiz, "message": "Progress saved successfully"}


@router.get("")
async def list_progress(
    user_id: Optional[str] = Query(None, alias="user"),
    course: Optional[str] = None,
    lesson: Optional[str] = None,
    is_completed: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: str = "updated_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"user": resolve_target_user(user, user_id)}
    if course:
        query["course"] = course
    if lesson:
        query["lesson"] = lesson
    if is_completed is not None:
        query["is_completed"] = is_completed

    page, limit, skip = clamp_page(page, limit)
    total = await db.lesson_progress.count_documents(query)
    records = await db.lesson_progress.find(query) \
        .sort(sort_spec(sort_by, sort_order, PROGRESS_SORT_FIELDS, "updated_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    return {
        "success": True,
        "data": {
            "progress": serialize_many(records),
            "pagination": pagination_meta(page, limit, total),
            "stats": await progress_stats(db, db.lesson_progress, query, "time_spent"),
        }
    }


@router.get("/courses")
async def list_course_progress(
    user_id: Optional[str] = Query(None, alias="user"),
    course: Optional[str] = None,
    is_completed: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"user": resolve_target_user(user, user_id)}
    if course:
        query["course"] = course
    if is_completed is not None:
        query["is_completed"] = is_completed

    page, limit, skip = clamp_page(page, limit)
    total = await db.course_progress.count_documents(query)
    records = await db.course_progress.find(query).sort("updated_at", -1).skip(skip).limit(limit).to_list(length=limit)

    titles = {
        c["course_id"]: c.get("title")
        for c in await db.courses.find({"course_id": {"$in": [r["course"] for r in records]}}).to_list(length=None)
    }
    for r in records:
        r["course_title"] = titles.get(r["course"])

    return {
        "success": True,
        "data": {
            "course_progress": serialize_many(records),
            "pagination": pagination_meta(page, limit, total),
            "stats": await progress_stats(db, db.course_progress, query, "total_time_spent"),
        }
    }


# ==================== STATUS VIEWS ====================

@router.get("/lesson-status")
async def lesson_status(
    course: str = Query(...),
    lesson: str = Query(...),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    record = await db.lesson_progress.find_one({"user": user.user_id, "course": course, "lesson": lesson})
    if not record:
        return {
            "success": True,
            "data": {
                "lesson": lesson,
                "course": course,
                "is_completed": False,
                "progress_percentage": 0,
                "time_spent": 0,
                "completed_at": None,
                "last_accessed_at": None,
            }
        }
    return {"success": True, "data": serialize_mongo(record)}


@router.get("/chapter-status")
async def chapter_status(
    course: str = Query(...),
    chapter: str = Query(...),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    breakdown = await service.course_breakdown(db, user.user_id, course)
    for row in breakdown["chapters"]:
        if row["chapter_id"] == chapter:
            row["progress_percentage"] = percent(row["completed_lessons"], row["total_lessons"])
            row["is_completed"] = row["total_lessons"] > 0 and row["completed_lessons"] == row["total_lessons"]
            return {"success": True, "data": row}
    raise HTTPException(status_code=404, detail="Chapter not found in this course")


@router.get("/completion")
async def completion(
    course: str = Query(...),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course_doc = await db.courses.find_one({"course_id": course})
    course_record = await db.course_progress.find_one({"user": user.user_id, "course": course})
    breakdown = await service.course_breakdown(db, user.user_id, course)

    return {
        "success": True,
        "data": {
            "course": service.course_summary(course_doc, course_record, course),
            "chapters": breakdown["chapters"],
        }
    }


@router.post("/completion")
async def mark_completion(
    data: CompletionRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    fields = data.model_dump(include=PROGRESS_FIELDS)

    if data.type == CompletionType.LESSON:
        lesson = await service.resolve_lesson(db, data.course, data.lesson)
        await service.verify_learning_access(db, user, lesson)
        sent = data.model_dump(include=PROGRESS_FIELDS, exclude_unset=True)
        result = await service.write_lesson_progress(db, user.user_id, lesson, sent)
    else:
        await service.verify_course_access(db, user, data.course)
        result = await service.write_chapter_completion(db, user.user_id, data.course, data.chapter, fields)

    return {"success": True, "data": result, "message": f"{data.type.value} completion updated successfully"}


@router.get("/dashboard")
async def progress_dashboard(
    course: str = Query(...),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "data": await service.dashboard(db, user.user_id, course)}


# ==================== SINGLE RECORD ====================

@router.get("/{progress_id}")
async def get_progress(
    progress_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    record = await load_progress(db, progress_id, user)
    return {"success": True, "data": serialize_mongo(record)}


@router.put("/{progress_id}")
async def update_progress(
    progress_id: str,
    data: LessonProgressUpdate,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    record = await load_progress(db, progress_id, user)
    lesson = await db.lessons.find_one({"lesson_id": record["lesson"]})
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")

    updated = await service.write_lesson_progress(db, record["user"], lesson, data.model_dump(exclude_unset=True))
    quiz = await service.quiz_trigger(db, record["lesson"], updated["is_completed"])
    return {"success": True, "data": updated, "quiz": quiz, "message": "Progress updated successfully"}


@router.delete("/{progress_id}")
async def delete_progress(
    progress_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    record = await load_progress(db, progress_id, user)
    await db.lesson_progress.delete_one({"progress_id": progress_id})
    await service.rollup(db, record["user"], record["course"], record.get("chapter"))
    return {"success": True, "message": "Progress deleted successfully"}
