"""
Lesson -> chapter -> course progress roll-up.

Every lesson-progress write re-computes the chapter record, the course
record and the enrollment's progress/status for that user.
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from coursehub.auth.permissions import UserContext
from coursehub.database import generate_id, percent, round_half_up, serialize_mongo
from coursehub.enrollments.enrollment_models import EnrollmentStatus
from coursehub.enrollments.enrollment_service import LEARNING_STATUSES, require_enrollment, status_change

logger = logging.getLogger(__name__)

MILESTONE_PERCENTAGES = (25, 50, 75, 100)
RECENT_ACTIVITY_LIMIT = 10


# ==================== ACCESS ====================

async def resolve_lesson(db: AsyncIOMotorDatabase, course_id: str, lesson_id: str) -> dict:
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    if not lesson or lesson.get("course") != course_id:
        raise HTTPException(status_code=404, detail="Lesson not found in this course")
    return lesson


async def verify_learning_access(db: AsyncIOMotorDatabase, user: UserContext, lesson: dict):
    """
    Students need an active/completed enrollment unless the lesson is a free preview.
    Staff may always track (course preview).
    """
    if user.is_staff:
        return
    if not lesson.get("is_published"):
        raise HTTPException(status_code=404, detail="Lesson not found in this course")
    if lesson.get("is_free"):
        return

    enrollment = await db.enrollments.find_one({
        "student": user.user_id,
        "course": lesson["course"],
        "status": {"$in": list(LEARNING_STATUSES)}
    })
    if not enrollment:
        raise HTTPException(status_code=403, detail="You must be enrolled in this course to track progress")


async def verify_course_access(db: AsyncIOMotorDatabase, user: UserContext, course_id: str):
    """Course-level writes (chapter completion) need a learning enrollment for students"""
    if user.is_staff:
        return
    await require_enrollment(
        db, user.user_id, course_id,
        message="You must be enrolled in this course to track progress"
    )


# ==================== LESSON PROGRESS ====================

async def write_lesson_progress(db: AsyncIOMotorDatabase, user_id: str, lesson: dict, fields: dict) -> dict:
    """
    Upsert the (user, lesson) record with the given fields and roll up.
    Completing a lesson pins its percentage to 100 and keeps the first completed_at.
    A completed lesson only reopens on an explicit is_completed=False.
    """
    key = {"user": user_id, "lesson": lesson["lesson_id"]}
    existing = await db.lesson_progress.find_one(key)
    now = datetime.utcnow()

    updates = {k: v for k, v in fields.items() if v is not None}
    if updates.get("is_completed") is True:
        updates["progress_percentage"] = 100
        if not (existing and existing.get("is_completed") and existing.get("completed_at")):
            updates["completed_at"] = now
    elif updates.get("is_completed") is False:
        updates["completed_at"] = None
    elif existing and existing.get("is_completed"):
        updates.pop("progress_percentage", None)

    updates.update({
        "course": lesson["course"],
        "chapter": lesson.get("chapter"),
        "last_accessed_at": now,
        "updated_at": now,
    })

    defaults = {
        "progress_id": generate_id("PRG"),
        "is_completed": False,
        "completed_at": None,
        "progress_percentage": 0,
        "time_spent": 0,
        "created_at": now,
    }
    on_insert = {k: v for k, v in defaults.items() if k not in updates}

    await db.lesson_progress.update_one(key, {"$set": updates, "$setOnInsert": on_insert}, upsert=True)
    await rollup(db, user_id, lesson["course"], lesson.get("chapter"))

    return serialize_mongo(await db.lesson_progress.find_one(key))


async def quiz_trigger(db: AsyncIOMotorDatabase, lesson_id: str, is_completed: bool) -> Optional[dict]:
    """Quiz prompt returned once a lesson with active questions is completed"""
    if not is_completed:
        return None
    count = await db.lesson_quiz_questions.count_documents({"lesson": lesson_id, "is_active": True})
    if not count:
        return None
    return {
        "required": True,
        "questions_count": count,
        "fetch_url": f"/lessons/{lesson_id}/quiz",
        "submit_url": f"/lessons/{lesson_id}/quiz/submit",
    }


# ==================== ROLL-UP ====================

async def _summarize(db: AsyncIOMotorDatabase, user_id: str, lesson_query: dict) -> dict:
    lessons = await db.lessons.find({**lesson_query, "is_published": True}, {"lesson_id": 1}).to_list(length=None)
    lesson_ids = [l["lesson_id"] for l in lessons]

    records = []
    if lesson_ids:
        records = await db.lesson_progress.find(
            {"user": user_id, "lesson": {"$in": lesson_ids}}
        ).to_list(length=None)

    total = len(lesson_ids)
    completed = sum(1 for r in records if r.get("is_completed"))
    return {
        "total_lessons": total,
        "completed_lessons": completed,
        "progress_percentage": percent(completed, total),
        "is_completed": total > 0 and completed == total,
        "total_time_spent": sum(r.get("time_spent") or 0 for r in records),
    }


async def _save_summary(collection, key: dict, summary: dict) -> dict:
    existing = await collection.find_one(key)
    now = datetime.utcnow()

    updates = {**summary, "last_accessed_at": now, "updated_at": now}
    if summary["is_completed"]:
        updates["completed_at"] = (existing or {}).get("completed_at") or now
    else:
        updates["completed_at"] = None

    await collection.update_one(
        key,
        {"$set": updates, "$setOnInsert": {"started_at": now, "created_at": now}},
        upsert=True
    )
    return {**key, **updates}


async def rollup_chapter(db: AsyncIOMotorDatabase, user_id: str, course_id: str, chapter_id: str) -> dict:
    summary = await _summarize(db, user_id, {"course": course_id, "chapter": chapter_id})
    summary["course"] = course_id
    return await _save_summary(db.chapter_progress, {"user": user_id, "chapter": chapter_id}, summary)


async def rollup_course(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> dict:
    summary = await _summarize(db, user_id, {"course": course_id})
    record = await _save_summary(db.course_progress, {"user": user_id, "course": course_id}, summary)
    await sync_enrollment(db, user_id, course_id, record)
    return record


async def sync_enrollment(db: AsyncIOMotorDatabase, user_id: str, course_id: str, course_record: dict):
    """Mirror course progress onto the enrollment. Dropped/suspended enrollments are left alone."""
    enrollment = await db.enrollments.find_one({"student": user_id, "course": course_id})
    if not enrollment or enrollment.get("status") not in LEARNING_STATUSES:
        return

    target = EnrollmentStatus.COMPLETED.value if course_record["is_completed"] else EnrollmentStatus.ACTIVE.value
    updates = {"progress": course_record["progress_percentage"], "last_accessed_at": datetime.utcnow()}
    if target != enrollment["status"]:
        updates.update(status_change(target, enrollment))
        logger.info("Enrollment %s moved to %s", enrollment["enrollment_id"], target)
    updates["updated_at"] = datetime.utcnow()

    await db.enrollments.update_one({"enrollment_id": enrollment["enrollment_id"]}, {"$set": updates})


async def rollup(db: AsyncIOMotorDatabase, user_id: str, course_id: str, chapter_id: Optional[str]) -> dict:
    chapter_record = None
    if chapter_id:
        chapter_record = await rollup_chapter(db, user_id, course_id, chapter_id)
    course_record = await rollup_course(db, user_id, course_id)
    logger.info(
        "Progress rolled up for %s in %s: %s%%",
        user_id, course_id, course_record["progress_percentage"]
    )
    return {"chapter": chapter_record, "course": course_record}


async def write_chapter_completion(db: AsyncIOMotorDatabase, user_id: str, course_id: str, chapter_id: str, fields: dict) -> dict:
    """Manual chapter completion; the course record is re-rolled afterwards"""
    chapter = await db.chapters.find_one({"chapter_id": chapter_id})
    if not chapter or chapter.get("course") != course_id:
        raise HTTPException(status_code=404, detail="Chapter not found in this course")

    key = {"user": user_id, "chapter": chapter_id}
    existing = await db.chapter_progress.find_one(key)
    now = datetime.utcnow()

    updates = {
        "course": course_id,
        "is_completed": fields["is_completed"],
        "progress_percentage": 100 if fields["is_completed"] else fields["progress_percentage"],
        "total_time_spent": fields["time_spent"],
        "last_accessed_at": now,
        "updated_at": now,
    }
    if fields["is_completed"]:
        updates["completed_at"] = (existing or {}).get("completed_at") or now
    else:
        updates["completed_at"] = None

    await db.chapter_progress.update_one(
        key,
        {"$set": updates, "$setOnInsert": {"started_at": now, "created_at": now}},
        upsert=True
    )
    await rollup_course(db, user_id, course_id)
    return serialize_mongo(await db.chapter_progress.find_one(key))


# ==================== BREAKDOWN ====================

def _lesson_status(lesson: dict, record: Optional[dict]) -> dict:
    record = record or {}
    return {
        "lesson_id": lesson["lesson_id"],
        "title": lesson.get("title"),
        "order": lesson.get("order"),
        "duration": lesson.get("duration", 0),
        "is_completed": record.get("is_completed", False),
        "progress_percentage": record.get("progress_percentage", 0),
        "time_spent": record.get("time_spent", 0),
        "completed_at": record.get("completed_at"),
        "last_accessed_at": record.get("last_accessed_at"),
    }


async def course_breakdown(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> dict:
    """Published chapters and lessons of a course with the user's status on each"""
    chapters = await db.chapters.find({"course": course_id, "is_published": True}).sort("order", ASCENDING).to_list(length=None)
    lessons = await db.lessons.find({"course": course_id, "is_published": True}).sort("order", ASCENDING).to_list(length=None)
    lesson_records = {
        r["lesson"]: r for r in await db.lesson_progress.find({"user": user_id, "course": course_id}).to_list(length=None)
    }
    chapter_records = {
        r["chapter"]: r for r in await db.chapter_progress.find({"user": user_id, "course": course_id}).to_list(length=None)
    }

    by_chapter: Dict[str, List[dict]] = {}
    for lesson in lessons:
        by_chapter.setdefault(lesson.get("chapter"), []).append(lesson)

    chapter_rows = []
    for chapter in chapters:
        chapter_lessons = by_chapter.get(chapter["chapter_id"], [])
        rows = [_lesson_status(l, lesson_records.get(l["lesson_id"])) for l in chapter_lessons]
        record = chapter_records.get(chapter["chapter_id"], {})
        chapter_rows.append({
            "chapter_id": chapter["chapter_id"],
            "title": chapter.get("title"),
            "order": chapter.get("order"),
            "is_completed": record.get("is_completed", False),
            "progress_percentage": record.get("progress_percentage", 0),
            "total_lessons": len(rows),
            "completed_lessons": sum(1 for r in rows if r["is_completed"]),
            "total_time_spent": sum(r["time_spent"] for r in rows),
            "started_at": record.get("started_at"),
            "completed_at": record.get("completed_at"),
            "last_accessed_at": record.get("last_accessed_at"),
            "lessons": rows,
        })

    published_ids = {l["lesson_id"] for l in lessons}
    records = [r for lid, r in lesson_records.items() if lid in published_ids]
    return {"chapters": chapter_rows, "lessons": lessons, "records": records}


def course_summary(course: Optional[dict], course_record: Optional[dict], course_id: str) -> dict:
    record = course_record or {}
    return {
        "course_id": course_id,
        "title": (course or {}).get("title", "Unknown Course"),
        "description": (course or {}).get("description"),
        "is_completed": record.get("is_completed", False),
        "progress_percentage": record.get("progress_percentage", 0),
        "total_lessons": record.get("total_lessons", 0),
        "completed_lessons": record.get("completed_lessons", 0),
        "total_time_spent": record.get("total_time_spent", 0),
        "started_at": record.get("started_at"),
        "completed_at": record.get("completed_at"),
        "last_accessed_at": record.get("last_accessed_at"),
    }


# ==================== STREAKS & MILESTONES ====================

def current_streak(days: Iterable[date], today: Optional[date] = None) -> int:
    """Consecutive study days ending today"""
    days = set(days)
    day = today or datetime.utcnow().date()
    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(days: Iterable[date]) -> int:
    ordered = sorted(set(days))
    if not ordered:
        return 0

    longest = run = 1
    for previous, current in zip(ordered, ordered[1:]):
        if (current - previous).days == 1:
            run += 1
            longest = max(longest, run)
        else:
            run = 1
    return longest


def milestones(completed: int, total: int) -> List[dict]:
    if total <= 0:
        return []
    result = []
    for pct in MILESTONE_PERCENTAGES:
        target = math.ceil(pct / 100 * total)
        result.append({
            "percentage": pct,
            "target": target,
            "achieved": completed >= target,
            "completed": min(completed, target),
        })
    return result


async def dashboard(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> dict:
    course = await db.courses.find_one({"course_id": course_id})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    course_record = await db.course_progress.find_one({"user": user_id, "course": course_id})
    breakdown = await course_breakdown(db, user_id, course_id)
    records = breakdown["records"]
    chapters = breakdown["chapters"]
    titles = {l["lesson_id"]: l.get("title") for l in breakdown["lessons"]}

    total_lessons = len(breakdown["lessons"])
    completed_lessons = sum(1 for r in records if r.get("is_completed"))
    total_chapters = len(chapters)
    completed_chapters = sum(1 for c in chapters if c["is_completed"])
    total_time = sum(r.get("time_spent") or 0 for r in records)
    avg_time = round_half_up(total_time / completed_lessons) if completed_lessons else 0

    finished = sorted(
        (r for r in records if r.get("is_completed") and r.get("completed_at")),
        key=lambda r: r["completed_at"],
        reverse=True
    )
    recent = [
        {
            "lesson_id": r["lesson"],
            "title": titles.get(r["lesson"]),
            "completed_at": r["completed_at"],
            "time_spent": r.get("time_spent", 0),
        }
        for r in finished[:RECENT_ACTIVITY_LIMIT]
    ]

    study_days = {r["completed_at"].date() for r in records if r.get("completed_at")}

    summary = course_summary(course, course_record, course_id)
    summary.update({
        "total_lessons": total_lessons,
        "completed_lessons": completed_lessons,
        "total_chapters": total_chapters,
        "completed_chapters": completed_chapters,
        "total_time_spent": total_time,
        "average_time_per_lesson": avg_time,
    })

    return {
        "course": summary,
        "statistics": {
            "completion_rate": percent(completed_lessons, total_lessons),
            "chapter_completion_rate": percent(completed_chapters, total_chapters),
            "average_time_per_lesson": avg_time,
            "total_time_spent": total_time,
            "current_streak": current_streak(study_days),
            "longest_streak": longest_streak(study_days),
            "total_study_days": len(study_days),
        },
        "chapters": chapters,
        "recent_activity": recent,
        "milestones": milestones(completed_lessons, total_lessons),
    }
