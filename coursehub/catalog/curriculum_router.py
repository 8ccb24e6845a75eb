"""
Chapter and lesson management for course staff.
Admins manage any course; instructors only their own.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from coursehub.auth.permissions import UserContext, get_current_staff, verify_course_manager
from coursehub.catalog import database as catalog
from coursehub.catalog.models import (
    ChapterCreate, ChapterUpdate, LessonCreate, LessonUpdate, ReorderPayload
)
from coursehub.database import get_db, generate_id, serialize_many, serialize_mongo

router = APIRouter(tags=["Curriculum"])


async def verify_chapter_manager(db: AsyncIOMotorDatabase, chapter_id: str, user: UserContext) -> dict:
    chapter = await db.chapters.find_one({"chapter_id": chapter_id})
    if not chapter:
        raise HTTPException(status_code=404, detail="Chapter not found")
    await verify_course_manager(db, chapter["course"], user)
    return chapter


async def verify_lesson_manager(db: AsyncIOMotorDatabase, lesson_id: str, user: UserContext) -> dict:
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    await verify_course_manager(db, lesson["course"], user)
    return lesson


# ==================== CHAPTERS ====================

@router.get("/chapters")
async def list_chapters(
    course: str = Query(...),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_course_manager(db, course, user)
    chapters = await db.chapters.find({"course": course}).sort("order", ASCENDING).to_list(length=None)

    for chapter in chapters:
        chapter["lesson_count"] = await db.lessons.count_documents({"chapter": chapter["chapter_id"]})

    return {"success": True, "data": serialize_many(chapters)}


@router.post("/chapters", status_code=201)
async def create_chapter(
    data: ChapterCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_course_manager(db, data.course, user)

    if data.order is None:
        order = await catalog.next_order(db.chapters, "course", data.course)
    else:
        order = data.order
        await catalog.ensure_order_free(db.chapters, "course", data.course, order)

    now = datetime.utcnow()
    chapter = {
        "chapter_id": generate_id("CHAP"),
        **data.model_dump(),
        "order": order,
        "created_at": now,
        "updated_at": now,
    }
    await db.chapters.insert_one(chapter)
    return {"success": True, "message": "Chapter created", "data": serialize_mongo(chapter)}


@router.put("/chapters/reorder")
async def reorder_chapters(
    payload: ReorderPayload,
    course: str = Query(...),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_course_manager(db, course, user)
    await catalog.reorder(db.chapters, "chapter_id", "course", course, payload.order)
    return {"success": True, "message": "Chapters reordered"}


@router.get("/chapters/{chapter_id}")
async def get_chapter(
    chapter_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    chapter = await verify_chapter_manager(db, chapter_id, user)
    lessons = await db.lessons.find({"chapter": chapter_id}).sort("order", ASCENDING).to_list(length=None)
    chapter["lessons"] = [catalog.decorate_lesson(l) for l in lessons]
    return {"success": True, "data": serialize_mongo(chapter)}


@router.put("/chapters/{chapter_id}")
async def update_chapter(
    chapter_id: str,
    data: ChapterUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    chapter = await verify_chapter_manager(db, chapter_id, user)
    updates = data.model_dump(exclude_unset=True)

    if updates.get("order") and updates["order"] != chapter["order"]:
        await catalog.ensure_order_free(
            db.chapters, "course", chapter["course"], updates["order"],
            exclude={"chapter_id": {"$ne": chapter_id}}
        )

    updates["updated_at"] = datetime.utcnow()
    await db.chapters.update_one({"chapter_id": chapter_id}, {"$set": updates})
    chapter = await db.chapters.find_one({"chapter_id": chapter_id})
    return {"success": True, "message": "Chapter updated", "data": serialize_mongo(chapter)}


@router.delete("/chapters/{chapter_id}")
async def delete_chapter(
    chapter_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_chapter_manager(db, chapter_id, user)

    lesson_ids = [l["lesson_id"] for l in await db.lessons.find({"chapter": chapter_id}).to_list(length=None)]
    if lesson_ids:
        await db.lesson_quiz_questions.delete_many({"lesson": {"$in": lesson_ids}})
    await db.lessons.delete_many({"chapter": chapter_id})
    await db.chapters.delete_one({"chapter_id": chapter_id})
    return {"success": True, "message": "Chapter and its lessons deleted"}


# ==================== LESSONS ====================

@router.get("/lessons")
async def list_lessons(
    course: Optional[str] = None,
    chapter: Optional[str] = None,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if not course and not chapter:
        raise HTTPException(status_code=400, detail="course or chapter is required")

    if chapter:
        await verify_chapter_manager(db, chapter, user)
        query = {"chapter": chapter}
    else:
        await verify_course_manager(db, course, user)
        query = {"course": course}

    lessons = await db.lessons.find(query).sort([("chapter", ASCENDING), ("order", ASCENDING)]).to_list(length=None)
    return {"success": True, "data": [catalog.decorate_lesson(l) for l in lessons]}


@router.post("/lessons", status_code=201)
async def create_lesson(
    data: LessonCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    chapter = await verify_chapter_manager(db, data.chapter, user)

    if data.order is None:
        order = await catalog.next_order(db.lessons, "chapter", data.chapter)
    else:
        order = data.order
        await catalog.ensure_order_free(db.lessons, "chapter", data.chapter, order)

    now = datetime.utcnow()
    lesson = {
        "lesson_id": generate_id("LESS"),
        **data.model_dump(),
        "course": chapter["course"],
        "order": order,
        "created_at": now,
        "updated_at": now,
    }
    await db.lessons.insert_one(lesson)
    return {"success": True, "message": "Lesson created", "data": catalog.decorate_lesson(lesson)}


@router.put("/lessons/reorder")
async def reorder_lessons(
    payload: ReorderPayload,
    chapter: str = Query(...),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_chapter_manager(db, chapter, user)
    await catalog.reorder(db.lessons, "lesson_id", "chapter", chapter, payload.order)
    return {"success": True, "message": "Lessons reordered"}


@router.get("/lessons/{lesson_id}")
async def get_lesson(
    lesson_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await verify_lesson_manager(db, lesson_id, user)
    lesson["quiz_question_count"] = await db.lesson_quiz_questions.count_documents(
        {"lesson": lesson_id, "is_active": True}
    )
    return {"success": True, "data": catalog.decorate_lesson(lesson)}


@router.put("/lessons/{lesson_id}")
async def update_lesson(
    lesson_id: str,
    data: LessonUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await verify_lesson_manager(db, lesson_id, user)
    updates = data.model_dump(exclude_unset=True)

    if updates.get("order") and updates["order"] != lesson["order"]:
        await catalog.ensure_order_free(
            db.lessons, "chapter", lesson["chapter"], updates["order"],
            exclude={"lesson_id": {"$ne": lesson_id}}
        )

    updates["updated_at"] = datetime.utcnow()
    await db.lessons.update_one({"lesson_id": lesson_id}, {"$set": updates})
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    return {"success": True, "message": "Lesson updated", "data": catalog.decorate_lesson(lesson)}


@router.delete("/lessons/{lesson_id}")
async def delete_lesson(
    lesson_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_lesson_manager(db, lesson_id, user)
    await db.lesson_quiz_questions.delete_many({"lesson": lesson_id})
    await db.lessons.delete_one({"lesson_id": lesson_id})
    return {"success": True, "message": "Lesson deleted"}
