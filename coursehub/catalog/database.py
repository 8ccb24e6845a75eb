import logging
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from coursehub.catalog.models import CourseStatus, youtube_urls
from coursehub.database import generate_id, percent, serialize_mongo

logger = logging.getLogger(__name__)

# ==================== PRICING ====================

def final_price(course: dict) -> float:
    if not course.get("is_paid"):
        return 0
    sale = course.get("sale_price")
    return sale if sale else course.get("price", 0)


def discount_percentage(course: dict) -> int:
    price = course.get("price") or 0
    sale = course.get("sale_price")
    if not course.get("is_paid") or not sale or price <= 0:
        return 0
    return percent(price - sale, price)


def decorate_course(course: dict) -> dict:
    """Adds derived pricing fields"""
    serialize_mongo(course)
    course["final_price"] = final_price(course)
    course["discount_percentage"] = discount_percentage(course)
    return course


def decorate_lesson(lesson: dict) -> dict:
    serialize_mongo(lesson)
    lesson["youtube"] = youtube_urls(lesson.get("youtube_video_id"))
    return lesson


# ==================== CATEGORY CRUD ====================

async def get_category(db: AsyncIOMotorDatabase, category_id: str) -> Optional[dict]:
    return await db.course_categories.find_one({"category_id": category_id})


async def create_category(db: AsyncIOMotorDatabase, data: dict) -> dict:
    name = data["name"].strip()
    if await db.course_categories.find_one({"name_lower": name.lower()}):
        raise HTTPException(status_code=409, detail="Category with this name already exists")

    now = datetime.utcnow()
    category = {
        "category_id": generate_id("CAT"),
        **data,
        "name": name,
        "name_lower": name.lower(),
        "created_at": now,
        "updated_at": now,
    }
    await db.course_categories.insert_one(category)
    return serialize_mongo(category)


async def update_category(db: AsyncIOMotorDatabase, category_id: str, updates: dict) -> dict:
    if "name" in updates:
        name = updates["name"].strip()
        clash = await db.course_categories.find_one({
            "name_lower": name.lower(),
            "category_id": {"$ne": category_id}
        })
        if clash:
            raise HTTPException(status_code=409, detail="Category with this name already exists")
        updates["name"] = name
        updates["name_lower"] = name.lower()

    updates["updated_at"] = datetime.utcnow()
    await db.course_categories.update_one({"category_id": category_id}, {"$set": updates})
    return serialize_mongo(await get_category(db, category_id))


# ==================== COURSE CRUD ====================

async def get_course(db: AsyncIOMotorDatabase, course_id: str) -> Optional[dict]:
    """Get course by ID"""
    return await db.courses.find_one({"course_id": course_id})


async def ensure_instructor(db: AsyncIOMotorDatabase, user_id: Optional[str]):
    if not user_id:
        return
    instructor = await db.users.find_one({"user_id": user_id})
    if not instructor or instructor.get("role") != "instructor":
        raise HTTPException(status_code=400, detail="Instructor must be a user with the instructor role")


async def ensure_category(db: AsyncIOMotorDatabase, category_id: Optional[str]):
    if category_id and not await get_category(db, category_id):
        raise HTTPException(status_code=400, detail="Category not found")


async def create_course(db: AsyncIOMotorDatabase, course_data: dict, creator_id: str) -> dict:
    await ensure_category(db, course_data.get("category"))
    await ensure_instructor(db, course_data.get("instructor"))

    now = datetime.utcnow()
    course = {
        "course_id": generate_id("COURSE"),
        **course_data,
        "created_by": creator_id,
        "created_at": now,
        "updated_at": now,
        "published_at": now if course_data.get("status") == CourseStatus.PUBLISHED.value else None,
    }
    await db.courses.insert_one(course)
    logger.info("Course %s created by %s", course["course_id"], creator_id)
    return decorate_course(course)


async def update_course(db: AsyncIOMotorDatabase, course: dict, updates: dict) -> dict:
    if "category" in updates:
        await ensure_category(db, updates["category"])
    if "instructor" in updates:
        await ensure_instructor(db, updates["instructor"])

    if updates.get("status") == CourseStatus.PUBLISHED.value and not course.get("published_at"):
        updates["published_at"] = datetime.utcnow()

    updates["updated_at"] = datetime.utcnow()
    await db.courses.update_one({"course_id": course["course_id"]}, {"$set": updates})
    return decorate_course(await get_course(db, course["course_id"]))


async def delete_course(db: AsyncIOMotorDatabase, course_id: str):
    """Remove the course and its curriculum"""
    await db.course_faqs.delete_many({"course": course_id})
    await db.lesson_quiz_questions.delete_many({"course": course_id})
    await db.lessons.delete_many({"course": course_id})
    await db.chapters.delete_many({"course": course_id})
    await db.courses.delete_one({"course_id": course_id})
    logger.info("Course %s deleted with its curriculum", course_id)


async def course_counts(db: AsyncIOMotorDatabase, course_id: str, published_only: bool = False) -> dict:
    query = {"course": course_id}
    if published_only:
        query["is_published"] = True
    return {
        "chapter_count": await db.chapters.count_documents(query),
        "lesson_count": await db.lessons.count_documents(query),
    }


# ==================== CURRICULUM ====================

async def next_order(collection, parent_field: str, parent_id: str) -> int:
    last = await collection.find({parent_field: parent_id}).sort("order", -1).limit(1).to_list(length=1)
    return (last[0]["order"] + 1) if last else 1


async def ensure_order_free(collection, parent_field: str, parent_id: str, order: int, exclude: Optional[dict] = None):
    query = {parent_field: parent_id, "order": order}
    if exclude:
        query.update(exclude)
    if await collection.find_one(query):
        raise HTTPException(status_code=409, detail=f"Order {order} is already in use")


async def reorder(collection, id_field: str, parent_field: str, parent_id: str, ordered_ids: List[str]):
    """
    Rewrites `order` as 1..n following ordered_ids.
    Moves everything to negative slots first so the unique
    (parent, order) index never sees a collision.
    """
    existing = await collection.find({parent_field: parent_id}, {id_field: 1}).to_list(length=None)
    existing_ids = {doc[id_field] for doc in existing}

    if len(set(ordered_ids)) != len(ordered_ids) or set(ordered_ids) != existing_ids:
        raise HTTPException(status_code=400, detail="Order must list every item exactly once")

    for index, item_id in enumerate(ordered_ids, start=1):
        await collection.update_one({id_field: item_id}, {"$set": {"order": -index}})
    for index, item_id in enumerate(ordered_ids, start=1):
        await collection.update_one(
            {id_field: item_id},
            {"$set": {"order": index, "updated_at": datetime.utcnow()}}
        )


async def get_curriculum(db: AsyncIOMotorDatabase, course_id: str, published_only: bool = True) -> List[dict]:
    """Chapters in order, each with its lessons in order"""
    query = {"course": course_id}
    if published_only:
        query["is_published"] = True

    chapters = await db.chapters.find(query).sort("order", ASCENDING).to_list(length=None)
    lessons = await db.lessons.find(query).sort("order", ASCENDING).to_list(length=None)

    by_chapter = {}
    for lesson in lessons:
        by_chapter.setdefault(lesson["chapter"], []).append(decorate_lesson(lesson))

    tree = []
    for chapter in chapters:
        serialize_mongo(chapter)
        chapter["lessons"] = by_chapter.get(chapter["chapter_id"], [])
        tree.append(chapter)
    return tree
