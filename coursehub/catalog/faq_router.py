import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_current_admin
from coursehub.catalog.database import next_order
from coursehub.catalog.models import CourseStatus, FaqBulkCreate, FaqCreate, FaqUpdate
from coursehub.database import get_db, generate_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Course FAQs"])

FAQ_SORT = [("order", 1), ("created_at", 1)]


async def load_faq(db: AsyncIOMotorDatabase, faq_id: str) -> dict:
    faq = await db.course_faqs.find_one({"faq_id": faq_id}, {"_id": 0})
    if not faq:
        raise HTTPException(status_code=404, detail="FAQ not found")
    return faq


async def require_course(db: AsyncIOMotorDatabase, course_id: str) -> dict:
    course = await db.courses.find_one({"course_id": course_id})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def new_faq(course_id: str, question: str, answer: str, order: int) -> dict:
    now = datetime.utcnow()
    return {
        "faq_id": generate_id("FAQ"),
        "course": course_id,
        "question": question.strip(),
        "answer": answer.strip(),
        "order": order,
        "created_at": now,
        "updated_at": now,
    }


# ==================== ADMIN ====================

@router.get("/admin/faqs")
async def list_faqs(
    course: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"course": course} if course else {}
    faqs = await db.course_faqs.find(query, {"_id": 0}).sort(FAQ_SORT).limit(limit).to_list(length=limit)
    return {"success": True, "data": faqs}


@router.post("/admin/faqs", status_code=201)
async def create_faq(
    data: FaqCreate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await require_course(db, data.course)
    order = data.order if data.order is not None else await next_order(db.course_faqs, "course", data.course)

    faq = new_faq(data.course, data.question, data.answer, order)
    await db.course_faqs.insert_one(faq)
    faq.pop("_id", None)
    return {"success": True, "message": "FAQ created", "data": faq}


@router.post("/admin/faqs/bulk", status_code=201)
async def bulk_create_faqs(
    data: FaqBulkCreate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await require_course(db, data.course)
    pairs = [p for p in data.faqs if p.question.strip() and p.answer.strip()]
    if not pairs:
        raise HTTPException(status_code=400, detail="No valid FAQs provided")

    start = await next_order(db.course_faqs, "course", data.course)
    faqs = [new_faq(data.course, p.question, p.answer, start + i) for i, p in enumerate(pairs)]
    await db.course_faqs.insert_many(faqs)
    for faq in faqs:
        faq.pop("_id", None)

    logger.info("Added %d FAQs to course %s", len(faqs), data.course)
    return {"success": True, "message": f"{len(faqs)} FAQs created", "data": faqs}


@router.get("/admin/faqs/{faq_id}")
async def get_faq(
    faq_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "data": await load_faq(db, faq_id)}


@router.put("/admin/faqs/{faq_id}")
async def update_faq(
    faq_id: str,
    data: FaqUpdate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_faq(db, faq_id)
    updates = {k: v.strip() if isinstance(v, str) else v for k, v in data.model_dump(exclude_unset=True).items()}
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.course_faqs.update_one({"faq_id": faq_id}, {"$set": updates})
    return {"success": True, "message": "FAQ updated", "data": await load_faq(db, faq_id)}


@router.delete("/admin/faqs/{faq_id}")
async def delete_faq(
    faq_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_faq(db, faq_id)
    await db.course_faqs.delete_one({"faq_id": faq_id})
    return {"success": True, "message": "FAQ deleted"}


# ==================== PUBLIC ====================

@router.get("/public/faqs")
async def public_faqs(course: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    found = await db.courses.find_one({"course_id": course, "status": CourseStatus.PUBLISHED.value})
    if not found:
        raise HTTPException(status_code=404, detail="Course not found")

    faqs = await db.course_faqs.find({"course": course}, {"_id": 0}).sort(FAQ_SORT).to_list(length=None)
    return {"success": True, "data": faqs}
