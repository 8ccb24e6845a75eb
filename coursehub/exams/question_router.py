"""
Exam question bank.

Instructors see and edit only the questions they wrote; admins see all.
A question may belong to one exam; linking is mirrored on exam.questions.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_current_staff
from coursehub.database import (
    get_db, clamp_page, generate_id, pagination_meta, search_regex, sort_spec
)
from coursehub.exams import exam_service as service
from coursehub.exams.exam_models import (
    BulkExamQuestionCreate, Difficulty, ExamQuestionCreate, ExamQuestionUpdate, QuestionType
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/questions", tags=["Question Bank"])

QUESTION_SORT_FIELDS = {"question", "created_at", "updated_at", "marks", "difficulty"}


def new_question(data: ExamQuestionCreate, user_id: str, exam_id: Optional[str]) -> dict:
    now = datetime.utcnow()
    return {
        "question_id": generate_id("EQ"),
        **data.model_dump(mode="json"),
        "exam": exam_id,
        "created_by": user_id,
        "created_at": now,
        "updated_at": now,
    }


async def link_to_exam(db: AsyncIOMotorDatabase, exam_id: Optional[str], question_ids: List[str]):
    if exam_id:
        await db.exams.update_one(
            {"exam_id": exam_id},
            {"$addToSet": {"questions": {"$each": question_ids}}, "$set": {"updated_at": datetime.utcnow()}}
        )


@router.get("")
async def list_questions(
    search: Optional[str] = None,
    type: Optional[QuestionType] = None,
    difficulty: Optional[Difficulty] = None,
    category: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    exam: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {}
    if not user.is_admin:
        query["created_by"] = user.user_id
    if search:
        query["question"] = search_regex(search)
    if type:
        query["type"] = type.value
    if difficulty:
        query["difficulty"] = difficulty.value
    if category:
        query["category"] = category
    if tags:
        query["tags"] = {"$in": tags}
    if exam:
        query["exam"] = exam
    if is_active is not None:
        query["is_active"] = is_active

    page, limit, skip = clamp_page(page, limit)
    total = await db.exam_questions.count_documents(query)
    questions = await db.exam_questions.find(query, {"_id": 0}) \
        .sort(sort_spec(sort_by, sort_order, QUESTION_SORT_FIELDS, "created_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    return {"success": True, "data": questions, "pagination": pagination_meta(page, limit, total)}


@router.post("", status_code=201)
async def create_question(
    data: ExamQuestionCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if data.exam:
        service.verify_owner(await service.load_exam(db, data.exam), user, "exam")

    question = new_question(data, user.user_id, data.exam)
    await db.exam_questions.insert_one(question)
    question.pop("_id", None)
    await link_to_exam(db, data.exam, [question["question_id"]])

    return {"success": True, "message": "Question created", "data": question}


@router.post("/bulk", status_code=201)
async def bulk_create_questions(
    data: BulkExamQuestionCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if data.exam:
        service.verify_owner(await service.load_exam(db, data.exam), user, "exam")

    docs = [new_question(q, user.user_id, data.exam) for q in data.questions]
    await db.exam_questions.insert_many(docs)
    ids = [q["question_id"] for q in docs]
    await link_to_exam(db, data.exam, ids)
    logger.info("%d questions added to the bank by %s", len(ids), user.user_id)

    return {"success": True, "message": f"{len(ids)} questions created", "data": ids}


@router.get("/{question_id}")
async def get_question(
    question_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    question = await service.load_question(db, question_id)
    service.verify_owner(question, user, "question")
    return {"success": True, "data": question}


@router.put("/{question_id}")
async def update_question(
    question_id: str,
    data: ExamQuestionUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    question = await service.load_question(db, question_id)
    service.verify_owner(question, user, "question")

    updates = service.checked_question_update(question, data.model_dump(mode="json", exclude_unset=True))
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.exam_questions.update_one({"question_id": question_id}, {"$set": updates})

    return {"success": True, "message": "Question updated", "data": await service.load_question(db, question_id)}


@router.delete("/{question_id}")
async def delete_question(
    question_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    question = await service.load_question(db, question_id)
    service.verify_owner(question, user, "question")

    await db.exams.update_many({"questions": question_id}, {"$pull": {"questions": question_id}})
    await db.exam_questions.delete_one({"question_id": question_id})
    return {"success": True, "message": "Question deleted"}
