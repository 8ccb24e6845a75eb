"""
Lesson quizzes.

Practice attempts are stored and repeatable. A graded attempt counts once
per user and lesson. Correct answers are never part of the question listing;
they are revealed only in the result of a submission.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import (
    UserContext, get_current_staff, get_current_user, verify_course_manager
)
from coursehub.config import MAX_PAGE_SIZE
from coursehub.database import get_db, generate_id, percent, serialize_many, serialize_mongo
from coursehub.enrollments.enrollment_service import require_enrollment
from coursehub.progress.progress_service import verify_learning_access
from coursehub.quizzes.quiz_models import BulkQuestionCreate, QuestionUpdate, QuizSubmission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lessons/{lesson_id}/quiz", tags=["Lesson Quiz"])

PUBLIC_QUESTION_FIELDS = {"_id": 0, "correct_option_index": 0}


async def load_lesson(db: AsyncIOMotorDatabase, lesson_id: str) -> dict:
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return lesson


async def load_question(db: AsyncIOMotorDatabase, lesson_id: str, question_id: str) -> dict:
    question = await db.lesson_quiz_questions.find_one({"question_id": question_id, "lesson": lesson_id})
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return question


# ==================== QUESTIONS ====================

@router.get("")
async def get_quiz(
    lesson_id: str,
    include_inactive: bool = False,
    limit: Optional[int] = Query(None, ge=1),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await load_lesson(db, lesson_id)

    query = {"lesson": lesson_id}
    if include_inactive:
        await verify_course_manager(db, lesson["course"], user)
    else:
        await verify_learning_access(db, user, lesson)
        query["is_active"] = True

    cursor = db.lesson_quiz_questions.find(query, PUBLIC_QUESTION_FIELDS).sort("created_at", 1)
    if limit:
        cursor = cursor.limit(min(limit, MAX_PAGE_SIZE))
    questions = await cursor.to_list(length=None)

    return {"success": True, "data": {"lesson": lesson_id, "count": len(questions), "questions": questions}}


@router.get("/manage")
async def manage_quiz(
    lesson_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Full question data, answers included, for course staff"""
    lesson = await load_lesson(db, lesson_id)
    await verify_course_manager(db, lesson["course"], user)

    questions = await db.lesson_quiz_questions.find({"lesson": lesson_id}).sort("created_at", 1).to_list(length=None)
    return {"success": True, "data": serialize_many(questions)}


@router.post("/bulk", status_code=201)
async def bulk_create(
    lesson_id: str,
    data: BulkQuestionCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await load_lesson(db, lesson_id)
    await verify_course_manager(db, lesson["course"], user)

    now = datetime.utcnow()
    docs = [
        {
            "question_id": generate_id("QQ"),
            "lesson": lesson_id,
            "course": lesson["course"],
            **q.model_dump(),
            "created_by": user.user_id,
            "created_at": now,
            "updated_at": now,
        }
        for q in data.questions
    ]
    await db.lesson_quiz_questions.insert_many(docs)
    logger.info("%s quiz questions added to lesson %s", len(docs), lesson_id)

    return {
        "success": True,
        "message": f"{len(docs)} questions created",
        "data": [q["question_id"] for q in docs]
    }


@router.put("/{question_id}")
async def update_question(
    lesson_id: str,
    question_id: str,
    data: QuestionUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await load_lesson(db, lesson_id)
    await verify_course_manager(db, lesson["course"], user)
    question = await load_question(db, lesson_id, question_id)

    updates = data.model_dump(exclude_unset=True)
    options = updates.get("options", question["options"])
    index = updates.get("correct_option_index", question["correct_option_index"])
    if index >= len(options):
        raise HTTPException(status_code=400, detail="correct_option_index must point at one of the options")

    updates["updated_at"] = datetime.utcnow()
    await db.lesson_quiz_questions.update_one({"question_id": question_id}, {"$set": updates})
    question = await db.lesson_quiz_questions.find_one({"question_id": question_id})
    return {"success": True, "data": serialize_mongo(question)}


@router.delete("/{question_id}")
async def delete_question(
    lesson_id: str,
    question_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await load_lesson(db, lesson_id)
    await verify_course_manager(db, lesson["course"], user)
    await load_question(db, lesson_id, question_id)

    await db.lesson_quiz_questions.delete_one({"question_id": question_id})
    return {"success": True, "message": "Question deleted"}


# ==================== ATTEMPTS ====================

@router.post("/submit")
async def submit_quiz(
    lesson_id: str,
    data: QuizSubmission,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    lesson = await load_lesson(db, lesson_id)
    await verify_learning_access(db, user, lesson)
    if not data.is_practice_mode and user.is_student:
        await require_enrollment(
            db, user.user_id, lesson["course"],
            message="You must be enrolled in this course to take a graded quiz"
        )

    if not data.answers:
        raise HTTPException(status_code=400, detail="Answers are required")

    question_ids = [a.question_id for a in data.answers]
    questions = await db.lesson_quiz_questions.find({
        "question_id": {"$in": question_ids},
        "lesson": lesson_id,
        "is_active": True
    }).to_list(length=None)

    if len(set(question_ids)) != len(question_ids) or len(questions) != len(data.answers):
        raise HTTPException(status_code=400, detail="Invalid answers submitted")

    if not data.is_practice_mode:
        already = await db.lesson_quiz_results.find_one({
            "user": user.user_id,
            "lesson": lesson_id,
            "is_practice_mode": False
        })
        if already:
            raise HTTPException(status_code=400, detail="Quiz has already been submitted. You cannot submit again.")

    by_id = {q["question_id"]: q for q in questions}
    evaluated = []
    feedback = []
    correct = 0
    for answer in data.answers:
        q = by_id[answer.question_id]
        is_correct = answer.selected_index == q["correct_option_index"]
        correct += is_correct
        evaluated.append({
            "question_id": answer.question_id,
            "selected_index": answer.selected_index,
            "is_correct": is_correct,
        })
        feedback.append({
            "question_id": answer.question_id,
            "correct_option_index": q["correct_option_index"],
            "explanation": q.get("explanation"),
        })

    total = len(data.answers)
    now = datetime.utcnow()
    result = {
        "result_id": generate_id("QR"),
        "user": user.user_id,
        "course": lesson["course"],
        "lesson": lesson_id,
        "total_questions": total,
        "correct_answers": correct,
        "score_percentage": percent(correct, total),
        "answers": evaluated,
        "is_practice_mode": data.is_practice_mode,
        "started_at": data.started_at or now,
        "submitted_at": now,
        "created_at": now,
    }
    await db.lesson_quiz_results.insert_one(result)
    logger.info(
        "Quiz %s on lesson %s by %s: %s/%s",
        "practice" if data.is_practice_mode else "graded", lesson_id, user.user_id, correct, total
    )

    result.pop("_id", None)
    return {"success": True, "data": result, "review": feedback, "message": "Quiz submitted successfully"}


@router.get("/history")
async def quiz_history(
    lesson_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_lesson(db, lesson_id)

    attempts = await db.lesson_quiz_results.find(
        {"user": user.user_id, "lesson": lesson_id},
        {"_id": 0, "answers": 0}
    ).sort("submitted_at", -1).to_list(length=None)

    graded = next((a for a in attempts if not a.get("is_practice_mode")), None)
    best = max((a["score_percentage"] for a in attempts), default=None)

    return {
        "success": True,
        "data": {
            "attempts": attempts,
            "total_attempts": len(attempts),
            "best_score": best,
            "graded_result": graded,
            "has_graded_attempt": graded is not None,
        }
    }
