"""
Student side of exams: open exams, starting, saving and submitting attempts.

A student has at most one attempt in progress per exam; starting again
resumes it with the time that is left.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from coursehub.auth.permissions import UserContext, get_current_student
from coursehub.database import get_db, clamp_page, generate_id, pagination_meta
from coursehub.enrollments.enrollment_service import LEARNING_STATUSES
from coursehub.exams import exam_service as service
from coursehub.exams.exam_models import AttemptSave, AttemptStart, AttemptStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student", tags=["Student Exams"])


async def load_own_attempt(db: AsyncIOMotorDatabase, attempt_id: str, student: UserContext) -> dict:
    attempt = await db.exam_attempts.find_one({"attempt_id": attempt_id}, {"_id": 0})
    if not attempt:
        raise HTTPException(status_code=404, detail="Exam attempt not found")
    if attempt["student"] != student.user_id:
        raise HTTPException(status_code=403, detail="This attempt belongs to another student")
    return attempt


def require_in_progress(attempt: dict):
    if attempt["status"] != AttemptStatus.IN_PROGRESS.value:
        raise HTTPException(status_code=400, detail="This attempt has already been submitted")


async def question_map(db: AsyncIOMotorDatabase, exam: dict) -> dict:
    return {q["question_id"]: q for q in await service.exam_questions(db, exam, active_only=True)}


def in_progress_payload(exam: dict, attempt: dict, questions: list) -> dict:
    return {
        "attempt": service.attempt_view(exam, attempt),
        "questions": service.paper(exam, questions),
        "remaining_seconds": service.remaining_seconds(exam, attempt),
    }


# ==================== EXAMS ====================

@router.get("/exams")
async def open_exams(
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Published, running exams the student can still attempt"""
    now = datetime.utcnow()
    enrolled = await db.enrollments.distinct(
        "course", {"student": student.user_id, "status": {"$in": list(LEARNING_STATUSES)}}
    )
    query = {
        "is_published": True,
        "is_active": True,
        "start_date": {"$lte": now},
        "end_date": {"$gte": now},
        "$or": [{"course": None}, {"course": {"$in": enrolled}}],
    }
    exams = await db.exams.find(query, {"_id": 0}).sort("end_date", 1).to_list(length=None)

    used = {}
    for attempt in await db.exam_attempts.find({"student": student.user_id}).to_list(length=None):
        used[attempt["exam"]] = used.get(attempt["exam"], 0) + (
            attempt["status"] != AttemptStatus.IN_PROGRESS.value
        )

    available = [
        service.decorate_exam(e, now) for e in exams
        if used.get(e["exam_id"], 0) < e.get("max_attempts", 1)
    ]
    return {"success": True, "data": available}


@router.get("/exams/{exam_id}")
async def exam_paper(
    exam_id: str,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    exam = await service.load_exam(db, exam_id)
    service.check_exam_open(exam)
    await service.verify_exam_access(db, exam, student.user_id)

    questions = await service.exam_questions(db, exam, active_only=True)
    data = service.decorate_exam(exam)
    data["questions"] = service.paper(exam, questions)
    return {"success": True, "data": data}


# ==================== ATTEMPTS ====================

@router.get("/exam-attempts")
async def my_attempts(
    exam: Optional[str] = None,
    status: Optional[AttemptStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"student": student.user_id}
    if exam:
        query["exam"] = exam
    if status:
        query["status"] = status.value

    page, limit, skip = clamp_page(page, limit)
    total = await db.exam_attempts.count_documents(query)
    attempts = await db.exam_attempts.find(query, {"_id": 0}) \
        .sort("started_at", -1).skip(skip).limit(limit).to_list(length=limit)

    exams = {
        e["exam_id"]: e
        for e in await db.exams.find({"exam_id": {"$in": list({a["exam"] for a in attempts})}}, {"_id": 0}).to_list(length=None)
    }
    data = []
    for attempt in attempts:
        exam_doc = exams.get(attempt["exam"])
        view = service.attempt_view(exam_doc, attempt) if exam_doc else attempt
        view["exam_title"] = exam_doc.get("title") if exam_doc else None
        data.append(view)

    return {"success": True, "data": data, "pagination": pagination_meta(page, limit, total)}


@router.post("/exam-attempts", status_code=201)
async def start_attempt(
    data: AttemptStart,
    request: Request,
    response: Response,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    exam = await service.load_exam(db, data.exam)
    service.check_exam_open(exam)
    await service.verify_exam_access(db, exam, student.user_id)

    attempts = await db.exam_attempts.find(
        {"exam": data.exam, "student": student.user_id}, {"_id": 0}
    ).to_list(length=None)
    questions = list((await question_map(db, exam)).values())

    current = next((a for a in attempts if a["status"] == AttemptStatus.IN_PROGRESS.value), None)
    if current:
        response.status_code = 200
        return {"success": True, "message": "Resumed exam attempt", "data": in_progress_payload(exam, current, questions)}

    max_attempts = exam.get("max_attempts", 1)
    if len(attempts) >= max_attempts:
        raise HTTPException(status_code=400, detail=f"Maximum attempts ({max_attempts}) reached")
    if not questions:
        raise HTTPException(status_code=400, detail="This exam has no questions yet")

    now = datetime.utcnow()
    attempt = {
        "attempt_id": generate_id("ATT"),
        "exam": data.exam,
        "student": student.user_id,
        "answers": [],
        "total_marks": exam["total_marks"],
        "marks_obtained": 0,
        "percentage": 0,
        "is_passed": False,
        "status": AttemptStatus.IN_PROGRESS.value,
        "started_at": now,
        "submitted_at": None,
        "time_spent": 0,
        "attempt_number": len(attempts) + 1,
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    try:
        await db.exam_attempts.insert_one(attempt)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="An attempt for this exam was just started")
    attempt.pop("_id", None)
    logger.info("Exam attempt %s started: %s on %s", attempt["attempt_id"], student.user_id, data.exam)

    return {"success": True, "message": "Exam attempt started", "data": in_progress_payload(exam, attempt, questions)}


@router.get("/exam-attempts/{attempt_id}")
async def get_attempt(
    attempt_id: str,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    attempt = await load_own_attempt(db, attempt_id, student)
    exam = await service.load_exam(db, attempt["exam"])

    if attempt["status"] == AttemptStatus.IN_PROGRESS.value:
        questions = list((await question_map(db, exam)).values())
        return {"success": True, "data": in_progress_payload(exam, attempt, questions)}
    return {"success": True, "data": {"attempt": service.attempt_view(exam, attempt)}}


@router.put("/exam-attempts/{attempt_id}")
async def save_attempt(
    attempt_id: str,
    data: AttemptSave,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Save answers in progress, or abandon the attempt"""
    attempt = await load_own_attempt(db, attempt_id, student)
    require_in_progress(attempt)
    exam = await service.load_exam(db, attempt["exam"])

    answers = [a.model_dump() for a in data.answers]
    service.check_answers(answers, await question_map(db, exam))

    now = datetime.utcnow()
    updates = {"answers": answers, "time_spent": service.elapsed_seconds(attempt, now), "updated_at": now}
    if data.abandon:
        updates.update({"status": AttemptStatus.ABANDONED.value, "submitted_at": now})

    await db.exam_attempts.update_one({"attempt_id": attempt_id}, {"$set": updates})
    updated = await db.exam_attempts.find_one({"attempt_id": attempt_id}, {"_id": 0})
    return {"success": True, "message": "Answers saved", "data": service.attempt_view(exam, updated)}


@router.post("/exam-attempts/{attempt_id}/submit")
async def submit_attempt(
    attempt_id: str,
    data: Optional[AttemptSave] = None,
    student: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Scores the attempt. Answers in the body replace saved ones;
    without a body the saved answers are scored.
    """
    attempt = await load_own_attempt(db, attempt_id, student)
    require_in_progress(attempt)
    exam = await service.load_exam(db, attempt["exam"])

    answers = [a.model_dump() for a in data.answers] if data and data.answers else attempt.get("answers") or []
    scored, marks = service.score_answers(answers, await question_map(db, exam))

    now = datetime.utcnow()
    updates = {
        "answers": scored,
        **service.result_fields(exam, marks),
        "status": service.finish_status(exam, attempt, now),
        "submitted_at": now,
        "time_spent": service.elapsed_seconds(attempt, now),
        "updated_at": now,
    }
    await db.exam_attempts.update_one({"attempt_id": attempt_id}, {"$set": updates})
    logger.info(
        "Exam attempt %s submitted (%s, %s/%s)",
        attempt_id, updates["status"], updates["marks_obtained"], exam["total_marks"]
    )

    updated = await db.exam_attempts.find_one({"attempt_id": attempt_id}, {"_id": 0})
    return {"success": True, "message": "Exam submitted", "data": service.attempt_view(exam, updated)}
