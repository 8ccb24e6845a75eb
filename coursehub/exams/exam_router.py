import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.assignments.assignment_models import AssignmentStatus
from coursehub.assignments.assignment_service import status_query
from coursehub.auth.permissions import UserContext, get_current_staff, verify_course_manager
from coursehub.database import (
    get_db, clamp_page, generate_id, pagination_meta, search_regex, sort_spec
)
from coursehub.exams import exam_service as service
from coursehub.exams.exam_models import (
    MANUAL_TYPES, AttemptGradeRequest, AttemptStatus, ExamCreate, ExamType, ExamUpdate, QuestionLinkRequest
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exams", tags=["Exams"])

EXAM_SORT_FIELDS = {"title", "created_at", "updated_at", "total_marks", "duration"}


async def load_owned_exam(db: AsyncIOMotorDatabase, exam_id: str, user: UserContext) -> dict:
    exam = await service.load_exam(db, exam_id)
    service.verify_owner(exam, user, "exam")
    return exam


async def require_questions(db: AsyncIOMotorDatabase, question_ids):
    missing = await service.missing_questions(db, question_ids)
    if missing:
        raise HTTPException(status_code=400, detail=f"Questions not found: {', '.join(missing)}")


# ==================== EXAMS ====================

@router.get("")
async def list_exams(
    search: Optional[str] = None,
    type: Optional[ExamType] = None,
    status: Optional[AssignmentStatus] = None,
    course: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_published: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    conditions = []
    if not user.is_admin:
        conditions.append({"created_by": user.user_id})
    if search:
        regex = search_regex(search)
        conditions.append({"$or": [{"title": regex}, {"description": regex}]})
    if type:
        conditions.append({"type": type.value})
    if status:
        conditions.append(status_query(status, end_field="end_date"))
    if course:
        conditions.append({"course": course})
    if is_active is not None:
        conditions.append({"is_active": is_active})
    if is_published is not None:
        conditions.append({"is_published": is_published})
    query = {"$and": conditions} if conditions else {}

    page, limit, skip = clamp_page(page, limit)
    total = await db.exams.count_documents(query)
    exams = await db.exams.find(query, {"_id": 0}) \
        .sort(sort_spec(sort_by, sort_order, EXAM_SORT_FIELDS, "created_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    now = datetime.utcnow()
    return {
        "success": True,
        "data": [service.decorate_exam(e, now) for e in exams],
        "pagination": pagination_meta(page, limit, total)
    }


@router.post("", status_code=201)
async def create_exam(
    data: ExamCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if data.course:
        await verify_course_manager(db, data.course, user)
    if data.questions:
        await require_questions(db, data.questions)

    now = datetime.utcnow()
    exam = {
        "exam_id": generate_id("EXAM"),
        **data.model_dump(mode="python"),
        "questions": list(dict.fromkeys(data.questions)),
        "created_by": user.user_id,
        "created_at": now,
        "updated_at": now,
    }
    exam["type"] = data.type.value
    await db.exams.insert_one(exam)
    if exam["questions"]:
        await db.exam_questions.update_many(
            {"question_id": {"$in": exam["questions"]}}, {"$set": {"exam": exam["exam_id"]}}
        )
    logger.info("Exam %s created by %s", exam["exam_id"], user.user_id)

    return {"success": True, "message": "Exam created", "data": service.decorate_exam(exam)}


@router.get("/{exam_id}")
async def get_exam(
    exam_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    exam = await load_owned_exam(db, exam_id, user)
    data = service.decorate_exam(exam)
    data["question_details"] = await service.exam_questions(db, exam)
    return {"success": True, "data": data}


@router.put("/{exam_id}")
async def update_exam(
    exam_id: str,
    data: ExamUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    exam = await load_owned_exam(db, exam_id, user)
    updates = data.model_dump(exclude_unset=True)
    if "type" in updates and updates["type"] is not None:
        updates["type"] = updates["type"].value
    if updates.get("course"):
        await verify_course_manager(db, updates["course"], user)

    service.checked_exam_update(exam, updates)
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.exams.update_one({"exam_id": exam_id}, {"$set": updates})

    updated = await service.load_exam(db, exam_id)
    return {"success": True, "message": "Exam updated", "data": service.decorate_exam(updated)}


@router.delete("/{exam_id}")
async def delete_exam(
    exam_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_owned_exam(db, exam_id, user)

    removed = await db.exam_attempts.delete_many({"exam": exam_id})
    await db.exam_questions.update_many({"exam": exam_id}, {"$set": {"exam": None}})
    await db.exams.delete_one({"exam_id": exam_id})
    logger.info("Exam %s deleted with %d attempts", exam_id, removed.deleted_count)

    return {"success": True, "message": "Exam deleted"}


# ==================== QUESTIONS ====================

@router.get("/{exam_id}/questions")
async def get_exam_questions(
    exam_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    exam = await load_owned_exam(db, exam_id, user)
    return {"success": True, "data": await service.exam_questions(db, exam)}


@router.post("/{exam_id}/questions")
async def link_questions(
    exam_id: str,
    data: QuestionLinkRequest,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    exam = await load_owned_exam(db, exam_id, user)
    await require_questions(db, data.question_ids)

    current = set(exam.get("questions") or [])
    new_ids = [qid for qid in dict.fromkeys(data.question_ids) if qid not in current]
    if not new_ids:
        raise HTTPException(status_code=400, detail="All questions are already in this exam")

    await db.exams.update_one(
        {"exam_id": exam_id},
        {"$push": {"questions": {"$each": new_ids}}, "$set": {"updated_at": datetime.utcnow()}}
    )
    await db.exam_questions.update_many({"question_id": {"$in": new_ids}}, {"$set": {"exam": exam_id}})

    updated = await service.load_exam(db, exam_id)
    return {
        "success": True,
        "message": f"{len(new_ids)} questions added",
        "data": service.decorate_exam(updated)
    }


@router.delete("/{exam_id}/questions")
async def unlink_questions(
    exam_id: str,
    data: QuestionLinkRequest,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_owned_exam(db, exam_id, user)

    await db.exams.update_one(
        {"exam_id": exam_id},
        {"$pullAll": {"questions": data.question_ids}, "$set": {"updated_at": datetime.utcnow()}}
    )
    await db.exam_questions.update_many(
        {"question_id": {"$in": data.question_ids}, "exam": exam_id}, {"$set": {"exam": None}}
    )

    updated = await service.load_exam(db, exam_id)
    return {"success": True, "message": "Questions removed", "data": service.decorate_exam(updated)}


# ==================== ATTEMPTS ====================

@router.get("/{exam_id}/attempts")
async def list_exam_attempts(
    exam_id: str,
    status: Optional[AttemptStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_owned_exam(db, exam_id, user)

    query = {"exam": exam_id}
    if status:
        query["status"] = status.value

    page, limit, skip = clamp_page(page, limit)
    total = await db.exam_attempts.count_documents(query)
    attempts = await db.exam_attempts.find(query, {"_id": 0}) \
        .sort("started_at", -1).skip(skip).limit(limit).to_list(length=limit)

    student_ids = list({a["student"] for a in attempts})
    names = {}
    for student in await db.users.find({"user_id": {"$in": student_ids}}).to_list(length=None):
        names[student["user_id"]] = f"{student.get('first_name', '')} {student.get('last_name', '')}".strip()
    for attempt in attempts:
        attempt["student_name"] = names.get(attempt["student"])

    return {"success": True, "data": attempts, "pagination": pagination_meta(page, limit, total)}


@router.put("/{exam_id}/attempts/{attempt_id}/grade")
async def grade_attempt(
    exam_id: str,
    attempt_id: str,
    data: AttemptGradeRequest,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Marks for written and essay answers. Totals, percentage and the
    pass flag are recomputed from every answer.
    """
    exam = await load_owned_exam(db, exam_id, user)
    attempt = await db.exam_attempts.find_one({"attempt_id": attempt_id, "exam": exam_id}, {"_id": 0})
    if not attempt:
        raise HTTPException(status_code=404, detail="Exam attempt not found")
    if attempt["status"] not in service.FINISHED_STATUSES:
        raise HTTPException(status_code=400, detail="Only submitted attempts can be graded")

    questions = {q["question_id"]: q for q in await service.exam_questions(db, exam)}
    answers = {a["question_id"]: a for a in attempt.get("answers") or []}

    for grade in data.grades:
        question = questions.get(grade.question_id)
        if grade.question_id not in answers or question is None:
            raise HTTPException(status_code=400, detail=f"Question {grade.question_id} was not answered in this attempt")
        if question["type"] not in MANUAL_TYPES:
            raise HTTPException(status_code=400, detail=f"Question {grade.question_id} is scored automatically")
        if grade.marks_obtained > question["marks"]:
            raise HTTPException(
                status_code=400,
                detail=f"Marks for {grade.question_id} cannot exceed {question['marks']}"
            )
        answers[grade.question_id].update({
            "marks_obtained": grade.marks_obtained,
            "is_correct": grade.marks_obtained > 0,
            "needs_review": False,
            "feedback": grade.feedback,
        })

    graded = list(answers.values())
    updates = {
        "answers": graded,
        **service.result_fields(exam, sum(a.get("marks_obtained") or 0 for a in graded)),
        "graded_by": user.user_id,
        "graded_at": datetime.utcnow(),
        "updated_at": datetime.utcnow(),
    }
    await db.exam_attempts.update_one({"attempt_id": attempt_id}, {"$set": updates})
    logger.info("Attempt %s graded by %s", attempt_id, user.user_id)

    updated = await db.exam_attempts.find_one({"attempt_id": attempt_id}, {"_id": 0})
    return {"success": True, "message": "Attempt graded", "data": updated}
