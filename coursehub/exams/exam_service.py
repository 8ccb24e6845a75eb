"""
Exam rules shared by the question bank, exam management and attempts.

Scoring:
  mcq / true_false  full marks when the selected option is flagged correct
  fill_blank        case-insensitive match after trimming
  written / essay   0 until graded, flagged needs_review
"""

import logging
import random
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.assignments.assignment_models import AssignmentStatus
from coursehub.assignments.assignment_service import derive_status
from coursehub.database import percent, round_half_up
from coursehub.enrollments.enrollment_service import require_enrollment
from coursehub.exams.exam_models import (
    MANUAL_TYPES, OPTION_TYPES, AttemptStatus, QuestionType, check_exam_rules, check_question_rules
)

logger = logging.getLogger(__name__)

SUBMIT_GRACE_SECONDS = 60
FINISHED_STATUSES = (AttemptStatus.COMPLETED.value, AttemptStatus.TIMEOUT.value)
OPEN_STATUSES = (AssignmentStatus.ACTIVE.value, AssignmentStatus.PUBLISHED.value)


# ==================== LOADING ====================

async def load_exam(db: AsyncIOMotorDatabase, exam_id: str) -> dict:
    exam = await db.exams.find_one({"exam_id": exam_id}, {"_id": 0})
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return exam


async def load_question(db: AsyncIOMotorDatabase, question_id: str) -> dict:
    question = await db.exam_questions.find_one({"question_id": question_id}, {"_id": 0})
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return question


def verify_owner(doc: dict, user, what: str):
    """Admins manage everything; instructors only what they created"""
    if not user.is_admin and doc.get("created_by") != user.user_id:
        raise HTTPException(status_code=403, detail=f"Not authorized to manage this {what}")


async def exam_questions(db: AsyncIOMotorDatabase, exam: dict, active_only: bool = False) -> List[dict]:
    """Questions in the exam's own order"""
    query = {"question_id": {"$in": exam.get("questions") or []}}
    if active_only:
        query["is_active"] = True
    found = await db.exam_questions.find(query, {"_id": 0}).to_list(length=None)
    by_id = {q["question_id"]: q for q in found}
    return [by_id[qid] for qid in exam.get("questions") or [] if qid in by_id]


async def missing_questions(db: AsyncIOMotorDatabase, question_ids: List[str]) -> List[str]:
    found = await db.exam_questions.distinct("question_id", {"question_id": {"$in": question_ids}})
    return [qid for qid in question_ids if qid not in set(found)]


# ==================== RULES ====================

def decorate_exam(exam: dict, now: Optional[datetime] = None) -> dict:
    exam.pop("_id", None)
    exam["status"] = derive_status(exam, now, end_field="end_date")
    exam["question_count"] = len(exam.get("questions") or [])
    return exam


def checked_question_update(question: dict, updates: dict) -> dict:
    """
    Raises:
        400: The merged question breaks the rules for its type
    """
    merged = {**question, **updates}
    try:
        check_question_rules(merged["type"], merged.get("options"), merged.get("correct_answer"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return updates


def checked_exam_update(exam: dict, updates: dict) -> dict:
    merged = {**exam, **updates}
    try:
        check_exam_rules(merged.get("total_marks"), merged.get("passing_marks"),
                         merged.get("start_date"), merged.get("end_date"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return updates


def check_exam_open(exam: dict, now: Optional[datetime] = None):
    """
    Raises:
        400: Unpublished, inactive, not started or expired
    """
    status = derive_status(exam, now, end_field="end_date")
    if status in (AssignmentStatus.DRAFT.value, AssignmentStatus.INACTIVE.value):
        raise HTTPException(status_code=400, detail="Exam is not available")
    if status == AssignmentStatus.SCHEDULED.value:
        raise HTTPException(status_code=400, detail="Exam has not started yet")
    if status == AssignmentStatus.EXPIRED.value:
        raise HTTPException(status_code=400, detail="Exam has expired")


async def verify_exam_access(db: AsyncIOMotorDatabase, exam: dict, student_id: str):
    if exam.get("course"):
        await require_enrollment(
            db, student_id, exam["course"],
            message="You must be enrolled in this course to take this exam"
        )


# ==================== STUDENT VIEW ====================

def public_question(question: dict, shuffle_options: bool = False) -> dict:
    """Question without answers. Options keep their original index for answering."""
    options = [
        {"index": i, "text": option["text"]}
        for i, option in enumerate(question.get("options") or [])
    ]
    if shuffle_options:
        random.shuffle(options)
    return {
        "question_id": question["question_id"],
        "question": question["question"],
        "type": question["type"],
        "marks": question["marks"],
        "difficulty": question.get("difficulty"),
        "options": options,
        "hints": question.get("hints") or [],
        "time_limit": question.get("time_limit"),
    }


def paper(exam: dict, questions: List[dict]) -> List[dict]:
    if exam.get("shuffle_questions"):
        questions = random.sample(questions, len(questions))
    return [public_question(q, exam.get("shuffle_options", False)) for q in questions]


def elapsed_seconds(attempt: dict, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    return max(0, int((now - attempt["started_at"]).total_seconds()))


def remaining_seconds(exam: dict, attempt: dict, now: Optional[datetime] = None) -> int:
    total = exam["duration"] * 60
    used = min(total, max(attempt.get("time_spent") or 0, elapsed_seconds(attempt, now)))
    return max(0, total - used)


def attempt_view(exam: dict, attempt: dict) -> dict:
    """Hide answers and scores the exam keeps back from students"""
    view = {k: v for k, v in attempt.items() if k != "_id"}
    if attempt.get("status") not in FINISHED_STATUSES:
        return view

    if not exam.get("show_results"):
        for field in ("marks_obtained", "percentage", "is_passed"):
            view.pop(field, None)
    if not exam.get("show_correct_answers"):
        view["answers"] = [
            {k: v for k, v in answer.items() if k not in ("is_correct", "correct_answer")}
            for answer in attempt.get("answers") or []
        ]
        if not exam.get("show_results"):
            for answer in view["answers"]:
                answer.pop("marks_obtained", None)
    return view


# ==================== SCORING ====================

def check_answers(answers: List[dict], questions: Dict[str, dict]):
    """
    Raises:
        400: Unknown or repeated question ids
    """
    seen = set()
    for answer in answers:
        qid = answer["question_id"]
        if qid not in questions:
            raise HTTPException(status_code=400, detail=f"Question {qid} is not part of this exam")
        if qid in seen:
            raise HTTPException(status_code=400, detail=f"Question {qid} answered more than once")
        seen.add(qid)


def score_answer(question: dict, answer: dict) -> dict:
    qtype = question["type"]
    marks = 0
    is_correct = False
    needs_review = False

    if qtype in OPTION_TYPES:
        options = question.get("options") or []
        selected = answer.get("selected_option")
        is_correct = selected is not None and selected < len(options) and bool(options[selected].get("is_correct"))
    elif qtype == QuestionType.FILL_BLANK.value:
        expected = (question.get("correct_answer") or "").strip().lower()
        given = (answer.get("written_answer") or "").strip().lower()
        is_correct = bool(expected) and given == expected
    elif qtype in MANUAL_TYPES:
        needs_review = bool((answer.get("written_answer") or "").strip())

    if is_correct:
        marks = question["marks"]

    scored = {
        "question_id": question["question_id"],
        "selected_option": answer.get("selected_option"),
        "written_answer": answer.get("written_answer"),
        "is_correct": is_correct,
        "marks_obtained": marks,
        "needs_review": needs_review,
    }
    if qtype == QuestionType.FILL_BLANK.value:
        scored["correct_answer"] = question.get("correct_answer")
    return scored


def score_answers(answers: List[dict], questions: Dict[str, dict]) -> Tuple[List[dict], float]:
    check_answers(answers, questions)
    scored = [score_answer(questions[a["question_id"]], a) for a in answers]
    return scored, sum(a["marks_obtained"] for a in scored)


def result_fields(exam: dict, marks_obtained: float) -> dict:
    marks_obtained = round_half_up(marks_obtained, 2)
    return {
        "total_marks": exam["total_marks"],
        "marks_obtained": marks_obtained,
        "percentage": percent(marks_obtained, exam["total_marks"]),
        "is_passed": marks_obtained >= exam["passing_marks"],
    }


def finish_status(exam: dict, attempt: dict, now: Optional[datetime] = None) -> str:
    """Late submissions are scored but marked as timed out"""
    limit = exam["duration"] * 60 + SUBMIT_GRACE_SECONDS
    if exam.get("time_limit", True) and elapsed_seconds(attempt, now) > limit:
        return AttemptStatus.TIMEOUT.value
    return AttemptStatus.COMPLETED.value
