import os
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.assignments.assignment_models import (
    AssignmentStatus, AssignmentType, GradeRequest, SubmissionCreate, SubmissionStatus
)
from coursehub.database import percent, round_half_up

RUBRIC_TOLERANCE = 0.01
BYTES_PER_MB = 1024 * 1024

GRADE_SCALE = [
    (90, "A+"), (85, "A"), (80, "A-"),
    (75, "B+"), (70, "B"), (65, "B-"),
    (60, "C+"), (55, "C"), (50, "C-"),
    (45, "D+"), (40, "D"), (35, "D-"),
]


# ==================== ASSIGNMENT STATE ====================

def derive_status(assignment: dict, now: Optional[datetime] = None, end_field: str = "due_date") -> str:
    """Also used for exams, whose deadline lives in end_date"""
    now = now or datetime.utcnow()
    start, due = assignment.get("start_date"), assignment.get(end_field)

    if not assignment.get("is_published"):
        return AssignmentStatus.DRAFT.value
    if not assignment.get("is_active"):
        return AssignmentStatus.INACTIVE.value
    if start and now < start:
        return AssignmentStatus.SCHEDULED.value
    if due and now > due:
        return AssignmentStatus.EXPIRED.value
    if start and due:
        return AssignmentStatus.ACTIVE.value
    return AssignmentStatus.PUBLISHED.value


def status_query(status: AssignmentStatus, now: Optional[datetime] = None, end_field: str = "due_date") -> dict:
    """Mongo filter matching derive_status() == status"""
    now = now or datetime.utcnow()
    live = {"is_published": True, "is_active": True}

    if status == AssignmentStatus.DRAFT:
        return {"is_published": False}
    if status == AssignmentStatus.INACTIVE:
        return {"is_published": True, "is_active": False}
    if status == AssignmentStatus.SCHEDULED:
        return {**live, "start_date": {"$gt": now}}
    if status == AssignmentStatus.EXPIRED:
        return {**live, end_field: {"$lt": now}, "$or": [{"start_date": None}, {"start_date": {"$lte": now}}]}
    if status == AssignmentStatus.ACTIVE:
        return {**live, "start_date": {"$ne": None, "$lte": now}, end_field: {"$gte": now}}
    return {**live, "start_date": None, end_field: {"$gte": now}}


def effective_passing_marks(assignment: dict) -> float:
    passing = assignment.get("passing_marks")
    if passing is None:
        return assignment.get("total_marks", 0) * 0.5
    return passing


def decorate_assignment(assignment: dict, submission_count: Optional[int] = None) -> dict:
    assignment.pop("_id", None)
    assignment["status"] = derive_status(assignment)
    assignment["effective_passing_marks"] = effective_passing_marks(assignment)
    if submission_count is not None:
        assignment["submission_count"] = submission_count
    return assignment


# ==================== GRADES ====================

def letter_grade(percentage: float) -> str:
    for threshold, grade in GRADE_SCALE:
        if percentage >= threshold:
            return grade
    return "F"


def decorate_submission(submission: dict, assignment: Optional[dict] = None) -> dict:
    submission.pop("_id", None)
    score, max_score = submission.get("score"), submission.get("max_score")

    if score is None or not max_score:
        submission["percentage_score"] = 0
        submission["grade"] = "N/A"
        submission["passed"] = False
        return submission

    pct = score / max_score * 100
    submission["percentage_score"] = percent(score, max_score)
    submission["grade"] = letter_grade(pct)
    passing = effective_passing_marks(assignment) if assignment else max_score * 0.5
    submission["passed"] = score >= passing
    return submission


# ==================== SUBMISSION RULES ====================

def _extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower().lstrip(".")


def check_submission(assignment: dict, data: SubmissionCreate, now: datetime) -> bool:
    """
    Validates timing and payload. Returns is_late.

    Raises:
        400: Inactive, not started, past due, or invalid content/files
    """
    if not assignment.get("is_active") or not assignment.get("is_published"):
        raise HTTPException(status_code=400, detail="This assignment is not accepting submissions")

    start = assignment.get("start_date")
    if start and now < start:
        raise HTTPException(status_code=400, detail="This assignment has not started yet")

    is_late = bool(assignment.get("due_date") and now > assignment["due_date"])
    if is_late and not assignment.get("allow_late_submission"):
        raise HTTPException(status_code=400, detail="The due date for this assignment has passed")

    kind = assignment.get("type")
    if kind == AssignmentType.FILE_UPLOAD.value:
        if not data.files:
            raise HTTPException(status_code=400, detail="At least one file is required")

        allowed = {t.lower().lstrip(".") for t in assignment.get("allowed_file_types", [])}
        max_bytes = assignment.get("max_file_size", 10) * BYTES_PER_MB
        for f in data.files:
            if allowed and _extension(f.name) not in allowed:
                raise HTTPException(
                    status_code=400,
                    detail=f"File type not allowed: {f.name}. Allowed: {', '.join(sorted(allowed))}"
                )
            if f.size > max_bytes:
                raise HTTPException(
                    status_code=400,
                    detail=f"File {f.name} exceeds the {assignment.get('max_file_size', 10)}MB limit"
                )
    elif kind == AssignmentType.ESSAY.value:
        if not (data.content and data.content.strip()):
            raise HTTPException(status_code=400, detail="Essay content is required")
    elif not (data.content or data.files or data.answers):
        raise HTTPException(status_code=400, detail="Submission is empty")

    return is_late


def check_grade(assignment: dict, data: GradeRequest):
    """
    Raises:
        400: Score out of range or rubric scores inconsistent with the rubric
    """
    total = assignment["total_marks"]
    if data.score < 0 or data.score > total:
        raise HTTPException(status_code=400, detail=f"Score must be between 0 and {total}")

    if data.status == SubmissionStatus.SUBMITTED:
        raise HTTPException(status_code=400, detail="Grading must set status to graded or returned")

    if not data.rubric_scores:
        return
    rubric = {item["criteria"]: item for item in assignment.get("rubric") or []}
    if not rubric:
        raise HTTPException(status_code=400, detail="This assignment has no rubric to score against")

    seen = set()
    for entry in data.rubric_scores:
        item = rubric.get(entry.criteria)
        if not item:
            raise HTTPException(status_code=400, detail=f"Invalid rubric criteria: {entry.criteria}")
        if entry.criteria in seen:
            raise HTTPException(status_code=400, detail=f"Duplicate rubric criteria: {entry.criteria}")
        seen.add(entry.criteria)
        if entry.score < 0 or entry.score > item["marks"]:
            raise HTTPException(
                status_code=400,
                detail=f"Score for {entry.criteria} must be between 0 and {item['marks']}"
            )

    rubric_sum = sum(entry.score for entry in data.rubric_scores)
    if abs(rubric_sum - data.score) > RUBRIC_TOLERANCE:
        raise HTTPException(status_code=400, detail="Rubric scores must add up to the overall score")


def apply_late_penalty(score: float, submission: dict, assignment: dict) -> float:
    if not submission.get("is_late"):
        return score
    penalty = assignment.get("late_penalty_percentage") or 0
    return round_half_up(score * (100 - penalty) / 100, 2)


# ==================== QUERIES ====================

async def count_attempts(db: AsyncIOMotorDatabase, assignment_id: str, student_id: str) -> int:
    return await db.assignment_submissions.count_documents({"assignment": assignment_id, "student": student_id})


async def submission_counts(db: AsyncIOMotorDatabase, assignment_ids: List[str]) -> dict:
    rows = await db.assignment_submissions.aggregate([
        {"$match": {"assignment": {"$in": assignment_ids}}},
        {"$group": {"_id": "$assignment", "count": {"$sum": 1}}}
    ]).to_list(length=None)
    return {row["_id"]: row["count"] for row in rows}
