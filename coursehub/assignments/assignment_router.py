import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.assignments import assignment_service as service
from coursehub.assignments.assignment_models import (
    AssignmentCreate, AssignmentStatus, AssignmentType, AssignmentUpdate,
    GradeRequest, SubmissionCreate, SubmissionStatus, check_assignment_rules
)
from coursehub.auth.permissions import (
    UserContext, get_current_staff, get_current_student, get_current_user, verify_course_manager
)
from coursehub.database import (
    get_db, generate_id, clamp_page, pagination_meta, sort_spec, search_regex
)
from coursehub.enrollments.enrollment_models import EnrollmentStatus
from coursehub.enrollments.enrollment_service import require_enrollment, LEARNING_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Assignments"])

ASSIGNMENT_SORT_FIELDS = {"created_at", "updated_at", "due_date", "start_date", "title", "total_marks"}


# ==================== HELPERS ====================

async def load_assignment(db: AsyncIOMotorDatabase, assignment_id: str) -> dict:
    assignment = await db.assignments.find_one({"assignment_id": assignment_id})
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return assignment


def verify_assignment_owner(assignment: dict, user: UserContext):
    """
    Raises:
        403: Neither the creator nor an admin
    """
    if not user.is_admin and assignment.get("created_by") != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized to manage this assignment")


async def check_placement(db: AsyncIOMotorDatabase, course_id: str, chapter_id: Optional[str], lesson_id: Optional[str]):
    if chapter_id:
        chapter = await db.chapters.find_one({"chapter_id": chapter_id, "course": course_id})
        if not chapter:
            raise HTTPException(status_code=400, detail="Chapter does not belong to this course")
    if lesson_id:
        lesson = await db.lessons.find_one({"lesson_id": lesson_id, "course": course_id})
        if not lesson:
            raise HTTPException(status_code=400, detail="Lesson does not belong to this course")


# ==================== ASSIGNMENT CRUD ====================

@router.get("/assignments")
async def list_assignments(
    search: Optional[str] = None,
    type: Optional[AssignmentType] = None,
    status: Optional[AssignmentStatus] = None,
    course: Optional[str] = None,
    created_by: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_published: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {}
    clauses = []

    if status:
        clauses.append(service.status_query(status))
    if not user.is_admin:
        clauses.append({"created_by": user.user_id})
    elif created_by:
        query["created_by"] = created_by
    if search:
        regex = search_regex(search)
        clauses.append({"$or": [{"title": regex}, {"description": regex}]})
    if clauses:
        query["$and"] = clauses
    if type:
        query["type"] = type.value
    if course:
        query["course"] = course
    if is_active is not None:
        query["is_active"] = is_active
    if is_published is not None:
        query["is_published"] = is_published

    page, limit, skip = clamp_page(page, limit)
    total = await db.assignments.count_documents(query)
    assignments = await db.assignments.find(query) \
        .sort(sort_spec(sort_by, sort_order, ASSIGNMENT_SORT_FIELDS, "created_at")) \
        .skip(skip).limit(limit).to_list(length=limit)

    counts = await service.submission_counts(db, [a["assignment_id"] for a in assignments])

    return {
        "success": True,
        "data": [service.decorate_assignment(a, counts.get(a["assignment_id"], 0)) for a in assignments],
        "pagination": pagination_meta(page, limit, total)
    }


@router.post("/assignments", status_code=201)
async def create_assignment(
    data: AssignmentCreate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_course_manager(db, data.course, user)
    await check_placement(db, data.course, data.chapter, data.lesson)

    now = datetime.utcnow()
    doc = {
        "assignment_id": generate_id("ASG"),
        **data.model_dump(mode="python"),
        "created_by": user.user_id,
        "created_at": now,
        "updated_at": now
    }
    doc["type"] = data.type.value
    doc["allowed_file_types"] = [t.lower().lstrip(".") for t in data.allowed_file_types]

    await db.assignments.insert_one(doc)
    logger.info("Assignment %s created for course %s by %s", doc["assignment_id"], data.course, user.user_id)

    return {
        "success": True,
        "message": "Assignment created successfully",
        "data": service.decorate_assignment(doc, 0)
    }


@router.get("/assignments/{assignment_id}")
async def get_assignment(
    assignment_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)

    if user.is_student:
        if not assignment.get("is_published"):
            raise HTTPException(status_code=404, detail="Assignment not found")
        await require_enrollment(db, user.user_id, assignment["course"], LEARNING_STATUSES)
        attempts = await service.count_attempts(db, assignment_id, user.user_id)
        data = service.decorate_assignment(assignment)
        data["attempts_used"] = attempts
        data["can_submit"] = (
            data["status"] in (AssignmentStatus.ACTIVE.value, AssignmentStatus.PUBLISHED.value)
            or (data["status"] == AssignmentStatus.EXPIRED.value and assignment.get("allow_late_submission", False))
        ) and attempts < assignment.get("max_attempts", 1)
        return {"success": True, "data": data}

    verify_assignment_owner(assignment, user)
    count = await db.assignment_submissions.count_documents({"assignment": assignment_id})
    return {"success": True, "data": service.decorate_assignment(assignment, count)}


@router.put("/assignments/{assignment_id}")
async def update_assignment(
    assignment_id: str,
    data: AssignmentUpdate,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_owner(assignment, user)

    updates = data.model_dump(mode="python", exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    merged = {**assignment, **updates}
    try:
        check_assignment_rules(
            merged["total_marks"], merged.get("passing_marks"), merged.get("start_date"), merged.get("due_date")
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await check_placement(db, assignment["course"], merged.get("chapter"), merged.get("lesson"))

    if "type" in updates and updates["type"] is not None:
        updates["type"] = updates["type"].value
    if updates.get("allowed_file_types") is not None:
        updates["allowed_file_types"] = [t.lower().lstrip(".") for t in updates["allowed_file_types"]]
    updates["updated_at"] = datetime.utcnow()

    await db.assignments.update_one({"assignment_id": assignment_id}, {"$set": updates})
    updated = await db.assignments.find_one({"assignment_id": assignment_id})

    return {
        "success": True,
        "message": "Assignment updated successfully",
        "data": service.decorate_assignment(updated)
    }


@router.delete("/assignments/{assignment_id}")
async def delete_assignment(
    assignment_id: str,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_owner(assignment, user)

    result = await db.assignment_submissions.delete_many({"assignment": assignment_id})
    await db.assignments.delete_one({"assignment_id": assignment_id})
    logger.info("Assignment %s deleted with %d submissions", assignment_id, result.deleted_count)

    return {"success": True, "message": "Assignment deleted successfully"}


# ==================== SUBMISSIONS ====================

@router.post("/assignments/{assignment_id}/submit", status_code=201)
async def submit_assignment(
    assignment_id: str,
    data: SubmissionCreate,
    request: Request,
    user: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)
    if not assignment.get("is_published"):
        raise HTTPException(status_code=404, detail="Assignment not found")

    await require_enrollment(
        db, user.user_id, assignment["course"],
        statuses=(EnrollmentStatus.ACTIVE.value,),
        message="You must have an active enrollment in this course"
    )

    now = datetime.utcnow()
    is_late = service.check_submission(assignment, data, now)

    attempts = await service.count_attempts(db, assignment_id, user.user_id)
    max_attempts = assignment.get("max_attempts", 1)
    if attempts >= max_attempts:
        raise HTTPException(status_code=400, detail=f"Maximum attempts ({max_attempts}) reached")

    submission = {
        "submission_id": generate_id("SUB"),
        "assignment": assignment_id,
        "course": assignment["course"],
        "student": user.user_id,
        **data.model_dump(mode="json"),
        "status": SubmissionStatus.SUBMITTED.value,
        "submitted_at": now,
        "graded_at": None,
        "graded_by": None,
        "score": None,
        "max_score": assignment["total_marks"],
        "feedback": None,
        "rubric_scores": [],
        "is_late": is_late,
        "late_penalty_applied": 0,
        "attempt_number": attempts + 1,
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent")
    }
    await db.assignment_submissions.insert_one(submission)
    logger.info(
        "Submission %s for %s by %s (attempt %d, late=%s)",
        submission["submission_id"], assignment_id, user.user_id, submission["attempt_number"], is_late
    )

    return {
        "success": True,
        "message": "Assignment submitted successfully",
        "data": service.decorate_submission(submission, assignment)
    }


@router.get("/assignments/{assignment_id}/submissions")
async def list_submissions(
    assignment_id: str,
    status: Optional[SubmissionStatus] = None,
    student: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_owner(assignment, user)

    query = {"assignment": assignment_id}
    if status:
        query["status"] = status.value
    if student:
        query["student"] = student

    page, limit, skip = clamp_page(page, limit)
    total = await db.assignment_submissions.count_documents(query)
    submissions = await db.assignment_submissions.find(query) \
        .sort("submitted_at", -1).skip(skip).limit(limit).to_list(length=limit)

    return {
        "success": True,
        "data": [service.decorate_submission(s, assignment) for s in submissions],
        "pagination": pagination_meta(page, limit, total)
    }


@router.get("/assignments/{assignment_id}/submissions/{submission_id}")
async def get_submission(
    assignment_id: str,
    submission_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)
    submission = await db.assignment_submissions.find_one(
        {"submission_id": submission_id, "assignment": assignment_id}
    )
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")

    is_owner = submission["student"] == user.user_id
    if not is_owner:
        verify_assignment_owner(assignment, user)

    return {"success": True, "data": service.decorate_submission(submission, assignment)}


@router.put("/assignments/{assignment_id}/submissions/{submission_id}/grade")
async def grade_submission(
    assignment_id: str,
    submission_id: str,
    data: GradeRequest,
    user: UserContext = Depends(get_current_staff),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await load_assignment(db, assignment_id)
    verify_assignment_owner(assignment, user)

    submission = await db.assignment_submissions.find_one(
        {"submission_id": submission_id, "assignment": assignment_id}
    )
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")

    service.check_grade(assignment, data)

    score = service.apply_late_penalty(data.score, submission, assignment)
    updates = {
        "raw_score": data.score,
        "score": score,
        "late_penalty_applied": assignment.get("late_penalty_percentage", 0) if submission.get("is_late") else 0,
        "feedback": data.feedback,
        "rubric_scores": [r.model_dump() for r in data.rubric_scores],
        "status": data.status.value,
        "graded_at": datetime.utcnow(),
        "graded_by": user.user_id
    }
    await db.assignment_submissions.update_one({"submission_id": submission_id}, {"$set": updates})
    submission.update(updates)

    logger.info("Submission %s graded %s/%s by %s", submission_id, score, assignment["total_marks"], user.user_id)

    return {
        "success": True,
        "message": "Submission graded successfully",
        "data": service.decorate_submission(submission, assignment)
    }


# ==================== STUDENT VIEW ====================

@router.get("/student/assignments")
async def my_assignments(
    course: Optional[str] = None,
    user: UserContext = Depends(get_current_student),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    enrollments = await db.enrollments.find(
        {"student": user.user_id, "status": {"$in": list(LEARNING_STATUSES)}},
        {"course": 1}
    ).to_list(length=None)
    course_ids = [e["course"] for e in enrollments]
    if course:
        course_ids = [c for c in course_ids if c == course]

    if not course_ids:
        return {"success": True, "data": [], "total": 0}

    assignments = await db.assignments.find(
        {"course": {"$in": course_ids}, "is_published": True}
    ).sort("due_date", 1).to_list(length=None)

    submissions = await db.assignment_submissions.find(
        {"student": user.user_id, "assignment": {"$in": [a["assignment_id"] for a in assignments]}}
    ).to_list(length=None)

    by_assignment = {}
    for s in submissions:
        by_assignment.setdefault(s["assignment"], []).append(s)

    data = []
    for a in assignments:
        mine = by_assignment.get(a["assignment_id"], [])
        scores = [s["score"] for s in mine if s.get("score") is not None]
        item = service.decorate_assignment(a)
        item["attempts_used"] = len(mine)
        item["best_score"] = max(scores) if scores else None
        item["last_submission_status"] = max(mine, key=lambda s: s["attempt_number"])["status"] if mine else None
        data.append(item)

    return {"success": True, "data": data, "total": len(data)}
