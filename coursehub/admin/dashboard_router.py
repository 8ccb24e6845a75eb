from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.assignments.assignment_models import SubmissionStatus
from coursehub.auth.auth_models import UserRole
from coursehub.auth.permissions import UserContext, get_current_admin
from coursehub.catalog.models import CourseStatus
from coursehub.database import get_db
from coursehub.enrollments.enrollment_models import EnrollmentStatus

router = APIRouter(prefix="/admin", tags=["Admin Dashboard"])

RECENT_DAYS = 7


async def _count_by(collection, field: str, keys) -> dict:
    rows = await collection.aggregate([
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}}
    ]).to_list(length=None)
    found = {row["_id"]: row["count"] for row in rows}
    counts = {k.value: found.get(k.value, 0) for k in keys}
    counts["total"] = sum(found.values())
    return counts


@router.get("/dashboard")
async def dashboard(
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Platform overview

    Returns:
    - Users by role, new sign-ups this week
    - Courses and enrollments by status
    - Reviews waiting for approval or flagged by reports
    - Assignment submissions waiting for a grade
    """
    since = datetime.utcnow() - timedelta(days=RECENT_DAYS)

    users = await _count_by(db.users, "role", UserRole)
    users["new_this_week"] = await db.users.count_documents({"created_at": {"$gte": since}})

    reviews = {
        "total": await db.course_reviews.count_documents({}),
        "pending_approval": await db.course_reviews.count_documents({"is_approved": False}),
        "reported": await db.course_reviews.count_documents({"reported_count": {"$gt": 0}}),
    }

    return {
        "success": True,
        "data": {
            "users": users,
            "courses": await _count_by(db.courses, "status", CourseStatus),
            "enrollments": await _count_by(db.enrollments, "status", EnrollmentStatus),
            "reviews": reviews,
            "submissions_awaiting_grading": await db.assignment_submissions.count_documents(
                {"status": SubmissionStatus.SUBMITTED.value}
            ),
            "generated_at": datetime.utcnow()
        }
    }
