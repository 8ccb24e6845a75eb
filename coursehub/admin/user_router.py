"""
Admin management of student and teacher accounts.

Teachers are users with the instructor role. A record of the other
role is treated as missing.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.admin.user_models import ManagedUserCreate, ManagedUserUpdate
from coursehub.auth.auth_models import UserRole
from coursehub.auth.auth_service import HIDDEN_USER_FIELDS, create_user
from coursehub.auth.permissions import UserContext, get_current_admin
from coursehub.auth.tokens import hash_password
from coursehub.database import get_db, clamp_page, pagination_meta, search_regex
from coursehub.enrollments.enrollment_models import PaymentStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin Users"])


# ==================== SHARED ====================

def user_filter(role: UserRole, search: Optional[str], status: str) -> dict:
    query = {"role": role.value}
    if status == "active":
        query["is_active"] = True
    elif status == "inactive":
        query["is_active"] = False
    if search:
        regex = search_regex(search)
        query["$or"] = [
            {"first_name": regex},
            {"last_name": regex},
            {"email": regex},
            {"phone": regex},
        ]
    return query


async def list_users(db: AsyncIOMotorDatabase, query: dict, page: int, limit: int):
    page, limit, skip = clamp_page(page, limit)
    total = await db.users.count_documents(query)
    users = await db.users.find(query, HIDDEN_USER_FIELDS) \
        .sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    return users, pagination_meta(page, limit, total)


async def load_user(db: AsyncIOMotorDatabase, user_id: str, role: UserRole) -> dict:
    user = await db.users.find_one({"user_id": user_id, "role": role.value}, HIDDEN_USER_FIELDS)
    if not user:
        raise HTTPException(status_code=404, detail=f"{role_label(role)} not found")
    return user


def role_label(role: UserRole) -> str:
    return "Teacher" if role == UserRole.INSTRUCTOR else "Student"


async def apply_update(db: AsyncIOMotorDatabase, user: dict, data: ManagedUserUpdate) -> dict:
    """
    Raises:
        409: Email or phone already belongs to another user
    """
    updates = data.model_dump(exclude_unset=True)
    user_id = user["user_id"]

    for field in ("email", "phone"):
        value = updates.get(field)
        if value and value != user.get(field):
            if await db.users.find_one({field: value, "user_id": {"$ne": user_id}}):
                raise HTTPException(status_code=409, detail=f"This {field} is already in use")

    if "password" in updates:
        updates["password_hash"] = hash_password(updates.pop("password"))

    updates = {k: v for k, v in updates.items() if v is not None}
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.users.update_one({"user_id": user_id}, {"$set": updates})

    return await db.users.find_one({"user_id": user_id}, HIDDEN_USER_FIELDS)


async def attach_enrollment_totals(db: AsyncIOMotorDatabase, students: List[dict]) -> List[dict]:
    ids = [s["user_id"] for s in students]
    if not ids:
        return students

    rows = await db.enrollments.aggregate([
        {"$match": {"student": {"$in": ids}}},
        {"$group": {
            "_id": "$student",
            "count": {"$sum": 1},
            "amount": {"$sum": {
                "$cond": [{"$eq": ["$payment_status", PaymentStatus.PAID.value]}, "$payment_amount", 0]
            }},
        }},
    ]).to_list(length=None)
    totals = {row["_id"]: row for row in rows}

    for student in students:
        row = totals.get(student["user_id"], {})
        student["enrollment_count"] = row.get("count", 0)
        student["total_enrolled_amount"] = row.get("amount", 0) or 0
    return students


# ==================== STUDENTS ====================

@router.get("/students")
async def list_students(
    search: Optional[str] = None,
    status: str = Query("all", pattern="^(active|inactive|all)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    students, meta = await list_users(db, user_filter(UserRole.STUDENT, search, status), page, limit)
    await attach_enrollment_totals(db, students)
    return {"success": True, "data": students, "pagination": meta}


@router.post("/students", status_code=201)
async def create_student(
    data: ManagedUserCreate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    student = await create_user(
        db, data.phone, data.password, data.first_name, data.last_name,
        UserRole.STUDENT.value, is_active=data.is_active, created_by=admin.user_id
    )
    return {"success": True, "message": "Student created successfully", "data": student}


@router.get("/students/{student_id}")
async def get_student(
    student_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    student = await load_user(db, student_id, UserRole.STUDENT)
    await attach_enrollment_totals(db, [student])
    student["enrollments"] = await db.enrollments.find(
        {"student": student_id}, {"_id": 0}
    ).sort("enrolled_at", -1).to_list(length=None)
    return {"success": True, "data": student}


@router.put("/students/{student_id}")
async def update_student(
    student_id: str,
    data: ManagedUserUpdate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    student = await load_user(db, student_id, UserRole.STUDENT)
    updated = await apply_update(db, student, data)
    return {"success": True, "message": "Student updated successfully", "data": updated}


@router.delete("/students/{student_id}")
async def delete_student(
    student_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_user(db, student_id, UserRole.STUDENT)
    await db.users.delete_one({"user_id": student_id})
    logger.info("Admin %s deleted student %s", admin.user_id, student_id)
    return {"success": True, "message": "Student deleted successfully"}


# ==================== TEACHERS ====================

@router.get("/teachers")
async def list_teachers(
    search: Optional[str] = None,
    status: str = Query("all", pattern="^(active|inactive|all)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    teachers, meta = await list_users(db, user_filter(UserRole.INSTRUCTOR, search, status), page, limit)
    return {"success": True, "data": teachers, "pagination": meta}


@router.post("/teachers", status_code=201)
async def create_teacher(
    data: ManagedUserCreate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    teacher = await create_user(
        db, data.phone, data.password, data.first_name, data.last_name,
        UserRole.INSTRUCTOR.value, is_active=data.is_active, created_by=admin.user_id
    )
    return {"success": True, "message": "Teacher created successfully", "data": teacher}


@router.get("/teachers/{teacher_id}")
async def get_teacher(
    teacher_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    teacher = await load_user(db, teacher_id, UserRole.INSTRUCTOR)
    teacher["courses"] = await db.courses.find(
        {"$or": [{"instructor": teacher_id}, {"created_by": teacher_id}]},
        {"_id": 0, "course_id": 1, "title": 1, "status": 1}
    ).to_list(length=None)
    return {"success": True, "data": teacher}


@router.put("/teachers/{teacher_id}")
async def update_teacher(
    teacher_id: str,
    data: ManagedUserUpdate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    teacher = await load_user(db, teacher_id, UserRole.INSTRUCTOR)
    updated = await apply_update(db, teacher, data)
    return {"success": True, "message": "Teacher updated successfully", "data": updated}


@router.delete("/teachers/{teacher_id}")
async def delete_teacher(
    teacher_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await load_user(db, teacher_id, UserRole.INSTRUCTOR)
    if await db.courses.count_documents({"instructor": teacher_id}):
        raise HTTPException(status_code=400, detail="Teacher still instructs courses; reassign them first")

    await db.users.delete_one({"user_id": teacher_id})
    logger.info("Admin %s deleted teacher %s", admin.user_id, teacher_id)
    return {"success": True, "message": "Teacher deleted successfully"}
