"""
Role guards shared by every router.

Roles:
  admin       - full moderation and management access
  instructor  - manages own courses, curriculum, quizzes and assignments
  student     - enrolls, tracks progress, takes quizzes, reviews, submits
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.auth_models import UserRole
from coursehub.auth.tokens import decode_token, extract_bearer
from coursehub.database import get_db


class UserContext:
    """
    Authenticated user and their profile
    """
    def __init__(self, user_id: str, profile: dict):
        self.user_id = user_id
        self.role = profile.get("role", UserRole.STUDENT.value)
        self.phone = profile.get("phone")
        self.email = profile.get("email")
        self.name = f"{profile.get('first_name', '')} {profile.get('last_name', '')}".strip()
        self.is_blocked_from_reviews = profile.get("is_blocked_from_reviews", False)
        self.profile = profile

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_instructor(self) -> bool:
        return self.role == UserRole.INSTRUCTOR.value

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT.value

    @property
    def is_staff(self) -> bool:
        return self.is_admin or self.is_instructor


async def _load_user(db: AsyncIOMotorDatabase, token: str) -> UserContext:
    payload = decode_token(token)
    user_id = payload.get("sub")

    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing user_id")

    profile = await db.users.find_one({"user_id": user_id})
    if not profile:
        raise HTTPException(status_code=401, detail="User not found")

    if not profile.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account is deactivated")

    return UserContext(user_id, profile)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> UserContext:
    """
    Dependency: any authenticated, active user

    Raises:
        401: Missing/invalid token or inactive account
    """
    token = extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return await _load_user(db, token)


async def get_optional_user(
    authorization: Optional[str] = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> Optional[UserContext]:
    """
    Dependency for public routes that behave differently when signed in.
    No header means anonymous; a bad token is still rejected.
    """
    token = extract_bearer(authorization)
    if not token:
        return None
    return await _load_user(db, token)


def require_roles(*roles: UserRole):
    allowed = {r.value for r in roles}

    async def checker(user: UserContext = Depends(get_current_user)) -> UserContext:
        if user.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Requires role: {', '.join(sorted(allowed))}"
            )
        return user

    return checker


get_current_admin = require_roles(UserRole.ADMIN)
get_current_staff = require_roles(UserRole.ADMIN, UserRole.INSTRUCTOR)
get_current_student = require_roles(UserRole.STUDENT)


# ==================== OWNERSHIP ====================

async def verify_course_manager(db: AsyncIOMotorDatabase, course_id: str, user: UserContext) -> dict:
    """
    Admins manage every course; instructors only the ones they created
    or are assigned to.

    Raises:
        404: Course not found
        403: Not the course owner
    """
    course = await db.courses.find_one({"course_id": course_id})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    if user.is_admin:
        return course

    if user.user_id not in (course.get("created_by"), course.get("instructor")):
        raise HTTPException(status_code=403, detail="Not authorized to manage this course")

    return course
