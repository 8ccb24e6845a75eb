import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.auth_models import RegisterRequest
from coursehub.auth.tokens import hash_password, verify_password, create_access_token
from coursehub.database import generate_id

logger = logging.getLogger(__name__)

HIDDEN_USER_FIELDS = {"_id": 0, "password_hash": 0}


def public_user(user: dict) -> dict:
    """Strip internal fields from a user document"""
    return {k: v for k, v in user.items() if k not in ("_id", "password_hash")}


async def create_user(
    db: AsyncIOMotorDatabase,
    phone: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str,
    is_active: bool = True,
    created_by: Optional[str] = None
) -> dict:
    """
    Raises:
        409: Phone number already registered
    """
    existing = await db.users.find_one({"phone": phone})
    if existing:
        raise HTTPException(status_code=409, detail="User with this phone number already exists")

    email = f"{phone}@user.local"
    if await db.users.find_one({"email": email}):
        email = f"{phone}_{int(datetime.utcnow().timestamp())}@user.local"

    now = datetime.utcnow()
    user = {
        "user_id": generate_id("USR"),
        "phone": phone,
        "email": email,
        "password_hash": hash_password(password),
        "first_name": first_name.strip(),
        "last_name": last_name.strip(),
        "role": role,
        "is_active": is_active,
        "is_blocked_from_reviews": False,
        "avatar_url": None,
        "bio": None,
        "last_login": None,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }
    await db.users.insert_one(user)
    logger.info("Registered user %s (%s)", user["user_id"], user["role"])
    return public_user(user)


async def register_user(db: AsyncIOMotorDatabase, data: RegisterRequest) -> dict:
    return await create_user(
        db, data.phone, data.password, data.first_name, data.last_name, data.role.value
    )


async def authenticate(db: AsyncIOMotorDatabase, phone: str, password: str) -> dict:
    user = await db.users.find_one({"phone": phone, "is_active": True})
    if not user or not verify_password(password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid phone number or password")

    now = datetime.utcnow()
    await db.users.update_one({"user_id": user["user_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now

    token = create_access_token(user["user_id"], user["role"])
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> Optional[dict]:
    return await db.users.find_one({"user_id": user_id}, HIDDEN_USER_FIELDS)


async def update_profile(db: AsyncIOMotorDatabase, user_id: str, updates: dict) -> dict:
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.users.update_one({"user_id": user_id}, {"$set": updates})
    return await get_user(db, user_id)


async def change_password(db: AsyncIOMotorDatabase, user_id: str, current_password: str, new_password: str):
    """
    Raises:
        404: User not found
        400: Current password is wrong
    """
    user = await db.users.find_one({"user_id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(current_password, user.get("password_hash")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": datetime.utcnow()}}
    )
    logger.info("Password changed for user %s", user_id)
