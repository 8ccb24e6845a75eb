from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth import auth_service as service
from coursehub.auth.auth_models import (
    ChangePasswordRequest, LoginRequest, ProfileUpdate, RegisterRequest, TokenResponse
)
from coursehub.auth.permissions import UserContext, get_current_user
from coursehub.database import get_db

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", status_code=201)
async def register(data: RegisterRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await service.register_user(db, data)
    return {"success": True, "message": "User created successfully", "data": user}


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await service.authenticate(db, data.phone, data.password)


@router.get("/me")
async def me(user: UserContext = Depends(get_current_user)):
    return {"success": True, "data": service.public_user(user.profile)}


@router.put("/me")
async def update_me(
    data: ProfileUpdate,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    updates = data.model_dump(exclude_unset=True)
    profile = await service.update_profile(db, user.user_id, updates)
    return {"success": True, "data": profile}


@router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await service.change_password(db, user.user_id, data.current_password, data.new_password)
    return {"success": True, "message": "Password changed successfully"}
