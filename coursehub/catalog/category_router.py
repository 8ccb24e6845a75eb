from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.permissions import UserContext, get_current_admin, get_optional_user
from coursehub.catalog import database as catalog
from coursehub.catalog.models import CategoryCreate, CategoryUpdate
from coursehub.database import get_db, serialize_many, serialize_mongo

router = APIRouter(prefix="/categories", tags=["Categories"])


@router.get("")
async def list_categories(
    include_inactive: bool = Query(False),
    user: Optional[UserContext] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {}
    if not (include_inactive and user and user.is_staff):
        query["is_active"] = True

    categories = await db.course_categories.find(query).sort("name", 1).to_list(length=None)
    return {"success": True, "data": serialize_many(categories)}


@router.get("/{category_id}")
async def get_category(category_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    category = await catalog.get_category(db, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"success": True, "data": serialize_mongo(category)}


@router.post("", status_code=201)
async def create_category(
    data: CategoryCreate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    category = await catalog.create_category(db, data.model_dump())
    return {"success": True, "message": "Category created", "data": category}


@router.put("/{category_id}")
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if not await catalog.get_category(db, category_id):
        raise HTTPException(status_code=404, detail="Category not found")

    category = await catalog.update_category(db, category_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Category updated", "data": category}


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    admin: UserContext = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if not await catalog.get_category(db, category_id):
        raise HTTPException(status_code=404, detail="Category not found")

    in_use = await db.courses.count_documents({"category": category_id})
    if in_use:
        raise HTTPException(
            status_code=400,
            detail=f"Category is used by {in_use} course(s) and cannot be deleted"
        )

    await db.course_categories.delete_one({"category_id": category_id})
    return {"success": True, "message": "Category deleted"}
