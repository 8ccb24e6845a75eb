import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from coursehub.config import VERSION
from coursehub.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get("/health")
async def health(db: AsyncIOMotorDatabase = Depends(get_db)):
    record = {"status": "ok", "timestamp": datetime.utcnow(), "database": "UP"}
    try:
        await db.command("ping")
    except PyMongoError as e:
        logger.error("Database ping failed: %s", e)
        record["status"] = "degraded"
        record["database"] = "DOWN"
    return record


@router.get("/version")
def get_version():
    return {"version": VERSION or "unknown", "status": "stable"}
