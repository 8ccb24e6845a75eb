import asyncio
import os
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

os.environ.setdefault("BCRYPT_ROUNDS", "4")

from coursehub.auth.tokens import create_access_token, hash_password  # noqa: E402
from coursehub.database import generate_id, get_db  # noqa: E402
from coursehub.main import app  # noqa: E402


@pytest.fixture()
def db():
    database = AsyncMongoMockClient()["coursehub_test"]

    async def _get_db():
        return database

    app.dependency_overrides[get_db] = _get_db
    yield database
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db):
    # no context manager: startup index creation is skipped against the mock
    return TestClient(app)


@pytest.fixture()
def run():
    def _run(coro):
        return asyncio.run(coro)
    return _run


@pytest.fixture()
def seed(db, run):
    """Insert a document straight into a collection"""
    def _seed(collection: str, doc: dict) -> dict:
        run(db[collection].insert_one(doc))
        doc.pop("_id", None)
        return doc
    return _seed


@pytest.fixture()
def fetch(db, run):
    def _fetch(collection: str, query: dict):
        return run(db[collection].find_one(query, {"_id": 0}))
    return _fetch


@pytest.fixture()
def make_user(seed):
    """Returns (user_id, auth headers)"""
    def _make_user(role: str = "student", first_name: str = "Test", **fields):
        now = datetime.utcnow()
        user_id = generate_id("USR")
        phone = fields.pop("phone", f"9{str(int(user_id.split('_')[1], 16))[:9]}")
        seed("users", {
            "user_id": user_id,
            "phone": phone,
            "email": f"{phone}@user.local",
            "password_hash": hash_password("secret123"),
            "first_name": first_name,
            "last_name": role.title(),
            "role": role,
            "is_active": True,
            "is_blocked_from_reviews": False,
            "created_at": now,
            "updated_at": now,
            **fields,
        })
        token = create_access_token(user_id, role)
        return user_id, {"Authorization": f"Bearer {token}"}
    return _make_user


@pytest.fixture()
def make_course(seed):
    """
    Course with published chapters and lessons.
    `lessons` gives the lesson count per chapter.
    """
    def _make_course(owner: str, lessons=(2, 1), status: str = "published", is_paid: bool = False,
                     price: float = 0, free_first: bool = False, **fields):
        now = datetime.utcnow()
        course_id = generate_id("COURSE")
        seed("courses", {
            "course_id": course_id,
            "title": fields.pop("title", "Python Basics"),
            "description": "Learn Python",
            "status": status,
            "is_paid": is_paid,
            "price": price,
            "sale_price": None,
            "instructor": owner,
            "created_by": owner,
            "created_at": now,
            "updated_at": now,
            **fields,
        })

        chapter_ids, lesson_ids = [], []
        for c_index, count in enumerate(lessons, start=1):
            chapter_id = generate_id("CHAP")
            seed("chapters", {
                "chapter_id": chapter_id,
                "course": course_id,
                "title": f"Chapter {c_index}",
                "order": c_index,
                "is_published": True,
                "created_at": now,
                "updated_at": now,
            })
            chapter_ids.append(chapter_id)

            ids = []
            for l_index in range(1, count + 1):
                lesson_id = generate_id("LESS")
                seed("lessons", {
                    "lesson_id": lesson_id,
                    "course": course_id,
                    "chapter": chapter_id,
                    "title": f"Lesson {c_index}.{l_index}",
                    "content": "Lesson body",
                    "order": l_index,
                    "duration": 10,
                    "youtube_video_id": "dQw4w9WgXcQ",
                    "attachments": [],
                    "is_published": True,
                    "is_free": free_first and c_index == 1 and l_index == 1,
                    "created_at": now,
                    "updated_at": now,
                })
                ids.append(lesson_id)
            lesson_ids.append(ids)

        return {"course_id": course_id, "chapters": chapter_ids, "lessons": lesson_ids}
    return _make_course


@pytest.fixture()
def enroll(seed):
    def _enroll(student_id: str, course_id: str, status: str = "active", **fields):
        now = datetime.utcnow()
        return seed("enrollments", {
            "enrollment_id": generate_id("ENR"),
            "student": student_id,
            "course": course_id,
            "status": status,
            "progress": 0,
            "enrolled_at": now,
            "last_accessed_at": now,
            "completed_at": None,
            "payment_status": "paid",
            "payment_amount": 0,
            "created_at": now,
            "updated_at": now,
            **fields,
        })
    return _enroll
