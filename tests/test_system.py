"""Tests for health, version and the admin dashboard."""
import pytest
from fastapi.testclient import TestClient
from mongomock import DuplicateKeyError
from pymongo.errors import ServerSelectionTimeoutError

from coursehub.database import get_db, percent, round_half_up
from coursehub.main import app


class _DownDb:
    async def command(self, name):
        raise ServerSelectionTimeoutError("no servers")


def test_round_half_up_and_percent():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.125, 2) == 0.13
    assert percent(1, 3) == 33
    assert percent(2, 3) == 67
    assert percent(5, 0) == 0


def test_version(client):
    r = client.get("/version")
    assert r.status_code == 200
    assert r.json()["status"] == "stable"


def test_health_reports_database_down(client):
    async def _down():
        return _DownDb()

    app.dependency_overrides[get_db] = _down
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "degraded"
    assert r.json()["database"] == "DOWN"


def test_dashboard_admin_only(client, make_user, make_course, enroll, seed):
    _, admin = make_user("admin")
    owner_id, owner = make_user("instructor")
    student_id, _ = make_user("student")
    course = make_course(owner_id)
    make_course(owner_id, status="draft")
    enroll(student_id, course["course_id"])
    seed("course_reviews", {"review_id": "REV_1", "course": course["course_id"], "student": student_id,
                            "rating": 5, "is_approved": False, "reported_count": 2})
    seed("assignment_submissions", {"submission_id": "SUB_1", "assignment": "ASG_1", "student": student_id,
                                    "attempt_number": 1, "status": "submitted"})

    assert client.get("/admin/dashboard", headers=owner).status_code == 403

    data = client.get("/admin/dashboard", headers=admin).json()["data"]
    assert data["users"]["student"] == 1
    assert data["users"]["instructor"] == 1
    assert data["users"]["total"] == 3
    assert data["courses"]["published"] == 1
    assert data["courses"]["draft"] == 1
    assert data["enrollments"]["active"] == 1
    assert data["reviews"]["pending_approval"] == 1
    assert data["reviews"]["reported"] == 1
    assert data["submissions_awaiting_grading"] == 1


def test_startup_creates_indexes(db, run, monkeypatch):
    async def _mock_db():
        return db

    monkeypatch.setattr("coursehub.main.get_db", _mock_db)
    with TestClient(app) as started:
        assert started.get("/version").status_code == 200

    run(db.users.insert_one({"user_id": "USR_1", "phone": "911"}))
    with pytest.raises(DuplicateKeyError):
        run(db.users.insert_one({"user_id": "USR_1", "phone": "922"}))

    attempt = {"attempt_id": "ATT_1", "exam": "EXAM_1", "student": "USR_1", "attempt_number": 1}
    run(db.exam_attempts.insert_one(dict(attempt)))
    with pytest.raises(DuplicateKeyError):
        run(db.exam_attempts.insert_one({**attempt, "attempt_id": "ATT_2"}))
