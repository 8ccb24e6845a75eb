"""Tests for self-enrollment, admin enrollment management and stats."""
from coursehub.enrollments.enrollment_service import status_change


def test_status_change_stamps():
    completed = status_change("completed")
    assert completed["progress"] == 100
    assert completed["completed_at"] is not None

    kept = status_change("completed", {"completed_at": "earlier"})
    assert "completed_at" not in kept

    assert status_change("active")["completed_at"] is None
    assert "dropped_at" in status_change("dropped")


def test_self_enroll_free_course(client, make_user, make_course):
    owner_id, _ = make_user("instructor")
    _, student = make_user("student")
    course = make_course(owner_id)

    r = client.post("/enrollments/enroll", json={"course": course["course_id"]}, headers=student)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "active"
    assert data["payment_status"] == "paid"
    assert data["payment_amount"] == 0

    again = client.post("/enrollments/enroll", json={"course": course["course_id"]}, headers=student)
    assert again.json()["message"] == "Already enrolled"
    assert again.json()["data"]["enrollment_id"] == data["enrollment_id"]

    mine = client.get("/enrollments/my", headers=student).json()["data"]
    assert len(mine) == 1
    assert mine[0]["course_info"]["title"] == "Python Basics"


def test_self_enroll_paid_requires_payment(client, make_user, make_course):
    owner_id, _ = make_user("instructor")
    _, student = make_user("student")
    course = make_course(owner_id, is_paid=True, price=499)

    r = client.post("/enrollments/enroll", json={"course": course["course_id"]}, headers=student)
    assert r.status_code == 402


def test_self_enroll_unpublished_not_found(client, make_user, make_course):
    owner_id, _ = make_user("instructor")
    _, student = make_user("student")
    course = make_course(owner_id, status="draft")

    r = client.post("/enrollments/enroll", json={"course": course["course_id"]}, headers=student)
    assert r.status_code == 404


def test_admin_creates_enrollment_with_course_price(client, make_user, make_course):
    _, admin = make_user("admin")
    owner_id, _ = make_user("instructor")
    student_id, _ = make_user("student")
    course = make_course(owner_id, is_paid=True, price=499)

    payload = {"student": student_id, "course": course["course_id"], "payment_status": "paid"}
    r = client.post("/enrollments", json=payload, headers=admin)
    assert r.status_code == 201
    assert r.json()["data"]["payment_amount"] == 499

    r = client.post("/enrollments", json=payload, headers=admin)
    assert r.status_code == 409


def test_instructor_sees_only_own_course_enrollments(client, make_user, make_course, enroll):
    owner_id, owner = make_user("instructor")
    other_id, _ = make_user("instructor")
    student_id, _ = make_user("student")
    mine = make_course(owner_id)
    theirs = make_course(other_id)
    enroll(student_id, mine["course_id"])
    other = enroll(student_id, theirs["course_id"])

    r = client.get("/enrollments", headers=owner)
    body = r.json()
    assert body["pagination"]["total"] == 1
    assert body["data"][0]["course"] == mine["course_id"]
    assert body["data"][0]["student_info"]["user_id"] == student_id
    assert body["stats"]["total"] == 1

    assert client.get(f"/enrollments/{other['enrollment_id']}", headers=owner).status_code == 403


def test_instructor_cannot_change_payment(client, make_user, make_course, enroll):
    owner_id, owner = make_user("instructor")
    student_id, _ = make_user("student")
    course = make_course(owner_id)
    enrollment = enroll(student_id, course["course_id"])

    r = client.put(f"/enrollments/{enrollment['enrollment_id']}", json={"payment_status": "refunded"}, headers=owner)
    assert r.status_code == 403

    r = client.put(f"/enrollments/{enrollment['enrollment_id']}", json={"status": "completed"}, headers=owner)
    assert r.status_code == 200
    assert r.json()["data"]["progress"] == 100
    assert r.json()["data"]["completed_at"] is not None


def test_enrollment_stats(client, make_user, make_course, enroll):
    _, admin = make_user("admin")
    owner_id, _ = make_user("instructor")
    course = make_course(owner_id)
    for status, progress, amount in (("active", 50, 100), ("completed", 100, 200), ("dropped", 10, 0), ("active", 0, 0)):
        student_id, _ = make_user("student")
        enroll(student_id, course["course_id"], status=status, progress=progress, payment_amount=amount)

    r = client.get("/enrollments/stats", params={"type": "course", "course": course["course_id"]}, headers=admin)
    stats = r.json()["data"]
    assert stats["total"] == 4
    assert stats["active"] == 2
    assert stats["completed"] == 1
    assert stats["paid"] == 4
    assert stats["total_revenue"] == 300
    assert stats["average_progress"] == 40
    assert stats["completion_rate"] == 25
    assert stats["drop_rate"] == 25

    r = client.get("/enrollments/stats", params={"type": "course"}, headers=admin)
    assert r.status_code == 400


def test_enrollment_filters(client, make_user, make_course, enroll):
    _, admin = make_user("admin")
    owner_id, _ = make_user("instructor")
    course = make_course(owner_id)
    for progress in (10, 60, 90):
        student_id, _ = make_user("student")
        enroll(student_id, course["course_id"], progress=progress)

    r = client.get("/enrollments", params={"progress_min": 50, "progress_max": 95}, headers=admin)
    assert r.json()["pagination"]["total"] == 2

    r = client.get("/enrollments", params={"enrolled_after": "2000-01-01T00:00:00Z"}, headers=admin)
    assert r.json()["pagination"]["total"] == 3


def test_delete_enrollment_admin_only(client, make_user, make_course, enroll):
    _, admin = make_user("admin")
    owner_id, owner = make_user("instructor")
    student_id, _ = make_user("student")
    enrollment = enroll(student_id, make_course(owner_id)["course_id"])

    assert client.delete(f"/enrollments/{enrollment['enrollment_id']}", headers=owner).status_code == 403
    assert client.delete(f"/enrollments/{enrollment['enrollment_id']}", headers=admin).status_code == 200
