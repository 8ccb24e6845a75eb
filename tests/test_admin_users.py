"""Tests for admin management of students and teachers."""


def _create(client, admin, kind, phone, **fields):
    payload = {"phone": phone, "password": "secret123", "first_name": "Nila", "last_name": "Das", **fields}
    return client.post(f"/admin/{kind}", json=payload, headers=admin)


def test_admin_only(client, make_user):
    _, instructor = make_user("instructor")
    assert client.get("/admin/students", headers=instructor).status_code == 403
    assert client.get("/admin/teachers").status_code == 401


def test_student_crud(client, make_user, make_course, enroll, fetch):
    admin_id, admin = make_user("admin")

    r = _create(client, admin, "students", "9111111111")
    assert r.status_code == 201
    student = r.json()["data"]
    assert student["role"] == "student"
    assert student["created_by"] == admin_id
    assert "password_hash" not in student
    assert _create(client, admin, "students", "9111111111").status_code == 409

    owner_id, _ = make_user("instructor")
    paid = make_course(owner_id, is_paid=True, price=500)
    free = make_course(owner_id)
    enroll(student["user_id"], paid["course_id"], payment_status="paid", payment_amount=500)
    enroll(student["user_id"], free["course_id"], payment_status="pending", payment_amount=0)

    listing = client.get("/admin/students", params={"search": "nila"}, headers=admin).json()
    assert listing["pagination"]["total"] == 1
    row = listing["data"][0]
    assert row["enrollment_count"] == 2
    assert row["total_enrolled_amount"] == 500

    url = f"/admin/students/{student['user_id']}"
    assert len(client.get(url, headers=admin).json()["data"]["enrollments"]) == 2

    r = client.put(url, json={"first_name": "Nilam", "email": "nilam@example.com", "is_active": False}, headers=admin)
    assert r.status_code == 200
    assert r.json()["data"]["email"] == "nilam@example.com"
    assert client.get("/admin/students", params={"status": "inactive"}, headers=admin).json()["pagination"]["total"] == 1
    assert client.get("/admin/students", params={"status": "active"}, headers=admin).json()["pagination"]["total"] == 0

    other_id, _ = make_user("student", email="taken@example.com")
    assert client.put(url, json={"email": "taken@example.com"}, headers=admin).status_code == 409

    assert client.get(f"/admin/teachers/{student['user_id']}", headers=admin).status_code == 404

    assert client.delete(url, headers=admin).status_code == 200
    assert fetch("users", {"user_id": student["user_id"]}) is None
    assert fetch("users", {"user_id": other_id}) is not None


def test_teacher_crud(client, make_user, make_course):
    _, admin = make_user("admin")

    teacher = _create(client, admin, "teachers", "9222222222").json()["data"]
    assert teacher["role"] == "instructor"
    url = f"/admin/teachers/{teacher['user_id']}"

    make_course(teacher["user_id"], title="Owned")
    detail = client.get(url, headers=admin).json()["data"]
    assert [c["title"] for c in detail["courses"]] == ["Owned"]

    r = client.put(url, json={"password": "brandnew1"}, headers=admin)
    assert r.status_code == 200
    assert client.post("/auth/login", json={"phone": "9222222222", "password": "brandnew1"}).status_code == 200

    assert client.delete(url, headers=admin).status_code == 400

    spare = _create(client, admin, "teachers", "9333333333").json()["data"]
    assert client.delete(f"/admin/teachers/{spare['user_id']}", headers=admin).status_code == 200
    assert client.get("/admin/teachers", headers=admin).json()["pagination"]["total"] == 1
