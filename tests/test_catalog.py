"""Tests for categories, course management, curriculum and the public catalog."""
import pytest

from coursehub.catalog.database import discount_percentage, final_price
from coursehub.catalog.models import extract_youtube_id


# ==================== UNIT ====================

def test_pricing_helpers():
    course = {"is_paid": True, "price": 1000, "sale_price": 667}
    assert final_price(course) == 667
    assert discount_percentage(course) == 33
    assert final_price({"is_paid": False, "price": 500}) == 0
    assert discount_percentage({"is_paid": True, "price": 200, "sale_price": 150}) == 25


def test_extract_youtube_id_forms():
    assert extract_youtube_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10") == "dQw4w9WgXcQ"
    assert extract_youtube_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_id("https://www.youtube.com/embed/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_id("dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_id(None) is None
    with pytest.raises(ValueError):
        extract_youtube_id("bad id!")


# ==================== CATEGORIES ====================

def test_category_crud_admin_only(client, make_user):
    _, admin = make_user("admin")
    _, instructor = make_user("instructor")

    r = client.post("/categories", json={"name": "Programming"}, headers=instructor)
    assert r.status_code == 403

    r = client.post("/categories", json={"name": "Programming", "color": "#10B981"}, headers=admin)
    assert r.status_code == 201
    category_id = r.json()["data"]["category_id"]

    r = client.post("/categories", json={"name": " programming "}, headers=admin)
    assert r.status_code == 409

    r = client.post("/categories", json={"name": "Design", "color": "blue"}, headers=admin)
    assert r.status_code == 422

    r = client.put(f"/categories/{category_id}", json={"is_active": False}, headers=admin)
    assert r.status_code == 200

    assert client.get("/categories").json()["data"] == []
    r = client.get("/categories", params={"include_inactive": True}, headers=admin)
    assert len(r.json()["data"]) == 1


def test_category_in_use_cannot_be_deleted(client, make_user, make_course):
    _, admin = make_user("admin")
    instructor_id, _ = make_user("instructor")
    category_id = client.post("/categories", json={"name": "Data"}, headers=admin).json()["data"]["category_id"]
    make_course(instructor_id, category=category_id)

    r = client.delete(f"/categories/{category_id}", headers=admin)
    assert r.status_code == 400


# ==================== COURSES ====================

def test_course_create_and_scoping(client, make_user):
    instructor_id, instructor = make_user("instructor")
    _, other = make_user("instructor")
    _, student = make_user("student")

    r = client.post("/courses", json={"title": "FastAPI"}, headers=student)
    assert r.status_code == 403

    r = client.post("/courses", json={"title": "FastAPI", "is_paid": True, "price": 499, "sale_price": 299},
                    headers=instructor)
    assert r.status_code == 201
    course = r.json()["data"]
    assert course["instructor"] == instructor_id
    assert course["final_price"] == 299
    assert course["discount_percentage"] == 40

    assert client.get("/courses", headers=instructor).json()["pagination"]["total"] == 1
    assert client.get("/courses", headers=other).json()["pagination"]["total"] == 0
    assert client.get(f"/courses/{course['course_id']}", headers=other).status_code == 403


def test_course_pricing_validation(client, make_user):
    _, instructor = make_user("instructor")
    r = client.post("/courses", json={"title": "Paid", "is_paid": True, "price": 0}, headers=instructor)
    assert r.status_code == 422

    r = client.post("/courses", json={"title": "Paid", "is_paid": True, "price": 100}, headers=instructor)
    course_id = r.json()["data"]["course_id"]
    r = client.put(f"/courses/{course_id}", json={"sale_price": 150}, headers=instructor)
    assert r.status_code == 400


def test_publish_sets_published_at(client, make_user):
    _, instructor = make_user("instructor")
    course_id = client.post("/courses", json={"title": "Draft"}, headers=instructor).json()["data"]["course_id"]
    r = client.put(f"/courses/{course_id}", json={"status": "published"}, headers=instructor)
    assert r.json()["data"]["published_at"] is not None


# ==================== CURRICULUM ====================

def test_chapter_and_lesson_ordering(client, make_user):
    _, instructor = make_user("instructor")
    course_id = client.post("/courses", json={"title": "Ordered"}, headers=instructor).json()["data"]["course_id"]

    first = client.post("/chapters", json={"course": course_id, "title": "One"}, headers=instructor).json()["data"]
    second = client.post("/chapters", json={"course": course_id, "title": "Two"}, headers=instructor).json()["data"]
    assert (first["order"], second["order"]) == (1, 2)

    r = client.post("/chapters", json={"course": course_id, "title": "Clash", "order": 2}, headers=instructor)
    assert r.status_code == 409

    r = client.put("/chapters/reorder", params={"course": course_id},
                   json={"order": [second["chapter_id"], first["chapter_id"]]}, headers=instructor)
    assert r.status_code == 200
    chapters = client.get("/chapters", params={"course": course_id}, headers=instructor).json()["data"]
    assert [c["chapter_id"] for c in chapters] == [second["chapter_id"], first["chapter_id"]]

    r = client.put("/chapters/reorder", params={"course": course_id},
                   json={"order": [second["chapter_id"]]}, headers=instructor)
    assert r.status_code == 400

    lesson = client.post("/lessons", json={
        "chapter": first["chapter_id"],
        "title": "Intro",
        "youtube_video_id": "https://youtu.be/dQw4w9WgXcQ",
    }, headers=instructor).json()["data"]
    assert lesson["order"] == 1
    assert lesson["course"] == course_id
    assert lesson["youtube"]["embed_url"] == "https://www.youtube.com/embed/dQw4w9WgXcQ"


def test_curriculum_requires_course_manager(client, make_user, make_course):
    owner_id, _ = make_user("instructor")
    _, other = make_user("instructor")
    course = make_course(owner_id)

    r = client.post("/chapters", json={"course": course["course_id"], "title": "Nope"}, headers=other)
    assert r.status_code == 403


def test_delete_course_cascades(client, make_user, make_course, fetch):
    owner_id, owner = make_user("instructor")
    course = make_course(owner_id)
    r = client.delete(f"/courses/{course['course_id']}", headers=owner)
    assert r.status_code == 200
    assert fetch("lessons", {"course": course["course_id"]}) is None
    assert fetch("chapters", {"course": course["course_id"]}) is None


# ==================== FAQS ====================

def test_faq_admin_crud_and_public_listing(client, make_user, make_course, fetch):
    owner_id, owner = make_user("instructor")
    _, admin = make_user("admin")
    course = make_course(owner_id)
    course_id = course["course_id"]

    assert client.post("/admin/faqs", json={"course": course_id, "question": "Q", "answer": "A"},
                       headers=owner).status_code == 403
    assert client.post("/admin/faqs", json={"course": "COURSE_MISSING", "question": "Q", "answer": "A"},
                       headers=admin).status_code == 404

    first = client.post("/admin/faqs", json={"course": course_id, "question": "Is it free?", "answer": "Yes"},
                        headers=admin).json()["data"]
    assert first["order"] == 1

    r = client.post("/admin/faqs/bulk", json={"course": course_id, "faqs": [
        {"question": "Certificate?", "answer": "On completion"},
        {"question": "  ", "answer": "dropped"},
        {"question": "Refunds?", "answer": "Within 7 days"},
    ]}, headers=admin)
    assert r.status_code == 201
    assert [f["order"] for f in r.json()["data"]] == [2, 3]

    r = client.post("/admin/faqs/bulk", json={"course": course_id, "faqs": [{"question": "", "answer": ""}]},
                    headers=admin)
    assert r.status_code == 400

    r = client.put(f"/admin/faqs/{first['faq_id']}", json={"answer": "Yes, always", "order": 9}, headers=admin)
    assert r.json()["data"]["answer"] == "Yes, always"

    public = client.get("/public/faqs", params={"course": course_id}).json()["data"]
    assert [f["question"] for f in public] == ["Certificate?", "Refunds?", "Is it free?"]

    assert client.delete(f"/admin/faqs/{first['faq_id']}", headers=admin).status_code == 200
    assert client.get(f"/admin/faqs/{first['faq_id']}", headers=admin).status_code == 404

    client.delete(f"/courses/{course_id}", headers=owner)
    assert fetch("course_faqs", {"course": course_id}) is None


def test_public_faqs_need_published_course(client, make_user, make_course, seed):
    owner_id, _ = make_user("instructor")
    course = make_course(owner_id, status="draft")
    seed("course_faqs", {"faq_id": "FAQ_1", "course": course["course_id"], "question": "Q", "answer": "A", "order": 1})
    assert client.get("/public/faqs", params={"course": course["course_id"]}).status_code == 404


# ==================== PUBLIC ====================

def test_public_list_only_published(client, make_user, make_course):
    owner_id, _ = make_user("instructor", first_name="Ravi")
    make_course(owner_id, title="Live")
    make_course(owner_id, title="Hidden", status="draft")
    make_course(owner_id, title="Premium", is_paid=True, price=999)

    r = client.get("/public/courses")
    titles = {c["title"] for c in r.json()["data"]}
    assert titles == {"Live", "Premium"}
    assert r.json()["data"][0]["instructor_name"] == "Ravi Instructor"

    r = client.get("/public/courses", params={"pricing": "paid"})
    assert [c["title"] for c in r.json()["data"]] == ["Premium"]


def test_public_detail_locks_content(client, make_user, make_course, enroll):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id, lessons=(2,), free_first=True)

    detail = client.get(f"/public/courses/{course['course_id']}").json()["data"]
    free, locked = detail["chapters"][0]["lessons"]
    assert free["content"] == "Lesson body"
    assert "content" not in locked
    assert locked["youtube"] is None
    assert detail["is_enrolled"] is False
    assert detail["lesson_count"] == 2
    assert detail["total_duration"] == 20

    enroll(student_id, course["course_id"])
    detail = client.get(f"/public/courses/{course['course_id']}", headers=student).json()["data"]
    assert detail["is_enrolled"] is True
    assert detail["chapters"][0]["lessons"][1]["content"] == "Lesson body"


def test_public_detail_hides_drafts(client, make_user, make_course):
    owner_id, _ = make_user("instructor")
    course = make_course(owner_id, status="draft")
    assert client.get(f"/public/courses/{course['course_id']}").status_code == 404
