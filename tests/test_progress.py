"""Tests for lesson progress writes and the lesson -> chapter -> course roll-up."""
from datetime import date

from coursehub.progress.progress_service import current_streak, longest_streak, milestones


# ==================== UNIT ====================

def test_current_streak_counts_back_from_today():
    today = date(2026, 3, 10)
    days = [date(2026, 3, 10), date(2026, 3, 9), date(2026, 3, 8), date(2026, 3, 5)]
    assert current_streak(days, today=today) == 3
    assert current_streak(days, today=date(2026, 3, 11)) == 0
    assert current_streak([], today=today) == 0


def test_longest_streak():
    days = [date(2026, 1, 1), date(2026, 1, 2), date(2026, 1, 4), date(2026, 1, 5), date(2026, 1, 6)]
    assert longest_streak(days) == 3
    assert longest_streak([date(2026, 1, 1)]) == 1
    assert longest_streak([]) == 0


def test_milestones():
    result = milestones(2, 7)
    assert [m["target"] for m in result] == [2, 4, 6, 7]
    assert [m["achieved"] for m in result] == [True, False, False, False]
    assert milestones(0, 0) == []


# ==================== API ====================

def _save(client, headers, course_id, lesson_id, **fields):
    return client.post("/progress", json={"course": course_id, "lesson": lesson_id, **fields}, headers=headers)


def test_progress_requires_enrollment(client, make_user, make_course):
    owner_id, _ = make_user("instructor")
    _, student = make_user("student")
    course = make_course(owner_id, free_first=True)
    free_lesson, paid_lesson = course["lessons"][0]

    assert _save(client, student, course["course_id"], paid_lesson).status_code == 403
    assert _save(client, student, course["course_id"], free_lesson).status_code == 200


def test_progress_lesson_must_belong_to_course(client, make_user, make_course, enroll):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id)
    other = make_course(owner_id)
    enroll(student_id, course["course_id"])

    r = _save(client, student, course["course_id"], other["lessons"][0][0])
    assert r.status_code == 404


def test_rollup_through_chapter_course_and_enrollment(client, make_user, make_course, enroll, fetch):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id, lessons=(2, 1))
    course_id = course["course_id"]
    (l1, l2), (l3,) = course["lessons"]
    enroll(student_id, course_id)

    r = _save(client, student, course_id, l1, is_completed=True, time_spent=120)
    assert r.status_code == 200
    record = r.json()["data"]
    assert record["progress_percentage"] == 100
    assert record["progress_id"].startswith("PRG_")

    chapter = fetch("chapter_progress", {"user": student_id, "chapter": course["chapters"][0]})
    assert chapter["completed_lessons"] == 1
    assert chapter["progress_percentage"] == 50
    assert chapter["is_completed"] is False

    enrollment = fetch("enrollments", {"student": student_id, "course": course_id})
    assert enrollment["progress"] == 33
    assert enrollment["status"] == "active"

    _save(client, student, course_id, l2, is_completed=True)
    _save(client, student, course_id, l3, is_completed=True)

    chapter = fetch("chapter_progress", {"user": student_id, "chapter": course["chapters"][0]})
    assert chapter["is_completed"] is True
    course_record = fetch("course_progress", {"user": student_id, "course": course_id})
    assert course_record["progress_percentage"] == 100
    assert course_record["completed_at"] is not None

    enrollment = fetch("enrollments", {"student": student_id, "course": course_id})
    assert enrollment["status"] == "completed"
    assert enrollment["progress"] == 100

    # un-completing a lesson reopens the enrollment
    _save(client, student, course_id, l3, is_completed=False)
    enrollment = fetch("enrollments", {"student": student_id, "course": course_id})
    assert enrollment["status"] == "active"
    assert enrollment["progress"] == 67


def test_completed_at_is_kept_on_repeat(client, make_user, make_course, enroll):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id)
    enroll(student_id, course["course_id"])
    lesson_id = course["lessons"][0][0]

    first = _save(client, student, course["course_id"], lesson_id, is_completed=True).json()["data"]
    second = _save(client, student, course["course_id"], lesson_id, is_completed=True,
                   progress_percentage=40).json()["data"]
    assert second["completed_at"] == first["completed_at"]
    assert second["progress_percentage"] == 100


def test_dropped_enrollment_is_not_touched(client, make_user, make_course, enroll, fetch):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id, lessons=(1,), free_first=True)
    enroll(student_id, course["course_id"], status="dropped")

    _save(client, student, course["course_id"], course["lessons"][0][0], is_completed=True)
    enrollment = fetch("enrollments", {"student": student_id, "course": course["course_id"]})
    assert enrollment["status"] == "dropped"
    assert enrollment["progress"] == 0


def test_quiz_prompt_after_completion(client, make_user, make_course, enroll, seed):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id)
    enroll(student_id, course["course_id"])
    lesson_id = course["lessons"][0][0]
    seed("lesson_quiz_questions", {
        "question_id": "QQ_1", "lesson": lesson_id, "course": course["course_id"],
        "question": "2 + 2?", "options": ["3", "4"], "correct_option_index": 1, "is_active": True,
    })

    r = _save(client, student, course["course_id"], lesson_id, progress_percentage=50)
    assert r.json()["quiz"] is None

    r = _save(client, student, course["course_id"], lesson_id, is_completed=True)
    quiz = r.json()["quiz"]
    assert quiz["required"] is True
    assert quiz["questions_count"] == 1


def test_status_views_and_dashboard(client, make_user, make_course, enroll):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id, lessons=(2, 2))
    course_id = course["course_id"]
    enroll(student_id, course_id)

    r = client.get("/progress/lesson-status", params={"course": course_id, "lesson": course["lessons"][1][0]},
                   headers=student)
    assert r.json()["data"]["is_completed"] is False

    for lesson_id in course["lessons"][0]:
        _save(client, student, course_id, lesson_id, is_completed=True, time_spent=60)

    r = client.get("/progress/chapter-status", params={"course": course_id, "chapter": course["chapters"][0]},
                   headers=student)
    assert r.json()["data"]["is_completed"] is True
    assert r.json()["data"]["completed_lessons"] == 2

    r = client.get("/progress/chapter-status", params={"course": course_id, "chapter": "CHAP_MISSING"},
                   headers=student)
    assert r.status_code == 404

    completion = client.get("/progress/completion", params={"course": course_id}, headers=student).json()["data"]
    assert completion["course"]["progress_percentage"] == 50
    assert len(completion["chapters"]) == 2

    dash = client.get("/progress/dashboard", params={"course": course_id}, headers=student).json()["data"]
    assert dash["course"]["completed_chapters"] == 1
    assert dash["statistics"]["completion_rate"] == 50
    assert dash["statistics"]["average_time_per_lesson"] == 60
    assert dash["statistics"]["current_streak"] == 1
    assert len(dash["recent_activity"]) == 2
    assert [m["achieved"] for m in dash["milestones"]] == [True, True, False, False]


def test_manual_chapter_completion(client, make_user, make_course, enroll, fetch):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id)
    enroll(student_id, course["course_id"])

    r = client.post("/progress/completion", json={
        "type": "chapter", "course": course["course_id"], "chapter": course["chapters"][1], "is_completed": True,
    }, headers=student)
    assert r.status_code == 200
    assert r.json()["data"]["progress_percentage"] == 100

    r = client.post("/progress/completion", json={"type": "chapter", "course": course["course_id"]}, headers=student)
    assert r.status_code == 422


def test_progress_listing_and_ownership(client, make_user, make_course, enroll):
    _, admin = make_user("admin")
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    _, other = make_user("student")
    course = make_course(owner_id)
    enroll(student_id, course["course_id"])

    record = _save(client, student, course["course_id"], course["lessons"][0][0],
                   is_completed=True, time_spent=30).json()["data"]

    listing = client.get("/progress", headers=student).json()["data"]
    assert listing["pagination"]["total"] == 1
    assert listing["stats"]["completion_rate"] == 100

    assert client.get("/progress", params={"user": student_id}, headers=other).status_code == 403
    assert client.get("/progress", params={"user": student_id}, headers=admin).json()["data"]["pagination"]["total"] == 1

    courses = client.get("/progress/courses", headers=student).json()["data"]
    assert courses["course_progress"][0]["course_title"] == "Python Basics"

    assert client.get(f"/progress/{record['progress_id']}", headers=other).status_code == 403

    r = client.put(f"/progress/{record['progress_id']}", json={"is_completed": False}, headers=student)
    assert r.json()["data"]["completed_at"] is None

    assert client.delete(f"/progress/{record['progress_id']}", headers=student).status_code == 200
    assert client.get(f"/progress/{record['progress_id']}", headers=student).status_code == 404


def test_heartbeat_write_keeps_completed_lesson(client, make_user, make_course, enroll, fetch):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id, lessons=(1,))
    course_id = course["course_id"]
    lesson_id = course["lessons"][0][0]
    enroll(student_id, course_id)

    first = _save(client, student, course_id, lesson_id, is_completed=True).json()["data"]
    assert fetch("enrollments", {"student": student_id})["status"] == "completed"

    r = _save(client, student, course_id, lesson_id, progress_percentage=40, time_spent=30)
    assert r.status_code == 200
    record = r.json()["data"]
    assert record["is_completed"] is True
    assert record["progress_percentage"] == 100
    assert record["completed_at"] == first["completed_at"]
    assert fetch("course_progress", {"user": student_id, "course": course_id})["progress_percentage"] == 100
    assert fetch("enrollments", {"student": student_id})["status"] == "completed"

    reopened = _save(client, student, course_id, lesson_id, is_completed=False, progress_percentage=40).json()["data"]
    assert reopened["is_completed"] is False
    assert reopened["completed_at"] is None


def test_chapter_completion_requires_enrollment(client, make_user, make_course, fetch):
    owner_id, _ = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id, free_first=True)

    r = client.post("/progress/completion", json={
        "type": "chapter", "course": course["course_id"], "chapter": course["chapters"][0], "is_completed": True,
    }, headers=student)
    assert r.status_code == 403
    assert fetch("chapter_progress", {"user": student_id}) is None
