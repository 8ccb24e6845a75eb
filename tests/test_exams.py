"""Tests for the question bank, exam management and student exam attempts."""
from datetime import datetime, timedelta

import pytest

from coursehub.exams.exam_service import remaining_seconds, score_answer


def _iso(days: float) -> str:
    return (datetime.utcnow() + timedelta(days=days)).isoformat()


QUESTIONS = [
    {"question": "Which is a list?", "type": "mcq", "marks": 4,
     "options": [{"text": "()", "is_correct": False}, {"text": "[]", "is_correct": True}]},
    {"question": "Python is compiled to bytecode", "type": "true_false", "marks": 2,
     "options": [{"text": "True", "is_correct": True}, {"text": "False", "is_correct": False}]},
    {"question": "Capital of France is ____", "type": "fill_blank", "marks": 2, "correct_answer": "Paris"},
    {"question": "Explain generators", "type": "essay", "marks": 2, "correct_answer": "Lazy iterators"},
]


# ==================== UNIT ====================

def test_score_answer_by_type():
    mcq = {"question_id": "EQ_1", "type": "mcq", "marks": 3,
           "options": [{"text": "a", "is_correct": False}, {"text": "b", "is_correct": True}]}
    assert score_answer(mcq, {"question_id": "EQ_1", "selected_option": 1})["marks_obtained"] == 3
    assert score_answer(mcq, {"question_id": "EQ_1", "selected_option": 0})["is_correct"] is False
    assert score_answer(mcq, {"question_id": "EQ_1", "selected_option": 7})["marks_obtained"] == 0

    blank = {"question_id": "EQ_2", "type": "fill_blank", "marks": 2, "correct_answer": "Paris "}
    assert score_answer(blank, {"question_id": "EQ_2", "written_answer": " PARIS"})["is_correct"] is True

    essay = {"question_id": "EQ_3", "type": "essay", "marks": 5, "correct_answer": "x"}
    scored = score_answer(essay, {"question_id": "EQ_3", "written_answer": "Long answer"})
    assert scored["marks_obtained"] == 0
    assert scored["needs_review"] is True


def test_remaining_seconds():
    exam = {"duration": 10}
    now = datetime(2024, 1, 1, 12, 0, 0)
    attempt = {"started_at": now - timedelta(minutes=4), "time_spent": 0}
    assert remaining_seconds(exam, attempt, now) == 360
    assert remaining_seconds(exam, {**attempt, "time_spent": 500}, now) == 100
    assert remaining_seconds(exam, {"started_at": now - timedelta(hours=1)}, now) == 0


# ==================== API ====================

@pytest.fixture()
def exam_setup(client, make_user, make_course, enroll):
    owner_id, owner = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id)
    enroll(student_id, course["course_id"])
    return {"owner": owner, "student": student, "student_id": student_id, "course": course["course_id"]}


def _create_exam(client, setup, **fields):
    payload = {
        "title": "Python midterm",
        "type": "mixed",
        "duration": 30,
        "total_marks": 10,
        "passing_marks": 5,
        "start_date": _iso(-1),
        "end_date": _iso(1),
        "course": setup["course"],
        "is_published": True,
        **fields,
    }
    return client.post("/exams", json=payload, headers=setup["owner"])


def _exam_with_questions(client, setup, **fields):
    exam = _create_exam(client, setup, **fields).json()["data"]
    r = client.post("/questions/bulk", json={"exam": exam["exam_id"], "questions": QUESTIONS}, headers=setup["owner"])
    assert r.status_code == 201
    return exam["exam_id"], r.json()["data"]


def test_question_rules(client, exam_setup):
    owner = exam_setup["owner"]
    one_option = {"question": "Q", "type": "mcq", "options": [{"text": "a", "is_correct": True}]}
    assert client.post("/questions", json=one_option, headers=owner).status_code == 422

    no_correct = {"question": "Q", "type": "mcq",
                  "options": [{"text": "a"}, {"text": "b"}]}
    assert client.post("/questions", json=no_correct, headers=owner).status_code == 422

    two_true = {"question": "Q", "type": "true_false",
                "options": [{"text": "T", "is_correct": True}, {"text": "F", "is_correct": True}]}
    assert client.post("/questions", json=two_true, headers=owner).status_code == 422

    assert client.post("/questions", json={"question": "Q", "type": "written"}, headers=owner).status_code == 422

    r = client.post("/questions", json=QUESTIONS[0], headers=owner)
    assert r.status_code == 201
    question_id = r.json()["data"]["question_id"]
    assert question_id.startswith("EQ_")

    r = client.put(f"/questions/{question_id}", json={"options": [{"text": "only", "is_correct": True}]}, headers=owner)
    assert r.status_code == 400
    r = client.put(f"/questions/{question_id}", json={"marks": 5, "difficulty": "hard"}, headers=owner)
    assert r.json()["data"]["marks"] == 5


def test_question_bank_scoping(client, make_user, exam_setup):
    question_id = client.post("/questions", json=QUESTIONS[2], headers=exam_setup["owner"]).json()["data"]["question_id"]
    _, other = make_user("instructor")
    _, admin = make_user("admin")
    _, student = make_user("student")

    assert client.get("/questions", headers=other).json()["pagination"]["total"] == 0
    assert client.get(f"/questions/{question_id}", headers=other).status_code == 403
    assert client.get("/questions", headers=student).status_code == 403

    r = client.get("/questions", params={"type": "fill_blank", "search": "capital"}, headers=admin)
    assert r.json()["pagination"]["total"] == 1


def test_exam_create_rules(client, make_user, make_course, exam_setup):
    assert _create_exam(client, exam_setup, passing_marks=20).status_code == 422
    assert _create_exam(client, exam_setup, end_date=_iso(-2)).status_code == 422
    assert _create_exam(client, exam_setup, questions=["EQ_MISSING"]).status_code == 400

    foreign = make_course(make_user("instructor")[0])
    assert _create_exam(client, exam_setup, course=foreign["course_id"]).status_code == 403

    r = _create_exam(client, exam_setup)
    assert r.status_code == 201
    exam = r.json()["data"]
    assert exam["exam_id"].startswith("EXAM_")
    assert exam["status"] == "active"
    assert exam["question_count"] == 0

    r = client.put(f"/exams/{exam['exam_id']}", json={"passing_marks": 50}, headers=exam_setup["owner"])
    assert r.status_code == 400

    _, other = make_user("instructor")
    assert client.get(f"/exams/{exam['exam_id']}", headers=other).status_code == 403

    drafts = client.get("/exams", params={"status": "draft"}, headers=exam_setup["owner"]).json()
    assert drafts["pagination"]["total"] == 0
    active = client.get("/exams", params={"status": "active"}, headers=exam_setup["owner"]).json()
    assert active["pagination"]["total"] == 1


def test_link_and_unlink_questions(client, exam_setup, fetch):
    exam_id, question_ids = _exam_with_questions(client, exam_setup)
    url = f"/exams/{exam_id}/questions"
    owner = exam_setup["owner"]

    assert len(client.get(url, headers=owner).json()["data"]) == 4
    assert client.post(url, json={"question_ids": ["EQ_MISSING"]}, headers=owner).status_code == 400
    assert client.post(url, json={"question_ids": question_ids[:2]}, headers=owner).status_code == 400

    r = client.request("DELETE", url, json={"question_ids": [question_ids[0]]}, headers=owner)
    assert r.status_code == 200
    assert r.json()["data"]["question_count"] == 3
    assert fetch("exam_questions", {"question_id": question_ids[0]})["exam"] is None

    r = client.post(url, json={"question_ids": [question_ids[0]]}, headers=owner)
    assert r.json()["data"]["questions"][-1] == question_ids[0]

    client.delete(f"/questions/{question_ids[1]}", headers=owner)
    assert question_ids[1] not in fetch("exams", {"exam_id": exam_id})["questions"]


def test_student_exam_flow(client, exam_setup):
    exam_id, question_ids = _exam_with_questions(client, exam_setup)
    student = exam_setup["student"]
    mcq, tf, blank, essay = question_ids

    listing = client.get("/student/exams", headers=student).json()["data"]
    assert [e["exam_id"] for e in listing] == [exam_id]

    paper = client.get(f"/student/exams/{exam_id}", headers=student).json()["data"]
    assert len(paper["questions"]) == 4
    first = paper["questions"][0]
    assert "correct_answer" not in first
    assert all(set(option) == {"index", "text"} for option in first["options"])

    r = client.post("/student/exam-attempts", json={"exam": exam_id}, headers=student)
    assert r.status_code == 201
    started = r.json()["data"]
    attempt_id = started["attempt"]["attempt_id"]
    assert started["attempt"]["attempt_number"] == 1
    assert 0 < started["remaining_seconds"] <= 1800

    r = client.post("/student/exam-attempts", json={"exam": exam_id}, headers=student)
    assert r.status_code == 200
    assert r.json()["data"]["attempt"]["attempt_id"] == attempt_id

    url = f"/student/exam-attempts/{attempt_id}"
    bad = {"answers": [{"question_id": "EQ_OTHER", "selected_option": 0}]}
    assert client.put(url, json=bad, headers=student).status_code == 400
    saved = {"answers": [{"question_id": mcq, "selected_option": 1}]}
    assert client.put(url, json=saved, headers=student).status_code == 200

    answers = [
        {"question_id": mcq, "selected_option": 1},
        {"question_id": tf, "selected_option": 1},
        {"question_id": blank, "written_answer": " paris "},
        {"question_id": essay, "written_answer": "They yield values lazily"},
    ]
    r = client.post(f"{url}/submit", json={"answers": answers}, headers=student)
    assert r.status_code == 200
    result = r.json()["data"]
    assert result["status"] == "completed"
    assert result["marks_obtained"] == 6
    assert result["percentage"] == 60
    assert result["is_passed"] is True
    assert all("is_correct" not in a for a in result["answers"])

    assert client.post(f"{url}/submit", json={"answers": answers}, headers=student).status_code == 400
    assert client.put(url, json=saved, headers=student).status_code == 400
    assert client.post("/student/exam-attempts", json={"exam": exam_id}, headers=student).status_code == 400
    assert client.get("/student/exams", headers=student).json()["data"] == []

    grade_url = f"/exams/{exam_id}/attempts/{attempt_id}/grade"
    owner = exam_setup["owner"]
    assert client.put(grade_url, json={"grades": [{"question_id": essay, "marks_obtained": 3}]},
                      headers=owner).status_code == 400
    assert client.put(grade_url, json={"grades": [{"question_id": mcq, "marks_obtained": 1}]},
                      headers=owner).status_code == 400
    r = client.put(grade_url, json={"grades": [{"question_id": essay, "marks_obtained": 2}]}, headers=owner)
    assert r.status_code == 200
    assert r.json()["data"]["marks_obtained"] == 8
    assert r.json()["data"]["percentage"] == 80

    attempts = client.get(f"/exams/{exam_id}/attempts", headers=owner).json()
    assert attempts["pagination"]["total"] == 1
    assert attempts["data"][0]["student_name"] == "Test Student"

    mine = client.get("/student/exam-attempts", headers=student).json()
    assert mine["data"][0]["exam_title"] == "Python midterm"


def test_result_visibility_flags(client, exam_setup):
    exam_id, question_ids = _exam_with_questions(client, exam_setup, show_results=False, show_correct_answers=False)
    student = exam_setup["student"]
    attempt_id = client.post("/student/exam-attempts", json={"exam": exam_id},
                             headers=student).json()["data"]["attempt"]["attempt_id"]

    r = client.post(f"/student/exam-attempts/{attempt_id}/submit",
                    json={"answers": [{"question_id": question_ids[0], "selected_option": 1}]}, headers=student)
    result = r.json()["data"]
    assert "marks_obtained" not in result
    assert "is_passed" not in result
    assert "marks_obtained" not in result["answers"][0]

    client.put(f"/exams/{exam_id}", json={"show_results": True, "show_correct_answers": True},
               headers=exam_setup["owner"])
    detail = client.get(f"/student/exam-attempts/{attempt_id}", headers=student).json()["data"]["attempt"]
    assert detail["marks_obtained"] == 4
    assert detail["answers"][0]["is_correct"] is True


def test_late_submission_is_timeout(client, exam_setup, db, run):
    exam_id, question_ids = _exam_with_questions(client, exam_setup, duration=5)
    student = exam_setup["student"]
    attempt_id = client.post("/student/exam-attempts", json={"exam": exam_id},
                             headers=student).json()["data"]["attempt"]["attempt_id"]
    run(db.exam_attempts.update_one(
        {"attempt_id": attempt_id},
        {"$set": {"started_at": datetime.utcnow() - timedelta(minutes=10)}}
    ))

    resumed = client.get(f"/student/exam-attempts/{attempt_id}", headers=student).json()["data"]
    assert resumed["remaining_seconds"] == 0

    r = client.post(f"/student/exam-attempts/{attempt_id}/submit",
                    json={"answers": [{"question_id": question_ids[0], "selected_option": 1}]}, headers=student)
    assert r.json()["data"]["status"] == "timeout"
    assert r.json()["data"]["marks_obtained"] == 4


def test_exam_access_rules(client, make_user, exam_setup):
    exam_id, _ = _exam_with_questions(client, exam_setup)
    _, stranger = make_user("student")
    assert client.get(f"/student/exams/{exam_id}", headers=stranger).status_code == 403
    assert client.post("/student/exam-attempts", json={"exam": exam_id}, headers=stranger).status_code == 403
    assert client.get("/student/exams", headers=stranger).json()["data"] == []

    draft_id, _ = _exam_with_questions(client, exam_setup, is_published=False)
    assert client.get(f"/student/exams/{draft_id}", headers=exam_setup["student"]).status_code == 400

    later_id, _ = _exam_with_questions(client, exam_setup, start_date=_iso(1), end_date=_iso(2))
    r = client.post("/student/exam-attempts", json={"exam": later_id}, headers=exam_setup["student"])
    assert r.status_code == 400

    attempt_id = client.post("/student/exam-attempts", json={"exam": exam_id},
                             headers=exam_setup["student"]).json()["data"]["attempt"]["attempt_id"]
    _, classmate = make_user("student")
    assert client.get(f"/student/exam-attempts/{attempt_id}", headers=classmate).status_code == 403


def test_multiple_attempts_and_delete(client, exam_setup, fetch):
    exam_id, question_ids = _exam_with_questions(client, exam_setup, max_attempts=2)
    student = exam_setup["student"]

    for number in (1, 2):
        started = client.post("/student/exam-attempts", json={"exam": exam_id}, headers=student).json()["data"]
        assert started["attempt"]["attempt_number"] == number
        attempt_id = started["attempt"]["attempt_id"]
        client.put(f"/student/exam-attempts/{attempt_id}", json={"abandon": True}, headers=student)

    assert fetch("exam_attempts", {"attempt_id": attempt_id})["status"] == "abandoned"
    assert client.post("/student/exam-attempts", json={"exam": exam_id}, headers=student).status_code == 400

    assert client.delete(f"/exams/{exam_id}", headers=exam_setup["owner"]).status_code == 200
    assert fetch("exam_attempts", {"exam": exam_id}) is None
    assert fetch("exam_questions", {"question_id": question_ids[0]})["exam"] is None
