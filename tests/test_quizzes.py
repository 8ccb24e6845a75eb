"""Tests for lesson quiz management, practice and graded attempts."""
import pytest


@pytest.fixture()
def quiz_setup(client, make_user, make_course, enroll):
    owner_id, owner = make_user("instructor")
    student_id, student = make_user("student")
    course = make_course(owner_id)
    lesson_id = course["lessons"][0][0]
    enroll(student_id, course["course_id"])

    r = client.post(f"/lessons/{lesson_id}/quiz/bulk", json={"questions": [
        {"question": "2 + 2?", "options": ["3", "4", "5"], "correct_option_index": 1, "explanation": "Basic sum"},
        {"question": "Capital of France?", "options": ["Paris", "Rome"], "correct_option_index": 0},
        {"question": "Retired", "options": ["a", "b"], "correct_option_index": 0, "is_active": False},
    ]}, headers=owner)
    assert r.status_code == 201
    q1, q2, q3 = r.json()["data"]

    return {"owner": owner, "student": student, "lesson": lesson_id, "questions": (q1, q2, q3)}


def _submit(client, setup, answers, practice=False):
    return client.post(f"/lessons/{setup['lesson']}/quiz/submit", json={
        "answers": [{"question_id": q, "selected_index": i} for q, i in answers],
        "is_practice_mode": practice,
    }, headers=setup["student"])


def test_question_validation(client, quiz_setup):
    url = f"/lessons/{quiz_setup['lesson']}/quiz/bulk"
    bad_index = {"questions": [{"question": "Q", "options": ["a", "b"], "correct_option_index": 2}]}
    assert client.post(url, json=bad_index, headers=quiz_setup["owner"]).status_code == 422

    one_option = {"questions": [{"question": "Q", "options": ["a"], "correct_option_index": 0}]}
    assert client.post(url, json=one_option, headers=quiz_setup["owner"]).status_code == 422

    assert client.post(url, json={"questions": []}, headers=quiz_setup["owner"]).status_code == 422


def test_student_listing_hides_answers(client, quiz_setup):
    r = client.get(f"/lessons/{quiz_setup['lesson']}/quiz", headers=quiz_setup["student"])
    data = r.json()["data"]
    assert data["count"] == 2
    assert all("correct_option_index" not in q for q in data["questions"])

    r = client.get(f"/lessons/{quiz_setup['lesson']}/quiz", params={"include_inactive": True},
                   headers=quiz_setup["student"])
    assert r.status_code == 403

    manage = client.get(f"/lessons/{quiz_setup['lesson']}/quiz/manage", headers=quiz_setup["owner"]).json()["data"]
    assert len(manage) == 3
    assert "correct_option_index" in manage[0]


def test_unenrolled_student_cannot_take_quiz(client, quiz_setup, make_user):
    _, stranger = make_user("student")
    r = client.get(f"/lessons/{quiz_setup['lesson']}/quiz", headers=stranger)
    assert r.status_code == 403


def test_graded_attempt_once_practice_repeatable(client, quiz_setup):
    q1, q2, _ = quiz_setup["questions"]

    practice = _submit(client, quiz_setup, [(q1, 1), (q2, 1)], practice=True)
    assert practice.status_code == 200
    assert practice.json()["data"]["score_percentage"] == 50
    assert _submit(client, quiz_setup, [(q1, 1), (q2, 0)], practice=True).status_code == 200

    graded = _submit(client, quiz_setup, [(q1, 1), (q2, 0)])
    assert graded.status_code == 200
    body = graded.json()
    assert body["data"]["correct_answers"] == 2
    assert body["data"]["score_percentage"] == 100
    assert body["review"][0]["correct_option_index"] == 1
    assert body["review"][0]["explanation"] == "Basic sum"

    again = _submit(client, quiz_setup, [(q1, 1), (q2, 0)])
    assert again.status_code == 400
    assert again.json()["detail"] == "Quiz has already been submitted. You cannot submit again."

    assert _submit(client, quiz_setup, [(q1, 0), (q2, 0)], practice=True).status_code == 200

    history = client.get(f"/lessons/{quiz_setup['lesson']}/quiz/history", headers=quiz_setup["student"]).json()["data"]
    assert history["total_attempts"] == 4
    assert history["best_score"] == 100
    assert history["has_graded_attempt"] is True
    assert history["graded_result"]["is_practice_mode"] is False
    assert "answers" not in history["attempts"][0]


def test_submit_rejects_bad_answer_sets(client, quiz_setup):
    q1, q2, q3 = quiz_setup["questions"]

    r = _submit(client, quiz_setup, [])
    assert r.status_code == 400
    assert r.json()["detail"] == "Answers are required"

    assert _submit(client, quiz_setup, [(q1, 1), (q1, 1)]).status_code == 400
    assert _submit(client, quiz_setup, [(q1, 1), (q3, 0)]).status_code == 400
    assert _submit(client, quiz_setup, [(q1, 1), ("QQ_UNKNOWN", 0)]).status_code == 400


def test_staff_edit_and_delete_questions(client, quiz_setup, make_user):
    q1, _, _ = quiz_setup["questions"]
    url = f"/lessons/{quiz_setup['lesson']}/quiz/{q1}"

    _, other = make_user("instructor")
    assert client.put(url, json={"question": "Hijack"}, headers=other).status_code == 403
    assert client.put(url, json={"correct_option_index": 5}, headers=quiz_setup["owner"]).status_code == 400

    r = client.put(url, json={"correct_option_index": 2}, headers=quiz_setup["owner"])
    assert r.json()["data"]["correct_option_index"] == 2

    assert client.delete(url, headers=quiz_setup["owner"]).status_code == 200
    assert client.delete(url, headers=quiz_setup["owner"]).status_code == 404


def test_graded_attempt_on_free_lesson_requires_enrollment(client, make_user, make_course):
    owner_id, owner = make_user("instructor")
    _, visitor = make_user("student")
    course = make_course(owner_id, free_first=True)
    lesson_id = course["lessons"][0][0]

    r = client.post(f"/lessons/{lesson_id}/quiz/bulk", json={"questions": [
        {"question": "2 + 2?", "options": ["3", "4"], "correct_option_index": 1},
    ]}, headers=owner)
    question_id = r.json()["data"][0]
    answers = [{"question_id": question_id, "selected_index": 1}]

    assert client.get(f"/lessons/{lesson_id}/quiz", headers=visitor).status_code == 200

    r = client.post(f"/lessons/{lesson_id}/quiz/submit",
                    json={"answers": answers, "is_practice_mode": False}, headers=visitor)
    assert r.status_code == 403

    r = client.post(f"/lessons/{lesson_id}/quiz/submit",
                    json={"answers": answers, "is_practice_mode": True}, headers=visitor)
    assert r.status_code == 200
