"""HTTP behaviour of the quiz attempt and auth routes."""

import pytest
from fastapi import Depends

from quizmarket.backend.database.models import QuizStatus
from quizmarket.backend.dependencies import (
    get_attempt_engine,
    get_attempt_store,
    get_quiz_catalog,
    get_security_guard,
)
from quizmarket.backend.services.attempt_engine import AttemptEngine
from quizmarket.backend.services.security_guard import RATE_LIMIT_KEY, AttemptSecurityGuard, CounterStore

from factories import auth_headers, create_quiz, mcq, short_desc, true_false


@pytest.fixture
def clocked_engine(app, settings, clock):
    """Route the API through an engine driven by the test clock"""

    def override(store=Depends(get_attempt_store), catalog=Depends(get_quiz_catalog)):
        return AttemptEngine(store, catalog, settings=settings, clock=clock)

    app.dependency_overrides[get_attempt_engine] = override
    return clock


async def start(client, quiz, user, **body):
    return await client.post(f"/quizzes/{quiz.id}/attempts", json=body or None, headers=auth_headers(user))


def all_options(payload):
    return [option for question in payload["quiz"]["questions"] for option in question["options"]]


# Authentication

async def test_attempt_routes_require_authentication(client):
    response = await client.post("/quizzes/1/attempts")

    assert response.status_code == 401
    assert response.json()["error"] == "AUTHENTICATION_FAILED"


async def test_invalid_token_is_rejected(client):
    response = await client.get("/user/quiz-attempts", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json()["error"] == "AUTHENTICATION_FAILED"


async def test_register_login_and_me(client):
    register = await client.post("/auth/register", json={
        "name": "New Learner",
        "email": "new@example.com",
        "password": "long-enough-password",
    })
    assert register.status_code == 201
    assert register.json()["user"]["role"] == "learner"

    duplicate = await client.post("/auth/register", json={
        "name": "Again",
        "email": "new@example.com",
        "password": "long-enough-password",
    })
    assert duplicate.status_code == 409

    login = await client.post("/auth/login", json={"email": "new@example.com", "password": "long-enough-password"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "new@example.com"


async def test_login_with_wrong_password_fails(client, learner):
    response = await client.post("/auth/login", json={"email": learner.email, "password": "wrong-password"})

    assert response.status_code == 401


async def test_register_rejects_admin_role(client):
    response = await client.post("/auth/register", json={
        "name": "Sneaky",
        "email": "sneaky@example.com",
        "password": "long-enough-password",
        "role": "admin",
    })

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"


# Start and resume

async def test_start_creates_then_resumes(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, [mcq(), true_false(True)], enroll=[learner])

    created = await start(client, quiz, learner)
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "created"
    assert body["attempt"]["status"] == "in_progress"
    assert body["attempt"]["total_questions"] == 2
    assert len(body["quiz"]["questions"]) == 2
    assert all("is_correct" not in option for option in all_options(body))
    assert "correct_boolean" not in body["quiz"]["questions"][1]

    resumed = await start(client, quiz, learner)
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "resume"
    assert resumed.json()["attempt"]["id"] == body["attempt"]["id"]


async def test_force_new_returns_fresh_attempt(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])

    first = await start(client, quiz, learner)
    second = await start(client, quiz, learner, forceNew=True)

    assert second.status_code == 201
    assert second.json()["attempt"]["id"] != first.json()["attempt"]["id"]


async def test_start_with_quiz_id_in_body(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])

    response = await client.post("/quiz-attempts/start", json={"quizId": quiz.id}, headers=auth_headers(learner))

    assert response.status_code == 201
    assert response.json()["attempt"]["quiz_id"] == quiz.id


async def test_start_requires_enrollment(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor)

    response = await start(client, quiz, learner)

    assert response.status_code == 403
    assert response.json()["error"] == "ACCESS_DENIED"


async def test_start_unknown_quiz_is_not_found(client, learner):
    response = await client.post("/quizzes/98765/attempts", headers=auth_headers(learner))

    assert response.status_code == 404


async def test_start_beyond_max_attempts(client, session, instructor, learner):
    quiz = await create_quiz(
        session, instructor, enroll=[learner], allow_multiple_attempts=False, max_attempts=1
    )
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]
    await client.post(f"/quiz-attempts/{attempt_id}/submit", json={}, headers=auth_headers(learner))

    response = await start(client, quiz, learner)

    assert response.status_code == 422
    assert response.json()["error"] == "MAX_ATTEMPTS_EXCEEDED"


async def test_resume_endpoint(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]

    response = await client.post(f"/quiz-attempts/{attempt_id}/resume", headers=auth_headers(learner))

    assert response.status_code == 200
    assert response.json()["attempt"]["id"] == attempt_id
    assert response.json()["quiz"]["id"] == quiz.id


# Progress and submit

async def test_progress_then_submit(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, [mcq(points=2), short_desc()], enroll=[learner])
    headers = auth_headers(learner)
    attempt = (await start(client, quiz, learner)).json()["attempt"]
    choice_id, text_id = attempt["question_order"]

    progress = await client.put(f"/quiz-attempts/{attempt['id']}/progress", json={
        "currentQuestionIndex": 1,
        "timeSpent": 40,
        "answers": {str(choice_id): 0},
    }, headers=headers)

    assert progress.status_code == 200
    saved = progress.json()
    assert saved["status"] == "progress_saved"
    assert saved["attempt"]["current_question_index"] == 1
    assert saved["attempt"]["progress"]["answers"] == {str(choice_id): 0}
    assert saved["attempt"]["progress"]["completionPercentage"] == 50.0

    submitted = await client.post(f"/quiz-attempts/{attempt['id']}/submit", json={
        "answers": {str(text_id): "My explanation"},
        "timeSpent": 90,
    }, headers=headers)

    assert submitted.status_code == 200
    body = submitted.json()
    assert body["status"] == "completed"
    assert body["attempt"]["status"] == "completed"
    assert body["results"]["score"] == 100.0
    assert body["results"]["maxScore"] == 2.0
    assert body["results"]["pendingAnswers"] == 1
    assert body["results"]["timeSpent"] == 90
    assert len(body["answers"]) == 2
    assert any(option.get("is_correct") for option in all_options(body))

    again = await client.post(f"/quiz-attempts/{attempt['id']}/submit", json={}, headers=headers)
    assert again.status_code == 409
    assert again.json()["error"] == "INVALID_STATE"


async def test_negative_time_is_rejected(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]

    response = await client.put(
        f"/quiz-attempts/{attempt_id}/progress",
        json={"currentQuestionIndex": 0, "timeSpent": -5},
        headers=auth_headers(learner)
    )

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_unknown_answer_key_is_rejected(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]

    response = await client.put(
        f"/quiz-attempts/{attempt_id}/progress",
        json={"currentQuestionIndex": 0, "answers": {"424242": 1}},
        headers=auth_headers(learner)
    )

    assert response.status_code == 422
    assert response.json()["details"]["unknown_question_ids"] == ["424242"]


async def test_get_attempt_reveals_answers_only_after_completion(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    headers = auth_headers(learner)
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]

    before = (await client.get(f"/quiz-attempts/{attempt_id}", headers=headers)).json()
    assert before["results"] is None
    assert before["answers"] == []
    assert all("is_correct" not in option for option in all_options(before))

    await client.post(f"/quiz-attempts/{attempt_id}/submit", json={}, headers=headers)

    after = (await client.get(f"/quiz-attempts/{attempt_id}", headers=headers)).json()
    assert after["results"]["score"] == 0.0
    assert len(after["answers"]) == 1
    assert all("is_correct" in option for option in all_options(after))


async def test_abandon(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    headers = auth_headers(learner)
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]

    response = await client.post(f"/quiz-attempts/{attempt_id}/abandon", headers=headers)
    repeated = await client.post(f"/quiz-attempts/{attempt_id}/abandon", headers=headers)

    assert response.status_code == 200
    assert response.json()["attempt"]["status"] == "abandoned"
    assert repeated.status_code == 200


async def test_timed_out_attempt_is_gone(client, session, clocked_engine, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner], timer_seconds=60)
    headers = auth_headers(learner)
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]

    clocked_engine.advance(120)

    resumed = await client.post(f"/quiz-attempts/{attempt_id}/resume", headers=headers)
    assert resumed.status_code == 410
    assert resumed.json()["error"] == "ATTEMPT_EXPIRED"

    detail = await client.get(f"/quiz-attempts/{attempt_id}", headers=headers)
    assert detail.json()["attempt"]["status"] == "expired"

    progress = await client.put(
        f"/quiz-attempts/{attempt_id}/progress", json={"currentQuestionIndex": 0}, headers=headers
    )
    assert progress.status_code == 409


# Ownership

async def test_other_users_attempt_is_forbidden(client, session, instructor, learner, other_learner):
    quiz = await create_quiz(session, instructor, enroll=[learner, other_learner])
    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]
    intruder = auth_headers(other_learner)

    for method, suffix in (("GET", ""), ("POST", "/resume"), ("POST", "/abandon")):
        response = await client.request(method, f"/quiz-attempts/{attempt_id}{suffix}", headers=intruder)
        assert response.status_code == 403
        assert response.json()["error"] == "ACCESS_DENIED"

    still_mine = await client.get(f"/quiz-attempts/{attempt_id}", headers=auth_headers(learner))
    assert still_mine.json()["attempt"]["status"] == "in_progress"


async def test_missing_attempt_is_not_found(client, learner):
    response = await client.get("/quiz-attempts/31337", headers=auth_headers(learner))

    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


# Enrollment

async def test_enroll_and_enrollment_status(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, max_attempts=3)
    headers = auth_headers(learner)

    first = await client.post(f"/quizzes/{quiz.id}/enroll", headers=headers)
    second = await client.post(f"/quizzes/{quiz.id}/enroll", headers=headers)

    assert first.status_code == 201
    assert first.json()["status"] == "enrolled"
    assert second.status_code == 200
    assert second.json()["status"] == "already_enrolled"

    attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]
    status_response = await client.get(f"/quizzes/{quiz.id}/enrollment-status", headers=headers)

    assert status_response.json() == {
        "quiz_id": quiz.id,
        "enrolled": True,
        "active_attempt_id": attempt_id,
        "completed_attempts": 0,
        "max_attempts": 3,
        "allow_multiple_attempts": True,
    }


async def test_enroll_in_draft_quiz_is_forbidden(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, status=QuizStatus.DRAFT)

    response = await client.post(f"/quizzes/{quiz.id}/enroll", headers=auth_headers(learner))

    assert response.status_code == 403


# Listing and statistics

async def test_list_attempts_is_paginated(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    headers = auth_headers(learner)
    for _ in range(3):
        await start(client, quiz, learner, force_new=True)

    response = await client.get("/user/quiz-attempts", params={"per_page": 2}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert len(body["attempts"]) == 2
    assert body["data"] == body["attempts"]
    assert body["meta"] == {"current_page": 1, "per_page": 2, "total": 3, "last_page": 2, "from": 1, "to": 2}
    assert body["links"]["prev"] is None
    assert "page=2" in body["links"]["next"]
    assert body["attempts"][0]["quiz_title"] == quiz.title

    in_progress = await client.get("/user/quiz-attempts", params={"status": "in_progress"}, headers=headers)
    assert in_progress.json()["meta"]["total"] == 1


async def test_list_rejects_oversized_page(client, settings, learner):
    response = await client.get(
        "/user/quiz-attempts",
        params={"per_page": settings.MAX_ATTEMPTS_PER_PAGE + 1},
        headers=auth_headers(learner)
    )

    assert response.status_code == 422


async def test_attempt_statistics(client, session, instructor, learner):
    quiz = await create_quiz(session, instructor, enroll=[learner])
    headers = auth_headers(learner)
    question_id = str(quiz.questions[0].id)

    for answer in (0, 1):
        attempt_id = (await start(client, quiz, learner)).json()["attempt"]["id"]
        await client.post(
            f"/quiz-attempts/{attempt_id}/submit",
            json={"answers": {question_id: answer}, "timeSpent": 60},
            headers=headers
        )

    response = await client.get("/user/attempt-statistics", params={"quiz_id": quiz.id}, headers=headers)

    body = response.json()
    assert body["totalAttempts"] == 2
    assert body["completedAttempts"] == 2
    assert body["completionRate"] == 100.0
    assert body["averageScore"] == 50.0
    assert body["bestScore"] == 100.0
    assert body["totalTimeSpent"] == 120
    assert len(body["recentAttempts"]) == 2


async def test_statistics_without_attempts(client, learner):
    response = await client.get("/user/attempt-statistics", headers=auth_headers(learner))

    assert response.json()["totalAttempts"] == 0
    assert response.json()["completionRate"] == 0.0
    assert response.json()["recentAttempts"] == []


# Rate limiting and transport

async def test_rate_limit_on_mutating_requests(app, client, session, redis_client, settings, instructor, learner):
    guard = AttemptSecurityGuard(CounterStore(redis_client), settings=settings, clock=lambda: 1_000_020.0)
    app.dependency_overrides[get_security_guard] = lambda: guard
    quiz = await create_quiz(session, instructor)
    headers = auth_headers(learner)

    for _ in range(settings.QUIZ_ATTEMPT_RATE_LIMIT):
        response = await client.post(f"/quizzes/{quiz.id}/enroll", headers=headers)
        assert response.status_code in (200, 201)

    limited = await client.post(f"/quizzes/{quiz.id}/enroll", headers=headers)
    assert limited.status_code == 429
    assert limited.json()["error"] == "RATE_LIMIT_EXCEEDED"

    reads = await client.get(f"/quizzes/{quiz.id}/enrollment-status", headers=headers)
    assert reads.status_code == 200


async def test_rate_limited_writes_leave_attempt_unchanged(app, client, session, redis_client, settings, instructor, learner):
    now = 1_000_020.0
    guard = AttemptSecurityGuard(CounterStore(redis_client), settings=settings, clock=lambda: now)
    app.dependency_overrides[get_security_guard] = lambda: guard
    quiz = await create_quiz(session, instructor, [mcq(), true_false(True)], enroll=[learner])
    headers = auth_headers(learner)
    attempt = (await start(client, quiz, learner)).json()["attempt"]
    choice_id = attempt["question_order"][0]

    bucket = int(now // settings.QUIZ_ATTEMPT_RATE_WINDOW_SECONDS)
    await redis_client.set(
        RATE_LIMIT_KEY.format(user_id=learner.id, bucket=bucket), settings.QUIZ_ATTEMPT_RATE_LIMIT
    )

    submitted = await client.post(
        f"/quiz-attempts/{attempt['id']}/submit", json={"answers": {str(choice_id): 0}}, headers=headers
    )
    progress = await client.put(
        f"/quiz-attempts/{attempt['id']}/progress",
        json={"currentQuestionIndex": 1, "timeSpent": 30, "answers": {str(choice_id): 0}},
        headers=headers
    )
    restarted = await start(client, quiz, learner, forceNew=True)

    for response in (submitted, progress, restarted):
        assert response.status_code == 429
        assert response.json()["error"] == "RATE_LIMIT_EXCEEDED"

    detail = (await client.get(f"/quiz-attempts/{attempt['id']}", headers=headers)).json()
    assert detail["attempt"]["status"] == "in_progress"
    assert detail["attempt"]["score"] is None
    assert detail["attempt"]["current_question_index"] == 0
    assert detail["attempt"]["time_spent_seconds"] == 0
    assert detail["attempt"]["progress"]["answers"] == {}
    assert detail["answers"] == []

    mine = await client.get("/user/quiz-attempts", headers=headers)
    assert mine.json()["meta"]["total"] == 1


async def test_responses_carry_security_headers(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert "database" in response.json()
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"
    assert "x-process-time" in response.headers
