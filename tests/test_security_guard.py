"""Rate limiting, ownership and anomaly heuristics for quiz attempts."""

import logging

import pytest

from quizmarket.backend.database.models import QuizAttempt
from quizmarket.backend.exceptions import RateLimitException, ResourceOwnershipException
from quizmarket.backend.services.security_guard import (
    AttemptSecurityGuard,
    CounterStore,
    RequestOrigin,
)

START_POST = ("POST", "/api/quiz-attempts/start")
ORIGIN = RequestOrigin(ip_address="203.0.113.9", user_agent="pytest", route="/api/quiz-attempts/1/submit")


class TickingClock:
    def __init__(self, now: float = 1_000_020.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def ticking_clock():
    return TickingClock()


@pytest.fixture
def guard(redis_client, settings, ticking_clock):
    return AttemptSecurityGuard(CounterStore(redis_client), settings=settings, clock=ticking_clock)


async def test_thirty_requests_pass_and_the_next_is_limited(guard, settings):
    for _ in range(settings.QUIZ_ATTEMPT_RATE_LIMIT):
        await guard.enforce_rate_limit(1, *START_POST)

    with pytest.raises(RateLimitException) as exc_info:
        await guard.enforce_rate_limit(1, *START_POST)

    assert exc_info.value.status_code == 429
    assert exc_info.value.details["retry_after_seconds"] == 60


async def test_limit_is_tracked_per_user(guard, settings):
    for _ in range(settings.QUIZ_ATTEMPT_RATE_LIMIT):
        await guard.enforce_rate_limit(1, *START_POST)

    await guard.enforce_rate_limit(2, *START_POST)


async def test_next_window_starts_a_fresh_bucket(guard, settings, ticking_clock):
    for _ in range(settings.QUIZ_ATTEMPT_RATE_LIMIT):
        await guard.enforce_rate_limit(1, *START_POST)

    ticking_clock.now += settings.QUIZ_ATTEMPT_RATE_WINDOW_SECONDS
    await guard.enforce_rate_limit(1, *START_POST)


async def test_rate_limit_key_expires_with_window(guard, redis_client, settings):
    await guard.enforce_rate_limit(7, *START_POST)

    keys = await redis_client.keys("quiz_attempt_rate_limit:7:*")
    assert len(keys) == 1
    ttl = await redis_client.ttl(keys[0])
    assert 0 < ttl <= settings.QUIZ_ATTEMPT_RATE_WINDOW_SECONDS


async def test_reads_and_exempt_paths_are_not_counted(guard, redis_client, settings):
    for _ in range(settings.QUIZ_ATTEMPT_RATE_LIMIT + 5):
        await guard.enforce_rate_limit(1, "GET", "/api/quiz-attempts/3")
        await guard.enforce_rate_limit(1, "POST", "/api/quizzes/3/enrollment-status")

    assert await redis_client.keys("quiz_attempt_rate_limit:*") == []


def test_is_rate_limited_request(guard):
    assert guard.is_rate_limited_request("POST", "/api/quiz-attempts/start")
    assert guard.is_rate_limited_request("put", "/api/quiz-attempts/1/progress")
    assert not guard.is_rate_limited_request("GET", "/api/user/quiz-attempts")
    assert not guard.is_rate_limited_request("POST", "/api/quiz-attempts/1/results")


async def test_missing_redis_allows_requests(settings, caplog):
    guard = AttemptSecurityGuard(CounterStore(None), settings=settings)

    with caplog.at_level(logging.WARNING):
        for _ in range(settings.QUIZ_ATTEMPT_RATE_LIMIT + 1):
            await guard.enforce_rate_limit(1, *START_POST)

    assert "Redis not available" in caplog.text
    assert await guard.detect_rapid_submissions(1) is False


# Ownership

def test_owner_passes_ownership_check(guard):
    attempt = QuizAttempt(id=10, user_id=1, quiz_id=1)
    guard.check_ownership(attempt, 1, ORIGIN)


def test_foreign_attempt_is_rejected_and_logged(guard, caplog):
    attempt = QuizAttempt(id=10, user_id=1, quiz_id=1)

    with caplog.at_level(logging.WARNING, logger="quizmarket.security"):
        with pytest.raises(ResourceOwnershipException) as exc_info:
            guard.check_ownership(attempt, 2, ORIGIN)

    assert exc_info.value.status_code == 403
    assert exc_info.value.details == {"resource_type": "quiz attempt", "resource_id": "10"}
    record = next(r for r in caplog.records if r.name == "quizmarket.security")
    assert "attempt_id=10" in record.getMessage()
    assert "actual_owner=1" in record.getMessage()
    assert "ip=203.0.113.9" in record.getMessage()


# Heuristics

async def test_fourth_submission_within_window_is_flagged(guard):
    flags = [await guard.detect_rapid_submissions(5) for _ in range(4)]
    assert flags == [False, False, False, True]


async def test_submission_history_slides_with_window(guard, settings, ticking_clock):
    for _ in range(3):
        await guard.detect_rapid_submissions(5)

    ticking_clock.now += settings.RAPID_SUBMISSION_WINDOW_SECONDS + 1

    assert await guard.detect_rapid_submissions(5) is False


async def test_submission_history_is_capped(guard, redis_client, settings):
    for _ in range(settings.RAPID_SUBMISSION_HISTORY_CAP + 5):
        await guard.detect_rapid_submissions(6)

    assert await redis_client.zcard("quiz_submissions:6") == settings.RAPID_SUBMISSION_HISTORY_CAP


@pytest.mark.parametrize("time_spent,answers,expected", [
    (10, {"1": 0, "2": 1, "3": 0}, True),
    (15, {"1": 0, "2": 1, "3": 0}, False),
    (0, {"1": 0}, True),
    (None, {"1": 0}, False),
    (3, {}, False),
])
def test_timing_anomaly(guard, time_spent, answers, expected):
    assert guard.detect_timing_anomaly(time_spent, answers) is expected


@pytest.mark.parametrize("active,expected", [(0, False), (2, False), (3, True)])
def test_concurrent_attempts(guard, active, expected):
    assert guard.detect_concurrent_attempts(active) is expected


async def test_inspect_reports_triggered_patterns_only(guard, caplog):
    with caplog.at_level(logging.WARNING, logger="quizmarket.security"):
        flags = await guard.inspect(
            9, ORIGIN, time_spent_seconds=2, answers={"1": 0, "2": 1}, active_attempts=3
        )

    assert flags == {"rapid_submissions": False, "timing_anomaly": True, "concurrent_attempts": True}
    messages = [r.getMessage() for r in caplog.records if r.name == "quizmarket.security"]
    assert len(messages) == 2
    assert any("pattern=timing_anomaly" in message for message in messages)
    assert any("pattern=concurrent_attempts" in message for message in messages)


async def test_inspect_never_raises(guard):
    for _ in range(6):
        flags = await guard.inspect(9, ORIGIN, submission=True)

    assert flags["rapid_submissions"] is True
