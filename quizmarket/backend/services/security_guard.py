"""
QuizMarket Attempt Service
Rate limiting, ownership checks and abuse heuristics for quiz attempts

Rate limiting and ownership failures reject the request before the attempt
engine runs. The three anomaly heuristics (rapid submissions, implausible
timing, too many concurrent attempts) only log a security event.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..database.models import QuizAttempt
from ..exceptions import RateLimitException, ResourceOwnershipException
from ...config import Settings, get_settings

# Configure logging
logger = logging.getLogger(__name__)
security_logger = logging.getLogger("quizmarket.security")

RATE_LIMIT_KEY = "quiz_attempt_rate_limit:{user_id}:{bucket}"
SUBMISSION_HISTORY_KEY = "quiz_submissions:{user_id}"


class CounterStore:
    """Atomic per-user counters kept in Redis"""

    def __init__(self, client: Optional[redis.Redis]):
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    async def increment(self, key: str, ttl_seconds: int) -> int:
        """Increment a fixed-window counter and return its new value"""
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            count, _ = await pipe.execute()
        return int(count)

    async def record_event(
        self,
        key: str,
        timestamp: float,
        window_seconds: int,
        history_cap: int,
        ttl_seconds: int
    ) -> int:
        """Append a timestamp to a capped history and count entries inside the window"""
        member = f"{timestamp:.6f}:{uuid.uuid4().hex[:8]}"
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {member: timestamp})
            pipe.zremrangebyscore(key, "-inf", timestamp - window_seconds)
            pipe.zremrangebyrank(key, 0, -(history_cap + 1))
            pipe.zcard(key)
            pipe.expire(key, ttl_seconds)
            results = await pipe.execute()
        return int(results[3])


@dataclass(frozen=True)
class RequestOrigin:
    """Network origin of a request, recorded with security events"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    route: Optional[str] = None


class AttemptSecurityGuard:
    """Per-request checks layered in front of the attempt engine"""

    def __init__(
        self,
        counters: CounterStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time
    ):
        self.counters = counters
        self.settings = settings or get_settings()
        self.clock = clock

    # Rate limiting

    def is_rate_limited_request(self, method: str, path: str) -> bool:
        if method.upper() == "GET":
            return False
        return not any(marker in path for marker in self.settings.rate_limit_exempt_paths)

    async def enforce_rate_limit(self, user_id: int, method: str, path: str):
        """Fixed one-window bucket per user; bursts across a bucket edge can reach twice the limit"""
        if not self.is_rate_limited_request(method, path):
            return

        if not self.counters.available:
            logger.warning("Rate limiting disabled: Redis not available")
            return

        window = self.settings.QUIZ_ATTEMPT_RATE_WINDOW_SECONDS
        now = self.clock()
        key = RATE_LIMIT_KEY.format(user_id=user_id, bucket=int(now // window))

        try:
            count = await self.counters.increment(key, window)
        except RedisError as e:
            logger.warning(f"Rate limiting skipped, Redis error: {e}")
            return

        if count > self.settings.QUIZ_ATTEMPT_RATE_LIMIT:
            retry_after = max(1, int(window - (now % window)))
            logger.info(f"Quiz attempt rate limit hit by user {user_id} ({count} requests)")
            raise RateLimitException(retry_after=retry_after)

    # Ownership

    def check_ownership(self, attempt: QuizAttempt, user_id: int, origin: RequestOrigin):
        if attempt.user_id == user_id:
            return

        security_logger.warning(
            "Unauthorized quiz attempt access: "
            f"user_id={user_id} attempt_id={attempt.id} actual_owner={attempt.user_id} "
            f"ip={origin.ip_address} user_agent={origin.user_agent}"
        )
        raise ResourceOwnershipException("quiz attempt", str(attempt.id))

    # Anomaly detection

    async def detect_rapid_submissions(self, user_id: int) -> bool:
        if not self.counters.available:
            return False

        key = SUBMISSION_HISTORY_KEY.format(user_id=user_id)
        try:
            recent = await self.counters.record_event(
                key,
                self.clock(),
                window_seconds=self.settings.RAPID_SUBMISSION_WINDOW_SECONDS,
                history_cap=self.settings.RAPID_SUBMISSION_HISTORY_CAP,
                ttl_seconds=self.settings.RAPID_SUBMISSION_TTL_SECONDS
            )
        except RedisError as e:
            logger.warning(f"Submission history unavailable, Redis error: {e}")
            return False

        return recent > self.settings.RAPID_SUBMISSION_THRESHOLD

    def detect_timing_anomaly(
        self,
        time_spent_seconds: Optional[int],
        answers: Optional[Mapping[Any, Any]]
    ) -> bool:
        if not answers or time_spent_seconds is None:
            return False
        return time_spent_seconds / len(answers) < self.settings.MIN_SECONDS_PER_QUESTION

    def detect_concurrent_attempts(self, active_attempts: int) -> bool:
        return active_attempts > self.settings.MAX_CONCURRENT_ATTEMPTS

    def report(self, pattern: str, user_id: int, origin: RequestOrigin):
        security_logger.warning(
            f"Suspicious quiz activity detected: pattern={pattern} user_id={user_id} "
            f"ip={origin.ip_address} user_agent={origin.user_agent} route={origin.route} "
            f"timestamp={datetime.utcnow().isoformat()}"
        )

    async def inspect(
        self,
        user_id: int,
        origin: RequestOrigin,
        *,
        submission: bool = False,
        time_spent_seconds: Optional[int] = None,
        answers: Optional[Mapping[Any, Any]] = None,
        active_attempts: Optional[int] = None
    ) -> Dict[str, bool]:
        """Run the heuristics that apply to this request and log the ones that fire"""
        flags = {
            "rapid_submissions": submission and await self.detect_rapid_submissions(user_id),
            "timing_anomaly": self.detect_timing_anomaly(time_spent_seconds, answers),
            "concurrent_attempts": (
                active_attempts is not None and self.detect_concurrent_attempts(active_attempts)
            ),
        }

        for pattern, triggered in flags.items():
            if triggered:
                self.report(pattern, user_id, origin)

        return flags


__all__ = [
    "CounterStore",
    "RequestOrigin",
    "AttemptSecurityGuard",
    "security_logger",
]
