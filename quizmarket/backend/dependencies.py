"""
QuizMarket Attempt Service
Dependency injection and request guards
"""

import logging
from typing import Optional, Dict, Any

import jwt
import redis.asyncio as redis

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from .database.connection import get_db
from .database.models import User
from .exceptions import (
    AuthenticationException,
    AccountDisabledException,
    AttemptNotFoundException,
    TokenExpiredException,
    TokenInvalidException,
)
from .services.attempt_engine import AttemptEngine, Principal
from .services.attempt_store import SQLAttemptStore
from .services.catalog import SQLQuizCatalog
from .services.ranking import RankingService
from .services.security_guard import AttemptSecurityGuard, CounterStore, RequestOrigin
from ..config import get_settings, get_redis_url

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Redis connection
_redis_client: Optional[redis.Redis] = None


async def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client instance, or None when Redis is unreachable"""
    global _redis_client

    if _redis_client is None:
        client = redis.from_url(
            get_redis_url(),
            encoding="utf-8",
            decode_responses=True,
            socket_keepalive=True,
            health_check_interval=30
        )
        try:
            await client.ping()
            _redis_client = client
            logger.info("✅ Redis connection established")
        except Exception as e:
            logger.warning(f"⚠️ Redis connection failed: {e}")
            await client.aclose()

    return _redis_client


async def get_counter_store(
    redis_client: Optional[redis.Redis] = Depends(get_redis_client)
) -> CounterStore:
    return CounterStore(redis_client)


async def get_security_guard(
    counters: CounterStore = Depends(get_counter_store)
) -> AttemptSecurityGuard:
    return AttemptSecurityGuard(counters)


async def verify_jwt_token(token: str) -> Dict[str, Any]:
    """Verify and decode JWT token"""
    settings = get_settings()

    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError:
        raise TokenInvalidException()


async def get_current_user_from_token(token: str, db: AsyncSession) -> User:
    """Get current user from JWT token"""

    payload = await verify_jwt_token(token)
    user_id = payload.get("sub")

    if not user_id or not str(user_id).isdigit():
        raise TokenInvalidException("Invalid token payload")

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationException("User not found")

    if not user.is_active:
        raise AccountDisabledException()

    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Get current authenticated user (optional)"""

    if not credentials:
        return None

    return await get_current_user_from_token(credentials.credentials, db)


async def require_authentication(
    current_user: Optional[User] = Depends(get_current_user)
) -> User:
    """Require user authentication"""

    if not current_user:
        raise AuthenticationException("Authentication required")

    return current_user


async def get_principal(current_user: User = Depends(require_authentication)) -> Principal:
    """Explicit caller identity handed to the attempt engine"""
    return Principal(user_id=current_user.id, role=current_user.role)


async def get_attempt_store(db: AsyncSession = Depends(get_db)) -> SQLAttemptStore:
    return SQLAttemptStore(db)


async def get_quiz_catalog(db: AsyncSession = Depends(get_db)) -> SQLQuizCatalog:
    return SQLQuizCatalog(db)


async def get_attempt_engine(
    store: SQLAttemptStore = Depends(get_attempt_store),
    catalog: SQLQuizCatalog = Depends(get_quiz_catalog)
) -> AttemptEngine:
    return AttemptEngine(store, catalog)


async def get_ranking_service(
    store: SQLAttemptStore = Depends(get_attempt_store),
    catalog: SQLQuizCatalog = Depends(get_quiz_catalog)
) -> RankingService:
    return RankingService(store, catalog)


def get_request_origin(request: Request) -> RequestOrigin:
    """Network origin recorded with security events"""
    return RequestOrigin(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        route=request.url.path
    )


class QuizAttemptSecurity:
    """
    Guard for quiz attempt routes.

    Runs after authentication and before any route body: applies the per-user
    quiz attempt rate limit, then, when the path carries an ``attempt_id``,
    checks that the attempt belongs to the caller.
    """

    async def __call__(
        self,
        request: Request,
        principal: Principal = Depends(get_principal),
        guard: AttemptSecurityGuard = Depends(get_security_guard),
        store: SQLAttemptStore = Depends(get_attempt_store)
    ) -> Principal:
        await guard.enforce_rate_limit(principal.user_id, request.method, request.url.path)

        attempt_id = request.path_params.get("attempt_id")
        if attempt_id is not None:
            attempt = await store.get(int(attempt_id)) if str(attempt_id).isdigit() else None
            if attempt is None:
                raise AttemptNotFoundException(str(attempt_id))
            guard.check_ownership(attempt, principal.user_id, get_request_origin(request))

        return principal


quiz_attempt_security = QuizAttemptSecurity()


# Cleanup function
async def cleanup_dependencies():
    """Cleanup dependency resources"""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("✅ Redis connection closed")


# Export main dependencies
__all__ = [
    # Authentication
    "get_current_user",
    "require_authentication",
    "get_principal",
    "verify_jwt_token",

    # Attempt services
    "get_attempt_store",
    "get_quiz_catalog",
    "get_attempt_engine",
    "get_ranking_service",

    # Security guard
    "QuizAttemptSecurity",
    "quiz_attempt_security",
    "get_security_guard",
    "get_counter_store",
    "get_request_origin",

    # Utilities
    "get_redis_client",
    "cleanup_dependencies"
]
