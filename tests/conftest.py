"""Shared fixtures: in-memory SQLite, fakeredis and an httpx client over the app."""

import os

os.environ["ENVIRONMENT"] = "testing"

import random

import fakeredis.aioredis
import pytest
from httpx import ASGITransport, AsyncClient

from quizmarket.backend.app import create_app
from quizmarket.backend.database.connection import (
    create_async_engine_instance,
    create_session_factory,
    create_tables,
    get_db,
)
from quizmarket.backend.database.models import UserRole
from quizmarket.backend.dependencies import get_redis_client
from quizmarket.backend.services.attempt_engine import AttemptEngine
from quizmarket.backend.services.attempt_store import SQLAttemptStore
from quizmarket.backend.services.catalog import SQLQuizCatalog
from quizmarket.config import get_settings

from factories import FakeClock, create_user


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
async def db_engine():
    engine = create_async_engine_instance("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(session, settings, clock):
    return AttemptEngine(
        SQLAttemptStore(session),
        SQLQuizCatalog(session, rng=random.Random(7)),
        settings=settings,
        clock=clock
    )


@pytest.fixture
def app(session_factory, redis_client):
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis_client():
        return redis_client

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_redis_client] = override_get_redis_client
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def instructor(session):
    return await create_user(session, "instructor@example.com", UserRole.INSTRUCTOR)


@pytest.fixture
async def learner(session):
    return await create_user(session, "learner@example.com")


@pytest.fixture
async def other_learner(session):
    return await create_user(session, "other@example.com")
