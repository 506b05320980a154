"""
Pytest configuration and fixtures for the game engine tests.

The tests run against SQLite by default, using the same repository code
that runs on PostgreSQL in production. Redis is replaced by fakeredis.

Usage:
    # Run tests against an in-memory SQLite database
    pytest tests/

    # Run tests against PostgreSQL (DATABASE_URL, or a local test database)
    pytest tests/ --backend=postgresql
"""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, Iterator, Optional

import fakeredis
import pytest
import redis
from sqlalchemy.exc import OperationalError

from cache import RedisWrapper
from config import GameSettings
from db.config import DEFAULT_TEST_DATABASE_URL
from db.postgresql import PostgreSQLBackend
from db.protocols import Challenge, Profile
from engine import GameEngine


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add command-line option for backend selection."""
    parser.addoption(
        "--backend",
        action="store",
        default="sqlite",
        choices=["sqlite", "postgresql"],
        help="Database to test against: sqlite (in memory) or postgresql",
    )


def database_url(config: pytest.Config) -> str:
    if config.getoption("--backend") == "postgresql":
        return os.environ.get("DATABASE_URL", DEFAULT_TEST_DATABASE_URL)
    return "sqlite://"


@pytest.fixture
def backend(request: pytest.FixtureRequest) -> Iterator[PostgreSQLBackend]:
    """A backend over freshly created, empty tables.

    Example:
        def test_create_profile(backend):
            backend.profiles.create("u1", "Alice")
            assert backend.profiles.get("u1") is not None
    """
    db = PostgreSQLBackend(database_url=database_url(request.config))
    db.drop_tables()
    db.create_tables()
    yield db
    db.rollback()
    db.close()


@pytest.fixture
def redis_client() -> Any:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client: Any) -> RedisWrapper:
    return RedisWrapper(client=redis_client)


@pytest.fixture
def settings() -> GameSettings:
    """The default rules, without sleeping between retries"""
    return GameSettings(retry_backoff=0.0)


@pytest.fixture
def engine(
    backend: PostgreSQLBackend, cache: RedisWrapper, settings: GameSettings
) -> GameEngine:
    return GameEngine(backend, cache, settings)


@pytest.fixture
def make_profile(backend: PostgreSQLBackend) -> Callable[..., Profile]:
    """Factory for committed profiles"""

    def make(user_id: str, points: int = 0, username: Optional[str] = None) -> Profile:
        profile = backend.profiles.create(
            user_id, username or user_id.capitalize(), total_points=points
        )
        backend.commit()
        return profile

    return make


@pytest.fixture
def make_challenge(backend: PostgreSQLBackend) -> Callable[..., Challenge]:
    """Factory for committed challenges. The creator's profile
    is created if it doesn't exist."""

    def make(creator_id: str = "creator", **kwargs: Any) -> Challenge:
        if backend.profiles.get(creator_id) is None:
            backend.profiles.create(creator_id, creator_id.capitalize())
        values: Dict[str, Any] = dict(
            creator_id=creator_id,
            creator_username=creator_id.capitalize(),
            title="Sour and round",
            correct_answer="Citrus Fruits",
            answer_set={
                "correct": ["Citrus Fruits", "citrus"],
                "close": ["fruits", "fruit"],
            },
            answer_explanation="Lemons, oranges and limes are citrus fruits.",
            image_descriptions=["A lemon", "An orange", "A lime"],
            max_score=30,
            score_deduction_per_hint=2,
        )
        values.update(kwargs)
        challenge = backend.challenges.create(**values)
        backend.commit()
        return challenge

    return make


def connection_failure(*args: Any, **kwargs: Any) -> Any:
    """Stand-in for a Redis client method while the server is down"""
    raise redis.exceptions.ConnectionError("Connection refused")


def database_failure(*args: Any, **kwargs: Any) -> Any:
    """Stand-in for a repository method while the database is down"""
    raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))


@pytest.fixture
def redis_down() -> Callable[..., Any]:
    return connection_failure


@pytest.fixture
def db_down() -> Callable[..., Any]:
    return database_failure
