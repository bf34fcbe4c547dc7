"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any messagely import so
that settings, the engine and logging pick them up.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_messagely.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Keep hashing fast in tests
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from messagely.config import get_settings
get_settings.cache_clear()

from fastapi.testclient import TestClient

from messagely.main import app
from messagely import models  # noqa: F401  registers tables on Base.metadata
from messagely.storage import SessionLocal, Base, engine, register_user
from messagely.security import create_token


@pytest.fixture(scope="function")
def db():
    """Database session against freshly created tables."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


def make_user(db, username: str, password: str = "password"):
    """Register a user with placeholder profile fields."""
    return register_user(
        db,
        username=username,
        password=password,
        first_name=username.capitalize(),
        last_name="Tester",
        phone="+14155550100",
    )


def auth_headers(username: str) -> dict:
    return {"Authorization": f"Bearer {create_token(username)}"}


@pytest.fixture
def users(db):
    """alice, bob and carol registered with password 'password'."""
    return {name: make_user(db, name) for name in ("alice", "bob", "carol")}
