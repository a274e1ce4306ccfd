"""Pytest configuration and fixtures."""

import os
import time

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from redis.exceptions import WatchError  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from connectkit import models  # noqa: E402, F401
from connectkit.cache import SessionCache  # noqa: E402
from connectkit.config import get_settings  # noqa: E402
from connectkit.context import AppContext  # noqa: E402
from connectkit.database import Base, get_db  # noqa: E402
from connectkit.main import app  # noqa: E402
from connectkit.models.enums import UserRole  # noqa: E402
from connectkit.models.user import User  # noqa: E402

DEFAULT_PASSWORD = "Passw0rd!"


class AuthHeaders(dict):
    """Dict subclass that also stores user info and tokens."""

    def __init__(self, *args, user_id: str | None = None, email: str | None = None, refresh_token: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id
        self.email = email
        self.refresh_token = refresh_token


class FakeRedis:
    """In-memory stand-in for the subset of redis-py used by the session cache.

    Values are stored as strings (like ``decode_responses=True``); expiry is
    tracked against wall-clock time.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expires: dict[str, float] = {}
        self.versions: dict[str, int] = {}

    def _alive(self, key: str) -> bool:
        expires_at = self.expires.get(key)
        if expires_at is not None and expires_at <= time.time():
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return key in self.data

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    def get(self, key):
        return self.data[key] if self._alive(key) else None

    def set(self, key, value, ex=None, nx=False):
        if nx and self._alive(key):
            return None
        self.data[key] = str(value)
        self.expires.pop(key, None)
        if ex is not None:
            self.expires[key] = time.time() + int(ex)
        self._touch(key)
        return True

    def setex(self, key, seconds, value):
        return self.set(key, value, ex=seconds)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.expires.pop(key, None)
            self._touch(key)
        return removed

    def exists(self, *keys):
        return sum(1 for key in keys if self._alive(key))

    def incr(self, key):
        value = int(self.get(key) or 0) + 1
        self.data[key] = str(value)
        self._touch(key)
        return value

    def expire(self, key, seconds, nx=False):
        if not self._alive(key):
            return False
        if nx and key in self.expires:
            return False
        self.expires[key] = time.time() + int(seconds)
        return True

    def ttl(self, key):
        if not self._alive(key):
            return -2
        if key not in self.expires:
            return -1
        return max(int(round(self.expires[key] - time.time())), 0)

    def keys(self, pattern="*"):
        prefix = pattern.rstrip("*")
        return [key for key in list(self.data) if self._alive(key) and key.startswith(prefix)]

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def ping(self):
        return True

    def close(self):
        pass


class FakePipeline:
    """Queues commands and runs them on execute; supports WATCH/MULTI."""

    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands: list[tuple[str, tuple, dict]] = []
        self.watched: dict[str, int] = {}
        self.buffering = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()

    def __getattr__(self, name):
        command = getattr(self.redis, name)

        def call(*args, **kwargs):
            if not self.buffering:
                return command(*args, **kwargs)
            self.commands.append((name, args, kwargs))
            return self

        return call

    def watch(self, *keys):
        self.buffering = False
        for key in keys:
            self.watched[key] = self.redis.versions.get(key, 0)

    def unwatch(self):
        self.watched.clear()
        self.buffering = True

    def multi(self):
        self.buffering = True

    def execute(self):
        for key, version in self.watched.items():
            if self.redis.versions.get(key, 0) != version:
                self.reset()
                raise WatchError(f"Watched key {key} changed")
        results = [getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        self.reset()
        return results

    def reset(self):
        self.commands = []
        self.watched = {}
        self.buffering = True


# Use test database - PostgreSQL in Docker, SQLite locally
if os.getenv("DATABASE_URL"):
    # Running in Docker - use PostgreSQL test database
    SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL").replace("/connectkit", "/connectkit_test")
else:
    # Running locally - use SQLite
    SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

connect_args = {"check_same_thread": False} if "sqlite" in SQLALCHEMY_DATABASE_URL else {}
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    if "postgresql" in SQLALCHEMY_DATABASE_URL:
        # For PostgreSQL, create the test database
        from sqlalchemy_utils import create_database, database_exists

        if not database_exists(SQLALCHEMY_DATABASE_URL):
            create_database(SQLALCHEMY_DATABASE_URL)

    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = TestingSessionLocal()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis, settings):
    return SessionCache(fake_redis, settings.redis_key_prefix)


@pytest.fixture
def app_context(fake_redis, settings):
    """Application context wired to the test database and the in-memory Redis."""
    return AppContext(settings, engine=engine, redis_client=fake_redis)


@pytest.fixture(scope="function")
def client(db, app_context):
    """Create a test client with database and cache overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.state.context = app_context
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    del app.state.context


def register_user(client, email: str, username: str, password: str = DEFAULT_PASSWORD, **extra) -> dict:
    response = client.post(
        "/api/v1/auth/register",
        json={"email": email, "username": username, "password": password, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


def login_user(client, email: str, password: str = DEFAULT_PASSWORD) -> AuthHeaders:
    response = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    data = response.json()
    return AuthHeaders(
        {"Authorization": f"Bearer {data['accessToken']}"},
        user_id=data["user"]["id"],
        email=email,
        refresh_token=data["refreshToken"],
    )


def make_user(client, db, email: str, username: str, role: UserRole = UserRole.USER) -> AuthHeaders:
    """Register, optionally change role directly in the database, then log in."""
    register_user(client, email, username, firstName="Test", lastName="User")
    if role != UserRole.USER:
        user = db.query(User).filter(User.email == email).one()
        user.role = role
        db.commit()
    return login_user(client, email)


@pytest.fixture
def create_user(client, db):
    """Factory fixture: register a user with the given role and log them in."""

    def _create(email: str, username: str, role: UserRole = UserRole.USER) -> AuthHeaders:
        return make_user(client, db, email, username, role)

    return _create


@pytest.fixture
def auth_headers(client, db):
    """Create a user and return auth headers with user info."""
    return make_user(client, db, "test@example.com", "testuser")


@pytest.fixture
def admin_headers(client, db):
    return make_user(client, db, "admin@example.com", "admin", UserRole.ADMIN)


@pytest.fixture
def manager_headers(client, db):
    return make_user(client, db, "manager@example.com", "manager", UserRole.MANAGER)
