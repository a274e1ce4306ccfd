"""Tests for settings validation."""

import pydantic
import pytest

from connectkit.config import DEFAULT_JWT_SECRET, Settings

PRODUCTION_SECRET = "a-production-secret-of-at-least-thirty-two-chars"


def test_defaults(settings):
    assert settings.is_test
    assert settings.access_token_expire_minutes == 15
    assert settings.refresh_token_expire_days == 7
    assert settings.max_login_attempts == 5
    assert settings.lockout_minutes == 30


def test_production_requires_changed_secret():
    with pytest.raises(pydantic.ValidationError, match="JWT_SECRET must be changed"):
        Settings(
            environment="production",
            jwt_secret=DEFAULT_JWT_SECRET,
            database_url="postgresql://db.internal/connectkit",
        )


def test_production_requires_long_secret():
    with pytest.raises(pydantic.ValidationError, match="at least 32 characters"):
        Settings(environment="production", jwt_secret="short", database_url="postgresql://db.internal/connectkit")


def test_production_rejects_localhost_database():
    with pytest.raises(pydantic.ValidationError, match="localhost"):
        Settings(
            environment="production",
            jwt_secret=PRODUCTION_SECRET,
            database_url="postgresql://connectkit@localhost/connectkit",
        )


def test_valid_production_settings():
    settings = Settings(
        environment="production",
        jwt_secret=PRODUCTION_SECRET,
        database_url="postgresql://db.internal/connectkit",
    )
    assert settings.is_production


def test_bcrypt_rounds_bounds():
    with pytest.raises(pydantic.ValidationError):
        Settings(bcrypt_rounds=3)
