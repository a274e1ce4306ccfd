"""Tests for token issuing/verification and the Redis session cache."""

import json
import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from connectkit.cache import SessionCache
from connectkit.errors import ExpiredTokenError, InvalidTokenError
from connectkit.models.enums import UserRole
from connectkit.services.tokens import ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE, TokenService


def _fake_user(role: UserRole = UserRole.USER):
    return SimpleNamespace(id=uuid.uuid4(), email="someone@example.com", role=role)


class TestTokenService:
    """Tests for TokenService."""

    def test_access_token_round_trip(self, settings, cache):
        """Verified claims carry the user's id, email and role."""
        service = TokenService(settings, cache)
        user = _fake_user(UserRole.MANAGER)

        claims = service.verify(service.issue_access_token(user))

        assert claims.subject == str(user.id)
        assert claims.email == user.email
        assert claims.role == "manager"
        assert claims.token_type == ACCESS_TOKEN_TYPE
        assert claims.jti
        assert claims.expires_at - datetime.now(UTC) <= timedelta(minutes=15)

    def test_each_token_gets_a_unique_id(self, settings, cache):
        service = TokenService(settings, cache)
        user = _fake_user()
        first = service.verify(service.issue_access_token(user))
        second = service.verify(service.issue_access_token(user))
        assert first.jti != second.jti

    def test_refresh_token_type(self, settings, cache):
        service = TokenService(settings, cache)
        user_id = uuid.uuid4()

        claims = service.verify(service.issue_refresh_token(user_id), REFRESH_TOKEN_TYPE)

        assert claims.subject == str(user_id)
        assert claims.expires_at - datetime.now(UTC) > timedelta(days=6)

    def test_wrong_token_type_rejected(self, settings, cache):
        service = TokenService(settings, cache)
        refresh_token = service.issue_refresh_token(uuid.uuid4())

        with pytest.raises(InvalidTokenError):
            service.verify(refresh_token, ACCESS_TOKEN_TYPE)

    def test_expired_token(self, settings, cache):
        expired = TokenService(settings.model_copy(update={"access_token_expire_minutes": -1}), cache)
        token = expired.issue_access_token(_fake_user())

        with pytest.raises(ExpiredTokenError):
            TokenService(settings, cache).verify(token)

    def test_foreign_signature_rejected(self, settings, cache):
        forger = TokenService(
            settings.model_copy(update={"jwt_secret": "another-secret-that-is-also-long-enough"}), cache
        )
        token = forger.issue_access_token(_fake_user())

        with pytest.raises(InvalidTokenError):
            TokenService(settings, cache).verify(token)

    def test_wrong_audience_rejected(self, settings, cache):
        other_app = TokenService(settings.model_copy(update={"jwt_audience": "other-app"}), cache)
        token = other_app.issue_access_token(_fake_user())

        with pytest.raises(InvalidTokenError):
            TokenService(settings, cache).verify(token)

    def test_malformed_token_rejected(self, settings, cache):
        with pytest.raises(InvalidTokenError):
            TokenService(settings, cache).verify("definitely.not.ajwt")

    def test_blacklist(self, settings, cache):
        service = TokenService(settings, cache)
        claims = service.verify(service.issue_access_token(_fake_user()))

        assert service.is_blacklisted(claims.jti) is False
        service.blacklist(claims.jti, claims.expires_at, claims.subject, "logout")
        assert service.is_blacklisted(claims.jti) is True

    def test_blacklist_fails_closed(self, settings):
        """An unreachable Redis means the token cannot be trusted."""
        client = MagicMock()
        client.exists.side_effect = RedisConnectionError("connection refused")
        service = TokenService(settings, SessionCache(client, settings.redis_key_prefix))

        assert service.is_blacklisted("some-jti") is True

    def test_revoke_sessions(self, settings, cache):
        service = TokenService(settings, cache)
        user_id = str(uuid.uuid4())
        refresh_token = service.issue_refresh_token(user_id)
        cache.store_refresh_token(user_id, refresh_token, 3600)

        service.revoke_sessions(user_id, "password_change")

        assert cache.get_refresh_token(user_id) is None
        claims = service.verify(refresh_token, REFRESH_TOKEN_TYPE)
        assert service.is_blacklisted(claims.jti)

    def test_revoke_refresh_token_ignores_other_users(self, settings, cache):
        service = TokenService(settings, cache)
        refresh_token = service.issue_refresh_token(uuid.uuid4())

        service.revoke_refresh_token(refresh_token, str(uuid.uuid4()), "logout")

        claims = service.verify(refresh_token, REFRESH_TOKEN_TYPE)
        assert not service.is_blacklisted(claims.jti)


class TestSessionCache:
    """Tests for SessionCache."""

    def test_keys_are_prefixed(self, cache, fake_redis):
        cache.store_refresh_token("user-1", "token", 60)
        assert fake_redis.get("connectkit:refresh_token:user-1") == "token"

    def test_blacklist_entry_expires_with_token(self, cache, fake_redis):
        expires_at = datetime.now(UTC) + timedelta(minutes=10)

        cache.blacklist_token("jti-1", expires_at, "user-1", "logout")

        key = "connectkit:token_blacklist:jti-1"
        entry = json.loads(fake_redis.get(key))
        assert entry["userId"] == "user-1"
        assert entry["reason"] == "logout"
        assert entry["exp"] == int(expires_at.timestamp())
        assert 590 <= fake_redis.ttl(key) <= 600

    def test_ttl_until_is_at_least_one_second(self):
        assert SessionCache.ttl_until(datetime.now(UTC) - timedelta(hours=1)) == 1

    def test_rotate_refresh_token(self, cache):
        cache.store_refresh_token("user-1", "old", 60)

        assert cache.rotate_refresh_token("user-1", "old", "new", 60) is True
        assert cache.get_refresh_token("user-1") == "new"
        assert cache.rotate_refresh_token("user-1", "old", "newer", 60) is False
        assert cache.get_refresh_token("user-1") == "new"

    def test_rotate_refresh_token_loses_race(self, cache, fake_redis):
        """A write between WATCH and EXEC aborts the rotation."""
        cache.store_refresh_token("user-1", "old", 60)
        key = "connectkit:refresh_token:user-1"
        original_get = fake_redis.get

        def get_then_concurrent_rotation(name):
            value = original_get(name)
            if name == key:
                fake_redis.set(key, "rotated-elsewhere", ex=60)
            return value

        fake_redis.get = get_then_concurrent_rotation

        assert cache.rotate_refresh_token("user-1", "old", "new", 60) is False
        assert original_get(key) == "rotated-elsewhere"

    def test_single_use_tokens(self, cache):
        cache.store_reset_token("abc", {"userId": "user-1"}, 60)
        assert cache.get_reset_token("abc") == {"userId": "user-1"}
        cache.delete_reset_token("abc")
        assert cache.get_reset_token("abc") is None

    def test_increment_counter_sets_window_once(self, cache, fake_redis):
        assert cache.increment_counter("ratelimit:auth:ip:1", 60) == (1, 60)
        fake_redis.expires["connectkit:ratelimit:auth:ip:1"] -= 30

        count, ttl = cache.increment_counter("ratelimit:auth:ip:1", 60)

        assert count == 2
        assert ttl == 30

    def test_read_through_degrades_to_miss(self, settings):
        client = MagicMock()
        client.get.side_effect = RedisConnectionError("down")
        cache = SessionCache(client, settings.redis_key_prefix)

        assert cache.read_through("user:1") is None

    def test_write_through_swallows_errors(self, settings):
        client = MagicMock()
        client.set.side_effect = RedisConnectionError("down")
        cache = SessionCache(client, settings.redis_key_prefix)

        cache.write_through("user:1", {"id": 1}, 60)
        client.set.assert_called_once()
