"""Redis-backed session cache.

Holds the ephemeral auth state (active refresh token per user, revoked token
ids, single-use verification and reset tokens), the rate-limit counters, and
cache-aside copies of users and contacts. Every key is namespaced with the
configured prefix.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

import redis
from redis.exceptions import RedisError, WatchError

logger = logging.getLogger(__name__)

REFRESH_TOKEN_KEY = "refresh_token:{user_id}"
BLACKLIST_KEY = "token_blacklist:{jti}"
EMAIL_VERIFICATION_KEY = "email_verification:{token}"
PASSWORD_RESET_KEY = "password_reset:{token}"
USER_KEY = "user:{user_id}"
CONTACT_KEY = "contact:{contact_id}"
RATE_LIMIT_KEY = "ratelimit:{action}:{identity}"


def create_redis_client(redis_url: str, socket_timeout: float = 5.0) -> redis.Redis:
    return redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


class SessionCache:
    """Thin wrapper over a synchronous Redis client."""

    def __init__(self, client: redis.Redis, prefix: str = "connectkit:"):
        self.client = client
        self.prefix = prefix

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    @staticmethod
    def ttl_until(expires_at: datetime) -> int:
        """Seconds until an absolute expiry, clamped to at least one.

        Naive timestamps are treated as UTC.
        """
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        else:
            expires_at = expires_at.astimezone(UTC)
        return max(1, int((expires_at - datetime.now(UTC)).total_seconds()))

    # Generic JSON values

    def get_json(self, name: str) -> Any | None:
        raw = self.client.get(self.key(name))
        if raw is None:
            return None
        return json.loads(raw)

    def set_json(self, name: str, value: Any, ttl_seconds: int) -> None:
        self.client.set(self.key(name), json.dumps(value, default=str), ex=ttl_seconds)

    def delete(self, *names: str) -> int:
        if not names:
            return 0
        return self.client.delete(*(self.key(name) for name in names))

    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()

    # Cache-aside helpers: failures degrade to a miss

    def read_through(self, name: str) -> Any | None:
        try:
            return self.get_json(name)
        except (RedisError, ValueError) as e:
            logger.warning(f"Cache read failed for {name}, treating as miss: {e}")
            return None

    def write_through(self, name: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.set_json(name, value, ttl_seconds)
        except RedisError as e:
            logger.warning(f"Cache write failed for {name}: {e}")

    def invalidate(self, *names: str) -> None:
        try:
            self.delete(*names)
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for {', '.join(names)}: {e}")

    # Refresh tokens (one active value per user)

    def store_refresh_token(self, user_id: str, token: str, ttl_seconds: int) -> None:
        self.client.set(self.key(REFRESH_TOKEN_KEY.format(user_id=user_id)), token, ex=ttl_seconds)

    def get_refresh_token(self, user_id: str) -> str | None:
        return self.client.get(self.key(REFRESH_TOKEN_KEY.format(user_id=user_id)))

    def delete_refresh_token(self, user_id: str) -> None:
        self.client.delete(self.key(REFRESH_TOKEN_KEY.format(user_id=user_id)))

    def rotate_refresh_token(
        self, user_id: str, expected: str, replacement: str, ttl_seconds: int
    ) -> bool:
        """Swap the stored refresh token only if it still equals ``expected``.

        Runs as a WATCH/MULTI transaction so that of two concurrent rotations
        presenting the same token exactly one succeeds.
        """
        key = self.key(REFRESH_TOKEN_KEY.format(user_id=user_id))
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.get(key)
                if current != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, replacement, ex=ttl_seconds)
                pipe.execute()
                return True
            except WatchError:
                logger.info(f"Concurrent refresh token rotation detected for user {user_id}")
                return False

    # Token blacklist

    def blacklist_token(
        self, jti: str, expires_at: datetime, user_id: str, reason: str = "logout"
    ) -> None:
        """Record a revoked token id until the token would have expired anyway."""
        entry = {
            "jti": jti,
            "exp": int(expires_at.timestamp()),
            "userId": user_id,
            "reason": reason,
            "blacklistedAt": datetime.now(UTC).isoformat(),
        }
        self.set_json(BLACKLIST_KEY.format(jti=jti), entry, self.ttl_until(expires_at))

    def is_token_blacklisted(self, jti: str) -> bool:
        return bool(self.client.exists(self.key(BLACKLIST_KEY.format(jti=jti))))

    # Single-use verification and reset tokens

    def store_verification_token(self, token: str, payload: dict, ttl_seconds: int) -> None:
        self.set_json(EMAIL_VERIFICATION_KEY.format(token=token), payload, ttl_seconds)

    def get_verification_token(self, token: str) -> dict | None:
        return self.get_json(EMAIL_VERIFICATION_KEY.format(token=token))

    def delete_verification_token(self, token: str) -> None:
        self.delete(EMAIL_VERIFICATION_KEY.format(token=token))

    def store_reset_token(self, token: str, payload: dict, ttl_seconds: int) -> None:
        self.set_json(PASSWORD_RESET_KEY.format(token=token), payload, ttl_seconds)

    def get_reset_token(self, token: str) -> dict | None:
        return self.get_json(PASSWORD_RESET_KEY.format(token=token))

    def delete_reset_token(self, token: str) -> None:
        self.delete(PASSWORD_RESET_KEY.format(token=token))

    # Counters

    def increment_counter(self, name: str, window_seconds: int) -> tuple[int, int]:
        """Increment a windowed counter, returning (count, seconds until reset).

        INCR, the first-write EXPIRE and the TTL read go out as one pipeline so
        the counter can never be left without an expiry.
        """
        key = self.key(name)
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        pipe.ttl(key)
        count, _, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            ttl = window_seconds
        return int(count), int(ttl)
