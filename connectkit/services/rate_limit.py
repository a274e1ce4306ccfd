"""Redis counter based request throttling."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from redis.exceptions import RedisError

from connectkit.cache import RATE_LIMIT_KEY, SessionCache
from connectkit.config import RateLimitPolicy, Settings
from connectkit.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitStatus:
    limit: int
    remaining: int
    reset_after: int


class RateLimiter:
    """Fixed-window counters keyed by action and caller identity.

    The first request in a window creates the counter and starts its expiry;
    once the count passes the ceiling every request is refused until the key
    expires. When Redis is unavailable the limiter either lets traffic through
    (``fail_open``) or refuses it, as configured.
    """

    def __init__(
        self,
        cache: SessionCache,
        policies: Mapping[str, RateLimitPolicy],
        *,
        enabled: bool = True,
        fail_open: bool = True,
        exempt_roles: Iterable[str] = ("admin",),
        environment: str = "development",
    ):
        self.cache = cache
        self.policies = dict(policies)
        self.enabled = enabled
        self.fail_open = fail_open
        self.exempt_roles = frozenset(exempt_roles)
        self.environment = environment

    @classmethod
    def from_settings(cls, cache: SessionCache, settings: Settings) -> "RateLimiter":
        return cls(
            cache,
            settings.rate_limit_policies,
            enabled=settings.rate_limit_enabled,
            fail_open=settings.rate_limit_fail_open,
            exempt_roles=settings.rate_limit_exempt_roles,
            environment=settings.environment,
        )

    def is_exempt(self, role: str | None) -> bool:
        return not self.enabled or self.environment == "test" or (role is not None and role in self.exempt_roles)

    def check(self, action: str, identity: str, role: str | None = None) -> RateLimitStatus | None:
        """Count one request against ``action`` for ``identity``.

        Returns the remaining budget, or None when the caller is exempt.
        Raises RateLimitExceededError once the ceiling is passed.
        """
        policy = self.policies.get(action)
        if policy is None:
            raise ValueError(f"Unknown rate limit policy: {action}")
        if self.is_exempt(role):
            return None

        key = RATE_LIMIT_KEY.format(action=action, identity=identity)
        try:
            count, reset_after = self.cache.increment_counter(key, policy.window_seconds)
        except RedisError as e:
            if self.fail_open:
                logger.warning(f"Rate limiter unavailable, allowing {action} for {identity}: {e}")
                return None
            logger.error(f"Rate limiter unavailable, refusing {action} for {identity}: {e}")
            raise RateLimitExceededError(policy.max_requests, policy.window_seconds, policy.window_seconds) from e

        if count > policy.max_requests:
            logger.warning(f"Rate limit exceeded: {action} for {identity} ({count}/{policy.max_requests})")
            raise RateLimitExceededError(policy.max_requests, policy.window_seconds, reset_after)

        return RateLimitStatus(
            limit=policy.max_requests,
            remaining=policy.max_requests - count,
            reset_after=reset_after,
        )
