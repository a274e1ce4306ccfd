"""Signed access/refresh tokens and their revocation list."""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from redis.exceptions import RedisError

from connectkit.cache import SessionCache
from connectkit.config import Settings
from connectkit.errors import ExpiredTokenError, InvalidTokenError
from connectkit.models.user import User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"  # noqa: S105
REFRESH_TOKEN_TYPE = "refresh"  # noqa: S105


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a signed token."""

    subject: str
    jti: str
    token_type: str
    expires_at: datetime
    email: str | None = None
    role: str | None = None


class TokenService:
    """Issues and verifies tokens; the only state is the signing secret."""

    def __init__(self, settings: Settings, cache: SessionCache):
        self.settings = settings
        self.cache = cache

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    def _encode(self, claims: dict, ttl: timedelta) -> str:
        now = datetime.now(UTC)
        to_encode = {
            **claims,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + ttl,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
        }
        return jwt.encode(to_encode, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def issue_access_token(self, user: User) -> str:
        """Create a short-lived access token carrying the user's id and role."""
        return self._encode(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": user.role.value,
                "type": ACCESS_TOKEN_TYPE,
            },
            self.access_token_ttl,
        )

    def issue_refresh_token(self, user_id: uuid.UUID | str) -> str:
        return self._encode({"sub": str(user_id), "type": REFRESH_TOKEN_TYPE}, self.refresh_token_ttl)

    def verify(self, token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> TokenClaims:
        """Validate signature, expiry, issuer, audience and token type.

        Does not consult the blacklist; see :meth:`is_blacklisted`.
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                audience=self.settings.jwt_audience,
                issuer=self.settings.jwt_issuer,
            )
        except ExpiredSignatureError as e:
            raise ExpiredTokenError() from e
        except JWTError as e:
            raise InvalidTokenError() from e

        if payload.get("type") != expected_type:
            raise InvalidTokenError(f"Expected a {expected_type} token")
        if not payload.get("sub") or not payload.get("jti"):
            raise InvalidTokenError()

        return TokenClaims(
            subject=payload["sub"],
            jti=payload["jti"],
            token_type=payload["type"],
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            email=payload.get("email"),
            role=payload.get("role"),
        )

    def blacklist(self, jti: str, expires_at: datetime, user_id: str, reason: str) -> None:
        """Revoke a token id until its natural expiry."""
        self.cache.blacklist_token(jti, expires_at, user_id, reason)

    def is_blacklisted(self, jti: str) -> bool:
        """Check the revocation list.

        An unreachable cache counts as revoked: a token whose status cannot be
        confirmed is not accepted.
        """
        try:
            return self.cache.is_token_blacklisted(jti)
        except RedisError as e:
            logger.error(f"Blacklist lookup failed, rejecting token {jti}: {e}")
            return True

    def revoke_refresh_token(self, token: str, user_id: str, reason: str) -> None:
        """Blacklist a refresh token if it still verifies; ignore it otherwise."""
        try:
            claims = self.verify(token, REFRESH_TOKEN_TYPE)
        except (InvalidTokenError, ExpiredTokenError):
            return
        if claims.subject == user_id:
            self.blacklist(claims.jti, claims.expires_at, user_id, reason)

    def revoke_sessions(self, user_id: str, reason: str) -> None:
        """Drop the user's active refresh token and blacklist it."""
        stored = self.cache.get_refresh_token(user_id)
        if stored:
            self.revoke_refresh_token(stored, user_id, reason)
        self.cache.delete_refresh_token(user_id)
