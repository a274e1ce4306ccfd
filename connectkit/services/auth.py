"""Authentication orchestration.

Coordinates the credential store, the session cache and the token service for
registration, login, refresh-token rotation, logout, password reset/change and
email verification. Each public method is one complete transition; nothing is
held between calls.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from connectkit.cache import USER_KEY, SessionCache
from connectkit.config import Settings
from connectkit.errors import (
    AccountLockedError,
    ConflictError,
    EmailNotVerifiedError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
    UnauthorizedError,
    ValidationError,
)
from connectkit.models.enums import UserRole
from connectkit.models.mixins import ensure_utc
from connectkit.models.user import User
from connectkit.repositories.user import UserRepository
from connectkit.schemas.auth import AuthResponse, TokenPair, UserRegister
from connectkit.schemas.user import UserResponse
from connectkit.services.tokens import REFRESH_TOKEN_TYPE, TokenService

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."
RESEND_VERIFICATION_MESSAGE = (
    "If an account with that email exists and is unverified, a verification email has been sent."
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str, rounds: int | None = None) -> str:
    """Hash a password."""
    if rounds is None:
        return pwd_context.hash(password)
    return pwd_context.using(bcrypt__rounds=rounds).hash(password)


def generate_token() -> str:
    """Opaque single-use token for email verification and password reset."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request."""

    user_id: uuid.UUID
    email: str
    role: UserRole
    jti: str
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class AuthService:
    """Login, registration, token and password flows."""

    def __init__(self, db: Session, cache: SessionCache, settings: Settings):
        self.db = db
        self.cache = cache
        self.settings = settings
        self.users = UserRepository(db)
        self.tokens = TokenService(settings, cache)

    def hash_password(self, password: str) -> str:
        return get_password_hash(password, self.settings.bcrypt_rounds)

    def _issue_tokens(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.tokens.issue_access_token(user),
            refresh_token=self.tokens.issue_refresh_token(user.id),
            expires_in=int(self.tokens.access_token_ttl.total_seconds()),
        )

    def _store_verification_token(self, user: User, token: str) -> None:
        payload = {"userId": str(user.id), "email": user.email, "createdAt": datetime.now(UTC).isoformat()}
        ttl = int(timedelta(hours=self.settings.email_verification_expire_hours).total_seconds())
        self.cache.store_verification_token(token, payload, ttl)

    def _invalidate_user_cache(self, user_id: str) -> None:
        self.cache.invalidate(USER_KEY.format(user_id=user_id))

    def register(self, data: UserRegister) -> tuple[User, str]:
        """Create an unverified user and its pending verification token."""
        if self.users.email_exists(data.email):
            raise ConflictError("Email is already registered", {"field": "email"})
        if self.users.username_exists(data.username):
            raise ConflictError("Username is already taken", {"field": "username"})

        verification_token = generate_token()
        try:
            user = self.users.create(
                {
                    "email": data.email,
                    "username": data.username,
                    "password_hash": self.hash_password(data.password),
                    "first_name": data.first_name,
                    "last_name": data.last_name,
                    "verification_token": verification_token,
                }
            )
            self.db.commit()
        except IntegrityError as e:
            # A concurrent registration claimed the email or username first
            self.db.rollback()
            logger.info(f"Registration rejected by constraint: {e.orig}")
            raise ConflictError("Email or username is already registered") from e
        self.db.refresh(user)

        self._store_verification_token(user, verification_token)
        logger.info(f"User registered: {user.id}")
        return user, verification_token

    def login(self, email: str, password: str) -> AuthResponse:
        user = self.users.get_by_email(email)
        if user is None:
            # Spend the same hashing time as a real check
            pwd_context.dummy_verify()
            logger.warning("Login failed: unknown account")
            raise InvalidCredentialsError()

        now = datetime.now(UTC)
        if user.is_locked(now):
            logger.warning(f"Login blocked for locked account {user.id}")
            raise AccountLockedError(ensure_utc(user.locked_until))

        if not verify_password(password, user.password_hash):
            self.users.record_login_failure(
                user, self.settings.max_login_attempts, timedelta(minutes=self.settings.lockout_minutes)
            )
            self.db.commit()
            self._invalidate_user_cache(str(user.id))
            logger.warning(f"Login failed for {user.id}: attempt {user.failed_login_attempts}")
            if user.is_locked():
                logger.warning(f"Account {user.id} locked until {user.locked_until}")
            raise InvalidCredentialsError()

        if not user.is_active:
            raise UnauthorizedError("Account is deactivated")
        if self.settings.require_email_verification and not user.is_verified:
            raise EmailNotVerifiedError()

        self.users.record_login_success(user)
        self.db.commit()
        self.db.refresh(user)

        tokens = self._issue_tokens(user)
        self.cache.store_refresh_token(
            str(user.id), tokens.refresh_token, int(self.tokens.refresh_token_ttl.total_seconds())
        )
        self._invalidate_user_cache(str(user.id))
        logger.info(f"Login succeeded for {user.id}")
        return AuthResponse(**tokens.model_dump(), user=UserResponse.model_validate(user))

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token; only the currently cached value is accepted."""
        claims = self.tokens.verify(refresh_token, REFRESH_TOKEN_TYPE)
        if self.tokens.is_blacklisted(claims.jti):
            raise InvalidTokenError("Refresh token has been revoked")

        user = self.users.get_by_id(uuid.UUID(claims.subject))
        if user is None or not user.is_active:
            raise InvalidTokenError()

        tokens = self._issue_tokens(user)
        rotated = self.cache.rotate_refresh_token(
            claims.subject,
            expected=refresh_token,
            replacement=tokens.refresh_token,
            ttl_seconds=int(self.tokens.refresh_token_ttl.total_seconds()),
        )
        if not rotated:
            logger.warning(f"Stale refresh token presented for {claims.subject}")
            raise InvalidTokenError("Refresh token is no longer valid")

        self.tokens.blacklist(claims.jti, claims.expires_at, claims.subject, "rotated")
        logger.info(f"Token refreshed for {claims.subject}")
        return tokens

    def authenticate(self, access_token: str) -> Principal:
        """Resolve a bearer token to the active user it was issued for."""
        claims = self.tokens.verify(access_token)
        if self.tokens.is_blacklisted(claims.jti):
            raise InvalidTokenError("Token has been revoked")

        try:
            user_id = uuid.UUID(claims.subject)
        except ValueError as e:
            raise InvalidTokenError() from e

        user = self.users.get_by_id(user_id)
        if user is None:
            raise UnauthorizedError("User not found")
        if not user.is_active:
            raise UnauthorizedError("Account is deactivated")

        return Principal(
            user_id=user.id,
            email=user.email,
            role=user.role,
            jti=claims.jti,
            expires_at=claims.expires_at,
        )

    def logout(self, principal: Principal, refresh_token: str | None = None) -> None:
        user_id = str(principal.user_id)
        self.tokens.blacklist(principal.jti, principal.expires_at, user_id, "logout")
        if refresh_token:
            self.tokens.revoke_refresh_token(refresh_token, user_id, "logout")
        self.tokens.revoke_sessions(user_id, "logout")
        logger.info(f"User logged out: {user_id}")

    def forgot_password(self, email: str) -> str:
        """Start a password reset; the reply never reveals whether the account exists."""
        user = self.users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return FORGOT_PASSWORD_MESSAGE

        token = generate_token()
        ttl = timedelta(minutes=self.settings.password_reset_expire_minutes)
        self.users.set_reset_token(user, token, datetime.now(UTC) + ttl)
        self.db.commit()
        self.cache.store_reset_token(
            token,
            {"userId": str(user.id), "email": user.email, "createdAt": datetime.now(UTC).isoformat()},
            int(ttl.total_seconds()),
        )
        logger.info(f"Password reset token issued for {user.id}")
        return FORGOT_PASSWORD_MESSAGE

    def reset_password(self, token: str, new_password: str) -> None:
        payload = self.cache.get_reset_token(token)
        if payload is None:
            raise InvalidTokenError("Invalid or expired password reset token")

        user = self.users.get_by_reset_token(token)
        if user is None or str(user.id) != payload.get("userId"):
            raise InvalidTokenError("Invalid or expired password reset token")

        self.users.reset_password(user, self.hash_password(new_password))
        self.db.commit()

        self.cache.delete_reset_token(token)
        self.tokens.revoke_sessions(str(user.id), "password_reset")
        self._invalidate_user_cache(str(user.id))
        logger.info(f"Password reset for {user.id}")

    def change_password(self, principal: Principal, current_password: str, new_password: str) -> None:
        user = self.users.get_by_id(principal.user_id)
        if user is None or not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError()
        if verify_password(new_password, user.password_hash):
            raise ValidationError("New password must be different from the current password")

        self.users.update_password(user, self.hash_password(new_password))
        self.db.commit()

        self.tokens.revoke_sessions(str(user.id), "password_change")
        logger.info(f"Password changed for {user.id}")

    def verify_email(self, token: str) -> User:
        payload = self.cache.get_verification_token(token)
        if payload is None:
            raise InvalidTokenError("Invalid or expired verification token")

        user = self.users.get_by_id(uuid.UUID(payload["userId"]))
        if user is None:
            self.cache.delete_verification_token(token)
            raise InvalidTokenError("Invalid or expired verification token")

        self.users.mark_verified(user)
        self.db.commit()
        self.db.refresh(user)

        self.cache.delete_verification_token(token)
        self._invalidate_user_cache(str(user.id))
        logger.info(f"Email verified for {user.id}")
        return user

    def resend_verification(self, email: str) -> str:
        user = self.users.get_by_email(email)
        if user is None or user.is_verified:
            return RESEND_VERIFICATION_MESSAGE

        if user.verification_token:
            self.cache.delete_verification_token(user.verification_token)
        token = generate_token()
        self.users.set_verification_token(user, token)
        self.db.commit()
        self._store_verification_token(user, token)
        logger.info(f"Verification token reissued for {user.id}")
        return RESEND_VERIFICATION_MESSAGE

    def validate_token(self, access_token: str) -> User | None:
        """Return the token's user if the token is currently usable, else None."""
        try:
            principal = self.authenticate(access_token)
        except (InvalidTokenError, ExpiredTokenError, UnauthorizedError):
            return None
        return self.users.get_by_id(principal.user_id)

    def is_email_available(self, email: str) -> bool:
        return not self.users.email_exists(email)

    def is_username_available(self, username: str) -> bool:
        return not self.users.username_exists(username)

    def cleanup(self) -> dict[str, int]:
        """Purge expired reset tokens and lift lockouts that have run out."""
        now = datetime.now(UTC)
        expired_reset_tokens = self.users.cleanup_expired_reset_tokens(now)
        unlocked_ids = self.users.unlock_expired_accounts(now)
        self.db.commit()
        for user_id in unlocked_ids:
            self._invalidate_user_cache(str(user_id))
        unlocked_accounts = len(unlocked_ids)
        if expired_reset_tokens or unlocked_accounts:
            logger.info(
                f"Auth cleanup: {expired_reset_tokens} expired reset tokens, "
                f"{unlocked_accounts} accounts unlocked"
            )
        return {"expired_reset_tokens": expired_reset_tokens, "unlocked_accounts": unlocked_accounts}
