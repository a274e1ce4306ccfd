"""User repository."""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import case, func, or_

from connectkit.models.enums import UserRole
from connectkit.models.user import User
from connectkit.repositories.base import BaseRepository, Page


class UserRepository(BaseRepository[User]):
    """Credential store: user records, password hashes and lockout counters."""

    model = User
    sortable_columns = frozenset(
        {"created_at", "updated_at", "email", "username", "first_name", "last_name", "last_login_at", "role"}
    )
    protected_fields = BaseRepository.protected_fields | {
        "password_hash",
        "verification_token",
        "reset_password_token",
        "reset_password_expires",
        "failed_login_attempts",
        "locked_until",
    }

    def create(self, create_data: dict[str, Any]) -> User:
        user = User(
            email=create_data["email"].lower(),
            username=create_data["username"].lower(),
            password_hash=create_data["password_hash"],
            first_name=create_data.get("first_name"),
            last_name=create_data.get("last_name"),
            phone=create_data.get("phone"),
            role=create_data.get("role", UserRole.USER),
            is_active=create_data.get("is_active", True),
            is_verified=create_data.get("is_verified", False),
            verification_token=create_data.get("verification_token"),
        )
        return self.add(user)

    def get_by_email(self, email: str) -> User | None:
        return self.query().filter(User.email == email.lower()).first()

    def get_by_username(self, username: str) -> User | None:
        return self.query().filter(User.username == username.lower()).first()

    def get_by_email_or_username(self, email: str, username: str) -> User | None:
        return (
            self.query()
            .filter(or_(User.email == email.lower(), User.username == username.lower()))
            .first()
        )

    def email_exists(self, email: str) -> bool:
        """Check every record, including soft-deleted ones, since the column is unique."""
        return self.query(include_deleted=True).filter(User.email == email.lower()).count() > 0

    def username_exists(self, username: str, exclude_id: Any = None) -> bool:
        query = self.query(include_deleted=True).filter(User.username == username.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        return query.count() > 0

    def get_by_verification_token(self, token: str) -> User | None:
        return self.query().filter(User.verification_token == token).first()

    def get_by_reset_token(self, token: str, now: datetime | None = None) -> User | None:
        """Find the user holding an unexpired password reset token."""
        now = now or datetime.now(UTC)
        return (
            self.query()
            .filter(User.reset_password_token == token, User.reset_password_expires > now)
            .first()
        )

    def record_login_success(self, user: User) -> None:
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = datetime.now(UTC)
        self.db.flush()

    def record_login_failure(self, user: User, max_attempts: int, lockout: timedelta) -> None:
        """Bump the failure counter and lock the account on the threshold.

        Both columns are computed inside one UPDATE, so concurrent failures for
        the same account cannot lose an increment or skip the lockout.
        """
        attempts = User.failed_login_attempts + 1
        self.db.query(User).filter(User.id == user.id).update(
            {
                User.failed_login_attempts: attempts,
                User.locked_until: case(
                    (attempts >= max_attempts, datetime.now(UTC) + lockout),
                    else_=User.locked_until,
                ),
            },
            synchronize_session=False,
        )
        self.db.flush()
        self.db.refresh(user)

    def clear_lockout(self, user: User) -> None:
        user.failed_login_attempts = 0
        user.locked_until = None
        self.db.flush()

    def set_verification_token(self, user: User, token: str) -> None:
        user.verification_token = token
        self.db.flush()

    def mark_verified(self, user: User) -> None:
        user.is_verified = True
        user.verification_token = None
        self.db.flush()

    def set_reset_token(self, user: User, token: str, expires_at: datetime) -> None:
        user.reset_password_token = token
        user.reset_password_expires = expires_at
        self.db.flush()

    def reset_password(self, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        user.reset_password_token = None
        user.reset_password_expires = None
        user.failed_login_attempts = 0
        user.locked_until = None
        self.db.flush()

    def update_password(self, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        self.db.flush()

    def count_active_admins(self) -> int:
        return self.query().filter(User.role == UserRole.ADMIN, User.is_active.is_(True)).count()

    def search(
        self,
        search: str | None = None,
        role: UserRole | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        page: int = 1,
        limit: int = 20,
        sort: str | None = None,
        order: str = "desc",
    ) -> Page[User]:
        query = self.query()
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    User.email.ilike(pattern),
                    User.username.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                )
            )
        if role is not None:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active.is_(is_active))
        if is_verified is not None:
            query = query.filter(User.is_verified.is_(is_verified))
        return self.paginate(query, page, limit, sort, order)

    def all_users(self) -> list[User]:
        return self.query().order_by(User.created_at.asc(), User.id.asc()).all()

    def stats(self) -> dict[str, Any]:
        now = datetime.now(UTC)
        query = self.query()
        by_role = dict(
            self.db.query(User.role, func.count(User.id))
            .filter(User.deleted_at.is_(None))
            .group_by(User.role)
            .all()
        )
        return {
            "total": query.count(),
            "active": query.filter(User.is_active.is_(True)).count(),
            "verified": query.filter(User.is_verified.is_(True)).count(),
            "locked": query.filter(User.locked_until > now).count(),
            "by_role": {role.value: by_role.get(role, 0) for role in UserRole},
            "recent_signups": query.filter(User.created_at >= now - timedelta(days=30)).count(),
        }

    def cleanup_expired_reset_tokens(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        count = (
            self.db.query(User)
            .filter(User.reset_password_expires.is_not(None), User.reset_password_expires < now)
            .update(
                {User.reset_password_token: None, User.reset_password_expires: None},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return count

    def unlock_expired_accounts(self, now: datetime | None = None) -> list[Any]:
        """Lift lockouts that have run out; returns the ids of the accounts unlocked."""
        now = now or datetime.now(UTC)
        user_ids = [
            row.id
            for row in self.db.query(User.id).filter(User.locked_until.is_not(None), User.locked_until < now)
        ]
        if not user_ids:
            return []
        self.db.query(User).filter(User.id.in_(user_ids)).update(
            {User.locked_until: None, User.failed_login_attempts: 0},
            synchronize_session=False,
        )
        self.db.flush()
        return user_ids
