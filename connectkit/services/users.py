"""User administration service."""

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from connectkit.cache import EMAIL_VERIFICATION_KEY, USER_KEY, SessionCache
from connectkit.config import Settings
from connectkit.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from connectkit.models.enums import UserRole
from connectkit.models.user import User
from connectkit.repositories.base import Page
from connectkit.repositories.user import UserRepository
from connectkit.schemas.user import ProfileUpdate, UserResponse, UserUpdate
from connectkit.services.auth import Principal
from connectkit.services.tokens import TokenService

logger = logging.getLogger(__name__)

ADMIN_ONLY_FIELDS = {"email", "role", "is_verified"}
REQUIRED_FIELDS = {"email", "username", "role", "is_active", "is_verified"}


class UserService:
    """Account administration with role-based permission checks.

    Admins may do anything. Managers may list, search and read stats, and may
    update plain users. Everyone may read and update their own account.
    """

    def __init__(self, db: Session, cache: SessionCache, settings: Settings):
        self.db = db
        self.cache = cache
        self.settings = settings
        self.users = UserRepository(db)
        self.tokens = TokenService(settings, cache)

    def _load(self, user_id: uuid.UUID, include_deleted: bool = False) -> User:
        user = self.users.get_by_id(user_id, include_deleted=include_deleted)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _invalidate(self, user_id: uuid.UUID) -> None:
        self.cache.invalidate(USER_KEY.format(user_id=user_id))

    def _commit(self, user: User) -> UserResponse:
        self.db.commit()
        self.db.refresh(user)
        self._invalidate(user.id)
        return UserResponse.model_validate(user)

    def _ensure_not_last_admin(self, user: User, action: str) -> None:
        if user.role == UserRole.ADMIN and user.is_active and self.users.count_active_admins() <= 1:
            raise ValidationError(f"Cannot {action} the last active administrator")

    @staticmethod
    def _ensure_self_or_admin(principal: Principal, user_id: uuid.UUID) -> None:
        if principal.user_id != user_id and not principal.is_admin:
            raise ForbiddenError()

    @staticmethod
    def _ensure_admin(principal: Principal) -> None:
        if not principal.is_admin:
            raise ForbiddenError()

    @staticmethod
    def _ensure_staff(principal: Principal) -> None:
        if not principal.role.can_manage_users():
            raise ForbiddenError()

    def get_user(self, principal: Principal, user_id: uuid.UUID) -> UserResponse:
        """Read one user through the cache."""
        if principal.user_id != user_id:
            self._ensure_staff(principal)

        cache_key = USER_KEY.format(user_id=user_id)
        cached = self.cache.read_through(cache_key)
        if cached is not None:
            return UserResponse.model_validate(cached)

        response = UserResponse.model_validate(self._load(user_id))
        self.cache.write_through(cache_key, response.model_dump(mode="json"), self.settings.cache_ttl_seconds)
        return response

    def list_users(
        self,
        principal: Principal,
        search: str | None = None,
        role: UserRole | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        page: int = 1,
        limit: int = 20,
        sort: str | None = None,
        order: str = "desc",
    ) -> Page[User]:
        self._ensure_staff(principal)
        return self.users.search(search, role, is_active, is_verified, page, limit, sort, order)

    def stats(self, principal: Principal) -> dict[str, Any]:
        self._ensure_staff(principal)
        return self.users.stats()

    def export_users(self, principal: Principal) -> list[UserResponse]:
        self._ensure_admin(principal)
        return [UserResponse.model_validate(user) for user in self.users.all_users()]

    def update_profile(self, principal: Principal, data: ProfileUpdate) -> UserResponse:
        return self.update_user(principal, principal.user_id, UserUpdate(**data.model_dump(exclude_unset=True)))

    def update_user(self, principal: Principal, user_id: uuid.UUID, data: UserUpdate) -> UserResponse:
        user = self._load(user_id)
        changes = data.model_dump(exclude_unset=True)

        if principal.user_id != user_id:
            if principal.role == UserRole.MANAGER:
                if user.role != UserRole.USER:
                    raise ForbiddenError("Managers can only update regular users")
            elif not principal.is_admin:
                raise ForbiddenError()
        if not principal.is_admin:
            restricted = ADMIN_ONLY_FIELDS & changes.keys()
            if principal.user_id == user_id:
                restricted |= {"is_active"} & changes.keys()
            if restricted:
                raise ForbiddenError(f"Not allowed to change: {', '.join(sorted(restricted))}")

        if "username" in changes and changes["username"]:
            changes["username"] = changes["username"].lower()
            if self.users.username_exists(changes["username"], exclude_id=user.id):
                raise ConflictError("Username is already taken", {"field": "username"})
        if "email" in changes and changes["email"]:
            changes["email"] = changes["email"].lower()
            existing = self.users.get_by_email(changes["email"])
            if existing is not None and existing.id != user.id:
                raise ConflictError("Email is already registered", {"field": "email"})
        if changes.get("role") not in (None, UserRole.ADMIN):
            self._ensure_not_last_admin(user, "demote")
        if changes.get("is_active") is False:
            self._ensure_not_last_admin(user, "deactivate")
            self.tokens.revoke_sessions(str(user.id), "deactivated")

        self.users.update(
            user, {key: value for key, value in changes.items() if value is not None or key not in REQUIRED_FIELDS}
        )
        logger.info(f"User {user.id} updated by {principal.user_id}: {sorted(changes)}")
        return self._commit(user)

    def change_role(self, principal: Principal, user_id: uuid.UUID, role: UserRole) -> UserResponse:
        self._ensure_admin(principal)
        user = self._load(user_id)
        if role != UserRole.ADMIN:
            self._ensure_not_last_admin(user, "demote")
        user.role = role
        logger.info(f"User {user.id} role set to {role.value} by {principal.user_id}")
        return self._commit(user)

    def deactivate(self, principal: Principal, user_id: uuid.UUID) -> UserResponse:
        self._ensure_self_or_admin(principal, user_id)
        user = self._load(user_id)
        self._ensure_not_last_admin(user, "deactivate")
        user.is_active = False
        self.tokens.revoke_sessions(str(user.id), "deactivated")
        logger.info(f"User {user.id} deactivated by {principal.user_id}")
        return self._commit(user)

    def activate(self, principal: Principal, user_id: uuid.UUID) -> UserResponse:
        self._ensure_admin(principal)
        user = self._load(user_id)
        user.is_active = True
        logger.info(f"User {user.id} activated by {principal.user_id}")
        return self._commit(user)

    def delete(self, principal: Principal, user_id: uuid.UUID) -> None:
        self._ensure_self_or_admin(principal, user_id)
        user = self._load(user_id)
        self._ensure_not_last_admin(user, "delete")
        self.users.soft_delete(user)
        self.db.commit()
        self.tokens.revoke_sessions(str(user.id), "deleted")
        self._invalidate(user.id)
        logger.info(f"User {user.id} deleted by {principal.user_id}")

    def restore(self, principal: Principal, user_id: uuid.UUID) -> UserResponse:
        self._ensure_admin(principal)
        user = self._load(user_id, include_deleted=True)
        if not user.is_deleted:
            raise ValidationError("User is not deleted")
        self.users.restore(user)
        logger.info(f"User {user.id} restored by {principal.user_id}")
        return self._commit(user)

    def unlock(self, principal: Principal, user_id: uuid.UUID) -> UserResponse:
        self._ensure_admin(principal)
        user = self._load(user_id)
        self.users.clear_lockout(user)
        logger.info(f"User {user.id} unlocked by {principal.user_id}")
        return self._commit(user)

    def verify_email(self, principal: Principal, user_id: uuid.UUID) -> UserResponse:
        self._ensure_admin(principal)
        user = self._load(user_id)
        if user.verification_token:
            self.cache.invalidate(EMAIL_VERIFICATION_KEY.format(token=user.verification_token))
        self.users.mark_verified(user)
        logger.info(f"User {user.id} email verified by {principal.user_id}")
        return self._commit(user)
