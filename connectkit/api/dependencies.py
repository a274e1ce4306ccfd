"""FastAPI dependencies for authentication, services and rate limiting."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from connectkit.cache import SessionCache
from connectkit.config import Settings
from connectkit.database import get_db
from connectkit.errors import ForbiddenError, UnauthorizedError
from connectkit.models.enums import UserRole
from connectkit.services.auth import AuthService, Principal
from connectkit.services.contacts import ContactService
from connectkit.services.rate_limit import RateLimiter
from connectkit.services.users import UserService

security = HTTPBearer(auto_error=False)


def get_settings_dep(request: Request) -> Settings:
    """Settings of the running application context."""
    return request.app.state.context.settings


def get_cache(request: Request) -> SessionCache:
    return request.app.state.context.cache


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[SessionCache, Depends(get_cache)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
) -> AuthService:
    """Get auth service with dependencies."""
    return AuthService(db, cache, settings)


def get_user_service(
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[SessionCache, Depends(get_cache)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
) -> UserService:
    """Get user service with dependencies."""
    return UserService(db, cache, settings)


def get_contact_service(
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[SessionCache, Depends(get_cache)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
) -> ContactService:
    """Get contact service with dependencies."""
    return ContactService(db, cache, settings)


def get_rate_limiter(
    cache: Annotated[SessionCache, Depends(get_cache)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
) -> RateLimiter:
    return RateLimiter.from_settings(cache, settings)


def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> Principal:
    """Get the authenticated caller from the bearer token."""
    if credentials is None:
        raise UnauthorizedError()
    return auth_service.authenticate(credentials.credentials)


def get_optional_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> Principal | None:
    """Like get_current_principal, but anonymous callers get None."""
    if credentials is None:
        return None
    try:
        return auth_service.authenticate(credentials.credentials)
    except UnauthorizedError:
        return None


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def require_roles(*roles: UserRole) -> Callable[..., Principal]:
    """Build a dependency that admits only the given roles."""

    def dependency(principal: CurrentPrincipal) -> Principal:
        if principal.role not in roles:
            raise ForbiddenError()
        return principal

    return dependency


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(action: str) -> Callable[..., None]:
    """Build a dependency that counts the request against ``action``.

    Authenticated callers are counted per user, anonymous ones per IP.
    """

    def dependency(
        request: Request,
        response: Response,
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
        principal: Annotated[Principal | None, Depends(get_optional_principal)],
    ) -> None:
        if principal is not None:
            identity = f"user:{principal.user_id}"
            role = principal.role.value
        else:
            identity = f"ip:{client_ip(request)}"
            role = None

        result = limiter.check(action, identity, role)
        if result is not None:
            response.headers["X-RateLimit-Limit"] = str(result.limit)
            response.headers["X-RateLimit-Remaining"] = str(result.remaining)
            response.headers["X-RateLimit-Reset"] = str(result.reset_after)

    return dependency

