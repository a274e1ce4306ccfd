"""User administration API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from connectkit.api.dependencies import CurrentPrincipal, get_user_service, rate_limit, require_roles
from connectkit.models.enums import UserRole
from connectkit.schemas.common import PaginatedResponse
from connectkit.schemas.user import ProfileUpdate, RoleUpdate, UserResponse, UserStats, UserUpdate
from connectkit.services.users import UserService

router = APIRouter(
    prefix="/api/v1/users",
    tags=["users"],
    dependencies=[Depends(rate_limit("general"))],
)

UserServiceDep = Annotated[UserService, Depends(get_user_service)]
StaffOnly = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))
AdminOnly = Depends(require_roles(UserRole.ADMIN))


@router.get("/me", response_model=UserResponse)
async def get_profile(principal: CurrentPrincipal, user_service: UserServiceDep):
    """Get the current user's profile."""
    return user_service.get_user(principal, principal.user_id)


@router.put("/me", response_model=UserResponse)
async def update_profile(body: ProfileUpdate, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Update the current user's profile."""
    return user_service.update_profile(principal, body)


@router.get("", response_model=PaginatedResponse[UserResponse], dependencies=[StaffOnly])
async def list_users(
    principal: CurrentPrincipal,
    user_service: UserServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    sort: str | None = None,
    order: Annotated[str, Query(pattern="^(asc|desc)$")] = "desc",
    search: str | None = None,
    role: UserRole | None = None,
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
    is_verified: Annotated[bool | None, Query(alias="isVerified")] = None,
):
    """List and search users."""
    result = user_service.list_users(principal, search, role, is_active, is_verified, page, limit, sort, order)
    return PaginatedResponse.from_page(result, [UserResponse.model_validate(user) for user in result.items])


@router.get("/stats", response_model=UserStats, dependencies=[StaffOnly])
async def user_stats(principal: CurrentPrincipal, user_service: UserServiceDep):
    """Get account statistics."""
    return user_service.stats(principal)


@router.get("/export", response_model=list[UserResponse], dependencies=[AdminOnly])
async def export_users(principal: CurrentPrincipal, user_service: UserServiceDep):
    """Export all users without sensitive fields."""
    return user_service.export_users(principal)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Get a user by ID."""
    return user_service.get_user(principal, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    body: UserUpdate,
    principal: CurrentPrincipal,
    user_service: UserServiceDep,
):
    """Update a user."""
    return user_service.update_user(principal, user_id, body)


@router.patch("/{user_id}/role", response_model=UserResponse, dependencies=[AdminOnly])
async def change_role(
    user_id: UUID,
    body: RoleUpdate,
    principal: CurrentPrincipal,
    user_service: UserServiceDep,
):
    """Change a user's role."""
    return user_service.change_role(principal, user_id, body.role)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Deactivate an account."""
    return user_service.deactivate(principal, user_id)


@router.post("/{user_id}/activate", response_model=UserResponse, dependencies=[AdminOnly])
async def activate_user(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Reactivate an account."""
    return user_service.activate(principal, user_id)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Soft delete an account."""
    user_service.delete(principal, user_id)


@router.post("/{user_id}/restore", response_model=UserResponse, dependencies=[AdminOnly])
async def restore_user(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Restore a soft-deleted account."""
    return user_service.restore(principal, user_id)


@router.post("/{user_id}/unlock", response_model=UserResponse, dependencies=[AdminOnly])
async def unlock_user(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Clear a login lockout."""
    return user_service.unlock(principal, user_id)


@router.post("/{user_id}/verify-email", response_model=UserResponse, dependencies=[AdminOnly])
async def verify_user_email(user_id: UUID, principal: CurrentPrincipal, user_service: UserServiceDep):
    """Mark a user's email as verified."""
    return user_service.verify_email(principal, user_id)
