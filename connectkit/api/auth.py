"""Authentication API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from connectkit.api.dependencies import (
    CurrentPrincipal,
    get_auth_service,
    get_user_service,
    rate_limit,
)
from connectkit.schemas.auth import (
    AuthResponse,
    Availability,
    ChangePasswordRequest,
    EmailRequest,
    ForgotPasswordRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenPair,
    TokenRequest,
    TokenValidation,
    UserLogin,
    UserRegister,
)
from connectkit.schemas.common import MessageResponse
from connectkit.schemas.user import UserResponse
from connectkit.services.auth import AuthService
from connectkit.services.users import UserService

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("auth"))],
)
async def register(user_data: UserRegister, auth_service: AuthServiceDep):
    """Register a new user."""
    user, _ = auth_service.register(user_data)
    return RegisterResponse(
        user=UserResponse.model_validate(user),
        message="Registration successful. Please check your email to verify your account.",
    )


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(rate_limit("auth"))])
async def login(credentials: UserLogin, auth_service: AuthServiceDep):
    """Login with email and password."""
    return auth_service.login(credentials.email, credentials.password)


@router.post("/refresh", response_model=TokenPair, dependencies=[Depends(rate_limit("auth"))])
async def refresh(body: RefreshRequest, auth_service: AuthServiceDep):
    """Exchange a refresh token for a new token pair."""
    return auth_service.refresh(body.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    principal: CurrentPrincipal,
    auth_service: AuthServiceDep,
    body: LogoutRequest | None = None,
):
    """Revoke the current access token and the active refresh token."""
    auth_service.logout(principal, body.refresh_token if body else None)
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("password_reset"))],
)
async def forgot_password(body: ForgotPasswordRequest, auth_service: AuthServiceDep):
    """Request a password reset link."""
    return MessageResponse(message=auth_service.forgot_password(body.email))


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("password_reset"))],
)
async def reset_password(body: ResetPasswordRequest, auth_service: AuthServiceDep):
    """Set a new password using a reset token."""
    auth_service.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    principal: CurrentPrincipal,
    auth_service: AuthServiceDep,
):
    """Change the password of the current user."""
    auth_service.change_password(principal, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post(
    "/verify-email",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("email_verification"))],
)
async def verify_email(body: TokenRequest, auth_service: AuthServiceDep):
    """Confirm an email address with the emailed token."""
    auth_service.verify_email(body.token)
    return MessageResponse(message="Email verified successfully")


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("email_verification"))],
)
async def resend_verification(body: EmailRequest, auth_service: AuthServiceDep):
    """Issue a fresh verification token."""
    return MessageResponse(message=auth_service.resend_verification(body.email))


@router.get("/me", response_model=UserResponse)
async def get_me(
    principal: CurrentPrincipal,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    """Get current user information."""
    return user_service.get_user(principal, principal.user_id)


@router.post("/validate", response_model=TokenValidation)
async def validate_token(body: TokenRequest, auth_service: AuthServiceDep):
    """Report whether an access token is currently usable."""
    user = auth_service.validate_token(body.token)
    if user is None:
        return TokenValidation(valid=False)
    return TokenValidation(valid=True, user=UserResponse.model_validate(user))


@router.get(
    "/check-email/{email}",
    response_model=Availability,
    dependencies=[Depends(rate_limit("general"))],
)
async def check_email(email: str, auth_service: AuthServiceDep):
    """Check whether an email address can still be registered."""
    return Availability(available=auth_service.is_email_available(email))


@router.get(
    "/check-username/{username}",
    response_model=Availability,
    dependencies=[Depends(rate_limit("general"))],
)
async def check_username(username: str, auth_service: AuthServiceDep):
    """Check whether a username can still be registered."""
    return Availability(available=auth_service.is_username_available(username))
