"""Authentication schemas."""

from pydantic import EmailStr, Field, field_validator, model_validator

from connectkit.schemas.common import USERNAME_PATTERN, APIModel, validate_password_strength
from connectkit.schemas.user import UserResponse


class _PasswordConfirmation(APIModel):
    new_password: str
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def check_new_password(cls, value: str) -> str:
        return validate_password_strength(value)

    @model_validator(mode="after")
    def check_passwords_match(self) -> "_PasswordConfirmation":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class UserRegister(APIModel):
    """User registration request."""

    email: EmailStr = Field(..., max_length=255)
    username: str = Field(..., min_length=2, max_length=50, pattern=USERNAME_PATTERN)
    password: str
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_strength(value)


class UserLogin(APIModel):
    """User login request."""

    email: EmailStr = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(APIModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(APIModel):
    refresh_token: str | None = None


class ForgotPasswordRequest(APIModel):
    email: EmailStr = Field(..., max_length=255)


class ResetPasswordRequest(_PasswordConfirmation):
    token: str = Field(..., min_length=1)


class ChangePasswordRequest(_PasswordConfirmation):
    current_password: str = Field(..., min_length=1)


class TokenRequest(APIModel):
    token: str = Field(..., min_length=1)


class EmailRequest(APIModel):
    email: EmailStr = Field(..., max_length=255)


class TokenPair(APIModel):
    """Access and refresh token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105
    expires_in: int


class AuthResponse(TokenPair):
    """Login response with tokens and user info."""

    user: UserResponse


class RegisterResponse(APIModel):
    user: UserResponse
    message: str


class TokenValidation(APIModel):
    valid: bool
    user: UserResponse | None = None


class Availability(APIModel):
    available: bool
