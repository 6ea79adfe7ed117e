"""Request/response schemas for auth endpoints (camelCase on the wire, snake_case accepted)."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from app.core.security import (
    EMAIL_MAX_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    """New account details; the password is hashed before storage."""

    email: EmailStr
    user_name: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class RegisterResponse(CamelModel):
    id: uuid.UUID
    email: str
    created_at: datetime


class LoginRequest(CamelModel):
    """Credentials for login. No length policy here: any mismatch is just invalid credentials."""

    email: str = Field(..., min_length=1, max_length=EMAIL_MAX_LEN)
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)


class UserDto(CamelModel):
    id: uuid.UUID
    email: str
    user_name: str
    created_at: datetime
    roles: list[str]


class TokenPairResponse(CamelModel):
    """Access and refresh tokens; expires_in is the access token lifetime in seconds."""

    access_token: str
    refresh_token: str
    expires_in: int


class LoginResponse(TokenPairResponse):
    user: UserDto


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=EMAIL_MAX_LEN)


class ResetPasswordRequest(CamelModel):
    """Reset token from the email plus the new password."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class MessageResponse(CamelModel):
    message: str


class CurrentUser(CamelModel):
    """Authenticated caller, taken from a verified access token."""

    id: uuid.UUID
    email: str
    roles: list[str]



class UpdateUserRequest(CamelModel):
    user_name: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
