# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API request/response. JSON uses camelCase keys."""

from datetime import date

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from sharesphere_server.models import User


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Requests
class RegisterRequest(CamelModel):
    display_name: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""


class LoginRequest(CamelModel):
    email: str = ""
    password: str = ""


class CheckEmailRequest(CamelModel):
    email: str | None = None


class SendVerificationRequest(CamelModel):
    email: str | None = None
    user_name: str | None = None
    profile_url: str | None = None


class ResendVerificationRequest(CamelModel):
    email: str | None = None


class VerifyEmailRequest(CamelModel):
    token: str | None = None


# Responses
class UserResponse(CamelModel):
    user_id: int
    username: str
    display_name: str
    email: str | None = None
    photo_url: str | None = None
    bio: str | None = None
    location: str | None = None
    joined_on: date | None = None
    email_verified: bool
    auth_strategy: str
    profile_url: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            user_id=user.id,
            username=user.username,
            display_name=user.display_name,
            email=user.email,
            photo_url=user.photo_url,
            bio=user.bio,
            location=user.location,
            joined_on=user.joined_on,
            email_verified=user.email_verified,
            auth_strategy=user.auth_strategy,
            profile_url=user.profile_url,
        )


class RegisteredUser(CamelModel):
    email: str
    display_name: str


class RegisterResponse(CamelModel):
    register_success: bool
    message: str
    email_verification_required: bool | None = None
    user: RegisteredUser | None = None


class LoginResponse(CamelModel):
    auth_success: bool
    message: str
    user: UserResponse | None = None
    token: str | None = None
    requires_verification: bool = False


class CurrentUserResponse(CamelModel):
    auth_success: bool
    message: str
    user: UserResponse


class LogoutResponse(CamelModel):
    logout_success: bool
    message: str
    user: None = None


class CheckEmailResponse(CamelModel):
    is_valid: bool
    reason: str


class VerificationResult(CamelModel):
    success: bool
    message: str | None = None
    error: str | None = None
    email: str | None = None


class VerificationStatusResponse(CamelModel):
    success: bool
    is_verified: bool
    message: str


def json_response(model: BaseModel, status_code: int = 200, exclude_none: bool = False) -> JSONResponse:
    """Serialize a response model with its camelCase aliases."""
    return JSONResponse(
        status_code=status_code,
        content=model.model_dump(mode="json", by_alias=True, exclude_none=exclude_none),
    )
