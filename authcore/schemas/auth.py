import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from authcore.models.user import UserStatus

NAME_PATTERN = r"^[a-zA-Z\s]+$"
PHONE_PATTERN = r"^[+]?[\d\s\-()]+$"
CODE_PATTERN = r"^[A-Z0-9]+$"


class CamelModel(BaseModel):
    """Request/response bodies use camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def check_password_strength(value: str) -> str:
    if not re.search(r"[a-z]", value) or not re.search(r"[A-Z]", value) or not re.search(r"\d", value):
        raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return value


# Requests

class RegisterRequest(CamelModel):
    first_name: str = Field(..., min_length=2, max_length=50, pattern=NAME_PATTERN)
    last_name: str = Field(..., min_length=2, max_length=50, pattern=NAME_PATTERN)
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    referral_code: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_strength(v)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class GoogleLoginRequest(CamelModel):
    id_token: str = Field(..., min_length=1)


class FacebookLoginRequest(CamelModel):
    access_token: str = Field(..., min_length=1)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class VerifyOTPRequest(CamelModel):
    email: EmailStr
    code: str = Field(..., min_length=4, max_length=8, pattern=CODE_PATTERN)


class ResetPasswordRequest(CamelModel):
    reset_token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return check_password_strength(v)


class VerifyEmailRequest(CamelModel):
    code: str = Field(..., min_length=4, max_length=8, pattern=CODE_PATTERN)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return check_password_strength(v)


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = None


class UserStatusUpdate(CamelModel):
    status: UserStatus


class CreditAdjustment(CamelModel):
    amount: int = Field(..., gt=0, le=1_000_000)


# Responses

class MessageResponse(CamelModel):
    message: str


class UserSummary(CamelModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: str
    credits: int
    email_verified: bool


class UserResponse(UserSummary):
    phone: Optional[str] = None
    profile_image: Optional[str] = None
    cover_image: Optional[str] = None
    status: str
    referral_code: Optional[str] = None
    referred_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class UserDataResponse(MessageResponse):
    data: UserResponse


class LoginResponse(MessageResponse):
    user: UserSummary
    access_token: str
    refresh_token: str


class TokenPairResponse(MessageResponse):
    access_token: str
    refresh_token: str


class ResetTokenResponse(CamelModel):
    reset_token: str


class TokenVerificationResponse(MessageResponse):
    user: UserSummary
