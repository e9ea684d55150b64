"""
Auth schemas: request bodies and responses for registration, login, OTP, and token operations.
"""
import uuid
from pydantic import BaseModel, EmailStr, field_validator, model_validator
from typing import Optional

from app.config import settings
from app.models.otp import OTPChannel, OTPPurpose
from app.schemas.user import UserAuthResponse, check_phone


def _check_otp_format(v: str) -> str:
    v = v.strip()
    if not v.isdigit() or len(v) != settings.otp_length:
        raise ValueError(f"OTP must be exactly {settings.otp_length} digits")
    return v


def _check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    return v


class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None
    channel: OTPChannel = OTPChannel.EMAIL

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2 or len(v) > 100:
            raise ValueError("Name must be between 2 and 100 characters")
        return v

    @field_validator("password")
    @classmethod
    def password_strong(cls, v: str) -> str:
        return _check_password_strength(v)

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v)


RESENDABLE_PURPOSES = (OTPPurpose.REGISTER, OTPPurpose.RESET_PASSWORD)


class SendOTPRequest(BaseModel):
    email: EmailStr
    purpose: OTPPurpose
    channel: OTPChannel = OTPChannel.EMAIL

    @field_validator("purpose")
    @classmethod
    def purpose_resendable(cls, v: OTPPurpose) -> OTPPurpose:
        # Two-factor codes are only ever issued by a successful password login.
        if v not in RESENDABLE_PURPOSES:
            raise ValueError(f"OTP resend is not available for purpose '{v.value}'")
        return v


class VerifyRegisterRequest(BaseModel):
    email: EmailStr
    otp: str
    channel: OTPChannel = OTPChannel.EMAIL

    @field_validator("otp")
    @classmethod
    def otp_format(cls, v: str) -> str:
        return _check_otp_format(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class VerifyLoginRequest(BaseModel):
    user_id: uuid.UUID
    otp: str
    channel: OTPChannel = OTPChannel.EMAIL

    @field_validator("otp")
    @classmethod
    def otp_format(cls, v: str) -> str:
        return _check_otp_format(v)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    channel: OTPChannel = OTPChannel.EMAIL


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str
    new_password: str
    confirm_password: str
    channel: OTPChannel = OTPChannel.EMAIL

    @field_validator("otp")
    @classmethod
    def otp_format(cls, v: str) -> str:
        return _check_otp_format(v)

    @field_validator("new_password")
    @classmethod
    def password_strong(cls, v: str) -> str:
        return _check_password_strength(v)

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strong(cls, v: str) -> str:
        return _check_password_strength(v)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LoginWithTokenResponse(TokenResponse):
    user: UserAuthResponse


class LoginResponse(BaseModel):
    """
    Either tokens (single-step login) or an OTP challenge (two-factor login).
    When otp_required is true, finish with POST /auth/login/verify using user_id.
    """
    otp_required: bool = False
    user_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    user: Optional[UserAuthResponse] = None


class MessageResponse(BaseModel):
    message: str
