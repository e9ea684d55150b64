"""
User schemas: public profile views and update requests.
"""
from pydantic import BaseModel, field_validator, ConfigDict
from typing import Optional
from datetime import datetime
import re


def check_phone(v: Optional[str]) -> Optional[str]:
    """None means "not given"; an empty string means "clear the number"."""
    if v is None:
        return v
    v = v.strip()
    if v and not re.match(r"^\+?[0-9]{7,15}$", v):
        raise ValueError("Phone must be 7 to 15 digits, optionally prefixed with +")
    return v


class UserOut(BaseModel):
    """
    Public-safe user representation.
    hashed_password is never included — Pydantic only exposes fields declared here.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    two_factor_enabled: bool
    is_verified: bool
    verified_at: Optional[datetime] = None
    created_at: datetime

    # UUID → str conversion for JSON serialization
    @field_validator("id", mode="before")
    @classmethod
    def uuid_to_str(cls, v) -> str:
        return str(v)


class UserUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    two_factor_enabled: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if len(v) < 2 or len(v) > 100:
            raise ValueError("Name must be between 2 and 100 characters")
        return v

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v)


class UserAuthResponse(BaseModel):
    """Returned alongside tokens after successful login/register verification."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: str
    is_verified: bool

    @field_validator("id", mode="before")
    @classmethod
    def uuid_to_str(cls, v) -> str:
        return str(v)
