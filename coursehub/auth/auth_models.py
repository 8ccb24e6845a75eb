import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

PHONE_PATTERN = re.compile(r"^[\+]?[1-9][\d]{0,15}$")


class UserRole(str, Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


def clean_phone(phone: str) -> str:
    """Strip spaces, dashes and parentheses"""
    return re.sub(r"[\s\-\(\)]", "", phone or "")


class RegisterRequest(BaseModel):
    phone: str
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field("", max_length=50)
    role: UserRole = UserRole.STUDENT

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        cleaned = clean_phone(v)
        if not PHONE_PATTERN.match(cleaned):
            raise ValueError("Please enter a valid phone number")
        return cleaned

    @field_validator("role")
    @classmethod
    def no_self_admin(cls, v):
        if v == UserRole.ADMIN:
            raise ValueError("Admin accounts cannot be self-registered")
        return v


class LoginRequest(BaseModel):
    phone: str
    password: str

    @field_validator("phone")
    @classmethod
    def normalize_phone(cls, v):
        return clean_phone(v)


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    avatar_url: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)
