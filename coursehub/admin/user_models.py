import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from coursehub.auth.auth_models import PHONE_PATTERN, clean_phone

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _valid_phone(v: str) -> str:
    cleaned = clean_phone(v)
    if not PHONE_PATTERN.match(cleaned):
        raise ValueError("Please enter a valid phone number")
    return cleaned


class ManagedUserCreate(BaseModel):
    phone: str
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field("", max_length=50)
    is_active: bool = True

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _valid_phone(v)


class ManagedUserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    is_active: Optional[bool] = None
    bio: Optional[str] = Field(None, max_length=500)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _valid_phone(v) if v is not None else v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v
