from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from coursehub.database import UtcDatetime


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"
    SUSPENDED = "suspended"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class StatsType(str, Enum):
    GENERAL = "general"
    COURSE = "course"
    STUDENT = "student"


class SelfEnrollRequest(BaseModel):
    course: str


class EnrollmentCreate(BaseModel):
    student: str
    course: str
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_amount: Optional[float] = Field(None, ge=0)
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class EnrollmentUpdate(BaseModel):
    status: Optional[EnrollmentStatus] = None
    progress: Optional[float] = Field(None, ge=0, le=100)
    payment_status: Optional[PaymentStatus] = None
    payment_amount: Optional[float] = Field(None, ge=0)
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class EnrollmentFilters(BaseModel):
    student: Optional[str] = None
    course: Optional[str] = None
    status: Optional[EnrollmentStatus] = None
    payment_status: Optional[PaymentStatus] = None
    enrolled_after: Optional[UtcDatetime] = None
    enrolled_before: Optional[UtcDatetime] = None
    progress_min: Optional[float] = Field(None, ge=0, le=100)
    progress_max: Optional[float] = Field(None, ge=0, le=100)
    search: Optional[str] = None
