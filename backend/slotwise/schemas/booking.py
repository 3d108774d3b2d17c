# backend/slotwise/schemas/booking.py
"""
Booking schemas for Slotwise.

Request DTOs for the public booking request and the lifecycle actions, and
response DTOs for bookings and refund evaluations.
"""

import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import EmailStr, Field, field_validator

from ._strict_base import StandardizedModel, StrictRequestModel

DateTimeType = datetime.datetime


class BookingCreate(StrictRequestModel):
    """Public booking request for a provider's service."""

    provider_id: str = Field(..., min_length=1, max_length=26)
    service_id: str = Field(..., min_length=1, max_length=26)
    customer_name: str = Field(..., min_length=2, max_length=100)
    customer_email: EmailStr
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_address: Optional[str] = Field(None, max_length=500)
    booking_date: DateTimeType
    duration: Optional[int] = Field(
        None, ge=15, le=480, description="Must equal the service duration when given"
    )
    notes: Optional[str] = Field(None, max_length=1000)
    purchase_flex_pass: bool = False
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("customer_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < 2:
            raise ValueError("Customer name must be at least 2 characters")
        return stripped

    @field_validator("booking_date")
    @classmethod
    def require_timezone(cls, v: DateTimeType) -> DateTimeType:
        """The booking start is an absolute instant."""
        if v.tzinfo is None:
            raise ValueError("booking_date must include a timezone offset")
        return v.astimezone(datetime.timezone.utc).replace(second=0, microsecond=0)


class BookingCancelRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class DisputeCreate(StrictRequestModel):
    """Customer dispute on a finished booking."""

    reason: str = Field(..., max_length=2000)

    @field_validator("reason")
    @classmethod
    def reason_required(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Dispute reason is required")
        return stripped


class DisputeResolution(StrictRequestModel):
    """Provider/admin decision on a pending dispute."""

    resolution: Literal["customer", "provider"]
    notes: Optional[str] = Field(None, max_length=2000)


class BookingResponse(StandardizedModel):
    id: str
    provider_id: str
    service_id: str
    customer_name: str
    customer_email: str
    booking_date: DateTimeType
    duration: int
    deposit_amount: int
    status: str
    deposit_status: str
    dispute_status: str
    refund_amount: Optional[int] = None
    fee_charged: Optional[int] = None
    refund_reason: Optional[str] = None
    cancellation_time: Optional[DateTimeType] = None
    cancellation_reason: Optional[str] = None
    flex_pass_purchased: bool = False


class NoShowSweepResponse(StandardizedModel):
    total_found: int
    total_processed: int
    total_failed: int
    errors: list[Dict[str, str]] = Field(default_factory=list)
