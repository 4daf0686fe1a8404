import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import Product, UserRole


class ProductCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, max_length=120)
    contact: str = Field(min_length=1, max_length=60)
    email: EmailStr
    country: str = Field(min_length=1, max_length=60)
    city: str = Field(min_length=1, max_length=60)
    district: str = Field(min_length=1, max_length=60)
    description: str = Field(default="", max_length=1000)


class ProductUpdate(BaseModel):
    """Partial edit; fields left as None are kept."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    contact: Optional[str] = Field(default=None, min_length=1, max_length=60)
    email: Optional[EmailStr] = None
    country: Optional[str] = Field(default=None, min_length=1, max_length=60)
    city: Optional[str] = Field(default=None, min_length=1, max_length=60)
    district: Optional[str] = Field(default=None, min_length=1, max_length=60)
    description: Optional[str] = Field(default=None, max_length=1000)


class RequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requester_id: str = Field(alias="requesterId", min_length=1)


class RespondData(BaseModel):
    response: Literal["accept", "decline"]


class MarkReadData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    donor_id: str = Field(alias="donorId", min_length=1)


class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    role: UserRole


class NotificationRead(BaseModel):
    """A notification with the product it is about."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    created_at: datetime
    donor_id: str
    product_id: uuid.UUID
    requester_id: str
    message: str
    is_read: bool
    product: Product


class NotificationCount(BaseModel):
    count: int


class HiddenCount(BaseModel):
    hidden: int


class SweepSummary(BaseModel):
    released: int = 0
    escalated: int = 0
    purged: int = 0
    failed: int = 0
