import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC now. Timestamp columns are plain DateTime, never tz-aware."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProductStatus(str, enum.Enum):
    PENDING = "Pending"
    AVAILABLE = "Available"
    REQUESTED = "Requested"
    DELIVERED = "Delivered"
    REJECTED = "Rejected"


class UrgentFlag(str, enum.Enum):
    NONE = "none"
    H24 = "24h"
    H48 = "48h"
    H96 = "96h"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    DONOR = "donor"
    RECIPIENT = "recipient"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    role: UserRole
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Product(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    # Owner, never changes
    donor_id: str = Field(index=True)

    image: str  # opaque reference handed out by the image store
    name: str
    contact: str
    email: str
    country: str
    city: str
    district: str
    description: str = ""

    status: ProductStatus = Field(default=ProductStatus.PENDING, index=True)

    # Set only while Requested
    requester_id: Optional[str] = Field(default=None)
    requested_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    # Urgency clock, started by a donor decline
    urgent_flag: UrgentFlag = Field(default=UrgentFlag.NONE, index=True)
    urgent_flag_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    delete_at: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)

    is_hidden_from_admin: bool = Field(default=False)


class Notification(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    donor_id: str = Field(index=True)
    product_id: uuid.UUID = Field(foreign_key="product.id", index=True)
    requester_id: str

    message: str
    is_read: bool = Field(default=False)
