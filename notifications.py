import uuid
from datetime import datetime
from typing import List

from sqlalchemy import delete, func
from sqlmodel import Session, select

from errors import NotFoundError
from models import Notification, Product
from schemas import NotificationRead


def create_request_notification(
    session: Session,
    product: Product,
    requester_id: str,
    now: datetime,
) -> Notification:
    """Queue a decision for the donor. Caller commits."""
    notification = Notification(
        donor_id=product.donor_id,
        product_id=product.id,
        requester_id=requester_id,
        message=f"Someone has requested your product: {product.name}",
        created_at=now,
    )
    session.add(notification)
    return notification


def list_for_donor(session: Session, donor_id: str) -> List[NotificationRead]:
    """Outstanding notifications for a donor, newest first."""
    rows = session.exec(
        select(Notification, Product)
        .join(Product, Product.id == Notification.product_id)
        .where(Notification.donor_id == donor_id)
        .order_by(Notification.created_at.desc())
        .execution_options(populate_existing=True)
    ).all()

    return [
        NotificationRead(
            id=notification.id,
            created_at=notification.created_at,
            donor_id=notification.donor_id,
            product_id=notification.product_id,
            requester_id=notification.requester_id,
            message=notification.message,
            is_read=notification.is_read,
            product=product,
        )
        for notification, product in rows
    ]


def count_for_donor(session: Session, donor_id: str, unread_only: bool = False) -> int:
    query = select(func.count(Notification.id)).where(Notification.donor_id == donor_id)

    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    return session.exec(query).one()


def mark_read(session: Session, notification_id: uuid.UUID, donor_id: str) -> Notification:
    notification = session.exec(
        select(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.donor_id == donor_id)
    ).first()

    if not notification:
        raise NotFoundError("Notification not found")

    notification.is_read = True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification


def delete_notification(session: Session, notification_id: uuid.UUID) -> int:
    """Consume a notification. Caller commits. Returns rows removed."""
    result = session.exec(
        delete(Notification)
        .where(Notification.id == notification_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_for_product(session: Session, product_id: uuid.UUID) -> int:
    result = session.exec(
        delete(Notification)
        .where(Notification.product_id == product_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
