import uuid
from typing import List

from fastapi import APIRouter

import notifications
from db import SessionDep
from models import Product
from schemas import MarkReadData, NotificationCount, NotificationRead, RespondData
from .products import ListingEngineDep

router = APIRouter(tags=["notifications"])


@router.get("/{donor_id}", response_model=List[NotificationRead])
def list_notifications(donor_id: str, engine: ListingEngineDep):
    """
    Requests waiting for the donor's answer, newest first.
    """
    return engine.list_notifications_for_donor(donor_id)


@router.get("/{donor_id}/count", response_model=NotificationCount)
def count_notifications(donor_id: str, session: SessionDep, unread_only: bool = False):
    """
    Cheap endpoint for the polling UI to detect new requests.
    """
    return NotificationCount(
        count=notifications.count_for_donor(session, donor_id, unread_only=unread_only),
    )


@router.post("/{notification_id}/respond", response_model=Product)
def respond_to_request(
    notification_id: uuid.UUID,
    response_data: RespondData,
    engine: ListingEngineDep,
):
    return engine.respond(notification_id, response_data.response)


@router.post("/{notification_id}/mark-read")
def mark_notification_read(
    notification_id: uuid.UUID,
    data: MarkReadData,
    session: SessionDep,
):
    notifications.mark_read(session, notification_id, data.donor_id)
    return {"ok": True}
