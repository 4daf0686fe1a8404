"""Listing lifecycle: the product state machine.

    (new) -> Pending -> Available -> Requested -> Delivered
                            ^             |
                            +-- decline --+   (urgency clock starts)
             Pending/Available -> Rejected
             Available/Rejected -> Pending    (donor edit)

Every transition that depends on the current status is a single conditional
UPDATE matching on that status. A guard that matches no row means another
writer got there first (or the product is gone) and is reported as a
ConflictError (or NotFoundError), never as a silent overwrite.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, List, Optional, Type, TypeVar, Union

import pydantic
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

import notifications
from errors import (
    ConflictError,
    ForbiddenError,
    ListingError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from models import Notification, Product, ProductStatus, UrgentFlag, utcnow
from schemas import NotificationRead, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

FIRST_URGENCY_WINDOW = timedelta(hours=24)

DECISIONS = ("accept", "decline")

SchemaT = TypeVar("SchemaT", bound=pydantic.BaseModel)

Clock = Callable[[], datetime]


def validate_payload(schema: Type[SchemaT], data: Union[SchemaT, dict, None]) -> SchemaT:
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data or {})
    except pydantic.ValidationError as e:
        raise ValidationError(e.errors(include_url=False))


class ListingEngine:
    def __init__(self, session: Session, images: Any, clock: Clock = utcnow) -> None:
        self.session = session
        self.images = images
        self.clock = clock

    # -- helpers -----------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except ListingError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Database error, transaction rolled back")
            raise StorageError(f"Database error: {e.__class__.__name__}") from e

    def _update(self, product_id: uuid.UUID, *conditions: Any, **values: Any) -> int:
        stmt = (
            update(Product)
            .where(Product.id == product_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount

    def _load(self, product_id: uuid.UUID) -> Optional[Product]:
        try:
            return self.session.get(Product, product_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e.__class__.__name__}") from e

    def _unmatched(self, product_id: uuid.UUID, action: str) -> ListingError:
        product = self.session.get(Product, product_id, populate_existing=True)
        if product is None:
            return NotFoundError("Product not found")
        logger.warning(
            "Cannot %s product %s: status is %s", action, product_id, product.status.value
        )
        return ConflictError(f"Product is {product.status.value}; cannot {action} it")

    def _release_image(self, reference: str) -> None:
        try:
            self.images.release(reference)
        except Exception:
            logger.warning("Could not release image %s", reference, exc_info=True)

    def _list(self, *conditions: Any) -> List[Product]:
        query = (
            select(Product)
            .where(*conditions)
            .order_by(Product.created_at.desc())
            .execution_options(populate_existing=True)
        )
        try:
            return list(self.session.exec(query).all())
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e.__class__.__name__}") from e

    # -- transitions -------------------------------------------------------

    def submit(
        self,
        data: Union[ProductCreate, dict],
        image: Optional[str],
        donor_id: str,
    ) -> Product:
        """Create a listing awaiting moderation."""
        try:
            if not donor_id or not donor_id.strip():
                raise ValidationError("donorId is required")
            if not image:
                raise ValidationError("Product image is required")

            fields = validate_payload(ProductCreate, data)
            product = Product(
                **fields.model_dump(),
                image=image,
                donor_id=donor_id,
                status=ProductStatus.PENDING,
                created_at=self.clock(),
            )

            with self._transaction():
                self.session.add(product)
        except ListingError:
            if image:
                self._release_image(image)
            raise

        self.session.refresh(product)
        logger.info("Product %s submitted by %s", product.id, donor_id)
        return product

    def approve(self, product_id: uuid.UUID) -> Product:
        with self._transaction():
            matched = self._update(
                product_id,
                Product.status == ProductStatus.PENDING,
                status=ProductStatus.AVAILABLE,
            )
            if not matched:
                raise self._unmatched(product_id, "approve")

        logger.info("Product %s approved", product_id)
        return self._load(product_id)

    def reject(self, product_id: uuid.UUID) -> Product:
        """Soft delete. The record and its image stay until a purge."""
        with self._transaction():
            matched = self._update(
                product_id,
                Product.status.in_([ProductStatus.PENDING, ProductStatus.AVAILABLE]),
                status=ProductStatus.REJECTED,
                urgent_flag=UrgentFlag.NONE,
                urgent_flag_time=None,
            )
            if not matched:
                raise self._unmatched(product_id, "reject")

        logger.info("Product %s rejected", product_id)
        return self._load(product_id)

    def request(self, product_id: uuid.UUID, requester_id: str) -> Product:
        if not requester_id or not requester_id.strip():
            raise ValidationError("requesterId is required")

        product = self._load(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        # Only an Available listing can be requested, by anyone but its donor
        if product.status == ProductStatus.AVAILABLE and product.donor_id == requester_id:
            raise ForbiddenError("You cannot request your own product")

        now = self.clock()
        with self._transaction():
            matched = self._update(
                product_id,
                Product.status == ProductStatus.AVAILABLE,
                Product.donor_id != requester_id,
                status=ProductStatus.REQUESTED,
                requester_id=requester_id,
                requested_at=now,
                urgent_flag=UrgentFlag.NONE,
                urgent_flag_time=None,
                delete_at=None,
            )
            if not matched:
                error = self._unmatched(product_id, "request")
                if isinstance(error, ConflictError):
                    error = ConflictError("Product is not available for request")
                raise error

            notifications.create_request_notification(self.session, product, requester_id, now)

        logger.info("Product %s requested by %s", product_id, requester_id)
        return self._load(product_id)

    def respond(self, notification_id: uuid.UUID, decision: str) -> Product:
        """Apply the donor's accept/decline and consume the notification.

        Safe to retry: if the decision was already applied the notification is
        just removed and the product returned unchanged.
        """
        if decision not in DECISIONS:
            raise ValidationError("response must be 'accept' or 'decline'")

        notification = self.session.get(Notification, notification_id, populate_existing=True)
        if notification is None:
            raise NotFoundError("Notification not found")
        product_id = notification.product_id
        requester_id = notification.requester_id
        # The notification is stamped with the time of the request it announces
        requested_at = notification.created_at

        now = self.clock()
        if decision == "accept":
            values = dict(
                status=ProductStatus.DELIVERED,
                requester_id=None,
                requested_at=None,
            )
        else:
            values = dict(
                status=ProductStatus.AVAILABLE,
                requester_id=None,
                requested_at=None,
                urgent_flag=UrgentFlag.H24,
                urgent_flag_time=now,
                delete_at=now + FIRST_URGENCY_WINDOW,
            )

        with self._transaction():
            matched = self._update(
                product_id,
                Product.status == ProductStatus.REQUESTED,
                Product.requester_id == requester_id,
                Product.requested_at == requested_at,
                **values,
            )
            notifications.delete_notification(self.session, notification_id)

        product = self._load(product_id)
        if matched:
            logger.info("Request on product %s answered: %s", product_id, decision)
            return product

        if product is None:
            raise NotFoundError("Product not found")
        if decision == "accept" and product.status == ProductStatus.DELIVERED:
            return product
        if (
            decision == "decline"
            and product.status == ProductStatus.AVAILABLE
            and product.urgent_flag != UrgentFlag.NONE
        ):
            return product

        logger.warning(
            "Dropped stale notification %s for product %s (%s)",
            notification_id, product_id, product.status.value,
        )
        raise ConflictError("This request is no longer outstanding")

    def edit_and_resubmit(
        self,
        product_id: uuid.UUID,
        donor_id: str,
        data: Union[ProductUpdate, dict, None],
        image: Optional[str] = None,
    ) -> Product:
        """Apply a donor's edit. Approved or rejected listings go back to moderation."""
        try:
            if not donor_id or not donor_id.strip():
                raise ValidationError("donorId is required")
            changes = validate_payload(ProductUpdate, data).model_dump(exclude_none=True)

            product = self._load(product_id)
            if product is None:
                raise NotFoundError("Product not found")
            if product.donor_id != donor_id:
                raise ForbiddenError("Not authorized to update this product")

            observed = product.status
            if observed in (ProductStatus.REQUESTED, ProductStatus.DELIVERED):
                raise ConflictError(f"Product is {observed.value}; cannot edit it")

            old_image = product.image
            values = dict(changes, requester_id=None, requested_at=None)
            if image:
                values["image"] = image
            if observed in (ProductStatus.AVAILABLE, ProductStatus.REJECTED):
                values.update(
                    status=ProductStatus.PENDING,
                    urgent_flag=UrgentFlag.NONE,
                    urgent_flag_time=None,
                    delete_at=None,
                    is_hidden_from_admin=False,
                )

            with self._transaction():
                matched = self._update(
                    product_id,
                    Product.status == observed,
                    Product.donor_id == donor_id,
                    **values,
                )
                if not matched:
                    raise ConflictError("Product changed while editing; reload and retry")
        except ListingError:
            if image:
                self._release_image(image)
            raise

        if image and old_image != image:
            self._release_image(old_image)

        logger.info("Product %s edited by %s", product_id, donor_id)
        return self._load(product_id)

    def hide_from_admin(self, product_id: uuid.UUID) -> Product:
        with self._transaction():
            matched = self._update(
                product_id,
                Product.status == ProductStatus.REJECTED,
                is_hidden_from_admin=True,
            )
            if not matched:
                raise self._unmatched(product_id, "hide")

        logger.info("Product %s hidden from admin", product_id)
        return self._load(product_id)

    def hide_all_rejected(self) -> int:
        with self._transaction():
            result = self.session.exec(
                update(Product)
                .where(
                    Product.status == ProductStatus.REJECTED,
                    Product.is_hidden_from_admin == False,  # noqa: E712
                )
                .values(is_hidden_from_admin=True)
                .execution_options(synchronize_session=False)
            )
        logger.info("%s rejected products hidden from admin", result.rowcount)
        return result.rowcount

    # -- queries -----------------------------------------------------------

    def get_product(self, product_id: uuid.UUID) -> Product:
        product = self._load(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def list_available(self) -> List[Product]:
        """What recipients can browse and request."""
        return self._list(Product.status == ProductStatus.AVAILABLE)

    def list_by_donor(self, donor_id: str) -> List[Product]:
        return self._list(Product.donor_id == donor_id)

    def list_pending(self) -> List[Product]:
        return self._list(
            Product.status == ProductStatus.PENDING,
            Product.is_hidden_from_admin == False,  # noqa: E712
        )

    def list_urgent(self) -> List[Product]:
        return self._list(
            Product.urgent_flag != UrgentFlag.NONE,
            Product.is_hidden_from_admin == False,  # noqa: E712
        )

    def list_all(self) -> List[Product]:
        """Admin's default view: approved listings not hidden."""
        return self._list(
            Product.status == ProductStatus.AVAILABLE,
            Product.is_hidden_from_admin == False,  # noqa: E712
        )

    def list_notifications_for_donor(self, donor_id: str) -> List[NotificationRead]:
        try:
            return notifications.list_for_donor(self.session, donor_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e.__class__.__name__}") from e
