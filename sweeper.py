"""Time-driven transitions that happen without anyone clicking anything.

Short cycle: requests the donor never answered are released after a grace
window. Long cycle: urgency tiers escalate and listings past their deadline
are purged together with their image.

Each candidate document is handled in its own session with an UPDATE/DELETE
conditioned on the fields that made it a candidate, so a sweep racing a user
action on the same product changes it at most once. A failure on one document
is logged and the pass moves on.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List

from sqlalchemy import delete, update
from sqlmodel import Session, select

import notifications
from models import Product, ProductStatus, UrgentFlag, utcnow

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_GRACE = timedelta(minutes=30)

# (current tier, age of urgent_flag_time that triggers escalation, next tier, new deadline)
ESCALATIONS = (
    (UrgentFlag.H24, timedelta(hours=24), UrgentFlag.H48, timedelta(hours=48)),
    (UrgentFlag.H48, timedelta(hours=48), UrgentFlag.H96, timedelta(hours=96)),
)


@dataclass
class SweepReport:
    released: int = 0
    escalated: int = 0
    purged: int = 0
    failed: int = 0


class Sweeper:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        images: Any,
        clock: Callable[[], datetime] = utcnow,
        request_grace: timedelta = DEFAULT_REQUEST_GRACE,
    ) -> None:
        self.session_factory = session_factory
        self.images = images
        self.clock = clock
        self.request_grace = request_grace

    def _candidates(self, *conditions: Any) -> List[uuid.UUID]:
        with self.session_factory() as session:
            return list(session.exec(select(Product.id).where(*conditions)).all())

    def run_short_sweep(self) -> SweepReport:
        """Release Requested products whose donor did not answer in time.

        The unanswered notification goes with the request it announced.
        """
        report = SweepReport()
        cutoff = self.clock() - self.request_grace

        stale = (
            Product.status == ProductStatus.REQUESTED,
            Product.requested_at <= cutoff,
        )
        for product_id in self._candidates(*stale):
            try:
                with self.session_factory() as session:
                    result = session.exec(
                        update(Product)
                        .where(Product.id == product_id, *stale)
                        .values(
                            status=ProductStatus.AVAILABLE,
                            requester_id=None,
                            requested_at=None,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount:
                        notifications.delete_for_product(session, product_id)
                    session.commit()
                    report.released += result.rowcount
            except Exception:
                report.failed += 1
                logger.exception("Could not release stale request on product %s", product_id)

        if report.released or report.failed:
            logger.info(
                "Short sweep: released %s stale requests, %s failed",
                report.released, report.failed,
            )
        return report

    def run_long_sweep(self) -> SweepReport:
        """Escalate urgency tiers, then purge listings past their deadline."""
        report = SweepReport()
        now = self.clock()

        for tier, age, next_tier, deadline in ESCALATIONS:
            due = (
                Product.status == ProductStatus.AVAILABLE,
                Product.urgent_flag == tier,
                Product.urgent_flag_time <= now - age,
            )
            for product_id in self._candidates(*due):
                try:
                    report.escalated += self._escalate(product_id, due, next_tier, now + deadline)
                except Exception:
                    report.failed += 1
                    logger.exception("Could not escalate product %s", product_id)

        for product_id in self._candidates(Product.delete_at <= now):
            try:
                report.purged += self._purge(product_id, now)
            except Exception:
                report.failed += 1
                logger.exception("Could not purge product %s", product_id)

        logger.info(
            "Long sweep: escalated %s, purged %s, %s failed",
            report.escalated, report.purged, report.failed,
        )
        return report

    def _escalate(self, product_id, due, next_tier: UrgentFlag, delete_at: datetime) -> int:
        with self.session_factory() as session:
            result = session.exec(
                update(Product)
                .where(Product.id == product_id, *due)
                .values(urgent_flag=next_tier, delete_at=delete_at)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount

    def _purge(self, product_id: uuid.UUID, now: datetime) -> int:
        with self.session_factory() as session:
            product = session.get(Product, product_id)
            if product is None:
                return 0
            image = product.image

            notifications.delete_for_product(session, product_id)
            result = session.exec(
                delete(Product)
                .where(Product.id == product_id, Product.delete_at <= now)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                # Deadline moved (e.g. edited back to Pending) since selection
                session.rollback()
                return 0
            session.commit()

        try:
            self.images.release(image)
        except Exception:
            logger.warning(
                "Could not release image %s of purged product %s",
                image, product_id, exc_info=True,
            )
        return 1
