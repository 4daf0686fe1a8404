"""Tests for the time-driven sweeps."""

from datetime import timedelta

from sqlmodel import Session, func, select

from conftest import load, set_fields
from models import Notification, Product, ProductStatus, UrgentFlag
from sweeper import Sweeper


def _decline(db_engine, product_id, declined_at, flag=UrgentFlag.H24, window=24) -> None:
    set_fields(
        db_engine, product_id,
        status=ProductStatus.AVAILABLE,
        requester_id=None,
        requested_at=None,
        urgent_flag=flag,
        urgent_flag_time=declined_at,
        delete_at=declined_at + timedelta(hours=window),
    )


class TestShortSweep:
    def test_releases_request_older_than_grace(self, requested, sweeper, clock, db_engine) -> None:
        set_fields(db_engine, requested.id, requested_at=clock.now - timedelta(minutes=31))

        assert sweeper.run_short_sweep().released == 1

        product = load(db_engine, requested.id)
        assert product.status == ProductStatus.AVAILABLE
        assert product.requester_id is None
        assert product.requested_at is None
        # A timeout is not a decline
        assert product.urgent_flag == UrgentFlag.NONE
        assert product.delete_at is None

    def test_recent_request_untouched(self, requested, sweeper, clock, db_engine) -> None:
        set_fields(db_engine, requested.id, requested_at=clock.now - timedelta(minutes=10))

        assert sweeper.run_short_sweep().released == 0

        product = load(db_engine, requested.id)
        assert product.status == ProductStatus.REQUESTED
        assert product.requester_id == "recipient-1"

    def test_release_drops_the_unanswered_notification(self, requested, engine, sweeper, clock) -> None:
        clock.advance(minutes=45)
        sweeper.run_short_sweep()

        assert engine.list_notifications_for_donor("donor-1") == []

        # Nothing is left for the donor even long after the release
        clock.advance(days=30)
        sweeper.run_long_sweep()
        assert engine.list_notifications_for_donor("donor-1") == []

    def test_recent_request_keeps_its_notification(self, requested, sweeper, clock, db_engine) -> None:
        clock.advance(minutes=10)
        sweeper.run_short_sweep()
        with Session(db_engine) as session:
            assert session.exec(select(func.count(Notification.id))).one() == 1

    def test_failed_release_is_counted(self, requested, sweeper, clock, db_engine, monkeypatch) -> None:
        def broken_delete(session, product_id):
            raise RuntimeError("connection reset")

        monkeypatch.setattr("notifications.delete_for_product", broken_delete)
        clock.advance(minutes=45)

        report = sweeper.run_short_sweep()

        assert (report.released, report.failed) == (0, 1)
        # Release and notification cleanup commit together
        assert load(db_engine, requested.id).status == ProductStatus.REQUESTED

    def test_custom_grace_window(self, requested, session_factory, images, clock) -> None:
        sweeper = Sweeper(session_factory, images, clock=clock, request_grace=timedelta(minutes=5))
        clock.advance(minutes=6)
        assert sweeper.run_short_sweep().released == 1

    def test_repeated_sweeps_are_idempotent(self, requested, sweeper, clock) -> None:
        clock.advance(hours=1)
        assert sweeper.run_short_sweep().released == 1
        assert sweeper.run_short_sweep().released == 0


class TestEscalation:
    def test_24h_tier_escalates_after_a_day(self, available, sweeper, clock, db_engine) -> None:
        declined_at = clock.now - timedelta(hours=25)
        _decline(db_engine, available.id, declined_at)

        report = sweeper.run_long_sweep()

        assert report.escalated == 1
        product = load(db_engine, available.id)
        assert product.urgent_flag == UrgentFlag.H48
        assert product.delete_at == clock.now + timedelta(hours=48)
        # Tier age keeps counting from the decline
        assert product.urgent_flag_time == declined_at
        assert product.status == ProductStatus.AVAILABLE

    def test_fresh_24h_tier_untouched(self, available, sweeper, clock, db_engine) -> None:
        _decline(db_engine, available.id, clock.now - timedelta(hours=3))

        report = sweeper.run_long_sweep()

        assert report.escalated == 0
        assert load(db_engine, available.id).urgent_flag == UrgentFlag.H24

    def test_48h_tier_escalates_to_96h(self, available, sweeper, clock, db_engine) -> None:
        _decline(db_engine, available.id, clock.now - timedelta(hours=49), flag=UrgentFlag.H48, window=72)

        report = sweeper.run_long_sweep()

        assert report.escalated == 1
        product = load(db_engine, available.id)
        assert product.urgent_flag == UrgentFlag.H96
        assert product.delete_at == clock.now + timedelta(hours=96)

    def test_96h_is_the_last_tier(self, available, sweeper, clock, db_engine) -> None:
        deadline = clock.now + timedelta(hours=10)
        set_fields(
            db_engine, available.id,
            urgent_flag=UrgentFlag.H96,
            urgent_flag_time=clock.now - timedelta(days=10),
            delete_at=deadline,
        )

        report = sweeper.run_long_sweep()

        assert report.escalated == 0
        product = load(db_engine, available.id)
        assert product.urgent_flag == UrgentFlag.H96
        assert product.delete_at == deadline

    def test_escalation_wins_over_purge_in_same_pass(self, available, sweeper, clock, db_engine) -> None:
        """The day-old deadline is pushed out before the purge looks at it."""
        _decline(db_engine, available.id, clock.now - timedelta(hours=24))

        report = sweeper.run_long_sweep()

        assert report.escalated == 1
        assert report.purged == 0
        assert load(db_engine, available.id) is not None

    def test_full_urgency_lifetime(self, requested, engine, session, sweeper, clock, db_engine) -> None:
        notification = session.exec(select(Notification)).one()
        engine.respond(notification.id, "decline")

        clock.advance(hours=24)
        sweeper.run_long_sweep()
        assert load(db_engine, requested.id).urgent_flag == UrgentFlag.H48

        clock.advance(hours=24)
        sweeper.run_long_sweep()
        product = load(db_engine, requested.id)
        assert product.urgent_flag == UrgentFlag.H96
        assert product.delete_at == clock.now + timedelta(hours=96)

        clock.advance(hours=95)
        assert sweeper.run_long_sweep().purged == 0
        clock.advance(hours=1)
        assert sweeper.run_long_sweep().purged == 1
        assert load(db_engine, requested.id) is None


class TestPurge:
    def test_purges_expired_listing_and_image(self, available, sweeper, clock, images, db_engine) -> None:
        set_fields(db_engine, available.id, delete_at=clock.now - timedelta(minutes=1))
        path = images.path_for(available.image)
        assert path.exists()

        report = sweeper.run_long_sweep()

        assert report.purged == 1
        assert load(db_engine, available.id) is None
        assert not path.exists()

    def test_purge_ignores_status(self, submit, engine, sweeper, clock, db_engine) -> None:
        product = submit()
        engine.reject(product.id)
        engine.hide_from_admin(product.id)
        set_fields(db_engine, product.id, delete_at=clock.now)

        assert sweeper.run_long_sweep().purged == 1
        assert load(db_engine, product.id) is None

    def test_future_deadline_kept(self, available, sweeper, clock, db_engine) -> None:
        set_fields(db_engine, available.id, delete_at=clock.now + timedelta(minutes=1))
        assert sweeper.run_long_sweep().purged == 0
        assert load(db_engine, available.id) is not None

    def test_purge_removes_notifications(self, requested, sweeper, clock, db_engine) -> None:
        # A stale notification from a released request
        set_fields(
            db_engine, requested.id,
            status=ProductStatus.AVAILABLE, requester_id=None, requested_at=None,
            delete_at=clock.now - timedelta(minutes=1),
        )

        assert sweeper.run_long_sweep().purged == 1
        with Session(db_engine) as session:
            assert session.exec(select(func.count(Notification.id))).one() == 0

    def test_image_release_failure_does_not_stop_purge(self, available, session_factory, clock, db_engine) -> None:
        class BrokenImages:
            released = []

            def release(self, reference):
                self.released.append(reference)
                raise OSError("permission denied")

        images = BrokenImages()
        sweeper = Sweeper(session_factory, images, clock=clock)
        set_fields(db_engine, available.id, delete_at=clock.now - timedelta(minutes=1))

        report = sweeper.run_long_sweep()

        assert report.purged == 1
        assert report.failed == 0
        assert images.released == [available.image]
        assert load(db_engine, available.id) is None

    def test_missing_image_file_does_not_stop_purge(self, available, sweeper, clock, images, db_engine) -> None:
        images.path_for(available.image).unlink()
        set_fields(db_engine, available.id, delete_at=clock.now - timedelta(minutes=1))

        assert sweeper.run_long_sweep().purged == 1
        assert load(db_engine, available.id) is None

    def test_one_failing_document_does_not_abort_pass(
        self, submit, engine, sweeper, clock, db_engine, monkeypatch,
    ) -> None:
        bad, good = submit(), submit()
        for product in (bad, good):
            set_fields(db_engine, product.id, delete_at=clock.now - timedelta(minutes=1))

        original = Sweeper._purge

        def flaky_purge(self, product_id, now):
            if product_id == bad.id:
                raise RuntimeError("connection reset")
            return original(self, product_id, now)

        monkeypatch.setattr(Sweeper, "_purge", flaky_purge)

        report = sweeper.run_long_sweep()

        assert report.purged == 1
        assert report.failed == 1
        assert load(db_engine, bad.id) is not None
        assert load(db_engine, good.id) is None


def test_sweeps_do_not_touch_plain_listings(submit, engine, sweeper, clock, db_engine) -> None:
    pending = submit()
    available = engine.approve(submit().id)
    clock.advance(days=30)

    assert sweeper.run_short_sweep().released == 0
    report = sweeper.run_long_sweep()

    assert (report.escalated, report.purged, report.failed) == (0, 0, 0)
    with Session(db_engine) as session:
        assert session.exec(select(func.count(Product.id))).one() == 2
    assert load(db_engine, pending.id).status == ProductStatus.PENDING
    assert load(db_engine, available.id).status == ProductStatus.AVAILABLE
