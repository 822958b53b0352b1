# tests/unit/test_lifecycle/test_reconciliation_service.py
"""Unit tests for tier reconciliation, per-user restoration and orphan cleanup."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestReconcileAccountTiers:
    """Tests for reconcile_account_tiers()."""

    def _drifted_users(self, make_user):
        make_user("u-ok-free")
        make_user("u-ok-premium", subscription_status="active", account_tier="premium")
        make_user("u-stale-free", subscription_status="active", account_tier="free")
        make_user(
            "u-stale-premium",
            subscription_status="canceled",
            end_date=NOW - timedelta(days=2),
            account_tier="premium",
        )

    def test_rewrites_drifted_tiers(self, db_session, make_user):
        from app.models import ListingLifecycleEvent, User
        from app.services.lifecycle.reconciliation_service import reconcile_account_tiers

        self._drifted_users(make_user)

        result = reconcile_account_tiers(db_session, now=NOW, page_size=2)

        assert result.success
        assert result.users_scanned == 4
        assert result.users_updated == 2
        assert result.users_unchanged == 2
        assert {c["user_id"] for c in result.changes} == {"u-stale-free", "u-stale-premium"}

        db_session.expire_all()
        tiers = {u.id: u.account_tier for u in db_session.query(User).all()}
        assert tiers["u-stale-free"] == "premium"
        assert tiers["u-stale-premium"] == "free"

        events = db_session.query(ListingLifecycleEvent).filter(
            ListingLifecycleEvent.event_type == "tier_reconciled"
        ).all()
        assert len(events) == 2

    def test_dry_run_reports_without_writing(self, db_session, make_user):
        from app.models import User
        from app.services.lifecycle.reconciliation_service import reconcile_account_tiers

        self._drifted_users(make_user)

        result = reconcile_account_tiers(db_session, now=NOW, dry_run=True)

        assert result.dry_run
        assert result.users_updated == 2
        db_session.expire_all()
        assert db_session.query(User).filter(User.id == "u-stale-free").first().account_tier == "free"

    def test_second_run_changes_nothing(self, db_session, make_user):
        from app.services.lifecycle.reconciliation_service import reconcile_account_tiers

        self._drifted_users(make_user)
        reconcile_account_tiers(db_session, now=NOW)

        second = reconcile_account_tiers(db_session, now=NOW)

        assert second.users_updated == 0
        assert second.users_unchanged == 4

    def test_write_failure_is_collected(self, db_session, make_user):
        from app.services.lifecycle.reconciliation_service import reconcile_account_tiers

        make_user("u-stale-free", subscription_status="active", account_tier="free")

        with patch(
            "app.services.lifecycle.reconciliation_service.store_retry",
            side_effect=OperationalError("UPDATE", {}, Exception("database is locked")),
        ):
            result = reconcile_account_tiers(db_session, now=NOW)

        assert not result.success
        assert result.errors[0].startswith("User u-stale-free:")


class TestRestoreUserListings:
    """Tests for restore_user_listings()."""

    def _archived(self, make_listing, listing_id, user_id, **overrides):
        fields = dict(
            status="archived",
            created_at=NOW - timedelta(days=3),
            archived_at=NOW - timedelta(days=1),
            delete_at=NOW + timedelta(days=6),
            expiration_reason="tier_duration_exceeded",
            account_tier_at_archival="free",
        )
        fields.update(overrides)
        return make_listing(listing_id, user_id=user_id, **fields)

    def test_restores_qualifying_listings(self, db_session, make_user, make_listing):
        from app.models import Listing
        from app.services.lifecycle.reconciliation_service import restore_user_listings

        make_user("u-1", subscription_status="active", account_tier="premium")
        self._archived(make_listing, "l-restore", "u-1")
        self._archived(make_listing, "l-manual", "u-1", expiration_reason="manual")
        self._archived(make_listing, "l-too-old", "u-1", created_at=NOW - timedelta(days=40))
        self._archived(make_listing, "l-other-user", "u-2")

        result = restore_user_listings(db_session, "u-1", now=NOW)

        assert result.success
        assert result.tier == "premium"
        assert result.listings_checked == 3
        assert result.listings_restored == 1
        assert result.restored_ids == ["l-restore"]
        assert result.listings_skipped == 2

        db_session.expire_all()
        statuses = {row.id: row.status for row in db_session.query(Listing).all()}
        assert statuses == {
            "l-restore": "active",
            "l-manual": "archived",
            "l-too-old": "archived",
            "l-other-user": "archived",
        }

    def test_free_user_is_left_alone(self, db_session, make_user, make_listing):
        from app.services.lifecycle.reconciliation_service import restore_user_listings

        make_user("u-1")
        self._archived(make_listing, "l-1", "u-1")

        result = restore_user_listings(db_session, "u-1", now=NOW)

        assert result.success
        assert result.listings_checked == 0
        assert "not premium" in result.message

    def test_dry_run(self, db_session, make_user, make_listing):
        from app.models import Listing
        from app.services.lifecycle.reconciliation_service import restore_user_listings

        make_user("u-1", subscription_status="active", account_tier="premium")
        self._archived(make_listing, "l-1", "u-1")

        result = restore_user_listings(db_session, "u-1", now=NOW, dry_run=True)

        assert result.listings_restored == 1
        db_session.expire_all()
        assert db_session.query(Listing).filter(Listing.id == "l-1").first().status == "archived"


class TestCleanupOrphanedFavorites:
    """Tests for cleanup_orphaned_favorites()."""

    def test_deletes_only_orphans(self, db_session, make_listing, make_favorites):
        from app.models import Favorite
        from app.services.lifecycle.reconciliation_service import cleanup_orphaned_favorites

        make_listing("l-live", created_at=NOW)
        make_favorites("l-live", count=2)
        make_favorites("l-gone", count=5)

        result = cleanup_orphaned_favorites(db_session, batch_size=2)

        assert result.success
        assert result.orphans_found == 5
        assert result.favorites_deleted == 5
        assert result.batches_committed == 3
        assert db_session.query(Favorite).count() == 2

    def test_dry_run_counts_only(self, db_session, make_favorites):
        from app.models import Favorite
        from app.services.lifecycle.reconciliation_service import cleanup_orphaned_favorites

        make_favorites("l-gone", count=3)

        result = cleanup_orphaned_favorites(db_session, dry_run=True)

        assert result.orphans_found == 3
        assert result.favorites_deleted == 0
        assert db_session.query(Favorite).count() == 3

    def test_failed_batch_is_skipped(self, db_session, make_favorites):
        from app.services.lifecycle.reconciliation_service import cleanup_orphaned_favorites

        make_favorites("l-gone", count=4)
        calls = {"n": 0}

        def flaky(func, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("DELETE", {}, Exception("lock timeout"))
            return func(*args, **kwargs)

        with patch("app.services.lifecycle.reconciliation_service.store_retry", side_effect=flaky):
            result = cleanup_orphaned_favorites(db_session, batch_size=2)

        assert not result.success
        assert result.failed_batches == 1
        assert result.favorites_deleted == 2
        assert len(result.errors) == 1
