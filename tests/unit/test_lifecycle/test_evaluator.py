# tests/unit/test_lifecycle/test_evaluator.py
"""Unit tests for the expiration evaluator. No database needed: evaluate() is pure."""

from datetime import datetime, timedelta, timezone

import pytest

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _listing(**fields):
    from app.services.lifecycle.evaluator import ListingRecord

    fields.setdefault("id", "listing-1")
    fields.setdefault("user_id", "user-1")
    return ListingRecord(**fields)


class TestActiveListings:
    """Active listings: archive iff now > created_at + tier duration."""

    def test_free_listing_created_49_hours_ago_is_archived(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="active", created_at=NOW - timedelta(hours=49))

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.ARCHIVE_NOW
        assert evaluation.reason == "tier_duration_exceeded"
        assert evaluation.expected_expiry == NOW - timedelta(hours=1)

    def test_free_listing_within_duration_is_kept(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        created = NOW - timedelta(hours=47)
        evaluation = evaluate(_listing(status="active", created_at=created), "free", NOW)

        assert evaluation.verdict == Verdict.KEEP_ACTIVE
        assert evaluation.expected_expiry == created + timedelta(hours=48)

    def test_exact_boundary_is_kept(self):
        """now == created_at + duration is not yet expired."""
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="active", created_at=NOW - timedelta(hours=48))

        assert evaluate(listing, "free", NOW).verdict == Verdict.KEEP_ACTIVE

    def test_premium_listing_lasts_30_days(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="active", created_at=NOW - timedelta(days=10))

        assert evaluate(listing, "premium", NOW).verdict == Verdict.KEEP_ACTIVE
        assert evaluate(listing, "free", NOW).verdict == Verdict.ARCHIVE_NOW

    @pytest.mark.parametrize("tier,duration_hours", [("free", 48), ("premium", 720)])
    @pytest.mark.parametrize("age_hours", [0, 1, 47, 48, 48.01, 49, 719, 720, 720.5, 1000])
    def test_archive_iff_past_duration(self, tier, duration_hours, age_hours):
        """Verdict depends only on created_at, tier and now."""
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(
            status="active",
            created_at=NOW - timedelta(hours=age_hours),
            # None of these may influence an active listing's verdict
            expires_at=NOW + timedelta(days=365),
            delete_at=NOW - timedelta(days=365),
            expiration_reason="manual",
        )

        evaluation = evaluate(listing, tier, NOW)

        if age_hours > duration_hours:
            assert evaluation.verdict == Verdict.ARCHIVE_NOW
        else:
            assert evaluation.verdict == Verdict.KEEP_ACTIVE

    def test_missing_created_at_is_archived(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        evaluation = evaluate(_listing(status="active", created_at=None), "premium", NOW)

        assert evaluation.verdict == Verdict.ARCHIVE_NOW
        assert evaluation.reason == "missing created_at"
        assert evaluation.data_quality_issues

    def test_malformed_created_at_assumed_expired(self):
        """Unparseable timestamps are treated as expired and reported."""
        from app.services.lifecycle.evaluator import Verdict, evaluate

        evaluation = evaluate(_listing(status="active", created_at="yesterday-ish"), "premium", NOW)

        assert evaluation.verdict == Verdict.ARCHIVE_NOW
        assert evaluation.reason == "malformed created_at"
        assert "created_at" in evaluation.data_quality_issues[0]


class TestArchivedListings:
    """Archived listings: delete iff now > effective delete time."""

    def test_delete_at_one_second_ago_is_deleted(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(
            status="archived",
            archived_at=NOW - timedelta(days=7, seconds=1),
            delete_at=NOW - timedelta(seconds=1),
        )

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.DELETE_NOW
        assert evaluation.effective_delete_at == NOW - timedelta(seconds=1)

    @pytest.mark.parametrize("offset_seconds", [-86400, -1, 0, 1, 86400])
    def test_delete_iff_past_delete_at(self, offset_seconds):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        delete_at = NOW + timedelta(seconds=offset_seconds)
        listing = _listing(status="archived", archived_at=delete_at - timedelta(days=7), delete_at=delete_at)

        verdict = evaluate(listing, "free", NOW).verdict

        if NOW > delete_at:
            assert verdict == Verdict.DELETE_NOW
        else:
            assert verdict != Verdict.DELETE_NOW

    def test_within_retention_is_left_alone(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(
            status="archived",
            archived_at=NOW - timedelta(days=1),
            delete_at=NOW + timedelta(days=6),
            expiration_reason="tier_duration_exceeded",
            created_at=NOW - timedelta(days=3),
        )

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.NO_ACTION
        assert evaluation.reason == "within retention window"

    def test_missing_delete_at_falls_back_to_archived_at(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="archived", archived_at=NOW - timedelta(days=8))

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.DELETE_NOW
        assert evaluation.effective_delete_at == NOW - timedelta(days=1)

    def test_missing_delete_at_within_retention_is_stamped(self):
        """Drift: archived without delete_at gets delete_at backfilled."""
        from app.services.lifecycle.evaluator import Verdict, evaluate

        archived_at = NOW - timedelta(days=2)
        evaluation = evaluate(_listing(status="archived", archived_at=archived_at), "free", NOW)

        assert evaluation.verdict == Verdict.STAMP_DELETE_AT
        assert evaluation.effective_delete_at == archived_at + timedelta(days=7)

    def test_missing_archived_at_and_expires_at_is_deleted(self):
        """Archived with no archived_at (and no expires_at) is deleted."""
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="archived", archived_at=None, expires_at=None, delete_at=None)

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.DELETE_NOW
        assert evaluation.reason == "missing timestamps"

    def test_malformed_delete_at_is_deleted(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="archived", archived_at=NOW, delete_at="31/02/2026")

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.DELETE_NOW
        assert evaluation.reason == "malformed timestamps"
        assert evaluation.data_quality_issues


class TestRestoration:
    """Archived listings whose owner upgraded to premium."""

    def _archived_for_free_duration(self, **overrides):
        fields = dict(
            status="archived",
            created_at=NOW - timedelta(days=3),
            archived_at=NOW - timedelta(days=1),
            delete_at=NOW + timedelta(days=6),
            expiration_reason="tier_duration_exceeded",
            account_tier_at_archival="free",
        )
        fields.update(overrides)
        return _listing(**fields)

    def test_upgrade_before_delete_at_restores(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = self._archived_for_free_duration()

        evaluation = evaluate(listing, "premium", NOW)

        assert evaluation.verdict == Verdict.RESTORE_TO_ACTIVE
        assert evaluation.expected_expiry == listing.created_at + timedelta(hours=720)

    def test_free_owner_is_not_restored(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        assert evaluate(self._archived_for_free_duration(), "free", NOW).verdict == Verdict.NO_ACTION

    def test_manual_archival_is_not_restored(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = self._archived_for_free_duration(expiration_reason="manual")

        assert evaluate(listing, "premium", NOW).verdict == Verdict.NO_ACTION

    def test_past_premium_duration_is_not_restored(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = self._archived_for_free_duration(created_at=NOW - timedelta(days=31))

        assert evaluate(listing, "premium", NOW).verdict == Verdict.NO_ACTION

    def test_past_delete_at_is_deleted_not_restored(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = self._archived_for_free_duration(delete_at=NOW - timedelta(minutes=1))

        assert evaluate(listing, "premium", NOW).verdict == Verdict.DELETE_NOW

    def test_derived_delete_time_wins_over_premium_window(self):
        """Retention is checked first: still inside 30 days of creation does not save it."""
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = self._archived_for_free_duration(
            created_at=NOW - timedelta(days=10),
            archived_at=NOW - timedelta(days=8),
            delete_at=None,
        )

        evaluation = evaluate(listing, "premium", NOW)

        assert evaluation.verdict == Verdict.DELETE_NOW
        assert evaluation.reason == "retention window elapsed"
        assert evaluation.effective_delete_at == NOW - timedelta(days=1)


class TestInactiveListings:
    """Inactive listings: archive iff now > updated_at + inactivity timeout."""

    def test_idle_for_more_than_seven_days_is_archived(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="inactive", created_at=NOW - timedelta(days=60), updated_at=NOW - timedelta(days=8))

        evaluation = evaluate(listing, "free", NOW)

        assert evaluation.verdict == Verdict.ARCHIVE_NOW
        assert evaluation.reason == "inactive_timeout"
        assert evaluation.observed_status == "inactive"
        assert evaluation.expected_expiry == NOW - timedelta(days=1)

    @pytest.mark.parametrize("idle", [timedelta(days=1), timedelta(days=7)])
    def test_recently_updated_is_left_alone(self, idle):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="inactive", updated_at=NOW - idle)

        assert evaluate(listing, "free", NOW).verdict == Verdict.NO_ACTION

    def test_tier_does_not_matter(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status="inactive", created_at=NOW - timedelta(days=9), updated_at=NOW - timedelta(days=9))

        assert evaluate(listing, "premium", NOW).verdict == Verdict.ARCHIVE_NOW

    def test_missing_updated_at_is_reported_not_archived(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        evaluation = evaluate(_listing(status="inactive", created_at=NOW - timedelta(days=400)), "free", NOW)

        assert evaluation.verdict == Verdict.NO_ACTION
        assert evaluation.data_quality_issues == ["missing updated_at"]

    def test_malformed_updated_at_assumed_idle(self):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        evaluation = evaluate(_listing(status="inactive", updated_at="whenever"), "free", NOW)

        assert evaluation.verdict == Verdict.ARCHIVE_NOW
        assert evaluation.reason == "malformed updated_at"
        assert len(evaluation.data_quality_issues) == 1


class TestOtherStatuses:
    """Statuses the lifecycle doesn't manage."""

    @pytest.mark.parametrize("status", ["sold", None])
    def test_no_action(self, status):
        from app.services.lifecycle.evaluator import Verdict, evaluate

        listing = _listing(status=status, created_at=NOW - timedelta(days=400))

        assert evaluate(listing, "free", NOW).verdict == Verdict.NO_ACTION


class TestPurity:
    """evaluate() reads nothing but its arguments."""

    def test_same_inputs_same_output(self):
        from app.services.lifecycle.evaluator import evaluate

        listing = _listing(status="active", created_at=NOW - timedelta(hours=12))

        assert evaluate(listing, "free", NOW) == evaluate(listing, "free", NOW)

    def test_accepts_orm_rows(self):
        """ORM rows and plain records evaluate the same."""
        from app.models import Listing
        from app.services.lifecycle.evaluator import ListingRecord, evaluate

        row = Listing(id="row-1", user_id="u", status="active", created_at=NOW - timedelta(hours=50))

        assert evaluate(row, "free", NOW) == evaluate(ListingRecord.from_row(row), "free", NOW)

    def test_naive_now_is_treated_as_utc(self):
        from app.services.lifecycle.evaluator import evaluate

        listing = _listing(status="active", created_at=NOW - timedelta(hours=12))

        aware = evaluate(listing, "free", NOW)
        naive = evaluate(listing, "free", NOW.replace(tzinfo=None))

        assert aware == naive
