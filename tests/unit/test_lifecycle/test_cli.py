# tests/unit/test_lifecycle/test_cli.py
"""Tests for the lifecycle CLI."""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

LONG_AGO = datetime(2020, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def cli_db(db_session):
    """Point the CLI at the per-test database."""
    with patch("app.cli.lifecycle.get_db_session", return_value=db_session):
        yield db_session


class TestParser:
    """Argument parsing."""

    def test_reconcile_defaults_to_dry_run(self):
        from app.cli.lifecycle import build_parser

        args = build_parser().parse_args(["reconcile-tiers"])

        assert args.dry_run is True
        assert args.execute is False

    def test_sweep_requires_known_status(self):
        from app.cli.lifecycle import build_parser

        with pytest.raises(SystemExit):
            build_parser().parse_args(["sweep", "sold"])


class TestCommands:
    """Commands run against the database."""

    def test_sweep_active(self, cli_db, make_listing, capsys):
        from app.cli.lifecycle import main
        from app.models import Listing

        make_listing("l-1", created_at=LONG_AGO)

        main(["sweep", "active"])

        assert "Archived: 1" in capsys.readouterr().out
        cli_db.expire_all()
        assert cli_db.query(Listing).filter(Listing.id == "l-1").first().status == "archived"

    def test_sweep_inactive(self, cli_db, make_listing, capsys):
        from app.cli.lifecycle import main
        from app.models import Listing

        make_listing("l-1", status="inactive", created_at=LONG_AGO, updated_at=LONG_AGO)

        main(["sweep", "inactive"])

        assert "Archived: 1" in capsys.readouterr().out
        cli_db.expire_all()
        assert cli_db.query(Listing).filter(Listing.id == "l-1").first().expiration_reason == "inactive_timeout"

    def test_sweep_dry_run(self, cli_db, make_listing, capsys):
        from app.cli.lifecycle import main
        from app.models import Listing

        make_listing("l-1", created_at=LONG_AGO)

        main(["sweep", "active", "--dry-run"])

        assert "DRY RUN" in capsys.readouterr().out
        cli_db.expire_all()
        assert cli_db.query(Listing).filter(Listing.id == "l-1").first().status == "active"

    def test_fix_listing_prints_report(self, cli_db, make_listing, capsys):
        from app.cli.lifecycle import main

        make_listing("l-1", created_at=LONG_AGO)

        main(["fix-listing", "l-1", "--dry-run"])

        report = json.loads(capsys.readouterr().out)
        assert report["evaluation"]["verdict"] == "archive_now"

    def test_fix_missing_listing_exits_nonzero(self, cli_db):
        from app.cli.lifecycle import main

        with pytest.raises(SystemExit) as exc_info:
            main(["fix-listing", "nope"])

        assert exc_info.value.code == 1

    def test_cleanup_orphans_execute(self, cli_db, make_favorites, capsys):
        from app.cli.lifecycle import main
        from app.models import Favorite

        make_favorites("gone", count=2)

        main(["cleanup-orphans", "--execute"])

        assert "Deleted: 2" in capsys.readouterr().out
        assert cli_db.query(Favorite).count() == 0

    def test_import_legacy(self, cli_db, tmp_path, capsys):
        from app.cli.lifecycle import main
        from app.models import Listing

        export = tmp_path / "export.json"
        export.write_text(json.dumps({"users/u-1/listings/l-1": {"title": "Mewtwo", "createdAt": "2026-01-01"}}))

        main(["import-legacy", str(export)])

        assert "Imported: 1" in capsys.readouterr().out
        assert cli_db.query(Listing).filter(Listing.user_id == "u-1").count() == 1

    def test_import_unreadable_file(self, cli_db, tmp_path):
        from app.cli.lifecycle import main

        with pytest.raises(SystemExit):
            main(["import-legacy", str(tmp_path / "missing.json")])
