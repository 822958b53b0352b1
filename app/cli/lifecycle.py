# app/cli/lifecycle.py
"""
CLI commands for listing lifecycle management.

Usage:
    python -m app.cli.lifecycle status
    python -m app.cli.lifecycle sweep active --dry-run
    python -m app.cli.lifecycle sweep archived
    python -m app.cli.lifecycle fix-listing <listing_id>
    python -m app.cli.lifecycle tier <user_id>
    python -m app.cli.lifecycle restore-user <user_id>
    python -m app.cli.lifecycle reconcile-tiers --execute
    python -m app.cli.lifecycle cleanup-orphans --execute
    python -m app.cli.lifecycle import-legacy export.json --dry-run
"""

import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()


def get_db_session():
    """Get a database session."""
    from app.database import SessionLocal

    return SessionLocal()


def _print_errors(errors):
    if errors:
        print("\nErrors:")
        for error in errors:
            print(f"  - {error}")


def cmd_status(args):
    """Show listing counts, drift counters and the duration policy."""
    from app.services.lifecycle import get_lifecycle_stats, policy_table

    db = get_db_session()
    try:
        stats = get_lifecycle_stats(db)
        policy = policy_table()

        print("\n=== Listing Lifecycle Status ===\n")

        print("Policy:")
        for tier, hours in policy["duration_hours"].items():
            print(f"  {tier}: {hours} hours active")
        print(f"  Retention after archival: {policy['retention_days_after_archival']} days")
        print(f"  Inactive listings archived after: {policy['inactive_timeout_days']} days without updates")

        print(f"\nTotal Listings: {stats['total_listings']}")
        print("\nBy Status:")
        for status, count in stats["listings_by_status"].items():
            print(f"  {status}: {count}")

        print(f"\nTotal Favorites: {stats['total_favorites']}")

        print("\nDrift:")
        for key, count in stats["drift"].items():
            print(f"  {key}: {count}")

        print()
    finally:
        db.close()


def cmd_sweep(args):
    """Run one sweep over active, inactive or archived listings."""
    from app.services.lifecycle import run_sweep

    db = get_db_session()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Sweeping {args.status} listings...\n")

        result = run_sweep(
            db,
            args.status,
            page_size=args.page_size,
            time_budget_seconds=args.time_budget,
            dry_run=args.dry_run,
            initiated_by="cli",
            apply_restorations=False if args.no_restore else None,
        )

        print(f"Scanned: {result.scanned}")
        print(f"Archived: {result.archived}")
        print(f"Deleted: {result.deleted}")
        print(f"Restored: {result.restored}")
        print(f"Expiry recomputed: {result.recomputed}")
        print(f"delete_at stamped: {result.delete_at_stamped}")
        print(f"Unchanged: {result.unchanged}")
        print(f"Superseded: {result.superseded}")
        print(f"Skipped: {result.skipped}")
        print(f"Favorites deleted: {result.favorites_deleted}")
        if result.timed_out:
            print("\nStopped at time budget; rerun to continue.")

        if result.error_count:
            print(f"\n{result.error_count} errors ({len(result.errors)} shown)")
        _print_errors(result.errors)

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def cmd_fix_listing(args):
    """Diagnose (and optionally correct) one listing."""
    from app.services.lifecycle import ListingNotFoundError, fix_listing

    db = get_db_session()
    try:
        try:
            report = fix_listing(db, args.listing_id, dry_run=args.dry_run, initiated_by="cli")
        except ListingNotFoundError as e:
            print(f"Error: {e}")
            sys.exit(1)

        print(json.dumps(report.to_dict(), indent=2, default=str))
    finally:
        db.close()


def cmd_tier(args):
    """Resolve a user's tier."""
    from app.services.lifecycle import duration_hours_for, resolve_tier

    db = get_db_session()
    try:
        resolution = resolve_tier(db, args.user_id)

        print(f"User: {resolution.user_id}")
        print(f"  Tier: {resolution.tier} ({duration_hours_for(resolution.tier)} hours)")
        print(f"  Source: {resolution.source}")
        print(f"  Subscription status: {resolution.subscription_status}")
        print(f"  Subscription end date: {resolution.subscription_end_date}")
        print(f"  Stored account_tier: {resolution.stored_account_tier}")
        if not resolution.stored_tier_matches:
            print("  (stored account_tier has drifted; run reconcile-tiers)")
    finally:
        db.close()


def cmd_restore_user(args):
    """Restore a premium user's expiry-archived listings."""
    from app.services.lifecycle import restore_user_listings

    db = get_db_session()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Restoring listings for {args.user_id}...\n")

        result = restore_user_listings(db, args.user_id, dry_run=args.dry_run, initiated_by="cli")

        print(f"Tier: {result.tier}")
        print(f"Checked: {result.listings_checked}")
        print(f"Restored: {result.listings_restored}")
        print(f"Skipped: {result.listings_skipped}")
        if result.message:
            print(result.message)
        _print_errors(result.errors)

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def cmd_reconcile_tiers(args):
    """Correct drifted account_tier fields."""
    from app.services.lifecycle import reconcile_account_tiers

    db = get_db_session()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Reconciling account tiers...\n")

        result = reconcile_account_tiers(db, dry_run=args.dry_run, initiated_by="cli")

        print(f"Users scanned: {result.users_scanned}")
        print(f"Users {'to update' if args.dry_run else 'updated'}: {result.users_updated}")
        for change in result.changes:
            print(f"  {change['user_id']}: {change['stored_tier']} -> {change['resolved_tier']}")
        _print_errors(result.errors)

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def cmd_cleanup_orphans(args):
    """Remove favorites of listings that no longer exist."""
    from app.services.lifecycle import cleanup_orphaned_favorites

    db = get_db_session()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Cleaning up orphaned favorites...\n")

        result = cleanup_orphaned_favorites(db, dry_run=args.dry_run)

        print(f"Orphaned favorites found: {result.orphans_found}")
        print(f"Deleted: {result.favorites_deleted}")
        _print_errors(result.errors)

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def cmd_import_legacy(args):
    """Import an export of legacy listing documents."""
    from app.services.lifecycle.legacy_import import import_legacy_listings, load_legacy_documents

    try:
        documents = load_legacy_documents(args.path)
    except (OSError, ValueError) as e:
        print(f"Error: could not read {args.path}: {e}")
        sys.exit(1)

    db = get_db_session()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Importing {len(documents)} legacy documents...\n")

        result = import_legacy_listings(db, documents, source=args.path, dry_run=args.dry_run)

        print(f"Read: {result.documents_read}")
        print(f"Imported: {result.imported}")
        print(f"Already present: {result.skipped_existing}")
        print(f"Rejected: {result.rejected}")

        if result.data_quality_issues:
            print(f"\nData quality issues ({len(result.data_quality_issues)} shown):")
            for issue in result.data_quality_issues:
                print(f"  - {issue}")
        _print_errors(result.errors)

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Waboku Listing Lifecycle CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check current status and drift
  python -m app.cli.lifecycle status

  # Preview what the archive sweep would do
  python -m app.cli.lifecycle sweep active --dry-run

  # Delete archived listings past delete_at
  python -m app.cli.lifecycle sweep archived

  # Diagnose one listing without writing
  python -m app.cli.lifecycle fix-listing abc123 --dry-run

  # Correct drifted account tiers
  python -m app.cli.lifecycle reconcile-tiers --execute
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show INFO logs")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show lifecycle status")
    status_parser.set_defaults(func=cmd_status)

    # sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Sweep active, inactive or archived listings")
    sweep_parser.add_argument("status", choices=["active", "inactive", "archived"], help="Listing status to sweep")
    sweep_parser.add_argument("--page-size", type=int, default=None, help="Listings per page")
    sweep_parser.add_argument("--time-budget", type=float, default=None, help="Wall-clock budget in seconds")
    sweep_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't write")
    sweep_parser.add_argument("--no-restore", action="store_true", help="Report restorable listings, don't restore")
    sweep_parser.set_defaults(func=cmd_sweep)

    # fix-listing command
    fix_parser = subparsers.add_parser("fix-listing", help="Diagnose and correct one listing")
    fix_parser.add_argument("listing_id", help="Listing ID")
    fix_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't write")
    fix_parser.set_defaults(func=cmd_fix_listing)

    # tier command
    tier_parser = subparsers.add_parser("tier", help="Resolve a user's tier")
    tier_parser.add_argument("user_id", help="User ID")
    tier_parser.set_defaults(func=cmd_tier)

    # restore-user command
    restore_parser = subparsers.add_parser("restore-user", help="Restore a premium user's archived listings")
    restore_parser.add_argument("user_id", help="User ID")
    restore_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't write")
    restore_parser.set_defaults(func=cmd_restore_user)

    # reconcile-tiers command
    reconcile_parser = subparsers.add_parser("reconcile-tiers", help="Correct drifted account tiers")
    reconcile_parser.add_argument("--dry-run", action="store_true", default=True, help="Preview only (default: true)")
    reconcile_parser.add_argument("--execute", action="store_true", help="Actually write corrections")
    reconcile_parser.set_defaults(func=cmd_reconcile_tiers)

    # cleanup-orphans command
    orphan_parser = subparsers.add_parser("cleanup-orphans", help="Remove favorites of deleted listings")
    orphan_parser.add_argument("--dry-run", action="store_true", default=True, help="Preview only (default: true)")
    orphan_parser.add_argument("--execute", action="store_true", help="Actually delete orphaned favorites")
    orphan_parser.set_defaults(func=cmd_cleanup_orphans)

    # import-legacy command
    import_parser = subparsers.add_parser("import-legacy", help="Import legacy listing documents")
    import_parser.add_argument("path", help="JSON export file")
    import_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't write")
    import_parser.set_defaults(func=cmd_import_legacy)

    return parser


def main(argv=None):
    from app.logging_config import configure_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(json_format=False, level="INFO" if args.verbose else "WARNING")

    # Handle --execute flag for reconcile-tiers / cleanup-orphans
    if hasattr(args, "execute") and args.execute:
        args.dry_run = False

    args.func(args)


if __name__ == "__main__":
    main()
