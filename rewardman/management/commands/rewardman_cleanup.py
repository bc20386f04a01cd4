"""Prune stored request results (IdempotencyRecord)."""

from django.core.management.base import BaseCommand, CommandError

from rewardman.conf import rewardman_settings
from rewardman.models import IdempotencyRecord


class Command(BaseCommand):
    help = (
        "Remove idempotency records older than IDEMPOTENCY_RETENTION_DAYS. "
        "A retried request older than the retention window is no longer answered "
        "from its stored result; order awards and redemptions still replay from "
        "their ledger entry, with the balance recorded on that entry."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Retention in days (default: IDEMPOTENCY_RETENTION_DAYS)",
        )
        parser.add_argument(
            "--scope",
            default=None,
            help="Only prune one scope, e.g. order_earn or redemption",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report how many records would be removed without deleting",
        )

    def handle(self, *args, **options):
        days = options["days"]
        if days is None:
            days = rewardman_settings.IDEMPOTENCY_RETENTION_DAYS
        if days < 1:
            raise CommandError("--days must be at least 1")

        stale = IdempotencyRecord.stale_records(days=days, scope=options["scope"])
        if options["dry_run"]:
            self.stdout.write(f"{stale.count()} idempotency records older than {days} days would be deleted.")
            return

        deleted_count, _ = stale.delete()
        self.stdout.write(
            self.style.SUCCESS(f"Deleted {deleted_count} idempotency records older than {days} days.")
        )
