"""Management command to award today's birthday bonuses."""

from datetime import date, datetime, time, timezone

from django.core.management.base import BaseCommand, CommandError

from rewardman.services.bonuses import BonusService


class Command(BaseCommand):
    help = "Credit BIRTHDAY_BONUS_POINTS to every user whose birthday is today (UTC). Safe to re-run."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            default=None,
            help="Run for this UTC day (YYYY-MM-DD) instead of today",
        )

    def handle(self, *args, **options):
        now = None
        if options["date"]:
            try:
                day = date.fromisoformat(options["date"])
            except ValueError:
                raise CommandError("--date must be YYYY-MM-DD")
            now = datetime.combine(day, time(12), tzinfo=timezone.utc)

        report = BonusService.run_birthdays(now=now)
        self.stdout.write(
            self.style.SUCCESS(
                f"Birthday bonuses {report.day}: {report.users_awarded} awarded "
                f"({report.points_awarded} points), {report.already_awarded} already awarded, "
                f"{report.failed} failed."
            )
        )
