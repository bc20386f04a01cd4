"""Management command to expire earned points past their expiry date."""

from django.core.management.base import BaseCommand, CommandError

from rewardman.services.expiration import ExpirationSweep


class Command(BaseCommand):
    help = "Offset order and spin points whose expiry date has passed"

    def add_arguments(self, parser):
        parser.add_argument(
            "--batch-size",
            type=int,
            default=500,
            help="Entries fetched per query (default 500)",
        )

    def handle(self, *args, **options):
        if options["batch_size"] < 1:
            raise CommandError("--batch-size must be positive")
        report = ExpirationSweep.run(batch_size=options["batch_size"])
        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {report.entries_expired} entries "
                f"({report.points_expired} points, {report.users_affected} users)."
            )
        )
