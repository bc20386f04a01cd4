"""Expiration sweep - offsets earned points past their expiry.

Each source entry is expired in its own atomic unit: the entry is claimed by
setting ``expired_at`` (only if still NULL) and an ``expiration`` entry keyed
``expire:<uuid>`` is appended. Running the sweep twice, or two sweeps at
once, never offsets the same lot twice.
"""

import logging
from dataclasses import asdict, dataclass, field

from django.db import transaction
from django.utils import timezone

from rewardman.exceptions import ValidationError
from rewardman.models import LedgerEntry
from rewardman.payloads import EXPIRING_KINDS, EntryKind, ExpirationPayload
from rewardman.services.ledger import LedgerService
from rewardman.signals import points_expired
from rewardman.transactions import atomic_with_retry

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    entries_expired: int = 0
    points_expired: int = 0
    users_affected: int = 0
    users: set = field(default_factory=set, repr=False)

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("users")
        return data


class ExpirationSweep:
    """Batch job, run through ``manage.py rewardman_expire_points``."""

    @classmethod
    def due_entries(cls, now):
        return LedgerEntry.objects.filter(
            kind__in=list(EXPIRING_KINDS),
            expires_at__lte=now,
            expired_at__isnull=True,
        ).order_by("id")

    @classmethod
    def run(cls, now=None, batch_size: int = 500) -> SweepReport:
        """
        Expire every earning entry whose ``expires_at`` has passed.

        Args:
            now: Reference instant; defaults to timezone.now()
            batch_size: Entries fetched per query

        Returns:
            SweepReport with entries and points expired and users affected
        """
        if batch_size < 1:
            raise ValidationError("INVALID_INPUT", message="batch_size must be positive", batch_size=batch_size)
        now = now or timezone.now()
        report = SweepReport()
        last_id = 0

        while True:
            batch = list(
                cls.due_entries(now).filter(id__gt=last_id).values_list("id", "user_ref")[:batch_size]
            )
            if not batch:
                break
            for entry_id, user_ref in batch:
                applied = cls.expire_entry(entry_id, now=now)
                if applied is None:
                    continue
                report.entries_expired += 1
                report.points_expired += applied
                report.users.add(user_ref)
            last_id = batch[-1][0]
            logger.debug("Expiration sweep: processed batch up to entry %s", last_id)

        report.users_affected = len(report.users)
        logger.info(
            "Expiration sweep: %s entries, %s pts, %s users",
            report.entries_expired,
            report.points_expired,
            report.users_affected,
        )
        return report

    @classmethod
    def expire_entry(cls, entry_id: int, now=None) -> int | None:
        """
        Expire one earning entry.

        The offset is capped at the current balance, so points already spent
        are not clawed back into a negative balance.

        Returns:
            Points actually removed, or None if the entry was already expired
        """
        now = now or timezone.now()

        def attempt() -> int | None:
            source = LedgerEntry.objects.filter(pk=entry_id).first()
            if source is None or source.kind not in EXPIRING_KINDS:
                return None

            projection = LedgerService.lock_projection(source.user_ref)
            claimed = LedgerEntry.objects.filter(pk=entry_id, expired_at__isnull=True).update(expired_at=now)
            if not claimed:
                return None

            requested = source.delta
            applied = max(0, min(requested, projection.points))
            if requested <= 0:
                return 0

            entry = LedgerService.append(
                projection,
                kind=EntryKind.EXPIRATION,
                delta=-applied,
                payload=ExpirationPayload(
                    source_entry_id=str(source.uuid),
                    source_kind=source.kind,
                    requested=requested,
                    applied=applied,
                ),
                source_key=f"expire:{source.uuid}",
                now=now,
            )
            if applied < requested:
                logger.info(
                    "Expiration %s: capped at balance (%s of %s pts)",
                    source.uuid,
                    applied,
                    requested,
                )

            user_ref = source.user_ref
            transaction.on_commit(
                lambda: points_expired.send(
                    sender=LedgerEntry,
                    user_ref=user_ref,
                    entry=entry,
                    points=applied,
                )
            )
            return applied

        return atomic_with_retry(attempt, operation="expire_entry")
