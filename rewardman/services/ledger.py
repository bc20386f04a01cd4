"""Ledger service - the append primitive, balances, history and adjustments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from rewardman.conf import rewardman_settings
from rewardman.exceptions import ConcurrencyConflict, InsufficientBalanceError, ValidationError
from rewardman.models import BalanceProjection, LedgerEntry
from rewardman.payloads import EARNING_KINDS, EXPIRING_KINDS, AdminAdjustmentPayload, EntryKind, encode
from rewardman.signals import tier_changed
from rewardman.tiers import Tier, calculate_tier
from rewardman.transactions import atomic_with_retry

logger = logging.getLogger(__name__)

MAX_USER_REF_LENGTH = 128


@dataclass(frozen=True)
class ExpiringPoints:
    """A live earning lot and when it lapses."""

    amount: int
    expires_at: datetime

    def as_dict(self) -> dict:
        return {"amount": self.amount, "expires_at": self.expires_at.isoformat()}


@dataclass(frozen=True)
class BalanceSummary:
    """Balance and tier progress for one user."""

    user_ref: str
    points: int
    lifetime_points: int
    tier: str
    next_tier: str | None
    points_to_next_tier: int
    orders_count: int = 0
    total_spent: Decimal = Decimal("0")
    expiring_points: tuple = ()

    def as_dict(self) -> dict:
        return {
            "user_ref": self.user_ref,
            "points": self.points,
            "lifetime_points": self.lifetime_points,
            "tier": self.tier,
            "next_tier": self.next_tier,
            "points_to_next_tier": self.points_to_next_tier,
            "orders_count": self.orders_count,
            "total_spent": str(self.total_spent),
            "expiring_points": [lot.as_dict() for lot in self.expiring_points],
        }


@dataclass(frozen=True)
class HistoryPage:
    """One page of ledger history, most recent first."""

    entries: list
    next_cursor: str | None = None


@dataclass(frozen=True)
class AdjustmentResult:
    entry_id: str
    delta: int
    new_balance: int
    tier: str
    tier_changed: bool


class LedgerService:
    """
    Ledger store operations.

    Uses @classmethod for extensibility (consistent with the other services).
    Every balance mutation goes through append(), inside transaction.atomic(),
    against a projection loaded with lock_projection().
    """

    # ======================================================================
    # Reads
    # ======================================================================

    @classmethod
    def validate_user_ref(cls, user_ref) -> str:
        if user_ref is None or not str(user_ref).strip() or len(str(user_ref)) > MAX_USER_REF_LENGTH:
            raise ValidationError("INVALID_USER", user_ref=user_ref)
        return str(user_ref).strip()

    @classmethod
    def get_projection(cls, user_ref: str) -> BalanceProjection | None:
        return BalanceProjection.objects.filter(user_ref=user_ref).first()

    @classmethod
    def expiring_points(cls, user_ref: str, now=None) -> tuple[ExpiringPoints, ...]:
        """Earning lots not yet expired, soonest first."""
        now = now or timezone.now()
        rows = (
            LedgerEntry.objects.filter(
                user_ref=user_ref,
                kind__in=list(EXPIRING_KINDS),
                delta__gt=0,
                expires_at__gt=now,
                expired_at__isnull=True,
            )
            .order_by("expires_at", "id")
            .values_list("delta", "expires_at")
        )
        return tuple(ExpiringPoints(amount=delta, expires_at=expires_at) for delta, expires_at in rows)

    @classmethod
    def get_balance(cls, user_ref: str, now=None) -> BalanceSummary:
        """
        Current balance and tier progress.

        Users without any ledger activity get a zero Bronze summary; no
        projection is created by reading. ``expiring_points`` lists the
        unexpired order and spin lots; a lot's amount is what the sweep
        will try to remove, capped then at the balance.
        """
        user_ref = cls.validate_user_ref(user_ref)
        projection = cls.get_projection(user_ref)
        if projection is None:
            status = calculate_tier(0)
            return BalanceSummary(
                user_ref=user_ref,
                points=0,
                lifetime_points=0,
                tier=status.tier,
                next_tier=status.next_tier,
                points_to_next_tier=status.points_to_next_tier,
            )

        status = calculate_tier(projection.lifetime_points)
        return BalanceSummary(
            user_ref=user_ref,
            points=projection.points,
            lifetime_points=projection.lifetime_points,
            tier=projection.tier,
            next_tier=status.next_tier,
            points_to_next_tier=status.points_to_next_tier,
            orders_count=projection.orders_count,
            total_spent=projection.total_spent,
            expiring_points=cls.expiring_points(user_ref, now=now),
        )

    @classmethod
    def history(cls, user_ref: str, limit: int = 50, cursor: str | None = None) -> HistoryPage:
        """
        Ledger entries for a user, most recent first.

        Args:
            user_ref: Owning identity
            limit: Page size, clamped to 1..HISTORY_MAX_LIMIT
            cursor: ``next_cursor`` of the previous page

        Returns:
            HistoryPage; ``next_cursor`` is None on the last page
        """
        user_ref = cls.validate_user_ref(user_ref)
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError("INVALID_INPUT", message="limit must be an integer", limit=limit)
        limit = max(1, min(limit, rewardman_settings.HISTORY_MAX_LIMIT))

        qs = LedgerEntry.objects.filter(user_ref=user_ref).order_by("-id")
        if cursor:
            try:
                before = int(cursor)
                if before <= 0:
                    raise ValueError(cursor)
            except (TypeError, ValueError):
                raise ValidationError("INVALID_CURSOR", cursor=cursor)
            qs = qs.filter(id__lt=before)

        rows = list(qs[: limit + 1])
        has_more = len(rows) > limit
        rows = rows[:limit]
        return HistoryPage(entries=rows, next_cursor=str(rows[-1].id) if has_more else None)

    # ======================================================================
    # Append primitive
    # ======================================================================

    @classmethod
    def lock_projection(cls, user_ref: str) -> BalanceProjection:
        """
        Get (or lazily create) the user's projection with a row lock.

        MUST be called inside transaction.atomic().
        """
        projection, created = BalanceProjection.objects.get_or_create(
            user_ref=user_ref,
            defaults={"tier": calculate_tier(0).tier},
        )
        if created:
            logger.info("Ledger: created balance projection for %s", user_ref)
        return BalanceProjection.objects.select_for_update().get(pk=projection.pk)

    @classmethod
    def append(
        cls,
        projection: BalanceProjection,
        *,
        kind: str,
        delta: int,
        payload,
        source_key: str = "",
        expires_at=None,
        orders_delta: int = 0,
        spent_delta: Decimal = Decimal("0"),
        now=None,
    ) -> LedgerEntry:
        """
        Append one entry and apply it to the projection.

        MUST be called inside transaction.atomic() with ``projection`` loaded
        through lock_projection(). The projection row is changed with a
        conditional UPDATE on ``version`` (and on ``points >= amount`` for
        debits); a miss raises ConcurrencyConflict and rolls the unit back.
        ``projection`` is refreshed in place.

        Raises:
            InsufficientBalanceError: If the debit exceeds the balance
            ConcurrencyConflict: If the projection changed underneath
            IntegrityError: If (kind, source_key) already exists
        """
        now = now or timezone.now()
        metadata = encode(kind, payload)

        if projection.points + delta < 0:
            raise InsufficientBalanceError(balance=projection.points, required=-delta)

        lifetime_delta = delta if kind in EARNING_KINDS and delta > 0 else 0
        new_tier = calculate_tier(projection.lifetime_points + lifetime_delta).tier
        old_tier = projection.tier

        guard = {"pk": projection.pk, "version": projection.version}
        if delta < 0:
            guard["points__gte"] = -delta

        updated = BalanceProjection.objects.filter(**guard).update(
            points=F("points") + delta,
            lifetime_points=F("lifetime_points") + lifetime_delta,
            tier=new_tier,
            orders_count=F("orders_count") + orders_delta,
            total_spent=F("total_spent") + spent_delta,
            version=F("version") + 1,
            updated_at=now,
        )
        if not updated:
            raise ConcurrencyConflict(user_ref=projection.user_ref, kind=kind)

        projection.refresh_from_db()

        entry = LedgerEntry.objects.create(
            user_ref=projection.user_ref,
            kind=kind,
            delta=delta,
            balance_after=projection.points,
            source_key=source_key,
            metadata=metadata,
            created_at=now,
            expires_at=expires_at,
        )

        if new_tier != old_tier:
            logger.info("Ledger: %s tier %s -> %s", projection.user_ref, old_tier, new_tier)
            user_ref = projection.user_ref
            transaction.on_commit(
                lambda: tier_changed.send(
                    sender=BalanceProjection,
                    user_ref=user_ref,
                    old_tier=old_tier,
                    new_tier=new_tier,
                )
            )

        return entry

    # ======================================================================
    # Admin adjustments
    # ======================================================================

    @classmethod
    def admin_adjust(cls, user_ref: str, delta: int, reason: str, actor: str = "") -> AdjustmentResult:
        """
        Manual correction of a balance.

        Adjustments never count toward lifetime points. A negative adjustment
        larger than the balance is refused rather than clamped.

        Raises:
            ValidationError: Zero/oversized delta or missing reason
            InsufficientBalanceError: Debit larger than the balance
        """
        user_ref = cls.validate_user_ref(user_ref)
        limit = rewardman_settings.ADMIN_ADJUSTMENT_LIMIT
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0 or abs(delta) > limit:
            raise ValidationError("INVALID_ADJUSTMENT", delta=delta, limit=limit)
        if not reason or not reason.strip():
            raise ValidationError("INVALID_INPUT", message="Adjustment reason is required")

        def attempt():
            projection = cls.lock_projection(user_ref)
            before_tier = projection.tier
            entry = cls.append(
                projection,
                kind=EntryKind.ADMIN_ADJUSTMENT,
                delta=delta,
                payload=AdminAdjustmentPayload(
                    reason=reason.strip(),
                    actor=actor,
                    balance_before=projection.points,
                ),
            )
            return AdjustmentResult(
                entry_id=str(entry.uuid),
                delta=delta,
                new_balance=projection.points,
                tier=projection.tier,
                tier_changed=projection.tier != before_tier,
            )

        result = atomic_with_retry(attempt, operation="admin_adjust")
        logger.info(
            "Ledger: admin adjustment %+d for %s by %s (%s)",
            delta,
            user_ref,
            actor or "system",
            reason,
        )
        return result


__all__ = [
    "AdjustmentResult",
    "BalanceSummary",
    "ExpiringPoints",
    "HistoryPage",
    "LedgerService",
    "Tier",
]
