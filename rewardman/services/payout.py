"""Payout monitor - giveback, spin and liability figures for a window.

Observability only: nothing here is consulted by the write paths.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.utils import timezone

from rewardman.cache import get_cache
from rewardman.conf import rewardman_settings
from rewardman.exceptions import ValidationError
from rewardman.models import BalanceProjection, LedgerEntry, Redemption, SpinRecord
from rewardman.payloads import EntryKind

logger = logging.getLogger(__name__)

RATE_PLACES = Decimal("0.0001")

ALERT_GIVEBACK = "giveback_above_target"
ALERT_JACKPOT = "jackpot_rate_above_ceiling"
ALERT_LIABILITY = "liability_above_threshold"


def _rate(numerator: Decimal, denominator: Decimal) -> Decimal | None:
    if not denominator:
        return None
    return (numerator / denominator).quantize(RATE_PLACES)


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class PayoutReport:
    start: datetime
    end: datetime

    revenue: Decimal = Decimal("0")
    orders_count: int = 0

    points_earned: int = 0
    spin_points: int = 0
    bonus_points: int = 0
    points_redeemed: int = 0
    points_expired: int = 0
    points_adjusted: int = 0

    redemptions_count: int = 0
    redemption_cost: Decimal = Decimal("0")
    giveback_rate: Decimal | None = None
    issued_value_rate: Decimal | None = None

    spins_count: int = 0
    jackpots_count: int = 0
    jackpot_rate: Decimal | None = None

    outstanding_points: int = 0
    liability: Decimal = Decimal("0")

    alerts: tuple = field(default_factory=tuple)

    def as_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "revenue": str(self.revenue),
            "orders_count": self.orders_count,
            "points_earned": self.points_earned,
            "spin_points": self.spin_points,
            "bonus_points": self.bonus_points,
            "points_redeemed": self.points_redeemed,
            "points_expired": self.points_expired,
            "points_adjusted": self.points_adjusted,
            "redemptions_count": self.redemptions_count,
            "redemption_cost": str(self.redemption_cost),
            "giveback_rate": _str_or_none(self.giveback_rate),
            "issued_value_rate": _str_or_none(self.issued_value_rate),
            "spins_count": self.spins_count,
            "jackpots_count": self.jackpots_count,
            "jackpot_rate": _str_or_none(self.jackpot_rate),
            "outstanding_points": self.outstanding_points,
            "liability": str(self.liability),
            "alerts": list(self.alerts),
        }


class PayoutMonitor:
    """
    Aggregates the ledger into payout figures.

    Usage:
        report = PayoutMonitor.report(days=7)
        if report.alerts:
            notify_ops(report.as_dict())
    """

    @classmethod
    def report(cls, start=None, end=None, days: int = 30, cache=None) -> PayoutReport:
        """
        Cached report for [start, end).

        Without explicit bounds the window is the last ``days`` days and the
        cached copy is reused for REPORT_CACHE_TTL seconds.
        """
        if start is None and end is None:
            if days < 1:
                raise ValidationError("INVALID_INPUT", message="days must be positive", days=days)
            cache_key = f"rewardman:payout:last:{days}"
        else:
            end = end or timezone.now()
            start = start or end - timedelta(days=days)
            if start >= end:
                raise ValidationError(
                    "INVALID_INPUT",
                    message="start must be before end",
                    start=start.isoformat(),
                    end=end.isoformat(),
                )
            cache_key = f"rewardman:payout:{start.isoformat()}:{end.isoformat()}"

        cache = cache if cache is not None else get_cache()
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        if start is None:
            end = timezone.now()
            start = end - timedelta(days=days)
        report = cls.compute(start, end)
        cache.set(cache_key, report, timeout=rewardman_settings.REPORT_CACHE_TTL)
        return report

    @classmethod
    def compute(cls, start: datetime, end: datetime) -> PayoutReport:
        """Uncached aggregation for [start, end)."""
        entries = LedgerEntry.objects.filter(created_at__gte=start, created_at__lt=end)

        totals = {
            row["kind"]: row
            for row in entries.values("kind").annotate(total=Sum("delta"), count=Count("id"))
        }

        def total(kind) -> int:
            return totals.get(kind, {}).get("total") or 0

        revenue = Decimal("0")
        for metadata in entries.filter(kind=EntryKind.ORDER_EARN).values_list("metadata", flat=True):
            revenue += Decimal(str(metadata.get("subtotal", "0")))

        redemptions = Redemption.objects.filter(created_at__gte=start, created_at__lt=end).aggregate(
            cost=Sum("cogs"),
            count=Count("id"),
        )
        spins = SpinRecord.objects.filter(created_at__gte=start, created_at__lt=end).aggregate(
            count=Count("id"),
            jackpots=Count("id", filter=Q(is_jackpot=True)),
        )
        outstanding = BalanceProjection.objects.aggregate(points=Sum("points"))["points"] or 0

        point_value = Decimal(str(rewardman_settings.POINT_CASH_VALUE))
        points_earned = total(EntryKind.ORDER_EARN)
        spin_points = total(EntryKind.SPIN_AWARD)
        bonus_points = total(EntryKind.REFERRAL_BONUS) + total(EntryKind.BIRTHDAY_BONUS)
        redemption_cost = redemptions["cost"] or Decimal("0")
        spins_count = spins["count"] or 0
        jackpots_count = spins["jackpots"] or 0
        liability = (outstanding * point_value).quantize(Decimal("0.01"))

        giveback_rate = _rate(redemption_cost, revenue)
        jackpot_rate = _rate(Decimal(jackpots_count), Decimal(spins_count))

        alerts = []
        if giveback_rate is not None and giveback_rate > Decimal(str(rewardman_settings.TARGET_GIVEBACK_RATE)):
            alerts.append(ALERT_GIVEBACK)
        if jackpot_rate is not None and jackpot_rate > Decimal(str(rewardman_settings.JACKPOT_PROBABILITY_CEILING)):
            alerts.append(ALERT_JACKPOT)
        if liability > Decimal(str(rewardman_settings.LIABILITY_ALERT_THRESHOLD)):
            alerts.append(ALERT_LIABILITY)

        report = PayoutReport(
            start=start,
            end=end,
            revenue=revenue,
            orders_count=totals.get(EntryKind.ORDER_EARN, {}).get("count") or 0,
            points_earned=points_earned,
            spin_points=spin_points,
            bonus_points=bonus_points,
            points_redeemed=-total(EntryKind.REDEMPTION),
            points_expired=-total(EntryKind.EXPIRATION),
            points_adjusted=total(EntryKind.ADMIN_ADJUSTMENT),
            redemptions_count=redemptions["count"] or 0,
            redemption_cost=redemption_cost,
            giveback_rate=giveback_rate,
            issued_value_rate=_rate((points_earned + spin_points + bonus_points) * point_value, revenue),
            spins_count=spins_count,
            jackpots_count=jackpots_count,
            jackpot_rate=jackpot_rate,
            outstanding_points=outstanding,
            liability=liability,
            alerts=tuple(alerts),
        )

        for alert in alerts:
            logger.warning("Payout alert %s (%s to %s)", alert, start.isoformat(), end.isoformat())
        return report
