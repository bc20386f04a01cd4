"""Order award service - points for completed orders.

One ledger entry per order id, whatever the idempotency key used to ask.
"""

import logging
import math
from dataclasses import asdict, dataclass
from datetime import timedelta
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone

from rewardman.conf import rewardman_settings
from rewardman.exceptions import ValidationError
from rewardman.idempotency import IdempotencyGuard
from rewardman.models import LedgerEntry
from rewardman.payloads import EntryKind, OrderEarnPayload
from rewardman.services.ledger import LedgerService
from rewardman.signals import points_awarded
from rewardman.transactions import atomic_with_retry

logger = logging.getLogger(__name__)

SCOPE = "order_earn"
MAX_ORDER_ID_LENGTH = 100


@dataclass(frozen=True)
class OrderAward:
    """Outcome of awarding an order."""

    points_awarded: int
    new_balance: int
    tier: str
    tier_changed: bool
    entry_id: str
    replayed: bool = False

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict, replayed: bool = False) -> "OrderAward":
        return cls(
            points_awarded=data["points_awarded"],
            new_balance=data["new_balance"],
            tier=data["tier"],
            tier_changed=data["tier_changed"],
            entry_id=data["entry_id"],
            replayed=replayed,
        )


class OrderAwardService:
    """
    Awards points for completed orders.

    Uses @classmethod for extensibility (see LedgerService).
    """

    @classmethod
    def parse_subtotal(cls, value) -> Decimal:
        """Merchandise subtotal as a positive, finite Decimal."""
        if isinstance(value, bool) or value is None:
            raise ValidationError("INVALID_SUBTOTAL", subtotal=str(value))
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError("INVALID_SUBTOTAL", subtotal=str(value))
        try:
            subtotal = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError("INVALID_SUBTOTAL", subtotal=str(value))
        if not subtotal.is_finite() or subtotal <= 0:
            raise ValidationError("INVALID_SUBTOTAL", subtotal=str(value))
        return subtotal

    @classmethod
    def points_for_subtotal(cls, subtotal: Decimal) -> int:
        """floor(subtotal * EARN_RATE), never less than 1."""
        rate = Decimal(str(rewardman_settings.EARN_RATE))
        raw = (subtotal * rate).to_integral_value(rounding=ROUND_FLOOR)
        return max(int(raw), 1)

    @classmethod
    def award_for_order(
        cls,
        user_ref: str,
        order_id: str,
        order_subtotal,
        idempotency_key: str | None = None,
        now=None,
    ) -> OrderAward:
        """
        Award points for a completed order.

        Args:
            user_ref: Customer identity
            order_id: Order identifier (unique across the platform)
            order_subtotal: Merchandise subtotal, before tax, tip and delivery
            idempotency_key: Request key; defaults to the order id

        Returns:
            OrderAward. A repeated order (under any key) returns the original
            award with ``replayed=True``.

        Raises:
            ValidationError: Bad user, order id or subtotal, or an order
                already credited to another user
            ConcurrencyConflict: Contention outlived the retries
            StoreUnavailable: Database failure
        """
        user_ref = LedgerService.validate_user_ref(user_ref)
        order_id = str(order_id).strip() if order_id is not None else ""
        if not order_id or len(order_id) > MAX_ORDER_ID_LENGTH:
            raise ValidationError("INVALID_ORDER_ID", order_id=order_id)
        subtotal = cls.parse_subtotal(order_subtotal)
        key = IdempotencyGuard.validate_key(idempotency_key if idempotency_key is not None else order_id)
        points = cls.points_for_subtotal(subtotal)

        def attempt() -> OrderAward:
            replay = IdempotencyGuard.acquire_or_replay(SCOPE, key)
            if not replay.is_new:
                if replay.user_ref != user_ref:
                    logger.warning("Order %s: key %s belongs to another user", order_id, key)
                    raise ValidationError("INVALID_IDEMPOTENCY_KEY", key=key)
                return OrderAward.from_dict(replay.prior_result, replayed=True)

            existing = LedgerEntry.objects.filter(kind=EntryKind.ORDER_EARN, source_key=order_id).first()
            if existing is not None:
                if existing.user_ref != user_ref:
                    logger.warning("Order %s already awarded to another user, refusing %s", order_id, user_ref)
                    raise ValidationError("INVALID_ORDER_ID", order_id=order_id)
                prior = IdempotencyGuard.result_for_entry(existing)
                if prior is not None:
                    return OrderAward.from_dict(prior, replayed=True)
                return OrderAward(
                    points_awarded=existing.delta,
                    new_balance=existing.balance_after,
                    tier=LedgerService.get_balance(user_ref).tier,
                    tier_changed=False,
                    entry_id=str(existing.uuid),
                    replayed=True,
                )

            current = now or timezone.now()
            projection = LedgerService.lock_projection(user_ref)
            before_tier = projection.tier
            entry = LedgerService.append(
                projection,
                kind=EntryKind.ORDER_EARN,
                delta=points,
                payload=OrderEarnPayload(
                    order_id=order_id,
                    subtotal=str(subtotal),
                    earn_rate=str(rewardman_settings.EARN_RATE),
                ),
                source_key=order_id,
                expires_at=current + timedelta(days=rewardman_settings.POINTS_TTL_DAYS),
                orders_delta=1,
                spent_delta=subtotal,
                now=current,
            )
            award = OrderAward(
                points_awarded=points,
                new_balance=projection.points,
                tier=projection.tier,
                tier_changed=projection.tier != before_tier,
                entry_id=str(entry.uuid),
            )
            IdempotencyGuard.record(SCOPE, key, user_ref, award.as_dict(), entry=entry)

            transaction.on_commit(
                lambda: points_awarded.send(
                    sender=LedgerEntry,
                    user_ref=user_ref,
                    entry=entry,
                    points=points,
                    order_id=order_id,
                )
            )
            return award

        award = atomic_with_retry(attempt, operation="award_for_order")

        if award.replayed:
            logger.info("Order %s: award replayed (%s pts)", order_id, award.points_awarded)
        else:
            logger.info(
                "Order %s: +%s pts for %s (balance %s, tier %s)",
                order_id,
                award.points_awarded,
                user_ref,
                award.new_balance,
                award.tier,
            )
        return award
