"""Redemption service - spending points on catalog rewards.

Validation runs in two phases: a read-only precheck that rejects bad
requests before any lock is taken, then a commit phase that re-reads the
reward and the locked balance and applies a conditional decrement. The
precheck can pass on a stale balance; the commit phase cannot.
"""

import hashlib
import logging
import secrets
import uuid as uuid_lib
from dataclasses import asdict, dataclass
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from rewardman.adapters.catalog import get_catalog_backend
from rewardman.conf import rewardman_settings
from rewardman.exceptions import InsufficientBalanceError, ValidationError
from rewardman.idempotency import IdempotencyGuard
from rewardman.models import LedgerEntry, Redemption, RedemptionStatus
from rewardman.payloads import EntryKind, RedemptionPayload
from rewardman.protocols.catalog import RewardCatalogBackend, RewardInfo
from rewardman.services.ledger import LedgerService
from rewardman.services.orders import OrderAwardService
from rewardman.signals import points_redeemed
from rewardman.tiers import tier_rank
from rewardman.transactions import atomic_with_retry

logger = logging.getLogger(__name__)

SCOPE = "redemption"
CODE_PREFIX = "RW"


@dataclass(frozen=True)
class RedemptionResult:
    redemption_id: str
    code: str
    reward_id: str
    points_used: int
    remaining_balance: int
    replayed: bool = False

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict, replayed: bool = False) -> "RedemptionResult":
        return cls(
            redemption_id=data["redemption_id"],
            code=data["code"],
            reward_id=data["reward_id"],
            points_used=data["points_used"],
            remaining_balance=data["remaining_balance"],
            replayed=replayed,
        )


class RedemptionService:
    """
    Reward redemptions.

    Uses @classmethod for extensibility (see LedgerService).
    """

    # ======================================================================
    # Catalog
    # ======================================================================

    @classmethod
    def get_catalog(cls) -> RewardCatalogBackend:
        return get_catalog_backend()

    @classmethod
    def list_rewards(cls) -> list[RewardInfo]:
        """Active rewards, as offered to customers."""
        return cls.get_catalog().list_active()

    @classmethod
    def _load_reward(cls, catalog: RewardCatalogBackend, reward_id: str) -> RewardInfo:
        reward = catalog.get_reward(reward_id)
        if reward is None:
            raise ValidationError("UNKNOWN_REWARD", reward_id=reward_id)
        return reward

    # ======================================================================
    # Rules
    # ======================================================================

    @classmethod
    def _current_balance(cls, user_ref: str) -> int:
        projection = LedgerService.get_projection(user_ref)
        return projection.points if projection else 0

    @classmethod
    def _current_tier(cls, user_ref: str) -> str:
        return LedgerService.get_balance(user_ref).tier

    @classmethod
    def check_eligibility(cls, reward: RewardInfo, tier: str, order_subtotal=None) -> None:
        """
        Raise ValidationError unless ``reward`` can be redeemed.

        Rules: the reward is active, the user's tier is at least
        ``min_tier`` and, when the reward has a minimum, the order subtotal
        supplied with the request reaches it.
        """
        if not reward.is_active:
            raise ValidationError("REWARD_INACTIVE", reward_id=reward.reward_id)

        if reward.min_tier and tier_rank(tier) < tier_rank(reward.min_tier):
            raise ValidationError(
                "REWARD_NOT_ELIGIBLE",
                reward_id=reward.reward_id,
                rule="min_tier",
                required=reward.min_tier,
                tier=tier,
            )

        if reward.min_order_subtotal is not None:
            if order_subtotal is None or order_subtotal < reward.min_order_subtotal:
                raise ValidationError(
                    "REWARD_NOT_ELIGIBLE",
                    reward_id=reward.reward_id,
                    rule="min_order_subtotal",
                    required=str(reward.min_order_subtotal),
                    order_subtotal=str(order_subtotal) if order_subtotal is not None else None,
                )

    @classmethod
    def generate_code(cls) -> str:
        """Printable redemption code, e.g. ``RW9F3A1C07``."""
        return f"{CODE_PREFIX}{secrets.token_hex(4).upper()}"

    @classmethod
    def _prior_result(cls, key: str) -> RedemptionResult | None:
        """
        Result of an earlier redemption under ``key``, if any.

        The idempotency record is checked first; once cleanup has removed
        it, the ledger entry (unique per scoped key) and its Redemption row,
        written in the same transaction, still identify the original outcome.
        """
        replay = IdempotencyGuard.acquire_or_replay(SCOPE, key)
        if not replay.is_new:
            return RedemptionResult.from_dict(replay.prior_result, replayed=True)

        entry = LedgerEntry.objects.filter(kind=EntryKind.REDEMPTION, source_key=key).first()
        if entry is None:
            return None
        redemption = Redemption.objects.get(entry=entry)
        return RedemptionResult(
            redemption_id=str(redemption.uuid),
            code=redemption.code,
            reward_id=redemption.reward_code,
            points_used=redemption.points_used,
            remaining_balance=entry.balance_after,
            replayed=True,
        )

    @classmethod
    def _scoped_key(cls, user_ref: str, key: str) -> str:
        # Request keys are per user; long keys are hashed to fit the column
        scoped = f"{user_ref}:{key}"
        if len(scoped) > 255:
            scoped = f"{user_ref}:sha256:{hashlib.sha256(key.encode()).hexdigest()}"
        return scoped

    # ======================================================================
    # Redeem
    # ======================================================================

    @classmethod
    def redeem(
        cls,
        user_ref: str,
        reward_id: str,
        idempotency_key: str,
        order_subtotal=None,
    ) -> RedemptionResult:
        """
        Spend points on a reward.

        Args:
            user_ref: Customer identity
            reward_id: Catalog reward id
            idempotency_key: Client request key (required)
            order_subtotal: Subtotal of the order the reward is used with,
                for rewards with a minimum order

        Returns:
            RedemptionResult; a repeated key returns the original result with
            ``replayed=True``.

        Raises:
            ValidationError: Unknown/inactive reward or unmet eligibility
            InsufficientBalanceError: Balance below the reward cost
        """
        user_ref = LedgerService.validate_user_ref(user_ref)
        if not isinstance(reward_id, str) or not reward_id.strip():
            raise ValidationError("UNKNOWN_REWARD", reward_id=reward_id)
        reward_id = reward_id.strip()
        key = cls._scoped_key(user_ref, IdempotencyGuard.validate_key(idempotency_key))
        subtotal = OrderAwardService.parse_subtotal(order_subtotal) if order_subtotal is not None else None

        # Precheck (no locks)
        prior = cls._prior_result(key)
        if prior is not None:
            logger.info("Redemption %s: replayed", key)
            return prior

        catalog = cls.get_catalog()
        reward = cls._load_reward(catalog, reward_id)
        balance = cls._current_balance(user_ref)
        if balance < reward.points_cost:
            raise InsufficientBalanceError(balance=balance, required=reward.points_cost)
        cls.check_eligibility(reward, cls._current_tier(user_ref), subtotal)

        def attempt() -> RedemptionResult:
            prior = cls._prior_result(key)
            if prior is not None:
                return prior

            # Commit-time cost and rules
            current = cls._load_reward(catalog, reward_id)
            projection = LedgerService.lock_projection(user_ref)
            cls.check_eligibility(current, projection.tier, subtotal)
            if projection.points < current.points_cost:
                raise InsufficientBalanceError(balance=projection.points, required=current.points_cost)

            now = timezone.now()
            redemption_uuid = uuid_lib.uuid4()
            entry = LedgerService.append(
                projection,
                kind=EntryKind.REDEMPTION,
                delta=-current.points_cost,
                payload=RedemptionPayload(
                    reward_code=current.reward_id,
                    reward_name=current.name,
                    redemption_id=str(redemption_uuid),
                    points_cost=current.points_cost,
                ),
                source_key=key,
                now=now,
            )
            redemption = Redemption.objects.create(
                uuid=redemption_uuid,
                user_ref=user_ref,
                reward_code=current.reward_id,
                reward_name=current.name,
                points_used=current.points_cost,
                cogs=current.cogs,
                code=cls.generate_code(),
                entry=entry,
                created_at=now,
                expires_at=now + timedelta(days=rewardman_settings.REDEMPTION_TTL_DAYS),
            )
            result = RedemptionResult(
                redemption_id=str(redemption.uuid),
                code=redemption.code,
                reward_id=current.reward_id,
                points_used=current.points_cost,
                remaining_balance=projection.points,
            )
            IdempotencyGuard.record(SCOPE, key, user_ref, result.as_dict(), entry=entry)

            transaction.on_commit(
                lambda: points_redeemed.send(
                    sender=Redemption,
                    user_ref=user_ref,
                    redemption=redemption,
                    points=redemption.points_used,
                )
            )
            return result

        result = atomic_with_retry(attempt, operation="redeem")
        if not result.replayed:
            logger.info(
                "Redemption %s: %s redeemed %s for %s pts (balance %s)",
                result.code,
                user_ref,
                reward_id,
                result.points_used,
                result.remaining_balance,
            )
        return result

    # ======================================================================
    # Redemption codes
    # ======================================================================

    @classmethod
    def mark_used(cls, code: str, order_ref: str = "", now=None) -> Redemption:
        """
        Mark a redemption code as applied to an order.

        Raises:
            ValidationError: REDEMPTION_NOT_FOUND, REDEMPTION_ALREADY_USED
                or REDEMPTION_EXPIRED
        """
        code = (code or "").strip().upper()
        now = now or timezone.now()

        def attempt() -> Redemption:
            redemption = Redemption.objects.select_for_update().filter(code=code).first()
            if redemption is None:
                raise ValidationError("REDEMPTION_NOT_FOUND", code=code)
            if redemption.status == RedemptionStatus.USED:
                raise ValidationError(
                    "REDEMPTION_ALREADY_USED",
                    code=code,
                    used_at=redemption.used_at.isoformat() if redemption.used_at else None,
                )
            if redemption.is_expired(now):
                raise ValidationError("REDEMPTION_EXPIRED", code=code, expires_at=redemption.expires_at.isoformat())

            redemption.status = RedemptionStatus.USED
            redemption.used_at = now
            redemption.used_order_ref = order_ref or ""
            redemption.save(update_fields=["status", "used_at", "used_order_ref"])
            return redemption

        redemption = atomic_with_retry(attempt, operation="mark_used")
        logger.info("Redemption %s: used on order %s", code, order_ref or "-")
        return redemption

    @classmethod
    def list_redemptions(cls, user_ref: str, status: str | None = None) -> list[Redemption]:
        """User's redemptions, newest first, optionally filtered by status."""
        user_ref = LedgerService.validate_user_ref(user_ref)
        qs = Redemption.objects.filter(user_ref=user_ref)
        if status is not None:
            if status not in RedemptionStatus.values:
                raise ValidationError("INVALID_INPUT", message=f"Unknown redemption status: {status}")
            qs = qs.filter(status=status)
        return list(qs.order_by("-created_at", "-id"))
