"""Spin engine - one daily spin per user and UTC day."""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.db import transaction
from django.utils import timezone

from rewardman.clock import day_key, next_reset
from rewardman.conf import rewardman_settings
from rewardman.exceptions import CooldownError
from rewardman.models import SpinRecord
from rewardman.payloads import EntryKind, SpinAwardPayload
from rewardman.services.ledger import LedgerService
from rewardman.signals import spin_completed
from rewardman.transactions import atomic_with_retry
from rewardman.wheel import SpinTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpinResult:
    outcome_label: str
    points_awarded: int
    is_jackpot: bool
    new_balance: int
    day_key: str
    next_reset_at: datetime

    def as_dict(self) -> dict:
        return {
            "outcome_label": self.outcome_label,
            "points_awarded": self.points_awarded,
            "is_jackpot": self.is_jackpot,
            "new_balance": self.new_balance,
            "day_key": self.day_key,
            "next_reset_at": self.next_reset_at.isoformat(),
        }


@dataclass(frozen=True)
class SpinEligibility:
    can_spin: bool
    next_reset_at: datetime
    day_key: str

    def as_dict(self) -> dict:
        return {
            "can_spin": self.can_spin,
            "next_reset_at": self.next_reset_at.isoformat(),
            "day_key": self.day_key,
        }


class SpinEngine:
    """
    Daily spin.

    The SpinRecord for (user, day) is the cooldown. It is checked before any
    randomness is consumed and again under the projection lock, and its unique
    constraint settles concurrent spins.
    """

    @classmethod
    def get_table(cls) -> SpinTable:
        return SpinTable.from_settings()

    @classmethod
    def _cooldown(cls, user_ref: str, key: str, reset_at: datetime) -> CooldownError:
        return CooldownError(next_reset_at=reset_at.isoformat(), day_key=key, user_ref=user_ref)

    @classmethod
    def has_spun(cls, user_ref: str, key: str) -> bool:
        return SpinRecord.objects.filter(user_ref=user_ref, day_key=key).exists()

    @classmethod
    def eligibility(cls, user_ref: str, now=None) -> SpinEligibility:
        """Whether ``user_ref`` can spin today, and when the day resets."""
        user_ref = LedgerService.validate_user_ref(user_ref)
        now = now or timezone.now()
        key = day_key(now)
        return SpinEligibility(
            can_spin=not cls.has_spun(user_ref, key),
            next_reset_at=next_reset(now),
            day_key=key,
        )

    @classmethod
    def spin(cls, user_ref: str, now=None, rng: random.Random | None = None) -> SpinResult:
        """
        Spin the wheel for today.

        Args:
            user_ref: Customer identity
            now: Current instant (aware); defaults to timezone.now()
            rng: random.Random-compatible source; defaults to SystemRandom

        Returns:
            SpinResult

        Raises:
            CooldownError: Already spun this UTC day (``next_reset_at`` in data)
        """
        user_ref = LedgerService.validate_user_ref(user_ref)
        now = now or timezone.now()
        key = day_key(now)
        reset_at = next_reset(now)
        table = cls.get_table()

        if cls.has_spun(user_ref, key):
            raise cls._cooldown(user_ref, key, reset_at)

        outcome = table.draw(rng or random.SystemRandom())

        def attempt() -> SpinResult:
            projection = LedgerService.lock_projection(user_ref)
            if cls.has_spun(user_ref, key):
                raise cls._cooldown(user_ref, key, reset_at)

            entry = LedgerService.append(
                projection,
                kind=EntryKind.SPIN_AWARD,
                delta=outcome.points,
                payload=SpinAwardPayload(
                    day_key=key,
                    outcome_label=outcome.label,
                    is_jackpot=outcome.is_jackpot,
                ),
                source_key=f"spin:{user_ref}:{key}",
                expires_at=now + timedelta(days=rewardman_settings.POINTS_TTL_DAYS),
                now=now,
            )
            record = SpinRecord.objects.create(
                user_ref=user_ref,
                day_key=key,
                outcome_label=outcome.label,
                points=outcome.points,
                is_jackpot=outcome.is_jackpot,
                entry=entry,
                created_at=now,
            )
            transaction.on_commit(
                lambda: spin_completed.send(
                    sender=SpinRecord,
                    user_ref=user_ref,
                    spin=record,
                    points=outcome.points,
                    is_jackpot=outcome.is_jackpot,
                )
            )
            return SpinResult(
                outcome_label=outcome.label,
                points_awarded=outcome.points,
                is_jackpot=outcome.is_jackpot,
                new_balance=projection.points,
                day_key=key,
                next_reset_at=reset_at,
            )

        result = atomic_with_retry(attempt, operation="spin")
        logger.info(
            "Spin %s@%s: %s (+%s pts)%s",
            user_ref,
            key,
            result.outcome_label,
            result.points_awarded,
            " JACKPOT" if result.is_jackpot else "",
        )
        return result
