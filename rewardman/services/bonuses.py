"""Bonus service - referral and birthday points.

Bonuses credit lifetime points like orders and spins but never expire.
Each bonus is written once, deduplicated on its ledger source key:

- ``referral:<new user>:referrer`` / ``referral:<new user>:referee``
  (a user can be referred once, by one referrer)
- ``birthday:<user>:<year>``
"""

import calendar
import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import date, datetime

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from rewardman.clock import day_key
from rewardman.conf import rewardman_settings
from rewardman.exceptions import RewardmanError, ValidationError
from rewardman.models import BalanceProjection, LedgerEntry
from rewardman.payloads import BirthdayBonusPayload, EntryKind, ReferralBonusPayload
from rewardman.services.ledger import LedgerService
from rewardman.signals import bonus_awarded
from rewardman.transactions import atomic_with_retry

logger = logging.getLogger(__name__)

REFERRAL_CODE_PREFIX = "RF"
ROLE_REFERRER = "referrer"
ROLE_REFEREE = "referee"


@dataclass(frozen=True)
class BonusAward:
    user_ref: str
    points_awarded: int
    new_balance: int
    tier: str
    tier_changed: bool
    entry_id: str
    replayed: bool = False

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "BonusAward":
        """Replayed award rebuilt from the ledger entry that recorded it."""
        projection = LedgerService.get_projection(entry.user_ref)
        return cls(
            user_ref=entry.user_ref,
            points_awarded=entry.delta,
            new_balance=entry.balance_after,
            tier=projection.tier if projection else "",
            tier_changed=False,
            entry_id=str(entry.uuid),
            replayed=True,
        )


@dataclass(frozen=True)
class ReferralAward:
    referrer: BonusAward
    referee: BonusAward
    replayed: bool = False

    def as_dict(self) -> dict:
        return {
            "referrer": self.referrer.as_dict(),
            "referee": self.referee.as_dict(),
            "replayed": self.replayed,
        }


@dataclass
class BirthdayReport:
    day: str
    users_awarded: int = 0
    points_awarded: int = 0
    already_awarded: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _referral_key(referee_ref: str, role: str) -> str:
    return f"referral:{referee_ref}:{role}"


def _birthday_key(user_ref: str, year: int) -> str:
    return f"birthday:{user_ref}:{year}"


def is_birthday(birthday: date, today: date) -> bool:
    """Same month and day; 29 February birthdays fall on the 28th in common years."""
    if (birthday.month, birthday.day) == (today.month, today.day):
        return True
    return (
        birthday.month == 2
        and birthday.day == 29
        and (today.month, today.day) == (2, 28)
        and not calendar.isleap(today.year)
    )


class BonusService:
    """
    Referral and birthday bonuses.

    Uses @classmethod for extensibility (see LedgerService).
    """

    # ======================================================================
    # Helpers
    # ======================================================================

    @classmethod
    def _credit(cls, user_ref: str, kind: str, points: int, payload, source_key: str, now) -> BonusAward:
        """Append one bonus entry. MUST run inside transaction.atomic()."""
        projection = LedgerService.lock_projection(user_ref)
        before_tier = projection.tier
        entry = LedgerService.append(
            projection,
            kind=kind,
            delta=points,
            payload=payload,
            source_key=source_key,
            now=now,
        )
        transaction.on_commit(
            lambda: bonus_awarded.send(
                sender=LedgerEntry,
                user_ref=user_ref,
                entry=entry,
                points=points,
                kind=kind,
            )
        )
        return BonusAward(
            user_ref=user_ref,
            points_awarded=points,
            new_balance=projection.points,
            tier=projection.tier,
            tier_changed=projection.tier != before_tier,
            entry_id=str(entry.uuid),
        )

    # ======================================================================
    # Referrals
    # ======================================================================

    @classmethod
    def generate_referral_code(cls) -> str:
        return f"{REFERRAL_CODE_PREFIX}{secrets.token_hex(4).upper()}"

    @classmethod
    def referral_code(cls, user_ref: str) -> str:
        """The user's referral code, issued on first request."""
        user_ref = LedgerService.validate_user_ref(user_ref)
        projection = LedgerService.get_projection(user_ref)
        if projection is not None and projection.referral_code:
            return projection.referral_code

        def attempt() -> str:
            locked = LedgerService.lock_projection(user_ref)
            if locked.referral_code:
                return locked.referral_code
            code = cls.generate_referral_code()
            # A code collision raises IntegrityError and is retried with a new code
            BalanceProjection.objects.filter(pk=locked.pk).update(referral_code=code)
            return code

        code = atomic_with_retry(attempt, operation="referral_code")
        logger.info("Referral: code %s for %s", code, user_ref)
        return code

    @classmethod
    def apply_referral(cls, referee_ref: str, referral_code: str, now=None) -> ReferralAward:
        """
        Credit both sides of a referral.

        The referrer gets REFERRAL_BONUS_REFERRER points and the new user
        REFERRAL_BONUS_REFEREE. Repeating the same referral replays the
        original awards.

        Raises:
            ValidationError: INVALID_REFERRAL_CODE, SELF_REFERRAL or
                ALREADY_REFERRED (the user was referred by someone else)
        """
        referee_ref = LedgerService.validate_user_ref(referee_ref)
        code = (referral_code or "").strip().upper() if isinstance(referral_code, str) else ""
        referrer = BalanceProjection.objects.filter(referral_code=code).first() if code else None
        if referrer is None:
            raise ValidationError("INVALID_REFERRAL_CODE", referral_code=referral_code)
        referrer_ref = referrer.user_ref
        if referrer_ref == referee_ref:
            raise ValidationError("SELF_REFERRAL")

        now = now or timezone.now()
        referrer_points = rewardman_settings.REFERRAL_BONUS_REFERRER
        referee_points = rewardman_settings.REFERRAL_BONUS_REFEREE

        def attempt() -> ReferralAward:
            existing = LedgerEntry.objects.filter(
                kind=EntryKind.REFERRAL_BONUS,
                source_key=_referral_key(referee_ref, ROLE_REFEREE),
            ).first()
            if existing is not None:
                if existing.payload.referrer_ref != referrer_ref:
                    raise ValidationError("ALREADY_REFERRED", user_ref=referee_ref)
                referrer_entry = LedgerEntry.objects.get(
                    kind=EntryKind.REFERRAL_BONUS,
                    source_key=_referral_key(referee_ref, ROLE_REFERRER),
                )
                return ReferralAward(
                    referrer=BonusAward.from_entry(referrer_entry),
                    referee=BonusAward.from_entry(existing),
                    replayed=True,
                )

            # Lock both rows in a fixed order
            for ref in sorted((referrer_ref, referee_ref)):
                LedgerService.lock_projection(ref)

            awards = {}
            for ref, role, points in (
                (referrer_ref, ROLE_REFERRER, referrer_points),
                (referee_ref, ROLE_REFEREE, referee_points),
            ):
                awards[role] = cls._credit(
                    ref,
                    EntryKind.REFERRAL_BONUS,
                    points,
                    ReferralBonusPayload(
                        referrer_ref=referrer_ref,
                        referee_ref=referee_ref,
                        role=role,
                        referral_code=code,
                    ),
                    _referral_key(referee_ref, role),
                    now,
                )
            BalanceProjection.objects.filter(user_ref=referee_ref).update(referred_by=referrer_ref)
            return ReferralAward(referrer=awards[ROLE_REFERRER], referee=awards[ROLE_REFEREE])

        award = atomic_with_retry(attempt, operation="apply_referral")
        if award.replayed:
            logger.info("Referral %s -> %s: replayed", referrer_ref, referee_ref)
        else:
            logger.info(
                "Referral %s -> %s: +%s / +%s pts",
                referrer_ref,
                referee_ref,
                referrer_points,
                referee_points,
            )
        return award

    # ======================================================================
    # Birthdays
    # ======================================================================

    @classmethod
    def set_birthday(cls, user_ref: str, birthday) -> date:
        """
        Store the user's birthday (a date or ``YYYY-MM-DD``).

        Raises:
            ValidationError: INVALID_BIRTHDAY for unparsable or future dates
        """
        user_ref = LedgerService.validate_user_ref(user_ref)
        if isinstance(birthday, datetime):
            birthday = birthday.date()
        if isinstance(birthday, str):
            try:
                birthday = date.fromisoformat(birthday.strip())
            except ValueError:
                raise ValidationError("INVALID_BIRTHDAY", birthday=birthday)
        if not isinstance(birthday, date) or birthday > timezone.now().date():
            raise ValidationError("INVALID_BIRTHDAY", birthday=str(birthday))

        def attempt():
            projection = LedgerService.lock_projection(user_ref)
            BalanceProjection.objects.filter(pk=projection.pk).update(birthday=birthday)

        atomic_with_retry(attempt, operation="set_birthday")
        logger.info("Birthday set for %s", user_ref)
        return birthday

    @classmethod
    def award_birthday(cls, user_ref: str, now=None) -> BonusAward:
        """
        Credit BIRTHDAY_BONUS_POINTS on the user's birthday (UTC day).

        Once per calendar year; a repeat returns the original award.

        Raises:
            ValidationError: NOT_BIRTHDAY when no birthday is stored or
                today is not the birthday
        """
        user_ref = LedgerService.validate_user_ref(user_ref)
        now = now or timezone.now()
        today = date.fromisoformat(day_key(now))
        points = rewardman_settings.BIRTHDAY_BONUS_POINTS
        key = _birthday_key(user_ref, today.year)

        def attempt() -> BonusAward:
            existing = LedgerEntry.objects.filter(kind=EntryKind.BIRTHDAY_BONUS, source_key=key).first()
            if existing is not None:
                return BonusAward.from_entry(existing)

            projection = LedgerService.get_projection(user_ref)
            if projection is None or projection.birthday is None or not is_birthday(projection.birthday, today):
                raise ValidationError("NOT_BIRTHDAY", user_ref=user_ref, day=today.isoformat())

            return cls._credit(
                user_ref,
                EntryKind.BIRTHDAY_BONUS,
                points,
                BirthdayBonusPayload(year=today.year, birthday=projection.birthday.strftime("%m-%d")),
                key,
                now,
            )

        award = atomic_with_retry(attempt, operation="award_birthday")
        if not award.replayed:
            logger.info("Birthday bonus: +%s pts for %s", points, user_ref)
        return award

    @classmethod
    def birthdays_on(cls, today: date):
        """Projections whose birthday falls on ``today``."""
        match = Q(birthday__month=today.month, birthday__day=today.day)
        if (today.month, today.day) == (2, 28) and not calendar.isleap(today.year):
            match |= Q(birthday__month=2, birthday__day=29)
        return BalanceProjection.objects.filter(match).order_by("id")

    @classmethod
    def run_birthdays(cls, now=None) -> BirthdayReport:
        """
        Award every birthday due today. Run daily through
        ``manage.py rewardman_birthday_bonuses``.

        A failure for one user is logged and counted; the others still run.
        """
        now = now or timezone.now()
        today = date.fromisoformat(day_key(now))
        report = BirthdayReport(day=today.isoformat())

        for user_ref in cls.birthdays_on(today).values_list("user_ref", flat=True):
            try:
                award = cls.award_birthday(user_ref, now=now)
            except RewardmanError:
                logger.exception("Birthday bonus failed for %s", user_ref)
                report.failed += 1
                continue
            if award.replayed:
                report.already_awarded += 1
            else:
                report.users_awarded += 1
                report.points_awarded += award.points_awarded

        logger.info(
            "Birthday bonuses %s: %s awarded, %s already awarded, %s failed",
            report.day,
            report.users_awarded,
            report.already_awarded,
            report.failed,
        )
        return report
