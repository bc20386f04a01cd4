"""Tests for BonusService: referral and birthday bonuses."""

from datetime import date, datetime, timedelta, timezone
from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from rewardman.exceptions import ValidationError
from rewardman.models import BalanceProjection, LedgerEntry
from rewardman.payloads import EntryKind
from rewardman.services.bonuses import BonusService, is_birthday
from rewardman.services.expiration import ExpirationSweep
from rewardman.services.ledger import LedgerService
from rewardman.signals import bonus_awarded

pytestmark = pytest.mark.django_db


# ═══════════════════════════════════════════════════════════════════
# Referrals
# ═══════════════════════════════════════════════════════════════════


class TestReferralCode:
    def test_issued_once(self, user_ref):
        code = BonusService.referral_code(user_ref)
        assert code.startswith("RF")
        assert BonusService.referral_code(user_ref) == code
        assert BalanceProjection.objects.get(user_ref=user_ref).referral_code == code

    def test_issuing_a_code_moves_no_points(self, user_ref):
        BonusService.referral_code(user_ref)
        assert LedgerService.get_balance(user_ref).points == 0
        assert not LedgerEntry.objects.exists()


class TestApplyReferral:
    @pytest.fixture
    def code(self):
        return BonusService.referral_code("alice")

    def test_both_sides_credited(self, code):
        award = BonusService.apply_referral("bob", code)

        assert award.replayed is False
        assert award.referrer.user_ref == "alice"
        assert award.referrer.points_awarded == 200
        assert award.referee.user_ref == "bob"
        assert award.referee.points_awarded == 100

        alice = LedgerService.get_balance("alice")
        bob = LedgerService.get_balance("bob")
        assert (alice.points, alice.lifetime_points) == (200, 200)
        assert (bob.points, bob.lifetime_points) == (100, 100)
        assert BalanceProjection.objects.get(user_ref="bob").referred_by == "alice"

    def test_code_is_case_insensitive(self, code):
        award = BonusService.apply_referral("bob", f"  {code.lower()} ")
        assert award.referrer.user_ref == "alice"

    def test_bonus_entries_do_not_expire(self, code, noon):
        BonusService.apply_referral("bob", code, now=noon)

        assert LedgerEntry.objects.filter(kind=EntryKind.REFERRAL_BONUS, expires_at__isnull=False).count() == 0
        ExpirationSweep.run(now=noon + timedelta(days=400))
        assert LedgerService.get_balance("bob").points == 100

    def test_same_referral_replays(self, code):
        first = BonusService.apply_referral("bob", code)
        second = BonusService.apply_referral("bob", code)

        assert second.replayed is True
        assert second.referee.entry_id == first.referee.entry_id
        assert second.referrer.new_balance == first.referrer.new_balance == 200
        assert LedgerEntry.objects.filter(kind=EntryKind.REFERRAL_BONUS).count() == 2
        assert LedgerService.get_balance("alice").points == 200

    def test_second_referrer_refused(self, code):
        BonusService.apply_referral("bob", code)
        other = BonusService.referral_code("carol")

        with pytest.raises(ValidationError) as exc:
            BonusService.apply_referral("bob", other)

        assert exc.value.code == "ALREADY_REFERRED"
        assert LedgerService.get_balance("carol").points == 0

    def test_self_referral(self, code):
        with pytest.raises(ValidationError) as exc:
            BonusService.apply_referral("alice", code)
        assert exc.value.code == "SELF_REFERRAL"
        assert not LedgerEntry.objects.exists()

    @pytest.mark.parametrize("bad", ["", "RFNOPE", None, 42])
    def test_invalid_code(self, bad):
        with pytest.raises(ValidationError) as exc:
            BonusService.apply_referral("bob", bad)
        assert exc.value.code == "INVALID_REFERRAL_CODE"

    def test_configured_amounts(self, code, settings):
        settings.REWARDMAN = {"REFERRAL_BONUS_REFERRER": 50, "REFERRAL_BONUS_REFEREE": 25}
        award = BonusService.apply_referral("bob", code)
        assert (award.referrer.points_awarded, award.referee.points_awarded) == (50, 25)

    def test_can_lift_tier(self, code, settings):
        settings.REWARDMAN = {"REFERRAL_BONUS_REFERRER": 500}
        award = BonusService.apply_referral("bob", code)
        assert award.referrer.tier == "silver"
        assert award.referrer.tier_changed is True

    def test_signal_per_side(self, code, django_capture_on_commit_callbacks):
        received = []

        def handler(sender, **kwargs):
            received.append((kwargs["user_ref"], kwargs["points"], kwargs["kind"]))

        bonus_awarded.connect(handler)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                BonusService.apply_referral("bob", code)
        finally:
            bonus_awarded.disconnect(handler)

        assert sorted(received) == [
            ("alice", 200, EntryKind.REFERRAL_BONUS),
            ("bob", 100, EntryKind.REFERRAL_BONUS),
        ]


# ═══════════════════════════════════════════════════════════════════
# Birthdays
# ═══════════════════════════════════════════════════════════════════


class TestIsBirthday:
    @pytest.mark.parametrize(
        "birthday, today, expected",
        [
            (date(1990, 3, 14), date(2026, 3, 14), True),
            (date(1990, 3, 14), date(2026, 3, 15), False),
            (date(2000, 2, 29), date(2026, 2, 28), True),
            (date(2000, 2, 29), date(2028, 2, 28), False),
            (date(2000, 2, 29), date(2028, 2, 29), True),
        ],
    )
    def test_matching(self, birthday, today, expected):
        assert is_birthday(birthday, today) is expected


class TestSetBirthday:
    def test_accepts_iso_string(self, user_ref):
        assert BonusService.set_birthday(user_ref, "1990-03-14") == date(1990, 3, 14)
        assert BalanceProjection.objects.get(user_ref=user_ref).birthday == date(1990, 3, 14)

    @pytest.mark.parametrize("bad", ["14/03/1990", "", None, "2999-01-01"])
    def test_invalid(self, user_ref, bad):
        with pytest.raises(ValidationError) as exc:
            BonusService.set_birthday(user_ref, bad)
        assert exc.value.code == "INVALID_BIRTHDAY"


class TestAwardBirthday:
    def test_awarded_on_the_day(self, user_ref, noon):
        BonusService.set_birthday(user_ref, date(1990, 3, 14))

        award = BonusService.award_birthday(user_ref, now=noon)

        assert award.points_awarded == 100
        assert award.new_balance == 100
        entry = LedgerEntry.objects.get(kind=EntryKind.BIRTHDAY_BONUS)
        assert entry.source_key == f"birthday:{user_ref}:2026"
        assert entry.payload.birthday == "03-14"
        assert entry.expires_at is None
        assert LedgerService.get_balance(user_ref).lifetime_points == 100

    def test_once_per_year(self, user_ref, noon):
        BonusService.set_birthday(user_ref, date(1990, 3, 14))
        first = BonusService.award_birthday(user_ref, now=noon)
        again = BonusService.award_birthday(user_ref, now=noon + timedelta(hours=3))

        assert again.replayed is True
        assert again.entry_id == first.entry_id
        assert LedgerService.get_balance(user_ref).points == 100

        next_year = BonusService.award_birthday(user_ref, now=noon.replace(year=2027))
        assert next_year.replayed is False
        assert LedgerService.get_balance(user_ref).points == 200

    def test_not_the_birthday(self, user_ref, noon):
        BonusService.set_birthday(user_ref, date(1990, 7, 1))
        with pytest.raises(ValidationError) as exc:
            BonusService.award_birthday(user_ref, now=noon)
        assert exc.value.code == "NOT_BIRTHDAY"
        assert not LedgerEntry.objects.exists()

    def test_no_birthday_stored(self, user_ref, noon):
        with pytest.raises(ValidationError) as exc:
            BonusService.award_birthday(user_ref, now=noon)
        assert exc.value.code == "NOT_BIRTHDAY"
        assert not BalanceProjection.objects.exists()


class TestRunBirthdays:
    @pytest.fixture
    def members(self):
        BonusService.set_birthday("ana", date(1990, 3, 14))
        BonusService.set_birthday("ben", date(1985, 3, 14))
        BonusService.set_birthday("cy", date(1992, 8, 2))

    def test_awards_todays_birthdays(self, members, noon):
        report = BonusService.run_birthdays(now=noon)

        assert report.day == "2026-03-14"
        assert report.users_awarded == 2
        assert report.points_awarded == 200
        assert LedgerService.get_balance("cy").points == 0

    def test_rerun_awards_nothing_new(self, members, noon):
        BonusService.run_birthdays(now=noon)
        report = BonusService.run_birthdays(now=noon)

        assert report.users_awarded == 0
        assert report.already_awarded == 2
        assert LedgerEntry.objects.filter(kind=EntryKind.BIRTHDAY_BONUS).count() == 2

    def test_leap_day_birthday_in_common_year(self):
        BonusService.set_birthday("lea", date(2000, 2, 29))
        report = BonusService.run_birthdays(now=datetime(2026, 2, 28, 12, tzinfo=timezone.utc))
        assert report.users_awarded == 1

    def test_command(self, members):
        out = StringIO()
        call_command("rewardman_birthday_bonuses", "--date", "2026-03-14", stdout=out)
        assert "Birthday bonuses 2026-03-14: 2 awarded (200 points)" in out.getvalue()

    def test_command_bad_date(self):
        with pytest.raises(CommandError):
            call_command("rewardman_birthday_bonuses", "--date", "14-03-2026", stdout=StringIO())
