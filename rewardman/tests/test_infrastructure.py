"""Tests for errors, settings, payloads, idempotency and the transaction helper."""

from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock

import pytest
from django.core.management import CommandError, call_command
from django.db import IntegrityError, OperationalError
from django.utils import timezone

from rewardman.conf import get_rewardman_settings, rewardman_settings
from rewardman.exceptions import (
    ConcurrencyConflict,
    CooldownError,
    InsufficientBalanceError,
    RewardmanError,
    StoreUnavailable,
    ValidationError,
)
from rewardman.idempotency import IdempotencyGuard
from rewardman.models import IdempotencyRecord
from rewardman.payloads import EntryKind, ExpirationPayload, decode, encode, payload_type
from rewardman.transactions import atomic_with_retry


class TestExceptions:
    def test_default_message(self):
        exc = InsufficientBalanceError(balance=10, required=100)
        assert exc.code == "INSUFFICIENT_BALANCE"
        assert exc.message == "Insufficient points for redemption"
        assert str(exc) == "[INSUFFICIENT_BALANCE] Insufficient points for redemption"

    def test_as_dict(self):
        exc = CooldownError(next_reset_at="2026-03-15T00:00:00+00:00")
        assert exc.as_dict() == {
            "code": "SPIN_COOLDOWN",
            "message": "Daily spin already used",
            "data": {"next_reset_at": "2026-03-15T00:00:00+00:00"},
        }

    def test_custom_code_and_message(self):
        exc = ValidationError("INVALID_CURSOR", message="bad cursor")
        assert exc.code == "INVALID_CURSOR"
        assert exc.message == "bad cursor"

    @pytest.mark.parametrize(
        "cls,status",
        [
            (ValidationError, 400),
            (CooldownError, 429),
            (InsufficientBalanceError, 409),
            (ConcurrencyConflict, 503),
            (StoreUnavailable, 503),
        ],
    )
    def test_http_status(self, cls, status):
        assert cls.http_status == status
        assert issubclass(cls, RewardmanError)


class TestSettings:
    def test_defaults(self):
        conf = get_rewardman_settings()
        assert conf.EARN_RATE == Decimal("0.10")
        assert conf.POINTS_TTL_DAYS == 30
        assert conf.MAX_TRANSACTION_RETRIES == 3

    def test_lazy_proxy_rereads(self, settings):
        settings.REWARDMAN = {"POINTS_TTL_DAYS": 60}
        assert rewardman_settings.POINTS_TTL_DAYS == 60

    def test_unknown_key_rejected(self, settings):
        settings.REWARDMAN = {"NOT_A_SETTING": 1}
        with pytest.raises(TypeError):
            get_rewardman_settings()


class TestPayloads:
    def test_every_kind_has_a_payload(self):
        for kind in EntryKind.values:
            assert payload_type(kind)

    def test_encode_checks_kind(self):
        payload = ExpirationPayload(source_entry_id="x", source_kind="order_earn", requested=5, applied=5)
        assert encode(EntryKind.EXPIRATION, payload)["applied"] == 5
        with pytest.raises(TypeError):
            encode(EntryKind.REDEMPTION, payload)

    def test_decode_ignores_unknown_keys(self):
        payload = decode(EntryKind.SPIN_AWARD, {"day_key": "2026-03-14", "outcome_label": "jackpot", "extra": 1})
        assert payload.outcome_label == "jackpot"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            payload_type("bonus")


@pytest.mark.django_db
class TestIdempotencyGuard:
    def test_new_then_replay(self):
        assert IdempotencyGuard.acquire_or_replay("order_earn", "k1").is_new
        IdempotencyGuard.record("order_earn", "k1", "user-1", {"points_awarded": 5})

        replay = IdempotencyGuard.acquire_or_replay("order_earn", "k1")
        assert not replay.is_new
        assert replay.prior_result == {"points_awarded": 5}
        assert replay.user_ref == "user-1"

    def test_scopes_are_separate(self):
        IdempotencyGuard.record("order_earn", "k1", "user-1", {})
        assert IdempotencyGuard.acquire_or_replay("redemption", "k1").is_new

    def test_duplicate_record_collides(self):
        IdempotencyGuard.record("order_earn", "k1", "user-1", {})
        with pytest.raises(IntegrityError):
            IdempotencyGuard.record("order_earn", "k1", "user-1", {})

    @pytest.mark.parametrize("key", ["", "   ", None, 42, "k" * 256])
    def test_invalid_keys(self, key):
        with pytest.raises(ValidationError):
            IdempotencyGuard.validate_key(key)


@pytest.mark.django_db
class TestAtomicWithRetry:
    def test_returns_value(self):
        assert atomic_with_retry(lambda: 7, operation="test") == 7

    def test_retries_integrity_error(self):
        fn = MagicMock(side_effect=[IntegrityError("dup"), "ok"])
        assert atomic_with_retry(fn, operation="test") == "ok"
        assert fn.call_count == 2

    def test_exhaustion(self):
        fn = MagicMock(side_effect=ConcurrencyConflict())
        with pytest.raises(ConcurrencyConflict) as exc:
            atomic_with_retry(fn, operation="test", retries=2)
        assert fn.call_count == 2
        assert exc.value.data == {"operation": "test", "attempts": 2, "retryable": True}

    def test_database_error_becomes_store_unavailable(self):
        fn = MagicMock(side_effect=OperationalError("database is locked"))
        with pytest.raises(StoreUnavailable):
            atomic_with_retry(fn, operation="test")
        assert fn.call_count == 1

    def test_domain_errors_not_retried(self):
        fn = MagicMock(side_effect=InsufficientBalanceError(balance=0, required=1))
        with pytest.raises(InsufficientBalanceError):
            atomic_with_retry(fn, operation="test")
        assert fn.call_count == 1


@pytest.mark.django_db
class TestCleanupCommand:
    def test_removes_old_records(self):
        old = IdempotencyRecord.objects.create(scope="order_earn", key="old", user_ref="u")
        IdempotencyRecord.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=100))
        IdempotencyRecord.objects.create(scope="order_earn", key="new", user_ref="u")
        out = StringIO()

        call_command("rewardman_cleanup", stdout=out)

        assert "Deleted 1 idempotency records older than 90 days." in out.getvalue()
        assert list(IdempotencyRecord.objects.values_list("key", flat=True)) == ["new"]

    def test_days_override(self):
        IdempotencyRecord.objects.create(scope="order_earn", key="k", user_ref="u")
        IdempotencyRecord.objects.filter(key="k").update(created_at=timezone.now() - timedelta(days=2))

        call_command("rewardman_cleanup", "--days", "1", stdout=StringIO())

        assert not IdempotencyRecord.objects.exists()

    def test_scope_filter(self):
        for scope in ("order_earn", "redemption"):
            IdempotencyRecord.objects.create(scope=scope, key="k", user_ref="u")
        IdempotencyRecord.objects.update(created_at=timezone.now() - timedelta(days=100))

        call_command("rewardman_cleanup", "--scope", "redemption", stdout=StringIO())

        assert list(IdempotencyRecord.objects.values_list("scope", flat=True)) == ["order_earn"]

    def test_dry_run_keeps_records(self):
        IdempotencyRecord.objects.create(scope="order_earn", key="k", user_ref="u")
        IdempotencyRecord.objects.update(created_at=timezone.now() - timedelta(days=100))
        out = StringIO()

        call_command("rewardman_cleanup", "--dry-run", stdout=out)

        assert "1 idempotency records older than 90 days would be deleted." in out.getvalue()
        assert IdempotencyRecord.objects.count() == 1

    def test_days_must_be_positive(self):
        with pytest.raises(CommandError):
            call_command("rewardman_cleanup", "--days", "0", stdout=StringIO())
