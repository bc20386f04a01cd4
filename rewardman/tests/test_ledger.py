"""Tests for LedgerService: append primitive, reads and admin adjustments."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction

from rewardman.exceptions import ConcurrencyConflict, InsufficientBalanceError, ValidationError
from rewardman.models import BalanceProjection, LedgerEntry
from rewardman.payloads import AdminAdjustmentPayload, EntryKind, OrderEarnPayload, SpinAwardPayload
from rewardman.services.ledger import LedgerService

pytestmark = pytest.mark.django_db


def _append(user_ref, kind, delta, payload, **kwargs):
    with transaction.atomic():
        projection = LedgerService.lock_projection(user_ref)
        entry = LedgerService.append(projection, kind=kind, delta=delta, payload=payload, **kwargs)
    return entry, projection


def _spin_payload(day="2026-03-14"):
    return SpinAwardPayload(day_key=day, outcome_label="10_points")


# ═══════════════════════════════════════════════════════════════════
# Append primitive
# ═══════════════════════════════════════════════════════════════════


class TestAppend:
    def test_credit_updates_projection(self, user_ref):
        entry, projection = _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="s1")

        assert entry.balance_after == 10
        assert projection.points == 10
        assert projection.lifetime_points == 10
        assert projection.version == 1

    def test_balance_after_tracks_running_sum(self, user_ref):
        _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload("2026-03-14"), source_key="s1")
        entry, _ = _append(user_ref, EntryKind.SPIN_AWARD, 25, _spin_payload("2026-03-15"), source_key="s2")
        assert entry.balance_after == 35
        assert sum(LedgerEntry.objects.filter(user_ref=user_ref).values_list("delta", flat=True)) == 35

    def test_adjustments_do_not_count_as_lifetime(self, user_ref):
        _, projection = _append(
            user_ref,
            EntryKind.ADMIN_ADJUSTMENT,
            700,
            AdminAdjustmentPayload(reason="goodwill"),
        )
        assert projection.points == 700
        assert projection.lifetime_points == 0
        assert projection.tier == "bronze"

    def test_debit_beyond_balance_rejected(self, user_ref):
        _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="s1")
        with pytest.raises(InsufficientBalanceError) as exc:
            _append(user_ref, EntryKind.ADMIN_ADJUSTMENT, -11, AdminAdjustmentPayload(reason="x"))
        assert exc.value.data == {"balance": 10, "required": 11}
        assert BalanceProjection.objects.get(user_ref=user_ref).points == 10

    def test_stale_version_conflicts(self, user_ref):
        _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="s1")
        with pytest.raises(ConcurrencyConflict):
            with transaction.atomic():
                projection = LedgerService.lock_projection(user_ref)
                projection.version -= 1
                LedgerService.append(
                    projection,
                    kind=EntryKind.ADMIN_ADJUSTMENT,
                    delta=5,
                    payload=AdminAdjustmentPayload(reason="x"),
                )
        assert LedgerEntry.objects.filter(user_ref=user_ref).count() == 1

    def test_duplicate_source_key_rejected(self, user_ref):
        _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="spin:dup")
        with pytest.raises(IntegrityError):
            _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="spin:dup")
        # Whole unit rolled back, projection untouched
        assert BalanceProjection.objects.get(user_ref=user_ref).points == 10

    def test_payload_must_match_kind(self, user_ref):
        with pytest.raises(TypeError):
            _append(user_ref, EntryKind.ORDER_EARN, 10, _spin_payload(), source_key="o1")

    def test_payload_round_trip(self, user_ref):
        payload = OrderEarnPayload(order_id="o1", subtotal="100.00", earn_rate="0.10")
        entry, _ = _append(user_ref, EntryKind.ORDER_EARN, 10, payload, source_key="o1")
        entry.refresh_from_db()
        assert entry.payload == payload

    def test_non_negative_constraint(self, user_ref):
        _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="s1")
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                BalanceProjection.objects.filter(user_ref=user_ref).update(points=-1)


class TestImmutability:
    def test_entries_cannot_be_edited(self, user_ref):
        entry, _ = _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="s1")
        entry.delta = 1000
        with pytest.raises(ValueError, match="immutable"):
            entry.save()

    def test_only_expired_at_is_writable(self, user_ref, noon):
        entry, _ = _append(user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(), source_key="s1")
        entry.expired_at = noon
        entry.save(update_fields=["expired_at"])
        entry.refresh_from_db()
        assert entry.is_expired


# ═══════════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════════


class TestGetBalance:
    def test_unknown_user_gets_zero_bronze(self, user_ref):
        summary = LedgerService.get_balance(user_ref)
        assert summary.points == 0
        assert summary.tier == "bronze"
        assert summary.next_tier == "silver"
        assert summary.points_to_next_tier == 500
        assert not BalanceProjection.objects.exists()

    def test_reflects_projection(self, user_ref):
        _append(
            user_ref,
            EntryKind.ORDER_EARN,
            25,
            OrderEarnPayload(order_id="o1", subtotal="250.00", earn_rate="0.10"),
            source_key="o1",
            orders_delta=1,
            spent_delta=Decimal("250.00"),
        )
        summary = LedgerService.get_balance(user_ref)
        assert summary.points == 25
        assert summary.orders_count == 1
        assert summary.total_spent == Decimal("250.00")
        assert summary.as_dict()["total_spent"] == "250.00"

    def test_expiring_points_soonest_first(self, user_ref, noon):
        late, _ = _append(
            user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload("2026-03-14"),
            source_key="s1", expires_at=noon + timedelta(days=90),
        )
        _append(
            user_ref, EntryKind.SPIN_AWARD, 20, _spin_payload("2026-03-15"),
            source_key="s2", expires_at=noon + timedelta(days=30),
        )
        _append(
            user_ref, EntryKind.SPIN_AWARD, 5, _spin_payload("2026-03-16"),
            source_key="s3", expires_at=noon - timedelta(days=1),
        )
        _append(user_ref, EntryKind.ADMIN_ADJUSTMENT, 50, AdminAdjustmentPayload(reason="goodwill"))

        summary = LedgerService.get_balance(user_ref, now=noon)

        assert [lot.amount for lot in summary.expiring_points] == [20, 10]
        assert summary.expiring_points[1].expires_at == late.expires_at
        assert summary.as_dict()["expiring_points"][0] == {
            "amount": 20,
            "expires_at": (noon + timedelta(days=30)).isoformat(),
        }

    def test_expired_lots_not_listed(self, user_ref, noon):
        entry, _ = _append(
            user_ref, EntryKind.SPIN_AWARD, 10, _spin_payload(),
            source_key="s1", expires_at=noon + timedelta(days=5),
        )
        entry.expired_at = noon
        entry.save(update_fields=["expired_at"])

        assert LedgerService.get_balance(user_ref, now=noon).expiring_points == ()

    def test_blank_user_rejected(self):
        with pytest.raises(ValidationError) as exc:
            LedgerService.get_balance("  ")
        assert exc.value.code == "INVALID_USER"


class TestHistory:
    @pytest.fixture
    def entries(self, user_ref, fund):
        for _ in range(5):
            fund(user_ref, 10)
        fund("someone-else", 10)

    def test_most_recent_first(self, user_ref, entries):
        page = LedgerService.history(user_ref)
        balances = [e.balance_after for e in page.entries]
        assert balances == [50, 40, 30, 20, 10]
        assert page.next_cursor is None

    def test_cursor_pagination(self, user_ref, entries):
        first = LedgerService.history(user_ref, limit=2)
        second = LedgerService.history(user_ref, limit=2, cursor=first.next_cursor)
        third = LedgerService.history(user_ref, limit=2, cursor=second.next_cursor)

        assert [e.balance_after for e in first.entries] == [50, 40]
        assert [e.balance_after for e in second.entries] == [30, 20]
        assert [e.balance_after for e in third.entries] == [10]
        assert third.next_cursor is None

    def test_limit_clamped(self, user_ref, entries, settings):
        settings.REWARDMAN = {"HISTORY_MAX_LIMIT": 3}
        assert len(LedgerService.history(user_ref, limit=500).entries) == 3
        assert len(LedgerService.history(user_ref, limit=0).entries) == 1

    def test_malformed_cursor(self, user_ref):
        with pytest.raises(ValidationError) as exc:
            LedgerService.history(user_ref, cursor="not-a-cursor")
        assert exc.value.code == "INVALID_CURSOR"


# ═══════════════════════════════════════════════════════════════════
# Admin adjustments
# ═══════════════════════════════════════════════════════════════════


class TestAdminAdjust:
    def test_credit_and_debit(self, user_ref):
        LedgerService.admin_adjust(user_ref, 200, reason="compensation", actor="ops@example.com")
        result = LedgerService.admin_adjust(user_ref, -50, reason="correction")

        assert result.new_balance == 150
        entry = LedgerEntry.objects.filter(user_ref=user_ref).first()
        assert entry.kind == EntryKind.ADMIN_ADJUSTMENT
        assert entry.payload.balance_before == 200
        assert entry.payload.reason == "correction"

    def test_overdraw_refused(self, user_ref, fund):
        fund(user_ref, 30)
        with pytest.raises(InsufficientBalanceError):
            LedgerService.admin_adjust(user_ref, -31, reason="too much")
        assert LedgerService.get_balance(user_ref).points == 30

    @pytest.mark.parametrize("delta", [0, 10001, -10001, 1.5, True])
    def test_invalid_delta(self, user_ref, delta):
        with pytest.raises(ValidationError) as exc:
            LedgerService.admin_adjust(user_ref, delta, reason="x")
        assert exc.value.code == "INVALID_ADJUSTMENT"

    def test_reason_required(self, user_ref):
        with pytest.raises(ValidationError):
            LedgerService.admin_adjust(user_ref, 10, reason="  ")

    def test_lifetime_points_never_decrease(self, user_ref):
        _append(user_ref, EntryKind.SPIN_AWARD, 50, _spin_payload(), source_key="s1")
        LedgerService.admin_adjust(user_ref, -50, reason="clawback")
        projection = BalanceProjection.objects.get(user_ref=user_ref)
        assert projection.points == 0
        assert projection.lifetime_points == 50
