"""Pytest fixtures for Rewardman tests."""

import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from django.core.cache import cache

from rewardman.models import Reward
from rewardman.services.ledger import LedgerService


@pytest.fixture(autouse=True)
def _clear_cache():
    """Rate-limit windows and cached reports must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def user_ref():
    return "user-42"


@pytest.fixture
def noon():
    """A fixed aware instant (UTC midday)."""
    return datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def rng():
    return random.Random(20260314)


@pytest.fixture
def fund(db):
    """Give a user spendable points (admin adjustment, no lifetime credit)."""

    def _fund(user_ref: str, points: int):
        return LedgerService.admin_adjust(user_ref, points, reason="test funding", actor="tests")

    return _fund


@pytest.fixture
def reward_free_drink(db):
    return Reward.objects.create(
        code="free_drink",
        name="Free Drink",
        category="food",
        points_cost=100,
        cogs=Decimal("1.50"),
    )


@pytest.fixture
def reward_sixty(db):
    """Reward sized for the two-redemptions-on-100-points scenario."""
    return Reward.objects.create(
        code="free_side",
        name="Free Side",
        category="food",
        points_cost=60,
        cogs=Decimal("1.00"),
    )


@pytest.fixture
def reward_tshirt(db):
    return Reward.objects.create(
        code="broski_tshirt",
        name="T-Shirt",
        category="merchandise",
        points_cost=800,
        cogs=Decimal("6.00"),
        min_tier="silver",
    )


@pytest.fixture
def reward_big_order(db):
    return Reward.objects.create(
        code="20_percent_off",
        name="20% Off Next Order",
        points_cost=300,
        cogs=Decimal("5.00"),
        min_order_subtotal=Decimal("40.00"),
    )


@pytest.fixture
def reward_inactive(db):
    return Reward.objects.create(
        code="retired_combo",
        name="Retired Combo",
        points_cost=50,
        is_active=False,
    )
