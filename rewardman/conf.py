"""
Rewardman configuration.

Usage in settings.py:
    REWARDMAN = {
        "EARN_RATE": Decimal("0.10"),
        "POINTS_TTL_DAYS": 30,
        "REWARD_CATALOG_BACKEND": "rewardman.adapters.catalog.DatabaseRewardCatalog",
    }
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.conf import settings


def _default_tier_thresholds() -> list[tuple[int, str]]:
    return [
        (0, "bronze"),
        (500, "silver"),
        (2000, "gold"),
        (5000, "platinum"),
    ]


def _default_spin_table() -> list[dict[str, Any]]:
    return [
        {"label": "5_points", "points": 5, "probability": 0.40},
        {"label": "10_points", "points": 10, "probability": 0.30},
        {"label": "20_points", "points": 20, "probability": 0.20},
        {"label": "25_points", "points": 25, "probability": 0.08},
        {"label": "jackpot", "points": 50, "probability": 0.02, "jackpot": True},
    ]


def _default_rate_limits() -> dict[str, tuple[int, int]]:
    # action -> (max requests, window in seconds)
    return {
        "award": (10, 60),
        "redeem": (5, 3600),
        "spin": (10, 60),
        "referral": (5, 3600),
    }


@dataclass
class RewardmanSettings:
    """Rewardman configuration settings."""

    # Earning
    EARN_RATE: Decimal = Decimal("0.10")
    POINTS_TTL_DAYS: int = 30

    # Tiers: ascending (lifetime points threshold, tier) pairs
    TIER_THRESHOLDS: list = field(default_factory=_default_tier_thresholds)

    # Daily spin
    SPIN_TABLE: list = field(default_factory=_default_spin_table)
    JACKPOT_PROBABILITY_CEILING: float = 0.02
    SPIN_EXPECTED_VALUE_CEILING: float = 15.0

    # Bonuses
    REFERRAL_BONUS_REFERRER: int = 200
    REFERRAL_BONUS_REFEREE: int = 100
    BIRTHDAY_BONUS_POINTS: int = 100

    # Ledger
    MAX_TRANSACTION_RETRIES: int = 3
    HISTORY_MAX_LIMIT: int = 100
    ADMIN_ADJUSTMENT_LIMIT: int = 10000

    # Redemptions
    REDEMPTION_TTL_DAYS: int = 30
    REWARD_CATALOG_BACKEND: str = "rewardman.adapters.catalog.DatabaseRewardCatalog"
    REWARD_CATALOG: list = field(default_factory=list)

    # Payout monitoring
    POINT_CASH_VALUE: Decimal = Decimal("0.10")
    TARGET_GIVEBACK_RATE: Decimal = Decimal("0.08")
    LIABILITY_ALERT_THRESHOLD: Decimal = Decimal("10000")
    REPORT_CACHE_TTL: int = 300

    # Cache and request gates
    CACHE_ALIAS: str = "default"
    RATE_LIMITS: dict = field(default_factory=_default_rate_limits)
    ORDER_WEBHOOK_SECRET: str = ""

    # IdempotencyRecord cleanup
    IDEMPOTENCY_RETENTION_DAYS: int = 90


def get_rewardman_settings() -> RewardmanSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "REWARDMAN", {})
    return RewardmanSettings(**user_settings)


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_rewardman_settings(), name)


rewardman_settings = _LazySettings()
