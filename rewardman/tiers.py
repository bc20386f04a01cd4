"""
Tier calculator.

Pure function of lifetime points. Thresholds are inclusive lower bounds, so a
user sitting exactly on a threshold already holds the higher tier. The last
tier is the ceiling and has no further progression.
"""

from dataclasses import dataclass

from django.db import models
from django.utils.translation import gettext_lazy as _

from rewardman.exceptions import ValidationError


class Tier(models.TextChoices):
    """Loyalty tiers."""

    BRONZE = "bronze", _("Bronze")
    SILVER = "silver", _("Silver")
    GOLD = "gold", _("Gold")
    PLATINUM = "platinum", _("Platinum")


@dataclass(frozen=True)
class TierStatus:
    """Tier and progress toward the next one."""

    tier: str
    next_tier: str | None
    points_to_next_tier: int


def validate_thresholds(thresholds) -> list[tuple[int, str]]:
    """Return thresholds as a list of (points, tier), checking they ascend from 0."""
    pairs = [(int(points), str(tier)) for points, tier in thresholds]
    if not pairs or pairs[0][0] != 0:
        raise ValueError("Tier thresholds must start at 0")
    for (low, _tier), (high, _next) in zip(pairs, pairs[1:]):
        if high <= low:
            raise ValueError(f"Tier thresholds must be strictly ascending ({low} >= {high})")
    return pairs


def calculate_tier(lifetime_points: int, thresholds=None) -> TierStatus:
    """
    Map lifetime points to a tier.

    Args:
        lifetime_points: Lifetime earned points (>= 0)
        thresholds: Ascending (points, tier) pairs; defaults to TIER_THRESHOLDS

    Returns:
        TierStatus with the current tier, the next tier (None at the ceiling)
        and the points still missing to reach it.
    """
    if thresholds is None:
        from rewardman.conf import rewardman_settings

        thresholds = rewardman_settings.TIER_THRESHOLDS
    pairs = validate_thresholds(thresholds)

    if lifetime_points < 0:
        raise ValidationError("INVALID_POINTS", lifetime_points=lifetime_points)

    index = 0
    for i, (threshold, _tier) in enumerate(pairs):
        if lifetime_points >= threshold:
            index = i

    tier = pairs[index][1]
    if index + 1 < len(pairs):
        next_threshold, next_tier = pairs[index + 1]
        return TierStatus(tier, next_tier, next_threshold - lifetime_points)
    return TierStatus(tier, None, 0)


def tier_rank(tier: str, thresholds=None) -> int:
    """Position of ``tier`` on the ladder (0 = lowest); -1 if unknown."""
    if thresholds is None:
        from rewardman.conf import rewardman_settings

        thresholds = rewardman_settings.TIER_THRESHOLDS
    names = [name for _points, name in validate_thresholds(thresholds)]
    return names.index(tier) if tier in names else -1
