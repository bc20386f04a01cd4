"""Reward catalog protocol for cross-app communication."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RewardInfo:
    """Catalog view of one reward, as consumed by redemptions."""

    reward_id: str
    name: str
    points_cost: int
    is_active: bool = True
    min_order_subtotal: Decimal | None = None
    min_tier: str = ""
    cogs: Decimal = Decimal("0")
    category: str = ""

    def as_dict(self) -> dict:
        return {
            "reward_id": self.reward_id,
            "name": self.name,
            "points_cost": self.points_cost,
            "is_active": self.is_active,
            "min_order_subtotal": str(self.min_order_subtotal) if self.min_order_subtotal is not None else None,
            "min_tier": self.min_tier,
            "category": self.category,
        }


@runtime_checkable
class RewardCatalogBackend(Protocol):
    """
    Protocol for read-only reward catalog lookups.

    Used by RedemptionService to price and validate redemptions.
    Implemented by adapters/catalog.py.

    Configuration in settings.py:
        REWARDMAN = {
            "REWARD_CATALOG_BACKEND": "rewardman.adapters.catalog.DatabaseRewardCatalog",
        }
    """

    def get_reward(self, reward_id: str) -> RewardInfo | None:
        """
        Return the reward, active or not.

        Args:
            reward_id: Reward code

        Returns:
            RewardInfo or None if the id is unknown
        """
        ...

    def list_active(self) -> list[RewardInfo]:
        """Return active rewards in display order."""
        ...
