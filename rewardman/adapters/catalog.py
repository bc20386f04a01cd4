"""RewardCatalogBackend adapters."""

from decimal import Decimal

from django.utils.module_loading import import_string

from rewardman.conf import rewardman_settings
from rewardman.protocols.catalog import RewardCatalogBackend, RewardInfo


class DatabaseRewardCatalog:
    """
    Catalog backed by the Reward model (default).

    Configuration in settings.py:
        REWARDMAN = {
            "REWARD_CATALOG_BACKEND": "rewardman.adapters.catalog.DatabaseRewardCatalog",
        }
    """

    def _to_info(self, reward) -> RewardInfo:
        return RewardInfo(
            reward_id=reward.code,
            name=reward.name,
            points_cost=reward.points_cost,
            is_active=reward.is_active,
            min_order_subtotal=reward.min_order_subtotal,
            min_tier=reward.min_tier,
            cogs=reward.cogs,
            category=reward.category,
        )

    def get_reward(self, reward_id: str) -> RewardInfo | None:
        from rewardman.models import Reward

        reward = Reward.objects.filter(code=reward_id).first()
        return self._to_info(reward) if reward else None

    def list_active(self) -> list[RewardInfo]:
        from rewardman.models import Reward

        return [self._to_info(r) for r in Reward.objects.filter(is_active=True)]


class SettingsRewardCatalog:
    """
    Static catalog read from REWARDMAN["REWARD_CATALOG"].

    Each item: {"id", "name", "points", "active", "min_order_subtotal",
    "min_tier", "cogs", "category"}; only id, name and points are required.
    """

    def _items(self) -> list[RewardInfo]:
        items = []
        for row in rewardman_settings.REWARD_CATALOG:
            min_subtotal = row.get("min_order_subtotal")
            items.append(
                RewardInfo(
                    reward_id=row["id"],
                    name=row["name"],
                    points_cost=int(row["points"]),
                    is_active=row.get("active", True),
                    min_order_subtotal=Decimal(str(min_subtotal)) if min_subtotal is not None else None,
                    min_tier=row.get("min_tier", ""),
                    cogs=Decimal(str(row.get("cogs", "0"))),
                    category=row.get("category", ""),
                )
            )
        return items

    def get_reward(self, reward_id: str) -> RewardInfo | None:
        for item in self._items():
            if item.reward_id == reward_id:
                return item
        return None

    def list_active(self) -> list[RewardInfo]:
        return [item for item in self._items() if item.is_active]


def get_catalog_backend() -> RewardCatalogBackend:
    """Instantiate the configured catalog backend."""
    backend_class = import_string(rewardman_settings.REWARD_CATALOG_BACKEND)
    return backend_class()
