"""Rewardman protocols."""

from rewardman.protocols.catalog import (
    RewardCatalogBackend,
    RewardInfo,
)

__all__ = [
    # Catalog
    "RewardCatalogBackend",
    "RewardInfo",
]
