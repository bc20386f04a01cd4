"""Rewardman models."""

from rewardman.payloads import EntryKind
from rewardman.tiers import Tier
from rewardman.models.ledger import LedgerEntry
from rewardman.models.balance import BalanceProjection
from rewardman.models.spin import SpinRecord
from rewardman.models.idempotency import IdempotencyRecord
from rewardman.models.reward import Reward, Redemption, RedemptionStatus

__all__ = [
    # Ledger store
    "EntryKind",
    "LedgerEntry",
    "BalanceProjection",
    "Tier",
    # Daily spin
    "SpinRecord",
    # Request replay
    "IdempotencyRecord",
    # Catalog
    "Reward",
    "Redemption",
    "RedemptionStatus",
]
