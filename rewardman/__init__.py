"""
Django Rewardman - Loyalty ledger and reward distribution.

Usage:
    from rewardman import OrderAwardService, SpinEngine, RedemptionService, LedgerService

    award = OrderAwardService.award_for_order("42", "ORD-1001", Decimal("250.00"))
    result = SpinEngine.spin("42")
    redemption = RedemptionService.redeem("42", "free_drink", idempotency_key="req-7")
    summary = LedgerService.get_balance("42")
"""

_EXPORTS = {
    "LedgerService": "rewardman.services.ledger",
    "OrderAwardService": "rewardman.services.orders",
    "SpinEngine": "rewardman.services.spins",
    "RedemptionService": "rewardman.services.redemptions",
    "BonusService": "rewardman.services.bonuses",
    "ExpirationSweep": "rewardman.services.expiration",
    "PayoutMonitor": "rewardman.services.payout",
    "RewardmanError": "rewardman.exceptions",
}


def __getattr__(name):
    if name in _EXPORTS:
        from importlib import import_module

        return getattr(import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_EXPORTS)
__version__ = "0.1.0"
