"""Rewardman services.

- ledger: LedgerService (append primitive, balance, history, adjustments)
- orders: OrderAwardService
- spins: SpinEngine
- redemptions: RedemptionService
- bonuses: BonusService (referral and birthday bonuses)
- expiration: ExpirationSweep
- payout: PayoutMonitor
"""

from rewardman.services import bonuses, expiration, ledger, orders, payout, redemptions, spins

__all__ = ["ledger", "orders", "spins", "redemptions", "bonuses", "expiration", "payout"]
