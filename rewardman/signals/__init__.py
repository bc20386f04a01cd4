"""
Rewardman signals - public event API.

All signals are sent from transaction.on_commit(), so receivers (push/email
notifications, analytics) never observe a rolled-back movement.

Emitted signals:
- points_awarded: sender=LedgerEntry, user_ref, entry, points, order_id
- tier_changed:   sender=BalanceProjection, user_ref, old_tier, new_tier
- spin_completed: sender=SpinRecord, user_ref, spin, points, is_jackpot
- points_redeemed: sender=Redemption, user_ref, redemption, points
- points_expired: sender=LedgerEntry, user_ref, entry, points
- bonus_awarded:  sender=LedgerEntry, user_ref, entry, points, kind
"""

from django.dispatch import Signal

points_awarded = Signal()
tier_changed = Signal()
spin_completed = Signal()
points_redeemed = Signal()
points_expired = Signal()
bonus_awarded = Signal()
