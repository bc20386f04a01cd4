"""BalanceProjection model: per-user summary derived from the ledger."""

from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from rewardman.tiers import Tier


class BalanceProjection(models.Model):
    """
    Current balance, lifetime points and tier for one user.

    Created lazily on the first ledger write and only ever mutated through
    LedgerService.append (conditional UPDATE guarded by ``version``).
    ``points`` can never go negative: the database enforces it too.
    """

    user_ref = models.CharField(_("user"), max_length=128, unique=True)

    points = models.IntegerField(_("points"), default=0, help_text=_("Redeemable balance"))
    lifetime_points = models.IntegerField(
        _("lifetime points"),
        default=0,
        help_text=_("Points ever earned from orders, spins and bonuses (never decreases)"),
    )
    tier = models.CharField(_("tier"), max_length=20, choices=Tier.choices, default=Tier.BRONZE)

    orders_count = models.PositiveIntegerField(_("orders"), default=0)
    total_spent = models.DecimalField(
        _("total spent"),
        max_digits=12,
        decimal_places=2,
        default=Decimal("0"),
    )

    birthday = models.DateField(_("birthday"), null=True, blank=True)
    referral_code = models.CharField(_("referral code"), max_length=16, unique=True, null=True, blank=True)
    referred_by = models.CharField(_("referred by"), max_length=128, blank=True)

    version = models.PositiveIntegerField(_("version"), default=0)
    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), default=timezone.now)

    class Meta:
        db_table = "rewardman_balance"
        verbose_name = _("balance")
        verbose_name_plural = _("balances")
        constraints = [
            models.CheckConstraint(
                condition=Q(points__gte=0),
                name="rewardman_balance_points_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.user_ref}: {self.points}pts | {self.tier}"
