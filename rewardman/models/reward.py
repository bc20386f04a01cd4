"""Reward catalog and redemption models."""

import uuid as uuid_lib
from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from rewardman.tiers import Tier


class Reward(models.Model):
    """Catalog item that can be bought with points."""

    code = models.SlugField(_("code"), max_length=50, unique=True)
    name = models.CharField(_("name"), max_length=100)
    description = models.CharField(_("description"), max_length=255, blank=True)
    category = models.CharField(_("category"), max_length=50, blank=True)

    points_cost = models.PositiveIntegerField(_("points cost"))
    cogs = models.DecimalField(
        _("cost of goods"),
        max_digits=8,
        decimal_places=2,
        default=Decimal("0"),
        help_text=_("What the restaurant pays when this reward is used"),
    )

    # Eligibility rules
    is_active = models.BooleanField(_("active"), default=True)
    min_order_subtotal = models.DecimalField(
        _("minimum order subtotal"),
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )
    min_tier = models.CharField(_("minimum tier"), max_length=20, choices=Tier.choices, blank=True)

    sort_order = models.IntegerField(_("order"), default=0)

    class Meta:
        db_table = "rewardman_reward"
        verbose_name = _("reward")
        verbose_name_plural = _("rewards")
        ordering = ["sort_order", "points_cost"]

    def __str__(self):
        return f"{self.name} ({self.points_cost}pts)"


class RedemptionStatus(models.TextChoices):
    ACTIVE = "active", _("Active")
    USED = "used", _("Used")


class Redemption(models.Model):
    """
    A reward bought with points.

    ``code`` is what the customer shows at checkout; the restaurant marks it
    used once applied to an order.
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, editable=False, unique=True)
    user_ref = models.CharField(_("user"), max_length=128, db_index=True)

    reward_code = models.CharField(_("reward"), max_length=50)
    reward_name = models.CharField(_("reward name"), max_length=100)
    points_used = models.PositiveIntegerField(_("points used"))
    cogs = models.DecimalField(_("cost of goods"), max_digits=8, decimal_places=2, default=Decimal("0"))

    code = models.CharField(_("redemption code"), max_length=16, unique=True)
    status = models.CharField(
        _("status"),
        max_length=10,
        choices=RedemptionStatus.choices,
        default=RedemptionStatus.ACTIVE,
    )
    entry = models.OneToOneField(
        "rewardman.LedgerEntry",
        on_delete=models.PROTECT,
        related_name="redemption",
    )

    created_at = models.DateTimeField(_("created at"), default=timezone.now, db_index=True)
    expires_at = models.DateTimeField(_("expires at"))
    used_at = models.DateTimeField(_("used at"), null=True, blank=True)
    used_order_ref = models.CharField(_("used on order"), max_length=100, blank=True)

    class Meta:
        db_table = "rewardman_redemption"
        verbose_name = _("redemption")
        verbose_name_plural = _("redemptions")
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.code}: {self.reward_name} ({self.status})"

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at

    def as_dict(self) -> dict:
        return {
            "redemption_id": str(self.uuid),
            "code": self.code,
            "reward_id": self.reward_code,
            "reward_name": self.reward_name,
            "points_used": self.points_used,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "used_at": self.used_at.isoformat() if self.used_at else None,
        }
