"""SpinRecord model: one daily spin per user."""

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class SpinRecord(models.Model):
    """
    Daily spin of a user.

    Unique per (user_ref, day_key) and written in the same transaction as its
    spin_award ledger entry. Its existence is the cooldown: no timer needed.
    """

    user_ref = models.CharField(_("user"), max_length=128)
    day_key = models.CharField(_("day"), max_length=10, help_text=_("UTC date, YYYY-MM-DD"))

    outcome_label = models.CharField(_("outcome"), max_length=50)
    points = models.PositiveIntegerField(_("points"))
    is_jackpot = models.BooleanField(_("jackpot"), default=False)

    entry = models.OneToOneField(
        "rewardman.LedgerEntry",
        on_delete=models.PROTECT,
        related_name="spin_record",
        verbose_name=_("ledger entry"),
    )
    created_at = models.DateTimeField(_("spun at"), default=timezone.now, db_index=True)

    class Meta:
        db_table = "rewardman_spin_record"
        verbose_name = _("spin")
        verbose_name_plural = _("spins")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user_ref", "day_key"],
                name="rewardman_spin_once_per_day",
            ),
        ]

    def __str__(self):
        return f"{self.user_ref}@{self.day_key}: {self.outcome_label} (+{self.points})"
