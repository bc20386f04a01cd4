"""
IdempotencyRecord model.

Stores the result computed for a request key so a retried request gets the
original answer back instead of a second side effect.
"""

from datetime import timedelta

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class IdempotencyRecord(models.Model):
    """Result of an operation, keyed by (scope, key)."""

    scope = models.CharField(_("scope"), max_length=32)
    key = models.CharField(_("key"), max_length=255)
    user_ref = models.CharField(_("user"), max_length=128, db_index=True)
    result = models.JSONField(_("result"), default=dict)
    entry = models.ForeignKey(
        "rewardman.LedgerEntry",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="idempotency_records",
    )
    created_at = models.DateTimeField(_("created at"), auto_now_add=True, db_index=True)

    class Meta:
        db_table = "rewardman_idempotency_record"
        verbose_name = _("idempotency record")
        verbose_name_plural = _("idempotency records")
        constraints = [
            models.UniqueConstraint(fields=["scope", "key"], name="rewardman_idempotency_unique"),
        ]

    def __str__(self):
        return f"{self.scope}:{self.key[:40]}"

    @classmethod
    def stale_records(cls, days: int, scope: str | None = None):
        """Records created more than ``days`` days ago."""
        qs = cls.objects.filter(created_at__lt=timezone.now() - timedelta(days=days))
        if scope:
            qs = qs.filter(scope=scope)
        return qs
