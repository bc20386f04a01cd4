"""LedgerEntry model: append-only record of point movements."""

import uuid as uuid_lib

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from rewardman.payloads import EntryKind, decode

# The only field written after an entry exists (set by the expiration sweep)
_MUTABLE_FIELDS = frozenset({"expired_at"})


class LedgerEntry(models.Model):
    """
    Immutable record of a single point movement.

    ``delta`` is signed: credits are positive, debits negative. ``source_key``
    is the dedupe key of the operation that produced the entry and is unique
    within its kind (order id, ``spin:<user>:<day>``, ``<user>:<request key>``,
    ``expire:<entry uuid>``, ``referral:<new user>:<role>``,
    ``birthday:<user>:<year>``).
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, editable=False, unique=True)
    user_ref = models.CharField(_("user"), max_length=128, db_index=True)

    kind = models.CharField(_("kind"), max_length=20, choices=EntryKind.choices)
    delta = models.IntegerField(_("delta"), help_text=_("Positive credit, negative debit"))
    balance_after = models.IntegerField(_("balance after"))

    source_key = models.CharField(_("source key"), max_length=255, blank=True)
    metadata = models.JSONField(_("metadata"), default=dict, blank=True)

    created_at = models.DateTimeField(_("created at"), default=timezone.now, editable=False)
    expires_at = models.DateTimeField(_("expires at"), null=True, blank=True)
    expired_at = models.DateTimeField(
        _("expired at"),
        null=True,
        blank=True,
        help_text=_("Set when the expiration sweep offset this entry"),
    )

    class Meta:
        db_table = "rewardman_ledger_entry"
        verbose_name = _("ledger entry")
        verbose_name_plural = _("ledger entries")
        ordering = ["-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["kind", "source_key"],
                condition=~Q(source_key=""),
                name="rewardman_entry_unique_source",
            ),
        ]
        indexes = [
            models.Index(fields=["user_ref", "-id"], name="rewardman_entry_user_idx"),
            models.Index(fields=["kind", "expires_at"], name="rewardman_entry_expiry_idx"),
            models.Index(fields=["created_at"], name="rewardman_entry_created_idx"),
        ]

    def __str__(self):
        sign = "+" if self.delta > 0 else ""
        return f"{self.user_ref}: {sign}{self.delta}pts ({self.kind})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or set(update_fields) - _MUTABLE_FIELDS:
                raise ValueError("Ledger entries are immutable once written")
        super().save(*args, **kwargs)

    @property
    def payload(self):
        """Typed payload for this entry's kind."""
        return decode(self.kind, self.metadata)

    @property
    def is_expired(self) -> bool:
        return self.expired_at is not None

    def as_dict(self) -> dict:
        return {
            "id": str(self.uuid),
            "user_ref": self.user_ref,
            "kind": self.kind,
            "delta": self.delta,
            "balance_after": self.balance_after,
            "source_key": self.source_key,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "expired_at": self.expired_at.isoformat() if self.expired_at else None,
        }
