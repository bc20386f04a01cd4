"""
Idempotency guard.

Usage (inside the same transaction.atomic() as the ledger write):

    replay = IdempotencyGuard.acquire_or_replay("order_earn", key)
    if not replay.is_new:
        return replay.prior_result
    ... append ledger entry ...
    IdempotencyGuard.record("order_earn", key, user_ref, result, entry=entry)

There is no separate "in progress" marker: the result is written in the
same atomic unit as the side effect, so a concurrent duplicate either sees
the committed record or fails on the (scope, key) unique constraint and is
retried into the replay path.
"""

from dataclasses import dataclass

from rewardman.exceptions import ValidationError

MAX_KEY_LENGTH = 255


@dataclass(frozen=True)
class IdempotencyResult:
    is_new: bool
    prior_result: dict | None = None
    user_ref: str = ""


class IdempotencyGuard:
    """Replay lookups and result recording for request keys."""

    @classmethod
    def validate_key(cls, key) -> str:
        if not isinstance(key, str) or not key.strip() or len(key) > MAX_KEY_LENGTH:
            raise ValidationError("INVALID_IDEMPOTENCY_KEY", key=str(key)[:MAX_KEY_LENGTH])
        return key.strip()

    @classmethod
    def acquire_or_replay(cls, scope: str, key: str) -> IdempotencyResult:
        """
        Look up a previous result for (scope, key).

        Returns:
            IdempotencyResult(is_new=True) when the caller should perform the
            operation, or is_new=False with the stored result verbatim and
            the user it was recorded for.
        """
        from rewardman.models import IdempotencyRecord

        record = IdempotencyRecord.objects.filter(scope=scope, key=key).only("result", "user_ref").first()
        if record is None:
            return IdempotencyResult(is_new=True)
        return IdempotencyResult(is_new=False, prior_result=record.result, user_ref=record.user_ref)

    @classmethod
    def record(cls, scope: str, key: str, user_ref: str, result: dict, entry=None):
        """
        Persist the result for (scope, key).

        MUST be called inside the transaction that performed the side effect.
        Raises IntegrityError if another request recorded the key first.
        """
        from rewardman.models import IdempotencyRecord

        return IdempotencyRecord.objects.create(
            scope=scope,
            key=key,
            user_ref=user_ref,
            result=result,
            entry=entry,
        )

    @classmethod
    def result_for_entry(cls, entry) -> dict | None:
        """Stored result of whichever request created ``entry``."""
        from rewardman.models import IdempotencyRecord

        record = IdempotencyRecord.objects.filter(entry=entry).order_by("id").first()
        return record.result if record else None
