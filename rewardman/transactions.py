"""Bounded-retry wrapper around transaction.atomic()."""

import logging

from django.db import DatabaseError, IntegrityError, transaction

from rewardman.conf import rewardman_settings
from rewardman.exceptions import ConcurrencyConflict, StoreUnavailable

logger = logging.getLogger(__name__)


def atomic_with_retry(fn, *, operation: str, retries: int | None = None):
    """
    Run ``fn`` inside transaction.atomic(), retrying on contention.

    ConcurrencyConflict (a conditional update matched no row) and
    IntegrityError (a unique constraint lost a race) roll the attempt back
    and run ``fn`` again; a re-run normally lands on the replay or cooldown
    path. Exhausted retries surface as ConcurrencyConflict. Any other
    database error becomes StoreUnavailable; nothing from the failed attempt
    is committed.
    """
    attempts = retries if retries is not None else rewardman_settings.MAX_TRANSACTION_RETRIES
    attempts = max(1, attempts)
    last_exc = None

    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                return fn()
        except (ConcurrencyConflict, IntegrityError) as exc:
            last_exc = exc
            logger.warning(
                "%s: conflict on attempt %s/%s (%s)",
                operation,
                attempt,
                attempts,
                exc,
            )
        except DatabaseError as exc:
            logger.error("%s: store error (%s)", operation, exc)
            raise StoreUnavailable(operation=operation) from exc

    raise ConcurrencyConflict(operation=operation, attempts=attempts, retryable=True) from last_exc
