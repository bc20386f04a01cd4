"""
Rewardman Gates - request-level checks in front of the services.

G1: OrderRequestAuthenticity - Order award call is signed (HMAC + timestamp)
G2: RequestRate - Per-user request rate per action (cache-backed window)
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass

from django.conf import settings

from rewardman.cache import RateLimiter
from rewardman.conf import rewardman_settings

logger = logging.getLogger(__name__)


class GateError(Exception):
    """Gate validation error."""

    def __init__(self, gate_name: str, message: str, details: dict | None = None):
        self.gate_name = gate_name
        self.message = message
        self.details = details or {}
        super().__init__(f"[{gate_name}] {message}")


@dataclass
class GateResult:
    """Result of a gate check."""

    passed: bool
    gate_name: str
    message: str = ""


def sign_body(body: bytes, secret: str) -> str:
    """Signature header value for ``body``, as the order subsystem sends it."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# =============================================================================
# Gates
# =============================================================================


class Gates:
    """Rewardman request gates."""

    # =========================================================================
    # G1: Order Request Authenticity (HMAC validation for the award endpoint)
    # =========================================================================

    @classmethod
    def order_request_authenticity(
        cls,
        body: bytes,
        signature: str,
        secret: str | None = None,
        timestamp: int | None = None,
        max_age_seconds: int = 300,
    ) -> GateResult:
        """
        G1: Order award request is authentic (HMAC + timestamp validation).

        The order subsystem signs the raw body:
        - Header: X-Rewardman-Signature
        - Format: sha256=<hex_digest>
        - Optional X-Rewardman-Timestamp (unix seconds)

        Args:
            body: Raw request body (bytes)
            signature: Signature from header (with or without 'sha256=' prefix)
            secret: Shared secret; defaults to ORDER_WEBHOOK_SECRET
            timestamp: Unix timestamp from header (optional)
            max_age_seconds: Maximum age of request (default 5 minutes)

        Raises:
            GateError: If signature is invalid or timestamp is too old
        """
        if secret is None:
            secret = rewardman_settings.ORDER_WEBHOOK_SECRET

        if not secret:
            if settings.DEBUG:
                logger.warning(
                    "G1_OrderRequestAuthenticity: ORDER_WEBHOOK_SECRET is empty, "
                    "accepting unsigned order awards (DEBUG only)."
                )
                return GateResult(True, "G1_OrderRequestAuthenticity", "No secret configured (skipped)")
            raise GateError(
                "G1_OrderRequestAuthenticity",
                "Order webhook secret is not configured.",
            )

        if not signature:
            raise GateError(
                "G1_OrderRequestAuthenticity",
                "Missing signature header.",
            )

        if signature.startswith("sha256="):
            signature = signature[7:]

        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

        if not hmac.compare_digest(signature.lower(), expected.lower()):
            raise GateError(
                "G1_OrderRequestAuthenticity",
                "Invalid signature.",
            )

        if timestamp:
            age = abs(int(time.time()) - timestamp)
            if age > max_age_seconds:
                raise GateError(
                    "G1_OrderRequestAuthenticity",
                    f"Timestamp too old ({age}s > {max_age_seconds}s).",
                    {"age_seconds": age},
                )

        return GateResult(True, "G1_OrderRequestAuthenticity")

    @classmethod
    def check_order_request_authenticity(cls, *args, **kwargs) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.order_request_authenticity(*args, **kwargs)
            return True
        except GateError:
            return False

    # =========================================================================
    # G2: Request Rate
    # =========================================================================

    @classmethod
    def request_rate(cls, action: str, identity: str, limiter: RateLimiter | None = None) -> GateResult:
        """
        G2: At most N requests per window for (action, identity).

        Limits come from RATE_LIMITS, e.g. {"redeem": (5, 3600)}. Actions
        without a configured limit always pass.

        Raises:
            GateError: If the window is exhausted
        """
        rule = rewardman_settings.RATE_LIMITS.get(action)
        if not rule:
            return GateResult(True, "G2_RequestRate", "No limit configured")

        limit, window = rule
        limiter = limiter or RateLimiter()
        if not limiter.hit(f"{action}:{identity}", limit=limit, window=window):
            raise GateError(
                "G2_RequestRate",
                f"Rate limit exceeded for {action}.",
                {"action": action, "limit": limit, "window_seconds": window},
            )

        return GateResult(True, "G2_RequestRate")

    @classmethod
    def check_request_rate(cls, *args, **kwargs) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.request_rate(*args, **kwargs)
            return True
        except GateError:
            return False
