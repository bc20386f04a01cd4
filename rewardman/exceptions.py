"""Rewardman exceptions."""


class RewardmanError(Exception):
    """
    Structured exception for ledger operations.

    Every error carries a stable ``code``, a human message and a ``data`` dict
    with enough context for the caller to render a specific message.

    Usage:
        try:
            RedemptionService.redeem("42", "free_drink", idempotency_key="req-1")
        except RewardmanError as e:
            if e.code == "INSUFFICIENT_BALANCE":
                show_shortfall(e.data["balance"], e.data["required"])
    """

    default_code = "REWARDMAN_ERROR"
    http_status = 400

    _default_messages = {
        "REWARDMAN_ERROR": "Loyalty operation failed",
        # Validation
        "INVALID_INPUT": "Invalid input",
        "INVALID_SUBTOTAL": "Order subtotal must be a positive amount",
        "INVALID_ORDER_ID": "Order id is required",
        "INVALID_USER": "User reference is required",
        "INVALID_IDEMPOTENCY_KEY": "Idempotency key must be 1-255 characters",
        "INVALID_POINTS": "Points must be a non-negative integer",
        "INVALID_ADJUSTMENT": "Adjustment must be a non-zero integer within limits",
        "INVALID_CURSOR": "Malformed history cursor",
        "UNKNOWN_REWARD": "Reward not found",
        "REWARD_INACTIVE": "Reward is not active",
        "REWARD_NOT_ELIGIBLE": "Reward eligibility rules not met",
        "REDEMPTION_NOT_FOUND": "Redemption code not found",
        "REDEMPTION_ALREADY_USED": "Redemption code already used",
        "REDEMPTION_EXPIRED": "Redemption code expired",
        # Gates
        "SPIN_COOLDOWN": "Daily spin already used",
        "INSUFFICIENT_BALANCE": "Insufficient points for redemption",
        "RATE_LIMITED": "Too many requests",
        # Transient / fatal
        "CONCURRENCY_CONFLICT": "Concurrent update conflict, retry the request",
        "STORE_UNAVAILABLE": "Ledger store unavailable",
    }

    def __init__(self, code: str | None = None, message: str | None = None, **data):
        self.code = code or self.default_code
        self.message = message or self._default_messages.get(self.code, self.code)
        self.data = data
        super().__init__(f"[{self.code}] {self.message}")

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "data": self.data}


class ValidationError(RewardmanError):
    """Bad input. Rejected before any write, never retried."""

    default_code = "INVALID_INPUT"
    http_status = 400


class CooldownError(RewardmanError):
    """Spin already used in the current UTC day. Carries ``next_reset_at``."""

    default_code = "SPIN_COOLDOWN"
    http_status = 429


class InsufficientBalanceError(RewardmanError):
    """Balance lower than the requested debit. Carries ``balance`` and ``required``."""

    default_code = "INSUFFICIENT_BALANCE"
    http_status = 409


class ConcurrencyConflict(RewardmanError):
    """Transaction contention that outlived the internal retries. Safe to resend."""

    default_code = "CONCURRENCY_CONFLICT"
    http_status = 503


class StoreUnavailable(RewardmanError):
    """The database could not complete the transaction. Nothing was committed."""

    default_code = "STORE_UNAVAILABLE"
    http_status = 503


class RateLimited(RewardmanError):
    default_code = "RATE_LIMITED"
    http_status = 429
