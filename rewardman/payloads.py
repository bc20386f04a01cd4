"""
Ledger entry payloads.

``LedgerEntry.metadata`` is stored as JSON but always has the shape of the
payload class registered for the entry's kind. ``decode`` turns stored
metadata back into the typed payload; ``_PAYLOAD_TYPES`` covers every
EntryKind (checked at import).
"""

from dataclasses import asdict, dataclass, fields
from typing import Union

from django.db import models
from django.utils.translation import gettext_lazy as _


class EntryKind(models.TextChoices):
    """Closed set of point movements."""

    ORDER_EARN = "order_earn", _("Order earn")
    SPIN_AWARD = "spin_award", _("Spin award")
    REDEMPTION = "redemption", _("Redemption")
    ADMIN_ADJUSTMENT = "admin_adjustment", _("Admin adjustment")
    EXPIRATION = "expiration", _("Expiration")
    REFERRAL_BONUS = "referral_bonus", _("Referral bonus")
    BIRTHDAY_BONUS = "birthday_bonus", _("Birthday bonus")


# Credits of these kinds count toward lifetime points
EARNING_KINDS = frozenset(
    {
        EntryKind.ORDER_EARN,
        EntryKind.SPIN_AWARD,
        EntryKind.REFERRAL_BONUS,
        EntryKind.BIRTHDAY_BONUS,
    }
)

# Earning entries with an expiry; bonuses never lapse
EXPIRING_KINDS = frozenset({EntryKind.ORDER_EARN, EntryKind.SPIN_AWARD})


@dataclass(frozen=True)
class OrderEarnPayload:
    order_id: str
    subtotal: str  # Decimal as string
    earn_rate: str


@dataclass(frozen=True)
class SpinAwardPayload:
    day_key: str
    outcome_label: str
    is_jackpot: bool = False


@dataclass(frozen=True)
class RedemptionPayload:
    reward_code: str
    reward_name: str
    redemption_id: str
    points_cost: int


@dataclass(frozen=True)
class AdminAdjustmentPayload:
    reason: str
    actor: str = ""
    balance_before: int = 0


@dataclass(frozen=True)
class ExpirationPayload:
    source_entry_id: str
    source_kind: str
    requested: int
    applied: int


@dataclass(frozen=True)
class ReferralBonusPayload:
    referrer_ref: str
    referee_ref: str
    role: str  # "referrer" or "referee"
    referral_code: str = ""


@dataclass(frozen=True)
class BirthdayBonusPayload:
    year: int
    birthday: str  # MM-DD


EntryPayload = Union[
    OrderEarnPayload,
    SpinAwardPayload,
    RedemptionPayload,
    AdminAdjustmentPayload,
    ExpirationPayload,
    ReferralBonusPayload,
    BirthdayBonusPayload,
]

_PAYLOAD_TYPES: dict[str, type] = {
    EntryKind.ORDER_EARN: OrderEarnPayload,
    EntryKind.SPIN_AWARD: SpinAwardPayload,
    EntryKind.REDEMPTION: RedemptionPayload,
    EntryKind.ADMIN_ADJUSTMENT: AdminAdjustmentPayload,
    EntryKind.EXPIRATION: ExpirationPayload,
    EntryKind.REFERRAL_BONUS: ReferralBonusPayload,
    EntryKind.BIRTHDAY_BONUS: BirthdayBonusPayload,
}

_missing = set(EntryKind.values) - {str(k) for k in _PAYLOAD_TYPES}
if _missing:
    raise RuntimeError(f"Ledger payload types missing for kinds: {sorted(_missing)}")


def payload_type(kind: str) -> type:
    try:
        return _PAYLOAD_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown ledger entry kind: {kind!r}") from None


def encode(kind: str, payload: EntryPayload) -> dict:
    """Check ``payload`` matches ``kind`` and return it as JSON-ready metadata."""
    expected = payload_type(kind)
    if not isinstance(payload, expected):
        raise TypeError(f"{kind} entries take {expected.__name__}, got {type(payload).__name__}")
    return asdict(payload)


def decode(kind: str, metadata: dict) -> EntryPayload:
    """Rebuild the typed payload for ``kind``; unknown keys are ignored."""
    cls = payload_type(kind)
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (metadata or {}).items() if k in names})
