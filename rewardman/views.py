"""
Rewardman JSON endpoints.

Customer endpoints act for ``request.user`` (primary key as user_ref).
The order award endpoint is server-to-server and authenticated by HMAC
signature instead of a session.

Errors are rendered as {"error": {"code", "message", "data"}} with the
status carried by the exception class.
"""

import json
import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from rewardman.exceptions import RateLimited, RewardmanError, ValidationError
from rewardman.gates import GateError, Gates
from rewardman.services.bonuses import BonusService
from rewardman.services.ledger import LedgerService
from rewardman.services.orders import OrderAwardService
from rewardman.services.redemptions import RedemptionService
from rewardman.services.spins import SpinEngine

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, data: dict | None = None) -> dict:
    return {"error": {"code": code, "message": message, "data": data or {}}}


class RewardmanView(View):
    """Base view: authentication, JSON parsing and error translation."""

    login_required = True

    def dispatch(self, request, *args, **kwargs):
        if self.login_required and not request.user.is_authenticated:
            return JsonResponse(error_body("AUTHENTICATION_REQUIRED", "Authentication required"), status=401)
        try:
            return super().dispatch(request, *args, **kwargs)
        except RewardmanError as exc:
            if exc.http_status >= 500:
                logger.warning("%s: %s", self.__class__.__name__, exc)
            return JsonResponse({"error": exc.as_dict()}, status=exc.http_status)
        except Exception:
            logger.exception("%s: request failed", self.__class__.__name__)
            return JsonResponse(error_body("INTERNAL_ERROR", "Internal error"), status=500)

    def user_ref(self, request) -> str:
        return str(request.user.pk)

    def parse_json(self, request) -> dict:
        if not request.body:
            return {}
        try:
            data = json.loads(request.body)
        except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
            raise ValidationError("INVALID_INPUT", message="Invalid JSON")
        if not isinstance(data, dict):
            raise ValidationError("INVALID_INPUT", message="JSON object expected")
        return data

    def check_rate(self, action: str, identity: str) -> None:
        try:
            Gates.request_rate(action, identity)
        except GateError as exc:
            logger.info("Rate limit: %s for %s", action, identity)
            raise RateLimited(**exc.details)


class BalanceView(RewardmanView):
    """GET balance and tier progress."""

    def get(self, request):
        summary = LedgerService.get_balance(self.user_ref(request))
        return JsonResponse(summary.as_dict())


@method_decorator(csrf_exempt, name="dispatch")
class OrderAwardView(RewardmanView):
    """
    POST endpoint for the order subsystem.

    Expects:
        - X-Rewardman-Signature header with HMAC of the raw body
        - optional X-Rewardman-Timestamp (unix seconds)
        - JSON body: {"user_ref", "order_id", "order_subtotal", "idempotency_key"?}

    Settings:
        REWARDMAN["ORDER_WEBHOOK_SECRET"] - HMAC secret.
    """

    login_required = False

    def post(self, request):
        body = request.body
        signature = request.headers.get("X-Rewardman-Signature", "")
        raw_timestamp = request.headers.get("X-Rewardman-Timestamp", "")

        # G1: Authenticity
        try:
            timestamp = int(raw_timestamp) if raw_timestamp else None
            Gates.order_request_authenticity(body, signature, timestamp=timestamp)
        except ValueError:
            return JsonResponse(error_body("INVALID_SIGNATURE", "Malformed timestamp"), status=401)
        except GateError as exc:
            logger.warning("Order award: G1 failed - %s", exc.message)
            return JsonResponse(error_body("INVALID_SIGNATURE", exc.message, exc.details), status=401)

        data = self.parse_json(request)
        user_ref = LedgerService.validate_user_ref(data.get("user_ref"))
        self.check_rate("award", user_ref)

        award = OrderAwardService.award_for_order(
            user_ref,
            data.get("order_id"),
            data.get("order_subtotal"),
            idempotency_key=data.get("idempotency_key"),
        )
        return JsonResponse(award.as_dict())


class SpinView(RewardmanView):
    """GET today's eligibility; POST to spin."""

    def get(self, request):
        eligibility = SpinEngine.eligibility(self.user_ref(request))
        return JsonResponse(eligibility.as_dict())

    def post(self, request):
        user_ref = self.user_ref(request)
        self.check_rate("spin", user_ref)
        result = SpinEngine.spin(user_ref)
        return JsonResponse(result.as_dict())


class RedeemView(RewardmanView):
    """
    POST a redemption.

    Body: {"reward_id", "order_subtotal"?, "idempotency_key"?}; the key may
    come from the Idempotency-Key header instead.
    """

    def post(self, request):
        user_ref = self.user_ref(request)
        data = self.parse_json(request)
        key = request.headers.get("Idempotency-Key") or data.get("idempotency_key")
        self.check_rate("redeem", user_ref)

        result = RedemptionService.redeem(
            user_ref,
            data.get("reward_id"),
            idempotency_key=key,
            order_subtotal=data.get("order_subtotal"),
        )
        return JsonResponse(result.as_dict())


class HistoryView(RewardmanView):
    """GET ledger history: ?limit=&cursor="""

    def get(self, request):
        page = LedgerService.history(
            self.user_ref(request),
            limit=request.GET.get("limit", 50),
            cursor=request.GET.get("cursor") or None,
        )
        return JsonResponse(
            {
                "entries": [entry.as_dict() for entry in page.entries],
                "next_cursor": page.next_cursor,
            }
        )


class RewardsView(RewardmanView):
    """GET the active reward catalog."""

    def get(self, request):
        rewards = RedemptionService.list_rewards()
        return JsonResponse({"rewards": [reward.as_dict() for reward in rewards]})


class ReferralView(RewardmanView):
    """GET the user's referral code; POST {"referral_code"} to apply someone else's."""

    def get(self, request):
        return JsonResponse({"referral_code": BonusService.referral_code(self.user_ref(request))})

    def post(self, request):
        user_ref = self.user_ref(request)
        data = self.parse_json(request)
        self.check_rate("referral", user_ref)
        award = BonusService.apply_referral(user_ref, data.get("referral_code"))
        return JsonResponse(award.as_dict())


class BirthdayView(RewardmanView):
    """POST {"birthday": "YYYY-MM-DD"} to store the user's birthday."""

    def post(self, request):
        data = self.parse_json(request)
        birthday = BonusService.set_birthday(self.user_ref(request), data.get("birthday"))
        return JsonResponse({"birthday": birthday.isoformat()})
