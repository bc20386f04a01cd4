from django.urls import path

from .views import (
    BalanceView,
    BirthdayView,
    HistoryView,
    OrderAwardView,
    RedeemView,
    ReferralView,
    RewardsView,
    SpinView,
)

app_name = "rewardman"

urlpatterns = [
    path("balance/", BalanceView.as_view(), name="balance"),
    path("orders/award/", OrderAwardView.as_view(), name="order-award"),
    path("spin/", SpinView.as_view(), name="spin"),
    path("redeem/", RedeemView.as_view(), name="redeem"),
    path("history/", HistoryView.as_view(), name="history"),
    path("rewards/", RewardsView.as_view(), name="rewards"),
    path("referral/", ReferralView.as_view(), name="referral"),
    path("birthday/", BirthdayView.as_view(), name="birthday"),
]
