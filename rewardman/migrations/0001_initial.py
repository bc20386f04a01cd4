# Initial schema for the loyalty ledger

import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


TIER_CHOICES = [
    ("bronze", "Bronze"),
    ("silver", "Silver"),
    ("gold", "Gold"),
    ("platinum", "Platinum"),
]

KIND_CHOICES = [
    ("order_earn", "Order earn"),
    ("spin_award", "Spin award"),
    ("redemption", "Redemption"),
    ("admin_adjustment", "Admin adjustment"),
    ("expiration", "Expiration"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Reward",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.SlugField(unique=True, verbose_name="code")),
                ("name", models.CharField(max_length=100, verbose_name="name")),
                ("description", models.CharField(blank=True, max_length=255, verbose_name="description")),
                ("category", models.CharField(blank=True, max_length=50, verbose_name="category")),
                ("points_cost", models.PositiveIntegerField(verbose_name="points cost")),
                (
                    "cogs",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="What the restaurant pays when this reward is used",
                        max_digits=8,
                        verbose_name="cost of goods",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                (
                    "min_order_subtotal",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        max_digits=10,
                        null=True,
                        verbose_name="minimum order subtotal",
                    ),
                ),
                (
                    "min_tier",
                    models.CharField(blank=True, choices=TIER_CHOICES, max_length=20, verbose_name="minimum tier"),
                ),
                ("sort_order", models.IntegerField(default=0, verbose_name="order")),
            ],
            options={
                "verbose_name": "reward",
                "verbose_name_plural": "rewards",
                "db_table": "rewardman_reward",
                "ordering": ["sort_order", "points_cost"],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("uuid", models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ("user_ref", models.CharField(db_index=True, max_length=128, verbose_name="user")),
                ("kind", models.CharField(choices=KIND_CHOICES, max_length=20, verbose_name="kind")),
                ("delta", models.IntegerField(help_text="Positive credit, negative debit", verbose_name="delta")),
                ("balance_after", models.IntegerField(verbose_name="balance after")),
                ("source_key", models.CharField(blank=True, max_length=255, verbose_name="source key")),
                ("metadata", models.JSONField(blank=True, default=dict, verbose_name="metadata")),
                (
                    "created_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        editable=False,
                        verbose_name="created at",
                    ),
                ),
                ("expires_at", models.DateTimeField(blank=True, null=True, verbose_name="expires at")),
                (
                    "expired_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Set when the expiration sweep offset this entry",
                        null=True,
                        verbose_name="expired at",
                    ),
                ),
            ],
            options={
                "verbose_name": "ledger entry",
                "verbose_name_plural": "ledger entries",
                "db_table": "rewardman_ledger_entry",
                "ordering": ["-id"],
                "indexes": [
                    models.Index(fields=["user_ref", "-id"], name="rewardman_entry_user_idx"),
                    models.Index(fields=["kind", "expires_at"], name="rewardman_entry_expiry_idx"),
                    models.Index(fields=["created_at"], name="rewardman_entry_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("source_key", ""), _negated=True),
                        fields=("kind", "source_key"),
                        name="rewardman_entry_unique_source",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BalanceProjection",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_ref", models.CharField(max_length=128, unique=True, verbose_name="user")),
                ("points", models.IntegerField(default=0, help_text="Redeemable balance", verbose_name="points")),
                (
                    "lifetime_points",
                    models.IntegerField(
                        default=0,
                        help_text="Points ever earned from orders and spins (never decreases)",
                        verbose_name="lifetime points",
                    ),
                ),
                (
                    "tier",
                    models.CharField(choices=TIER_CHOICES, default="bronze", max_length=20, verbose_name="tier"),
                ),
                ("orders_count", models.PositiveIntegerField(default=0, verbose_name="orders")),
                (
                    "total_spent",
                    models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=12, verbose_name="total spent"),
                ),
                ("version", models.PositiveIntegerField(default=0, verbose_name="version")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now, verbose_name="updated at")),
            ],
            options={
                "verbose_name": "balance",
                "verbose_name_plural": "balances",
                "db_table": "rewardman_balance",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("points__gte", 0)),
                        name="rewardman_balance_points_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("scope", models.CharField(max_length=32, verbose_name="scope")),
                ("key", models.CharField(max_length=255, verbose_name="key")),
                ("user_ref", models.CharField(db_index=True, max_length=128, verbose_name="user")),
                ("result", models.JSONField(default=dict, verbose_name="result")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="created at")),
                (
                    "entry",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="idempotency_records",
                        to="rewardman.ledgerentry",
                    ),
                ),
            ],
            options={
                "verbose_name": "idempotency record",
                "verbose_name_plural": "idempotency records",
                "db_table": "rewardman_idempotency_record",
                "constraints": [
                    models.UniqueConstraint(fields=("scope", "key"), name="rewardman_idempotency_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SpinRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_ref", models.CharField(max_length=128, verbose_name="user")),
                ("day_key", models.CharField(help_text="UTC date, YYYY-MM-DD", max_length=10, verbose_name="day")),
                ("outcome_label", models.CharField(max_length=50, verbose_name="outcome")),
                ("points", models.PositiveIntegerField(verbose_name="points")),
                ("is_jackpot", models.BooleanField(default=False, verbose_name="jackpot")),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name="spun at"),
                ),
                (
                    "entry",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="spin_record",
                        to="rewardman.ledgerentry",
                        verbose_name="ledger entry",
                    ),
                ),
            ],
            options={
                "verbose_name": "spin",
                "verbose_name_plural": "spins",
                "db_table": "rewardman_spin_record",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("user_ref", "day_key"), name="rewardman_spin_once_per_day"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Redemption",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("uuid", models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ("user_ref", models.CharField(db_index=True, max_length=128, verbose_name="user")),
                ("reward_code", models.CharField(max_length=50, verbose_name="reward")),
                ("reward_name", models.CharField(max_length=100, verbose_name="reward name")),
                ("points_used", models.PositiveIntegerField(verbose_name="points used")),
                (
                    "cogs",
                    models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=8, verbose_name="cost of goods"),
                ),
                ("code", models.CharField(max_length=16, unique=True, verbose_name="redemption code")),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("used", "Used")],
                        default="active",
                        max_length=10,
                        verbose_name="status",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name="created at"),
                ),
                ("expires_at", models.DateTimeField(verbose_name="expires at")),
                ("used_at", models.DateTimeField(blank=True, null=True, verbose_name="used at")),
                ("used_order_ref", models.CharField(blank=True, max_length=100, verbose_name="used on order")),
                (
                    "entry",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redemption",
                        to="rewardman.ledgerentry",
                    ),
                ),
            ],
            options={
                "verbose_name": "redemption",
                "verbose_name_plural": "redemptions",
                "db_table": "rewardman_redemption",
                "ordering": ["-created_at"],
            },
        ),
    ]
