# Referral and birthday bonuses

from django.db import migrations, models


KIND_CHOICES = [
    ("order_earn", "Order earn"),
    ("spin_award", "Spin award"),
    ("redemption", "Redemption"),
    ("admin_adjustment", "Admin adjustment"),
    ("expiration", "Expiration"),
    ("referral_bonus", "Referral bonus"),
    ("birthday_bonus", "Birthday bonus"),
]


class Migration(migrations.Migration):

    dependencies = [
        ("rewardman", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="ledgerentry",
            name="kind",
            field=models.CharField(choices=KIND_CHOICES, max_length=20, verbose_name="kind"),
        ),
        migrations.AlterField(
            model_name="balanceprojection",
            name="lifetime_points",
            field=models.IntegerField(
                default=0,
                help_text="Points ever earned from orders, spins and bonuses (never decreases)",
                verbose_name="lifetime points",
            ),
        ),
        migrations.AddField(
            model_name="balanceprojection",
            name="birthday",
            field=models.DateField(blank=True, null=True, verbose_name="birthday"),
        ),
        migrations.AddField(
            model_name="balanceprojection",
            name="referral_code",
            field=models.CharField(blank=True, max_length=16, null=True, unique=True, verbose_name="referral code"),
        ),
        migrations.AddField(
            model_name="balanceprojection",
            name="referred_by",
            field=models.CharField(blank=True, max_length=128, verbose_name="referred by"),
        ),
    ]
