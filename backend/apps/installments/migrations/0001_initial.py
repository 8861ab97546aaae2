import uuid

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='InstallmentPlan',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('plan_id', models.CharField(max_length=32, unique=True, verbose_name='plan ID')),
                ('kind', models.CharField(choices=[('regular', 'Regular'), ('cofounder', 'Co-founder')], max_length=10, verbose_name='share kind')),
                ('currency', models.CharField(choices=[('naira', 'Naira'), ('usdt', 'USDT')], max_length=5, verbose_name='currency')),
                ('months', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(2), django.core.validators.MaxValueValidator(12)], verbose_name='months')),
                ('total_shares', models.PositiveIntegerField(default=1, verbose_name='total shares')),
                ('tier1_shares', models.PositiveIntegerField(default=0)),
                ('tier2_shares', models.PositiveIntegerField(default=0)),
                ('tier3_shares', models.PositiveIntegerField(default=0)),
                ('total_price_minor', models.BigIntegerField(verbose_name='total price (minor units)')),
                ('min_down_payment_minor', models.BigIntegerField(verbose_name='minimum down payment')),
                ('late_fee_rate_pct', models.DecimalField(decimal_places=3, max_digits=6, verbose_name='monthly late fee (%)')),
                ('late_fee_cap_pct', models.DecimalField(decimal_places=3, max_digits=6, verbose_name='late fee cap (%)')),
                ('total_paid_minor', models.BigIntegerField(default=0, verbose_name='total paid')),
                ('shares_released', models.PositiveIntegerField(default=0, verbose_name='shares released')),
                ('tier1_released', models.PositiveIntegerField(default=0)),
                ('tier2_released', models.PositiveIntegerField(default=0)),
                ('tier3_released', models.PositiveIntegerField(default=0)),
                ('current_late_fee_minor', models.BigIntegerField(default=0, verbose_name='current late fee')),
                ('months_late', models.PositiveSmallIntegerField(default=0)),
                ('status', models.CharField(choices=[('pending', 'Pending first payment'), ('active', 'Active'), ('late', 'Late'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=10, verbose_name='status')),
                ('cancellation_reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('last_payment_at', models.DateTimeField(blank=True, null=True)),
                ('last_late_check_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='installment_plans', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'installment plan',
                'verbose_name_plural': 'installment plans',
                'ordering': ['-created_at'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ['pending', 'active', 'late'])), fields=('user', 'kind'), name='one_open_plan_per_user_kind'),
                    models.CheckConstraint(condition=models.Q(('total_paid_minor__gte', 0), ('total_paid_minor__lte', models.F('total_price_minor'))), name='plan_paid_within_price'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Installment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('number', models.PositiveSmallIntegerField()),
                ('scheduled_amount_minor', models.BigIntegerField()),
                ('due_date', models.DateField()),
                ('status', models.CharField(choices=[('upcoming', 'Upcoming'), ('partial', 'Partially paid'), ('paid', 'Paid')], default='upcoming', max_length=10)),
                ('paid_amount_minor', models.BigIntegerField(default=0)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('transaction_id', models.CharField(blank=True, max_length=32)),
                ('is_first_payment', models.BooleanField(default=False)),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='installments', to='installments.installmentplan')),
            ],
            options={
                'ordering': ['plan', 'number'],
                'constraints': [
                    models.UniqueConstraint(fields=('plan', 'number'), name='unique_installment_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='InstallmentPayment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('transaction_id', models.CharField(max_length=32, unique=True)),
                ('amount_minor', models.BigIntegerField()),
                ('shares_released', models.PositiveIntegerField(default=0)),
                ('total_paid_after_minor', models.BigIntegerField()),
                ('paid_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='installments.installmentplan')),
            ],
            options={
                'ordering': ['paid_at', 'id'],
            },
        ),
    ]
