import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('installments', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='GatewayEventLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('gateway', models.CharField(db_index=True, max_length=20)),
                ('event_type', models.CharField(blank=True, max_length=50)),
                ('reference', models.CharField(blank=True, db_index=True, max_length=255)),
                ('payload', models.JSONField(default=dict)),
                ('raw_payload', models.TextField(blank=True)),
                ('status_code', models.PositiveSmallIntegerField(default=200)),
                ('error_message', models.TextField(blank=True)),
                ('correlation_id', models.CharField(blank=True, db_index=True, max_length=64)),
                ('payload_hash', models.CharField(blank=True, editable=False, max_length=64, null=True, unique=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'gateway event log',
                'verbose_name_plural': 'gateway event logs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['gateway', '-created_at'], name='payments_gw_gateway_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PurchaseTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('transaction_id', models.CharField(max_length=32, unique=True, verbose_name='transaction ID')),
                ('kind', models.CharField(choices=[('regular', 'Regular'), ('cofounder', 'Co-founder')], max_length=10, verbose_name='share kind')),
                ('currency', models.CharField(choices=[('naira', 'Naira'), ('usdt', 'USDT')], max_length=5, verbose_name='currency')),
                ('shares', models.PositiveIntegerField(default=0, verbose_name='shares')),
                ('tier1_shares', models.PositiveIntegerField(default=0)),
                ('tier2_shares', models.PositiveIntegerField(default=0)),
                ('tier3_shares', models.PositiveIntegerField(default=0)),
                ('amount_minor', models.BigIntegerField(verbose_name='amount (minor units)')),
                ('price_per_share_minor', models.DecimalField(decimal_places=4, default=0, max_digits=24, verbose_name='price per share (minor units)')),
                ('rail', models.CharField(choices=[('card', 'Card (Paystack)'), ('chain', 'USDT on BSC'), ('invoice', 'Invoice (Centiiv)'), ('manual', 'Manual transfer'), ('admin_grant', 'Admin grant'), ('installment', 'Installment payment')], max_length=15, verbose_name='payment rail')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('verifying', 'Verifying'), ('completed', 'Completed'), ('failed', 'Failed'), ('cancelled', 'Cancelled'), ('refunded', 'Refunded')], db_index=True, default='pending', max_length=10, verbose_name='status')),
                ('status_reason', models.TextField(blank=True, verbose_name='status reason')),
                ('card_reference', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('chain_tx_hash', models.CharField(blank=True, max_length=66, null=True, unique=True)),
                ('chain_from_address', models.CharField(blank=True, max_length=42)),
                ('chain_to_address', models.CharField(blank=True, max_length=42)),
                ('invoice_order_id', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('invoice_payment_id', models.CharField(blank=True, max_length=100)),
                ('manual_proof_url', models.URLField(blank=True, max_length=500)),
                ('manual_method', models.CharField(blank=True, choices=[('bank', 'Bank transfer'), ('cash', 'Cash'), ('other', 'Other')], max_length=10)),
                ('manual_bank_name', models.CharField(blank=True, max_length=100)),
                ('manual_account_name', models.CharField(blank=True, max_length=150)),
                ('manual_reference', models.CharField(blank=True, max_length=100)),
                ('installment_number', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('admin_note', models.TextField(blank=True, verbose_name='admin note')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='metadata')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('verification_started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='completed at')),
                ('refunded_at', models.DateTimeField(blank=True, null=True, verbose_name='refunded at')),
                ('stuck_since', models.DateTimeField(blank=True, null=True)),
                ('installment_plan', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='installments.installmentplan')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='share_transactions', to=settings.AUTH_USER_MODEL)),
                ('verified_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='verified_share_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'purchase transaction',
                'verbose_name_plural': 'purchase transactions',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='payments_tx_user_status_idx'),
                    models.Index(fields=['rail', 'status', 'created_at'], name='payments_tx_rail_status_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount_minor__gte', 0)), name='purchase_amount_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TransactionStatusChange',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_status', models.CharField(blank=True, max_length=10)),
                ('to_status', models.CharField(max_length=10)),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('transaction', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_history', to='payments.purchasetransaction')),
            ],
            options={
                'verbose_name': 'status change',
                'verbose_name_plural': 'status changes',
                'ordering': ['created_at', 'id'],
            },
        ),
    ]
