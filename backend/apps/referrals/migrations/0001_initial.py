import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('payments', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='ReferralAggregate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('gen1_earnings_minor', models.BigIntegerField(default=0)),
                ('gen1_count', models.PositiveIntegerField(default=0)),
                ('gen2_earnings_minor', models.BigIntegerField(default=0)),
                ('gen2_count', models.PositiveIntegerField(default=0)),
                ('gen3_earnings_minor', models.BigIntegerField(default=0)),
                ('gen3_count', models.PositiveIntegerField(default=0)),
                ('total_earnings_minor', models.BigIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='referral_aggregate', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'referral aggregate',
                'verbose_name_plural': 'referral aggregates',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('gen1_earnings_minor__gte', 0), ('gen2_earnings_minor__gte', 0), ('gen3_earnings_minor__gte', 0), ('total_earnings_minor__gte', 0)), name='referral_aggregate_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReferralEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('generation', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(3)], verbose_name='generation')),
                ('purchase_kind', models.CharField(choices=[('regular', 'Regular purchase'), ('cofounder', 'Co-founder purchase'), ('adjustment', 'Admin adjustment')], max_length=10, verbose_name='purchase kind')),
                ('amount_minor', models.BigIntegerField(verbose_name='amount (minor units)')),
                ('currency', models.CharField(choices=[('naira', 'Naira'), ('usdt', 'USDT')], max_length=5, verbose_name='currency')),
                ('status', models.CharField(choices=[('completed', 'Completed'), ('reversed', 'Reversed')], default='completed', max_length=10, verbose_name='status')),
                ('original_amount_minor', models.BigIntegerField(blank=True, null=True)),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('adjusted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('beneficiary', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='referral_entries', to=settings.AUTH_USER_MODEL)),
                ('reverses', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='reversal', to='referrals.referralentry')),
                ('source_transaction', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='referral_entries', to='payments.purchasetransaction')),
                ('source_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'referral entry',
                'verbose_name_plural': 'referral entries',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['beneficiary', 'generation', 'status'], name='referrals_entry_benef_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount_minor__gte', 0)), name='referral_amount_non_negative'),
                    models.UniqueConstraint(condition=models.Q(('source_transaction__isnull', False)), fields=('source_transaction', 'generation', 'status'), name='one_entry_per_tx_generation_status'),
                ],
            },
        ),
    ]
