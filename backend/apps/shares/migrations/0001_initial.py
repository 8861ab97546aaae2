import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='CoFounderInventory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('total_capacity', models.PositiveIntegerField(verbose_name='total capacity')),
                ('sold_count', models.PositiveIntegerField(default=0, verbose_name='sold')),
                ('price_naira_minor', models.BigIntegerField(verbose_name='price (kobo)')),
                ('price_usdt_minor', models.BigIntegerField(verbose_name='price (USDT cents)')),
                ('share_to_regular_ratio', models.PositiveIntegerField(default=29, validators=[django.core.validators.MinValueValidator(1)], verbose_name='share to regular ratio')),
                ('version', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
            ],
            options={
                'verbose_name': 'co-founder inventory',
                'verbose_name_plural': 'co-founder inventory',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('sold_count__lte', models.F('total_capacity'))), name='cofounder_sold_within_capacity'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ShareTier',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('number', models.PositiveSmallIntegerField(unique=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(3)], verbose_name='tier number')),
                ('capacity', models.PositiveIntegerField(verbose_name='capacity')),
                ('price_naira_minor', models.BigIntegerField(verbose_name='price (kobo)')),
                ('price_usdt_minor', models.BigIntegerField(verbose_name='price (USDT cents)')),
                ('sold_count', models.PositiveIntegerField(default=0, verbose_name='sold')),
                ('version', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
            ],
            options={
                'verbose_name': 'share tier',
                'verbose_name_plural': 'share tiers',
                'ordering': ['number'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('sold_count__lte', models.F('capacity'))), name='share_tier_sold_within_capacity'),
                ],
            },
        ),
    ]
