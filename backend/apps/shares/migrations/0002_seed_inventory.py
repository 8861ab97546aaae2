from django.db import migrations

TIERS = {
    1: {"capacity": 2000, "price_naira_minor": 50000_00, "price_usdt_minor": 50_00},
    2: {"capacity": 3000, "price_naira_minor": 70000_00, "price_usdt_minor": 70_00},
    3: {"capacity": 5000, "price_naira_minor": 80000_00, "price_usdt_minor": 80_00},
}


def seed_inventory(apps, schema_editor):
    ShareTier = apps.get_model("shares", "ShareTier")
    CoFounderInventory = apps.get_model("shares", "CoFounderInventory")
    for number, values in TIERS.items():
        ShareTier.objects.get_or_create(number=number, defaults=values)
    CoFounderInventory.objects.get_or_create(
        pk=1,
        defaults={
            "total_capacity": 500,
            "price_naira_minor": 1000000_00,
            "price_usdt_minor": 1000_00,
            "share_to_regular_ratio": 29,
        },
    )


class Migration(migrations.Migration):

    dependencies = [
        ("shares", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_inventory, migrations.RunPython.noop),
    ]
