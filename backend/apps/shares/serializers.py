from rest_framework import serializers

from .models import CoFounderInventory, Currency, ShareKind, ShareTier


class QuoteRequestSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=ShareKind.choices, default=ShareKind.REGULAR)
    quantity = serializers.IntegerField(min_value=1)
    currency = serializers.ChoiceField(choices=Currency.choices)


class ShareTierSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShareTier
        fields = ['number', 'capacity', 'sold_count', 'price_naira_minor', 'price_usdt_minor', 'updated_at']
        read_only_fields = fields


class CoFounderInventorySerializer(serializers.ModelSerializer):
    class Meta:
        model = CoFounderInventory
        fields = [
            'total_capacity', 'sold_count', 'price_naira_minor', 'price_usdt_minor',
            'share_to_regular_ratio', 'updated_at',
        ]
        read_only_fields = fields


class PricingUpdateSerializer(serializers.Serializer):
    """Admin pricing change for one tier (``1``..``3``) or the co-founder pool."""
    target = serializers.ChoiceField(choices=['1', '2', '3', ShareKind.COFOUNDER.value])
    price_naira_minor = serializers.IntegerField(min_value=1, required=False)
    price_usdt_minor = serializers.IntegerField(min_value=1, required=False)
    capacity = serializers.IntegerField(min_value=0, required=False)
    share_to_regular_ratio = serializers.IntegerField(min_value=1, required=False)

    def validate(self, attrs):
        changes = {k for k in attrs if k != 'target'}
        if not changes:
            raise serializers.ValidationError("Nothing to update.")
        return attrs
