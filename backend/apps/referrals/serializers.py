from rest_framework import serializers

from backend.apps.shares.models import Currency

from .models import GENERATIONS, ReferralEntry


class ReferralEntrySerializer(serializers.ModelSerializer):
    source_user_email = serializers.EmailField(source='source_user.email', read_only=True, default=None)
    transaction_id = serializers.CharField(source='source_transaction.transaction_id', read_only=True, default=None)

    class Meta:
        model = ReferralEntry
        fields = [
            'id', 'generation', 'purchase_kind', 'amount_minor', 'currency', 'status',
            'source_user_email', 'transaction_id', 'created_at',
        ]
        read_only_fields = fields


class AdminReferralEntrySerializer(ReferralEntrySerializer):
    beneficiary_email = serializers.EmailField(source='beneficiary.email', read_only=True)
    adjusted_by_email = serializers.EmailField(source='adjusted_by.email', read_only=True, default=None)
    reverses_id = serializers.IntegerField(read_only=True, default=None)

    class Meta(ReferralEntrySerializer.Meta):
        fields = ReferralEntrySerializer.Meta.fields + [
            'beneficiary_email', 'original_amount_minor', 'adjusted_by_email', 'reason', 'reverses_id', 'updated_at',
        ]
        read_only_fields = fields


class EntryAdjustmentSerializer(serializers.Serializer):
    amount_minor = serializers.IntegerField(min_value=0, required=False)
    status = serializers.ChoiceField(choices=ReferralEntry.Status.choices, required=False)
    reason = serializers.CharField()

    def validate(self, attrs):
        if 'amount_minor' not in attrs and 'status' not in attrs:
            raise serializers.ValidationError('Provide an amount or a status to change.')
        return attrs


class ManualAdjustmentSerializer(serializers.Serializer):
    """Negative amounts debit the beneficiary."""
    user_id = serializers.UUIDField()
    amount_minor = serializers.IntegerField()
    currency = serializers.ChoiceField(choices=Currency.choices, default=Currency.NAIRA)
    generation = serializers.ChoiceField(choices=GENERATIONS, default=1)
    reason = serializers.CharField()

    def validate_amount_minor(self, value):
        if value == 0:
            raise serializers.ValidationError('Adjustment amount cannot be zero.')
        return value
