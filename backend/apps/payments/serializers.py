from rest_framework import serializers

from backend.apps.shares.models import Currency, ShareKind
from backend.core.validators import validate_tx_hash, validate_wallet_address

from .models import GatewayEventLog, ManualMethod, PurchaseTransaction, TransactionStatusChange


class StatusChangeSerializer(serializers.ModelSerializer):
    actor_email = serializers.EmailField(source='actor.email', read_only=True, default=None)

    class Meta:
        model = TransactionStatusChange
        fields = ['from_status', 'to_status', 'actor_email', 'reason', 'created_at']
        read_only_fields = fields


class PurchaseTransactionSerializer(serializers.ModelSerializer):
    tier_breakdown = serializers.SerializerMethodField()
    plan_id = serializers.CharField(source='installment_plan.plan_id', read_only=True, default=None)

    class Meta:
        model = PurchaseTransaction
        fields = [
            'transaction_id', 'kind', 'currency', 'shares', 'tier_breakdown',
            'amount_minor', 'price_per_share_minor', 'rail', 'status', 'status_reason',
            'card_reference', 'chain_tx_hash', 'chain_from_address', 'invoice_order_id',
            'manual_method', 'manual_proof_url', 'plan_id', 'installment_number',
            'created_at', 'updated_at', 'completed_at', 'refunded_at',
        ]
        read_only_fields = fields

    def get_tier_breakdown(self, obj):
        return {f"tier{number}": count for number, count in obj.tier_breakdown.items()}


class AdminPurchaseTransactionSerializer(PurchaseTransactionSerializer):
    user_email = serializers.EmailField(source='user.email', read_only=True)
    verified_by_email = serializers.EmailField(source='verified_by.email', read_only=True, default=None)
    status_history = StatusChangeSerializer(many=True, read_only=True)

    class Meta(PurchaseTransactionSerializer.Meta):
        fields = PurchaseTransactionSerializer.Meta.fields + [
            'user_email', 'admin_note', 'verified_by_email', 'metadata',
            'manual_bank_name', 'manual_account_name', 'manual_reference',
            'invoice_payment_id', 'chain_to_address', 'stuck_since', 'status_history',
        ]
        read_only_fields = fields


class PurchaseRequestSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=ShareKind.choices, default=ShareKind.REGULAR)
    quantity = serializers.IntegerField(min_value=1)
    currency = serializers.ChoiceField(choices=Currency.choices)


class ChainPurchaseSerializer(PurchaseRequestSerializer):
    currency = serializers.ChoiceField(choices=[Currency.USDT], default=Currency.USDT)
    from_address = serializers.CharField(required=False, validators=[validate_wallet_address])


class ChainHashSerializer(serializers.Serializer):
    tx_hash = serializers.CharField(validators=[validate_tx_hash])


class ManualProofSerializer(serializers.Serializer):
    """Proof of an off-platform payment. ``proof_url`` points at the uploaded receipt."""
    proof_url = serializers.URLField(max_length=500)
    method = serializers.ChoiceField(choices=ManualMethod.choices, default=ManualMethod.BANK)
    bank_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    account_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    reference = serializers.CharField(max_length=100, required=False, allow_blank=True)


class ManualPurchaseSerializer(PurchaseRequestSerializer, ManualProofSerializer):
    pass


class CardVerifySerializer(serializers.Serializer):
    reference = serializers.CharField(max_length=100)


class AdminDecisionSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, default='')


class AdminGrantSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    kind = serializers.ChoiceField(choices=ShareKind.choices, default=ShareKind.REGULAR)
    shares = serializers.IntegerField(min_value=1)
    currency = serializers.ChoiceField(choices=Currency.choices, default=Currency.NAIRA)
    note = serializers.CharField(required=False, allow_blank=True, default='')


class GatewayEventLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = GatewayEventLog
        fields = [
            'id', 'gateway', 'event_type', 'reference', 'payload', 'status_code',
            'error_message', 'correlation_id', 'created_at',
        ]
        read_only_fields = fields
