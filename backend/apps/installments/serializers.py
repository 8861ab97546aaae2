from rest_framework import serializers

from backend.apps.payments.serializers import ManualProofSerializer
from backend.apps.shares.models import Currency, ShareKind

from .models import Installment, InstallmentPayment, InstallmentPlan


class InstallmentSerializer(serializers.ModelSerializer):
    outstanding_minor = serializers.IntegerField(read_only=True)

    class Meta:
        model = Installment
        fields = [
            'number', 'scheduled_amount_minor', 'due_date', 'status',
            'paid_amount_minor', 'outstanding_minor', 'paid_at', 'is_first_payment',
        ]
        read_only_fields = fields


class InstallmentPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = InstallmentPayment
        fields = ['transaction_id', 'amount_minor', 'shares_released', 'total_paid_after_minor', 'paid_at']
        read_only_fields = fields


class InstallmentPlanSerializer(serializers.ModelSerializer):
    remaining_balance_minor = serializers.IntegerField(read_only=True)
    tier_breakdown = serializers.SerializerMethodField()
    installments = InstallmentSerializer(many=True, read_only=True)
    payments = InstallmentPaymentSerializer(many=True, read_only=True)

    class Meta:
        model = InstallmentPlan
        fields = [
            'plan_id', 'kind', 'currency', 'months', 'total_shares', 'tier_breakdown',
            'total_price_minor', 'min_down_payment_minor', 'late_fee_rate_pct', 'late_fee_cap_pct',
            'total_paid_minor', 'remaining_balance_minor', 'shares_released',
            'current_late_fee_minor', 'months_late', 'status', 'cancellation_reason',
            'created_at', 'last_payment_at', 'completed_at', 'cancelled_at',
            'installments', 'payments',
        ]
        read_only_fields = fields

    def get_tier_breakdown(self, obj):
        return {f"tier{number}": count for number, count in obj.tier_breakdown.items()}


class AdminInstallmentPlanSerializer(InstallmentPlanSerializer):
    user_email = serializers.EmailField(source='user.email', read_only=True)

    class Meta(InstallmentPlanSerializer.Meta):
        fields = InstallmentPlanSerializer.Meta.fields + ['user_email', 'last_late_check_at']
        read_only_fields = fields


class PlanRequestSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=ShareKind.choices, default=ShareKind.REGULAR)
    currency = serializers.ChoiceField(choices=Currency.choices)
    months = serializers.IntegerField()


class PlanPaymentSerializer(serializers.Serializer):
    amount_minor = serializers.IntegerField(min_value=1)
    method = serializers.ChoiceField(choices=['card', 'manual'], default='card')
    proof = ManualProofSerializer(required=False)

    def validate(self, attrs):
        if attrs['method'] == 'manual' and not attrs.get('proof'):
            raise serializers.ValidationError({'proof': 'Proof of payment is required for manual payments.'})
        return attrs


class PlanCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')
