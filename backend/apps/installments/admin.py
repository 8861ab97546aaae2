from django.contrib import admin

from .models import Installment, InstallmentPayment, InstallmentPlan


class InstallmentInline(admin.TabularInline):
    model = Installment
    extra = 0
    can_delete = False
    readonly_fields = ('number', 'scheduled_amount_minor', 'due_date', 'status', 'paid_amount_minor', 'paid_at', 'transaction_id')

    def has_add_permission(self, request, obj=None):
        return False


class InstallmentPaymentInline(admin.TabularInline):
    model = InstallmentPayment
    extra = 0
    can_delete = False
    readonly_fields = ('transaction_id', 'amount_minor', 'shares_released', 'total_paid_after_minor', 'paid_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(InstallmentPlan)
class InstallmentPlanAdmin(admin.ModelAdmin):
    list_display = ('plan_id', 'user', 'kind', 'currency', 'months', 'total_price_minor', 'total_paid_minor', 'current_late_fee_minor', 'status')
    list_filter = ('status', 'kind', 'currency')
    search_fields = ('plan_id', 'user__email')
    inlines = [InstallmentInline, InstallmentPaymentInline]
    readonly_fields = (
        'plan_id', 'user', 'kind', 'currency', 'months', 'total_shares', 'tier1_shares', 'tier2_shares',
        'tier3_shares', 'total_price_minor', 'min_down_payment_minor', 'late_fee_rate_pct', 'late_fee_cap_pct',
        'total_paid_minor', 'shares_released', 'tier1_released', 'tier2_released', 'tier3_released',
        'current_late_fee_minor', 'months_late', 'status', 'created_at', 'last_payment_at',
        'last_late_check_at', 'completed_at', 'cancelled_at',
    )

    def has_delete_permission(self, request, obj=None):
        return False
