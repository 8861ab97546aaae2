from django.contrib import admin

from .models import GatewayEventLog, PurchaseTransaction, TransactionStatusChange


class TransactionStatusChangeInline(admin.TabularInline):
    model = TransactionStatusChange
    extra = 0
    can_delete = False
    readonly_fields = ('from_status', 'to_status', 'actor', 'reason', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(PurchaseTransaction)
class PurchaseTransactionAdmin(admin.ModelAdmin):
    list_display = ('transaction_id', 'user', 'kind', 'shares', 'amount_minor', 'currency', 'rail', 'status', 'created_at')
    list_filter = ('status', 'rail', 'kind', 'currency')
    search_fields = ('transaction_id', 'user__email', 'card_reference', 'chain_tx_hash', 'invoice_order_id')
    date_hierarchy = 'created_at'
    inlines = [TransactionStatusChangeInline]
    # Status and amounts move only through the ledger services
    readonly_fields = (
        'transaction_id', 'user', 'kind', 'currency', 'shares', 'tier1_shares', 'tier2_shares',
        'tier3_shares', 'amount_minor', 'price_per_share_minor', 'rail', 'status', 'status_reason',
        'card_reference', 'chain_tx_hash', 'invoice_order_id', 'installment_plan', 'installment_number',
        'verified_by', 'created_at', 'updated_at', 'verification_started_at', 'completed_at',
        'refunded_at', 'stuck_since',
    )

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(GatewayEventLog)
class GatewayEventLogAdmin(admin.ModelAdmin):
    list_display = ('gateway', 'event_type', 'reference', 'status_code', 'correlation_id', 'created_at')
    list_filter = ('gateway', 'status_code')
    search_fields = ('reference', 'correlation_id')
    readonly_fields = [f.name for f in GatewayEventLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
