from django.contrib import admin

from .models import ReferralAggregate, ReferralEntry


@admin.register(ReferralEntry)
class ReferralEntryAdmin(admin.ModelAdmin):
    list_display = ('beneficiary', 'generation', 'purchase_kind', 'amount_minor', 'currency', 'status', 'source_transaction', 'created_at')
    list_filter = ('status', 'generation', 'purchase_kind', 'currency')
    search_fields = ('beneficiary__email', 'source_user__email', 'source_transaction__transaction_id')
    raw_id_fields = ('beneficiary', 'source_user', 'source_transaction', 'reverses', 'adjusted_by')
    # Edits go through the adjustment endpoints so aggregates stay in step
    readonly_fields = [f.name for f in ReferralEntry._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ReferralAggregate)
class ReferralAggregateAdmin(admin.ModelAdmin):
    list_display = ('user', 'gen1_earnings_minor', 'gen2_earnings_minor', 'gen3_earnings_minor', 'total_earnings_minor', 'updated_at')
    search_fields = ('user__email',)
    readonly_fields = [f.name for f in ReferralAggregate._meta.fields]

    def has_add_permission(self, request):
        return False
