from django.contrib import admin

from .models import CoFounderInventory, ShareTier


@admin.register(ShareTier)
class ShareTierAdmin(admin.ModelAdmin):
    list_display = ('number', 'capacity', 'sold_count', 'price_naira_minor', 'price_usdt_minor', 'updated_at')
    # Counters only move through settle/refund
    readonly_fields = ('sold_count', 'version', 'updated_at')


@admin.register(CoFounderInventory)
class CoFounderInventoryAdmin(admin.ModelAdmin):
    list_display = ('total_capacity', 'sold_count', 'share_to_regular_ratio', 'price_naira_minor', 'price_usdt_minor')
    readonly_fields = ('sold_count', 'version', 'updated_at')

    def has_add_permission(self, request):
        return not CoFounderInventory.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
