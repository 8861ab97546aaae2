from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    ordering = ('-date_joined',)
    list_display = ('email', 'get_full_name', 'role', 'referral_code', 'referred_by', 'is_active', 'date_joined')
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('email', 'first_name', 'last_name', 'referral_code')
    readonly_fields = ('referral_code', 'date_joined', 'updated_at', 'last_login')
    raw_id_fields = ('referred_by',)
    exclude = ('password',)

    fieldsets = (
        (None, {'fields': ('email',)}),
        (_('Personal info'), {'fields': ('first_name', 'last_name', 'phone', 'wallet_address')}),
        (_('Referral'), {'fields': ('referral_code', 'referred_by')}),
        (_('Permissions'), {'fields': ('role', 'is_active', 'is_staff', 'is_superuser')}),
        (_('Dates'), {'fields': ('last_login', 'date_joined', 'updated_at')}),
    )
