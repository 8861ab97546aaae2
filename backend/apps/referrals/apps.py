from django.apps import AppConfig


class ReferralsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.apps.referrals'
    label = 'referrals'
    verbose_name = 'Referral Commissions'
