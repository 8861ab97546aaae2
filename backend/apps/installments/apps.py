from django.apps import AppConfig


class InstallmentsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.apps.installments'
    label = 'installments'
    verbose_name = 'Installment Plans'
