from django.apps import AppConfig


class HealthCheckConfig(AppConfig):
    name = 'backend.apps.health_check'
    verbose_name = 'System Health'
