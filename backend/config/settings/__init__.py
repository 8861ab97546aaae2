"""
Settings package for the AfriMobile share platform.
Select a module with DJANGO_SETTINGS_MODULE, e.g.
backend.config.settings.development / .testing / .production.
"""
