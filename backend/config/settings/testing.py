"""
Testing settings.
"""
from .base import *

DEBUG = False

# Use in-memory database for testing
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Disable password validation for testing
AUTH_PASSWORD_VALIDATORS = []

# Faster password hashing for testing
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Disable caching for testing
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}
SESSION_ENGINE = "django.contrib.sessions.backends.db"

# Disable email sending
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# Run Celery tasks inline
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

# No throttling in tests
REST_FRAMEWORK = {
    **REST_FRAMEWORK,
    "DEFAULT_THROTTLE_RATES": {"anon": None, "user": None, "webhook": None},
}

# Deterministic rail configuration
PAYSTACK_SECRET_KEY = "sk_test_secret"
CENTIIV_API_KEY = "centiiv_test_key"
CENTIIV_WEBHOOK_SECRET = "centiiv_test_webhook_secret"
COMPANY_WALLET_ADDRESS = "0x1111111111111111111111111111111111111111"
BSC_RPC_URL = "https://bsc.test.invalid/"
DOMAIN_URL = "https://api.afrimobile.test"
FRONTEND_URL = "https://app.afrimobile.test"

# Console-only logging (no log directory in CI)
LOGGING = {
    **LOGGING,
    "handlers": {
        "console": {
            "level": "WARNING",
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": True},
        "backend": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}

CORS_ALLOW_ALL_ORIGINS = True

TEST_RUNNER = "django.test.runner.DiscoverRunner"
