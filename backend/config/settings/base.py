"""
Django settings for the AfriMobile share platform.
Production-ready settings with configuration management.
"""
from pathlib import Path
from datetime import timedelta
import environ

# Build paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
APPS_DIR = BASE_DIR / "backend" / "apps"

# Environment setup
env = environ.Env()
environ.Env.read_env(BASE_DIR / ".env")

# Debug mode
DEBUG = env.bool("DEBUG", default=False)

# ============================================================================
# Which environment we are running in. Only "production" makes secrets and
# infrastructure URLs mandatory; the other environments get safe local defaults.
# ============================================================================
DJANGO_ENV = env("DJANGO_ENV", default="development")
STRICT_ENV = DJANGO_ENV == "production"


def _required(name, default_dev, cast=str):
    """Require env var in production, allow a default elsewhere."""
    if STRICT_ENV:
        return env.get_value(name, cast=cast)  # No default – crashes if missing
    return env.get_value(name, cast=cast, default=default_dev)


SECRET_KEY = _required("SECRET_KEY", "django-insecure-development-key-change-in-production")
ALLOWED_HOSTS = _required("ALLOWED_HOSTS", ["localhost", "127.0.0.1"], cast=list)
REDIS_URL = _required("REDIS_URL", "redis://localhost:6379/1")

# ============================================================================
# APPLICATION DEFINITION
# ============================================================================
INSTALLED_APPS = [
    # ----- Custom apps (must be first for User model) -----
    "backend.apps.accounts",
    "backend.apps.shares",
    "backend.apps.payments",
    "backend.apps.installments",
    "backend.apps.referrals",
    "backend.apps.health_check",

    # ----- Django contrib apps -----
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # ----- Third‑party apps -----
    "rest_framework",
    "rest_framework_simplejwt",
    "corsheaders",
    "drf_spectacular",
    "django_filters",
    "django_celery_beat",
    "django_celery_results",
]

MIDDLEWARE = [
    # ----- Security & Performance (must be early) -----
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",               # Must be before CommonMiddleware

    # ----- Request tracing -----
    "backend.core.middleware.CorrelationIdMiddleware",

    # ----- Django core (required for admin & sessions) -----
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",

    "backend.core.middleware.SecurityHeadersMiddleware",
]

# URL configuration
ROOT_URLCONF = "backend.config.urls"

# Templates
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "backend" / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "backend.config.wsgi.application"

# ============================================================================
# Database – must have explicit credentials in production.
# ============================================================================
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": _required("POSTGRES_DB", "afrimobile"),
        "USER": _required("POSTGRES_USER", "postgres"),
        "PASSWORD": _required("POSTGRES_PASSWORD", "postgres"),
        "HOST": _required("POSTGRES_HOST", "localhost"),
        "PORT": _required("POSTGRES_PORT", "5432"),
        "CONN_MAX_AGE": 600,
        "OPTIONS": {"sslmode": "prefer"},
    }
}

# ============================================================================
# CACHES – throttling and sessions only; ledger data is never cached.
# ============================================================================
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
            "CONNECTION_POOL_KWARGS": {"max_connections": 100, "retry_on_timeout": True},
            "IGNORE_EXCEPTIONS": env.bool("CACHE_IGNORE_EXCEPTIONS", default=False),
            "SOCKET_CONNECT_TIMEOUT": 5,
            "SOCKET_TIMEOUT": 5,
        },
        "KEY_PREFIX": "afrimobile",
        "TIMEOUT": 60 * 15,
    }
}

SESSION_ENGINE = "django.contrib.sessions.backends.cached_db"
SESSION_CACHE_ALIAS = "default"

# ============================================================================
# CELERY CONFIGURATION
# ============================================================================
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default=REDIS_URL)
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="django-db")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_ENABLE_UTC = True
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=DEBUG)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_TASK_DEFAULT_QUEUE = "default"
CELERY_WORKER_PREFETCH_MULTIPLIER = env.int("CELERY_WORKER_PREFETCH_MULTIPLIER", default=1)
CELERY_WORKER_MAX_TASKS_PER_CHILD = env.int("CELERY_WORKER_MAX_TASKS_PER_CHILD", default=1000)

# ============================================================================
# AUTHENTICATION
# ============================================================================
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator", "OPTIONS": {"min_length": 10}},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

AUTH_USER_MODEL = "accounts.User"

# ============================================================================
# INTERNATIONALIZATION
# ============================================================================
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# ============================================================================
# STATIC FILES
# ============================================================================
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ============================================================================
# REST FRAMEWORK & JWT
# ============================================================================
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
    ],
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_THROTTLE_RATES": {
        "anon": "60/minute",
        "user": "120/minute",
        "webhook": env("WEBHOOK_THROTTLE_RATE", default="100/minute"),
    },
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "backend.core.exceptions.custom_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=1),
    "ROTATE_REFRESH_TOKENS": True,
    "UPDATE_LAST_LOGIN": True,
    "ALGORITHM": "HS256",
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
    "USER_ID_FIELD": "id",
    "USER_ID_CLAIM": "user_id",
}

# ============================================================================
# CORS
# ============================================================================
CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS", default=[
    "http://localhost:3000",
    "http://127.0.0.1:3000",
] if DEBUG else [])
CORS_ALLOW_CREDENTIALS = True

# ============================================================================
# SECURITY
# ============================================================================
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = "DENY"
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SECURE = not DEBUG
CSRF_COOKIE_SECURE = not DEBUG

# ============================================================================
# EMAIL CONFIGURATION
# ============================================================================
EMAIL_BACKEND = env(
    "EMAIL_BACKEND",
    default="django.core.mail.backends.console.EmailBackend" if DEBUG else "django.core.mail.backends.smtp.EmailBackend"
)
EMAIL_HOST = env("EMAIL_HOST", default="smtp.gmail.com")
EMAIL_PORT = env.int("EMAIL_PORT", default=587)
EMAIL_USE_TLS = env.bool("EMAIL_USE_TLS", default=True)
EMAIL_HOST_USER = env("EMAIL_HOST_USER", default="")
EMAIL_HOST_PASSWORD = env("EMAIL_HOST_PASSWORD", default="")
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", default="AfriMobile <noreply@afrimobile.com>")
EMAIL_TIMEOUT = 30
SUPPORT_EMAIL = env("SUPPORT_EMAIL", default="support@afrimobile.com")

# ============================================================================
# FRONTEND / CALLBACK URLS
# ============================================================================
FRONTEND_URL = env("FRONTEND_URL", default="http://localhost:3000")
SITE_URL = env("SITE_URL", default="http://localhost:8000")
# Explicit domain for provider callbacks (fallback uses SITE_URL)
DOMAIN_URL = env("DOMAIN_URL", default=SITE_URL)

# ============================================================================
# PAYMENT RAILS
# ============================================================================
# Card processor (Paystack)
PAYSTACK_SECRET_KEY = _required("PAYSTACK_SECRET_KEY", "sk_test_placeholder")
PAYSTACK_BASE_URL = env("PAYSTACK_BASE_URL", default="https://api.paystack.co")
PAYSTACK_WEBHOOK_MAX_SIZE = env.int("PAYSTACK_WEBHOOK_MAX_SIZE", default=102400)  # 100KB

# Invoice provider (Centiiv)
CENTIIV_API_KEY = _required("CENTIIV_API_KEY", "centiiv_test_placeholder")
CENTIIV_BASE_URL = env("CENTIIV_BASE_URL", default="https://api.centiiv.com/api/v1")
CENTIIV_WEBHOOK_SECRET = _required("CENTIIV_WEBHOOK_SECRET", "centiiv_webhook_placeholder")
CENTIIV_REMINDER_INTERVAL_DAYS = env.int("CENTIIV_REMINDER_INTERVAL_DAYS", default=7)
CENTIIV_DEFAULT_DUE_DAYS = env.int("CENTIIV_DEFAULT_DUE_DAYS", default=30)

# On-chain rail (BSC, USDT BEP-20)
BSC_RPC_URL = env("BSC_RPC_URL", default="https://bsc-dataseed1.binance.org/")
USDT_CONTRACT_ADDRESS = env("USDT_CONTRACT_ADDRESS", default="0x55d398326f99059fF775485246999027B3197955")
USDT_DECIMALS = env.int("USDT_DECIMALS", default=18)
COMPANY_WALLET_ADDRESS = _required("COMPANY_WALLET_ADDRESS", "0x0000000000000000000000000000000000000001")

# Manual transfers: bank details shown to buyers
MANUAL_PAYMENT_BANK_DETAILS = {
    "bank_name": env("MANUAL_BANK_NAME", default="Access Bank"),
    "account_name": env("MANUAL_ACCOUNT_NAME", default="AfriMobile Technologies Ltd"),
    "account_number": env("MANUAL_ACCOUNT_NUMBER", default=""),
}

# ============================================================================
# SHARE PLATFORM RULES
# ============================================================================
SHARE_PLATFORM = {
    "COFOUNDER_RATIO": env.int("COFOUNDER_RATIO", default=29),
    # Referral commission percentage per generation
    "REFERRAL_RATES": {1: 15, 2: 3, 3: 2},
    # Nightly reconcile rebuilds drifted aggregates from entries when enabled
    "REFERRAL_RECONCILE_REPAIR": env.bool("REFERRAL_RECONCILE_REPAIR", default=False),
    # Reconciliation sweep thresholds
    "PENDING_IDLE_HOURS": env.int("PENDING_IDLE_HOURS", default=1),
    "VERIFYING_IDLE_HOURS": env.int("VERIFYING_IDLE_HOURS", default=2),
    "CHAIN_VERIFY_DELAY_SECONDS": env.int("CHAIN_VERIFY_DELAY_SECONDS", default=15),
    "CHAIN_MAX_TX_AGE_HOURS": env.int("CHAIN_MAX_TX_AGE_HOURS", default=24),
    "RAIL_TIMEOUT_SECONDS": env.int("RAIL_TIMEOUT_SECONDS", default=30),
    "INVENTORY_COMMIT_RETRIES": env.int("INVENTORY_COMMIT_RETRIES", default=3),
    # Installment rules per purchase kind (percentages)
    "INSTALLMENT_RULES": {
        "regular": {"MIN_DOWN_PAYMENT_PCT": "20", "LATE_FEE_RATE_PCT": "0.34", "LATE_FEE_CAP_PCT": "5"},
        "cofounder": {"MIN_DOWN_PAYMENT_PCT": "25", "LATE_FEE_RATE_PCT": "0.5", "LATE_FEE_CAP_PCT": "7.5"},
    },
    "INSTALLMENT_MIN_MONTHS": 2,
    "INSTALLMENT_MAX_MONTHS": 12,
    "INSTALLMENT_GRACE_DAYS": 30,
}

# ============================================================================
# ADMIN
# ============================================================================
ADMINS = [("System Admin", env("ADMIN_EMAIL", default="admin@afrimobile.com"))]

# ============================================================================
# LOGGING
# ============================================================================
LOG_DIR = BASE_DIR / "logs"
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {"format": "{levelname} {name} {message}", "style": "{"},
    },
    "handlers": {
        "console": {
            "level": "INFO",
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
        "file": {
            "level": "WARNING",
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "django.log",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": True,
        },
        "backend": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": False,
        },
        "django_redis": {
            "handlers": ["file"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

# ============================================================================
# DRF SPECTACULAR
# ============================================================================
SPECTACULAR_SETTINGS = {
    "TITLE": "AfriMobile Share Platform API",
    "DESCRIPTION": "Share purchases, payment rails, installment plans and referral earnings",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
    "SCHEMA_PATH_PREFIX": "/api/",
}
