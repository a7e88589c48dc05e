"""
Django settings for config project.
"""

import os
from pathlib import Path

import dj_database_url
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

# Initialize Sentry
SENTRY_DSN = os.environ.get("SENTRY_DSN")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[DjangoIntegration()],
        traces_sample_rate=1.0,
        send_default_pii=True,
    )

# Build paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Security
SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-fallback-key")
DEBUG = os.environ.get("DEBUG") == "True"
ALLOWED_HOSTS = [
    "*",
]


# Application definition
INSTALLED_APPS = [
    "unfold",
    "unfold.contrib.filters",
    "simple_history",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django.contrib.humanize",
    "backoffice.apps.BackofficeConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "simple_history.middleware.HistoryRequestMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"


# Database
DATABASES = {
    "default": dj_database_url.config(
        default=os.environ.get("DATABASE_URL", "sqlite:///db.sqlite3"), conn_max_age=600
    )
}


# --- LEDGER ---
# Upper bound for one ledger operation (cancel, settle, write-off...)
LEDGER_TRANSACTION_TIMEOUT_MS = int(os.environ.get("LEDGER_TRANSACTION_TIMEOUT_MS", "15000"))
LEDGER_DATABASE_ALIAS = os.environ.get("LEDGER_DATABASE_ALIAS", "default")


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"
    },
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]


# Internationalization
LANGUAGE_CODE = "en-gb"
TIME_ZONE = "Europe/London"
USE_I18N = True
USE_TZ = True


# Static files
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}
MEDIA_URL = "/media/"
MEDIA_ROOT = os.path.join(BASE_DIR, "media")

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# --- LOGGING ---
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "backoffice": {
            "handlers": ["console"],
            "level": os.environ.get("BACKOFFICE_LOG_LEVEL", "INFO"),
        },
    },
}


# --- UNFOLD CONFIGURATION ---
UNFOLD = {
    "SITE_TITLE": "Travel Back Office",
    "SITE_HEADER": "Back Office",
    "SITE_URL": "/",
    "SIDEBAR": {
        "show_search": True,
        "show_all_applications": False,
        "navigation": [
            {
                "title": "Operations",
                "separator": True,
                "items": [
                    {
                        "title": "Bookings",
                        "icon": "airplane_ticket",
                        "link": "/admin/backoffice/booking/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_booking"
                        ),
                    },
                    {
                        "title": "Cancellations",
                        "icon": "event_busy",
                        "link": "/admin/backoffice/cancellation/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_cancellation"
                        ),
                    },
                ],
            },
            {
                "title": "Finance",
                "separator": True,
                "items": [
                    {
                        "title": "Customer Credit Notes",
                        "icon": "redeem",
                        "link": "/admin/backoffice/customercreditnote/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_customercreditnote"
                        ),
                    },
                    {
                        "title": "Supplier Credit Notes",
                        "icon": "confirmation_number",
                        "link": "/admin/backoffice/suppliercreditnote/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_suppliercreditnote"
                        ),
                    },
                    {
                        "title": "Customer Payables",
                        "icon": "request_quote",
                        "link": "/admin/backoffice/customerpayable/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_customerpayable"
                        ),
                    },
                    {
                        "title": "Supplier Payables",
                        "icon": "payments",
                        "link": "/admin/backoffice/supplierpayable/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_supplierpayable"
                        ),
                    },
                    {
                        "title": "Commission",
                        "icon": "workspace_premium",
                        "link": "/admin/backoffice/commissionentry/",
                        "permission": lambda request: request.user.has_perm(
                            "backoffice.view_commissionentry"
                        ),
                    },
                    {
                        "title": "Audit Log",
                        "icon": "history",
                        "link": "/admin/backoffice/auditlog/",
                        "permission": lambda request: request.user.is_superuser,
                    },
                ],
            },
        ],
    },
}

# --- SECURITY HARDENING ---
if not DEBUG:
    SECURE_SSL_REDIRECT = False
    SESSION_COOKIE_SECURE = False
    CSRF_COOKIE_SECURE = False
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_BROWSER_XSS_FILTER = True
    X_FRAME_OPTIONS = "DENY"
