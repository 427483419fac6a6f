"""
Django settings for MnetiFi Hotspot Billing
"""

from pathlib import Path
from decouple import config, Csv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = config(
    "SECRET_KEY", default="django-insecure-mnetifi-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config("DEBUG", default=False, cast=bool)

ALLOWED_HOSTS = config(
    "ALLOWED_HOSTS",
    default="localhost,127.0.0.1,testserver",
    cast=Csv(),
)

# Application definition
INSTALLED_APPS = [
    "jazzmin",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "corsheaders",
    "django_crontab",  # For scheduled tasks
    "hotspot",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "mnetifi.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
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

WSGI_APPLICATION = "mnetifi.wsgi.application"

# Database
# SQLite by default; point DB_ENGINE at postgresql/mysql in production
DB_ENGINE = config("DB_ENGINE", default="django.db.backends.sqlite3")

if DB_ENGINE == "django.db.backends.sqlite3":
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": config("DB_NAME", default=str(BASE_DIR / "db.sqlite3")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": config("DB_NAME", default="mnetifi"),
            "USER": config("DB_USER", default="mnetifi"),
            "PASSWORD": config("DB_PASSWORD", default=""),
            "HOST": config("DB_HOST", default="localhost"),
            "PORT": config("DB_PORT", default=""),
        }
    }


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "Africa/Nairobi"
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

if DEBUG:
    STATICFILES_STORAGE = "django.contrib.staticfiles.storage.StaticFilesStorage"
else:
    STATICFILES_STORAGE = "whitenoise.storage.CompressedManifestStaticFilesStorage"

# WhiteNoise settings
WHITENOISE_USE_FINDERS = DEBUG
WHITENOISE_AUTOREFRESH = DEBUG
WHITENOISE_MAX_AGE = 31536000 if not DEBUG else 0  # 1 year cache in production

# Security Settings - Environment Aware Configuration
if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    X_FRAME_OPTIONS = "DENY"
    SECURE_REFERRER_POLICY = "same-origin"
else:
    SESSION_COOKIE_SECURE = False
    CSRF_COOKIE_SECURE = False
    X_FRAME_OPTIONS = "SAMEORIGIN"

# Logging
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO" if DEBUG else "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "hotspot": {
            "handlers": ["console"],
            "level": config("HOTSPOT_LOG_LEVEL", default="INFO"),
            "propagate": False,
        },
    },
}

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# REST Framework Configuration
REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
    ],
    "EXCEPTION_HANDLER": "hotspot.exception_handler.custom_exception_handler",
}

# CORS settings - the captive portal page is served from the router
if DEBUG:
    CORS_ALLOW_ALL_ORIGINS = True
    CORS_ALLOWED_ORIGINS = []
else:
    CORS_ALLOW_ALL_ORIGINS = False
    CORS_ALLOWED_ORIGINS = config(
        "CORS_ALLOWED_ORIGINS",
        default="http://localhost:5000",
        cast=Csv(),
    )

CORS_ALLOW_METHODS = [
    "GET",
    "OPTIONS",
    "POST",
]

# Captive portal checkout (hotspot.checkout)
PORTAL_API_BASE_URL = config("PORTAL_API_BASE_URL", default="http://localhost:8000")
PORTAL_API_TIMEOUT = config("PORTAL_API_TIMEOUT", default=15, cast=int)  # seconds
PAYMENT_POLL_INTERVAL_SECONDS = config(
    "PAYMENT_POLL_INTERVAL_SECONDS", default=3.0, cast=float
)
PAYMENT_POLL_MAX_ATTEMPTS = config("PAYMENT_POLL_MAX_ATTEMPTS", default=30, cast=int)

# M-Pesa Daraja Configuration
MPESA_CONSUMER_KEY = config("MPESA_CONSUMER_KEY", default="")
MPESA_CONSUMER_SECRET = config("MPESA_CONSUMER_SECRET", default="")
MPESA_SHORTCODE = config("MPESA_SHORTCODE", default="")
MPESA_PASSKEY = config("MPESA_PASSKEY", default="")
MPESA_SANDBOX = config("MPESA_SANDBOX", default=True, cast=bool)
MPESA_CALLBACK_URL = config(
    "MPESA_CALLBACK_URL", default="http://localhost:8000/api/transactions/callback"
)

# Pending payment reconciliation
PENDING_TRANSACTION_TIMEOUT_MINUTES = config(
    "PENDING_TRANSACTION_TIMEOUT_MINUTES", default=10, cast=int
)
SIMULATED_CONFIRMATION_SECONDS = config(
    "SIMULATED_CONFIRMATION_SECONDS", default=20, cast=int
)

# SMS Configuration ("africastalking" or "mock")
SMS_PROVIDER = config("SMS_PROVIDER", default="mock")
SMS_API_KEY = config("SMS_API_KEY", default="")
SMS_USERNAME = config("SMS_USERNAME", default="sandbox")
SMS_SENDER_ID = config("SMS_SENDER_ID", default="MnetiFi")

# Jazzmin Configuration
JAZZMIN_SETTINGS = {
    "site_title": "MnetiFi Admin",
    "site_header": "MnetiFi",
    "site_brand": "MnetiFi",
    "welcome_sign": "Welcome to MnetiFi Hotspot Billing",
    "copyright": "MnetiFi",
    "search_model": [
        "hotspot.Transaction",
        "hotspot.Plan",
    ],
    "show_sidebar": True,
    "navigation_expanded": True,
    "order_with_respect_to": ["hotspot", "auth"],
    "icons": {
        "auth": "fas fa-users-cog",
        "auth.user": "fas fa-user",
        "hotspot.Plan": "fas fa-layer-group",
        "hotspot.Transaction": "fas fa-credit-card",
        "hotspot.WalledGarden": "fas fa-shield-alt",
        "hotspot.SMSLog": "fas fa-sms",
    },
    "default_icon_parents": "fas fa-chevron-circle-right",
    "default_icon_children": "fas fa-circle",
    "related_modal_active": False,
    "changeform_format": "horizontal_tabs",
    "language_chooser": False,
}

JAZZMIN_UI_TWEAKS = {
    "navbar": "navbar-white navbar-light",
    "sidebar": "sidebar-dark-primary",
    "theme": "default",
}

# CRONTAB CONFIGURATION FOR SCHEDULED TASKS
# Run 'python manage.py crontab add' to install cron jobs
CRONJOBS = [
    # Reconcile pending M-Pesa transactions every minute
    (
        "* * * * *",
        "hotspot.tasks.check_pending_transactions",
        ">> /var/log/mnetifi_cron.log 2>&1",
    ),
]
