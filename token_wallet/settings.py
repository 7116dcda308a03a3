"""Django settings for the token wallet platform.


The project hosts the custodial wallet ledger and its one-time wallet fee:
- Wallet operations (deposit / withdraw / transfer / stake) over a relational ledger
- Fee scheduling at signup, referral exemption, charge or lock on the due date
- A batch trigger meant to be called by an external scheduler (cron)


Authentication, price discovery and staking rewards live outside this service.
"""

import os
from pathlib import Path
from decimal import Decimal


BASE_DIR = Path(__file__).resolve().parent.parent
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DEBUG", "1") in ("1", "true", "True", "yes")
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(",")
CSRF_TRUSTED_ORIGINS = os.getenv("CSRF_TRUSTED_ORIGINS", "").split(",") if os.getenv("CSRF_TRUSTED_ORIGINS") else []

def env_bool(name, default=""):
    v = os.getenv(name, default)
    return v.lower() in ("1", "true", "yes", "on")

#######################
# Shared secret for the batch trigger (sent as "Authorization: Bearer <secret>").
# Empty => trigger is open (dev).
CRON_SECRET = os.getenv("CRON_SECRET", "")

# Wallet fee policy
WALLET_FEE_AMOUNT = Decimal(os.getenv("WALLET_FEE_AMOUNT", "2.00"))
WALLET_FEE_CURRENCY = os.getenv("WALLET_FEE_CURRENCY", "USD")
FREE_TRIAL_DAYS = int(os.getenv("FREE_TRIAL_DAYS", "30"))
MINIMUM_REFERRAL_STAKE = Decimal(os.getenv("MINIMUM_REFERRAL_STAKE", "20.00"))

# Refuse to charge when no admin wallet can receive the fee (keeps the ledger balanced).
WALLET_FEE_REQUIRE_RECEIVER = env_bool("WALLET_FEE_REQUIRE_RECEIVER", "1")
#######################


INSTALLED_APPS = [
	"django.contrib.admin",
	"django.contrib.auth",
	"django.contrib.contenttypes",
	"django.contrib.sessions",
	"django.contrib.messages",
	"django.contrib.staticfiles",
	# local apps
	"core",
	"api",
]


MIDDLEWARE = [
	"django.middleware.security.SecurityMiddleware",
	"django.contrib.sessions.middleware.SessionMiddleware",
	"django.middleware.common.CommonMiddleware",
	"django.middleware.csrf.CsrfViewMiddleware",
	"django.contrib.auth.middleware.AuthenticationMiddleware",
	"django.contrib.messages.middleware.MessageMiddleware",
]


ROOT_URLCONF = "token_wallet.urls"
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


WSGI_APPLICATION = "token_wallet.wsgi.application"


DB_ENGINE = os.getenv("DB_ENGINE", "sqlite")
if DB_ENGINE == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB", "token_wallet"),
            "USER": os.getenv("POSTGRES_USER", "token_wallet"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "token_wallet"),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
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
		"core": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": True},
		"api": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": True},
	},
}


AUTH_PASSWORD_VALIDATORS = []


LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True


STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
