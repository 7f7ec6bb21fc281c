import re
from pathlib import Path

import structlog
from decouple import config
from dj_database_url import parse as db_url

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Security - Fail Fast: no default forces explicit configuration
SECRET_KEY = config("SECRET_KEY")

DEBUG = config("DEBUG", default=False, cast=bool)

# Application definition
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    # Local Apps (Modules)
    "modules.core",
    "modules.catalog",
    "modules.customers",
    "modules.geography",
    "modules.invoicing",
]

# Database
DATABASES = {
    "default": config(
        "DATABASE_URL", default=f'sqlite:///{BASE_DIR / "db.sqlite3"}', cast=db_url
    )
}

# Cache - Redis
REDIS_URL = config("REDIS_URL", default="redis://localhost:6379/0")

CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
        },
    }
}

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = config("TIME_ZONE", default="UTC")
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Generic data layer (repositories, result cache, sweep)
# ---------------------------------------------------------------------------
DATA_LAYER = {
    "CACHE_ALIAS": config("DATA_LAYER_CACHE_ALIAS", default="default"),
    "CACHE_KEY_PREFIX": config("DATA_LAYER_CACHE_KEY_PREFIX", default="dal"),
    "CACHE_ENTRY_TIMEOUT": config(
        "DATA_LAYER_CACHE_ENTRY_TIMEOUT", default=86400, cast=int
    ),
    "COMPUTE_WAIT_TIMEOUT": config(
        "DATA_LAYER_COMPUTE_WAIT_TIMEOUT", default=5.0, cast=float
    ),
    "MAX_CONCURRENT_QUERIES": config(
        "DATA_LAYER_MAX_CONCURRENT_QUERIES", default=32, cast=int
    ),
    "ADMISSION_TIMEOUT": config("DATA_LAYER_ADMISSION_TIMEOUT", default=10.0, cast=float),
    "DEFAULT_SWEEP_INTERVAL": config(
        "DATA_LAYER_DEFAULT_SWEEP_INTERVAL", default=3600, cast=int
    ),
    # Transactional entities are swept every five minutes, reference data hourly.
    "SWEEP_INTERVALS": {
        "invoice": 300,
        "invoice-item": 300,
        "price-history": 300,
        "settlement": 300,
    },
}

# ---------------------------------------------------------------------------
# Celery (periodic cache sweep via Redis)
# ---------------------------------------------------------------------------
CELERY_BROKER_URL = config("CELERY_BROKER_URL", default="redis://localhost:6379/0")
CELERY_RESULT_BACKEND = config(
    "CELERY_RESULT_BACKEND", default="redis://localhost:6379/0"
)
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE

# ---------------------------------------------------------------------------
# Structured Logging (structlog + Django LOGGING)
# ---------------------------------------------------------------------------
SENSITIVE_PATTERN = re.compile(
    r"(password|passwd|secret|token|authorization|bank_account)"
    r"""(["']?\s*(?:[=:]|\s(?:equals|not_equals|contains|icontains|starts_with|istarts_with|in)\s)"""
    r"""\s*["']?)([^\s,}"']+)""",
    re.IGNORECASE,
)


def _mask(value):
    if isinstance(value, str):
        return SENSITIVE_PATTERN.sub(r"\1\2***MASKED***", value)
    if isinstance(value, dict):
        return {key: _mask(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_mask(item) for item in value)
    return value


def mask_sensitive_data(_, __, event_dict):
    """Processor that masks passwords, tokens and bank accounts in log values.

    Also covers predicate renderings such as ``bank_account equals '...'``
    nested in the ``context`` of repository errors.
    """
    for key, value in list(event_dict.items()):
        event_dict[key] = _mask(value)
    return event_dict


# Shared processors used by both structlog and stdlib logging
_shared_processors = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    mask_sensitive_data,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]

structlog.configure(
    processors=[
        *_shared_processors,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processors": [
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            "foreign_pre_chain": _shared_processors,
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": config("LOG_LEVEL", default="INFO"),
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "django.db.backends": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        # cache.hit / cache.miss are DEBUG events
        "modules": {
            "level": config("DATA_LAYER_LOG_LEVEL", default="INFO"),
        },
        "celery": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}
