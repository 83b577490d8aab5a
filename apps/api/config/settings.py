"""
Django settings for the medical-supply inventory ledger.
"""

import os
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Application version
VERSION = os.environ.get('APP_VERSION', '1.0.0')
COMMIT_HASH = os.environ.get('COMMIT_HASH', None)

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DJANGO_DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    # Local apps
    'apps.core',        # observability, operation context
    'apps.products',    # product catalog (read-only for the ledger)
    'apps.partners',    # suppliers, clients, bags
    'apps.stock',       # lots, kardex, documents, posting services
]

# Database
DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DATABASE_ENGINE', 'django.db.backends.postgresql'),
        'NAME': os.environ.get('DATABASE_NAME', 'medsupply_db'),
        'USER': os.environ.get('DATABASE_USER', 'medsupply_user'),
        'PASSWORD': os.environ.get('DATABASE_PASSWORD', 'medsupply_dev_pass'),
        'HOST': os.environ.get('DATABASE_HOST', 'postgres'),
        'PORT': os.environ.get('DATABASE_PORT', '5432'),
        'ATOMIC_REQUESTS': False,
    }
}

# Internationalization
LANGUAGE_CODE = 'es'
TIME_ZONE = os.environ.get('DJANGO_TIME_ZONE', 'America/Bogota')
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ==============================================================================
# INVENTORY LEDGER
# ==============================================================================
# Window used by expiring-soon listings and the inventory summary
STOCK_EXPIRING_SOON_DAYS = int(os.environ.get('STOCK_EXPIRING_SOON_DAYS', 30))

# Kardex page size and hard ceiling
STOCK_KARDEX_DEFAULT_LIMIT = int(os.environ.get('STOCK_KARDEX_DEFAULT_LIMIT', 50))
STOCK_KARDEX_MAX_LIMIT = int(os.environ.get('STOCK_KARDEX_MAX_LIMIT', 500))

# Document numbering: PREFIX-NNNNNN
STOCK_DOCUMENT_NUMBER_WIDTH = int(os.environ.get('STOCK_DOCUMENT_NUMBER_WIDTH', 6))
STOCK_DOCUMENT_NUMBER_RETRIES = int(os.environ.get('STOCK_DOCUMENT_NUMBER_RETRIES', 3))

# ==============================================================================
# LOGGING
# ==============================================================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'correlation': {
            '()': 'apps.core.observability.logging.CorrelationFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} [{operation_id}] {message}',
            'style': '{',
        },
        'json': {
            '()': 'apps.core.observability.logging.SanitizedJSONFormatter',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json' if not DEBUG else 'verbose',
            'filters': ['correlation'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': 'DEBUG' if DEBUG else 'INFO',
            'propagate': False,
        },
    },
}
