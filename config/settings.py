"""
Django settings for the LogiTrack inventory & order API.

All deployment-specific values come from environment variables.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-secret-key-change-me')
DEBUG = env_bool('DJANGO_DEBUG', True)
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'core',
    'inventory',
    'orders',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'config.urls'
WSGI_APPLICATION = 'config.wsgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

# =============================================================================
# Database
# =============================================================================

DB_ENGINE = os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3')

if DB_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'logitrack.db')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': os.environ.get('DB_NAME', 'logitrack'),
            'USER': os.environ.get('DB_USER', 'logitrack'),
            'PASSWORD': os.environ.get('DB_PASSWORD', ''),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
            'CONN_MAX_AGE': int(os.environ.get('DB_CONN_MAX_AGE', '60')),
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

# =============================================================================
# Cache
# =============================================================================

REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')

INVENTORY_CACHE = {
    # 'locmem' (in-process), 'redis' (shared) or 'none' (disabled)
    'BACKEND': os.environ.get('CACHE_BACKEND', 'locmem'),
    'LOCATION': REDIS_URL,
    'KEY_PREFIX': os.environ.get('CACHE_KEY_PREFIX', ''),
    'SOCKET_TIMEOUT': float(os.environ.get('CACHE_SOCKET_TIMEOUT', '5')),
    'POLICIES': {
        'collection': {
            'ABSOLUTE_TTL': None,
            'SLIDING': int(os.environ.get('CACHE_COLLECTION_SLIDING', '60')),
        },
        'entity': {
            'ABSOLUTE_TTL': int(os.environ.get('CACHE_ENTITY_TTL', str(30 * 60))),
            'SLIDING': int(os.environ.get('CACHE_ENTITY_SLIDING', str(10 * 60))),
        },
        'query': {
            'ABSOLUTE_TTL': int(os.environ.get('CACHE_QUERY_TTL', str(30 * 60))),
            'SLIDING': int(os.environ.get('CACHE_QUERY_SLIDING', str(10 * 60))),
        },
    },
}

# Seconds between reconciliation ticks
INVENTORY_SYNC_INTERVAL = int(os.environ.get('INVENTORY_SYNC_INTERVAL', str(10 * 60)))
INVENTORY_SYNC_REFRESH_COLLECTIONS = env_bool('INVENTORY_SYNC_REFRESH_COLLECTIONS', True)

# =============================================================================
# Celery
# =============================================================================

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', REDIS_URL)
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', REDIS_URL)
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_BEAT_SCHEDULE = {
    'sync-inventory-cache': {
        'task': 'inventory.tasks.sync_inventory_cache',
        'schedule': float(INVENTORY_SYNC_INTERVAL),
    },
}

# =============================================================================
# REST framework
# =============================================================================

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': ['rest_framework.renderers.JSONRenderer'],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
    'EXCEPTION_HANDLER': 'core.exceptions.api_exception_handler',
}

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'core': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'inventory': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'orders': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
