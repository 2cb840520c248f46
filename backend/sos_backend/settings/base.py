"""
Django settings for the sos_backend project.

Values come from the environment (loaded from backend/../.env when present);
every dispatch knob has a default so a bare checkout runs.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))


def env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-dev-only-change-me")
DEBUG = env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(',')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    'rest_framework',
    'corsheaders',
    'channels',

    'operators',
    'assistance',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'sos_backend.urls'

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

WSGI_APPLICATION = 'sos_backend.wsgi.application'
ASGI_APPLICATION = 'sos_backend.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.getenv("DB_ENGINE", 'django.db.backends.sqlite3'),
        'NAME': os.getenv("DB_NAME", str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv("DB_USER", ""),
        'PASSWORD': os.getenv("DB_PASSWORD", ""),
        'HOST': os.getenv("DB_HOST", ""),
        'PORT': os.getenv("DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
MEDIA_URL = 'media/'
MEDIA_ROOT = BASE_DIR / 'media'

# REST framework: no authentication, ownership is proven per call (phone number / operator id)
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
}

CORS_ALLOW_ALL_ORIGINS = True

# Channels: in-memory for development, Redis in prod.py
CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

# Celery
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    "cleanup-old-requests": {
        "task": "assistance.tasks.cleanup_old_requests_task",
        "schedule": 3600.0,
    },
}

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))

# ==================== Dispatch ====================

# Background scheduler thread started by the assistance app
ENABLE_DISPATCH_SCHEDULER = env_bool("ENABLE_DISPATCH_SCHEDULER", True)
DISPATCH_TICK_INTERVAL_SECONDS = float(os.getenv("DISPATCH_TICK_INTERVAL_SECONDS", 5))
DISPATCH_ROUND_DURATION_SECONDS = int(os.getenv("DISPATCH_ROUND_DURATION_SECONDS", 30))
DISPATCH_INITIAL_POOL_SIZE = int(os.getenv("DISPATCH_INITIAL_POOL_SIZE", 15))
DISPATCH_EXPANSION_INCREMENT = int(os.getenv("DISPATCH_EXPANSION_INCREMENT", 10))
DISPATCH_MAX_ROUNDS = int(os.getenv("DISPATCH_MAX_ROUNDS", 3))

OFFER_MAX_PRICE = os.getenv("OFFER_MAX_PRICE", "100000")
OFFER_MAX_ESTIMATED_MINUTES = int(os.getenv("OFFER_MAX_ESTIMATED_MINUTES", 1440))

OPERATOR_DEFAULT_SERVICE_RADIUS_KM = int(os.getenv("OPERATOR_DEFAULT_SERVICE_RADIUS_KM", 20))

# Completed/cancelled requests are purged after this many hours
REQUEST_RETENTION_HOURS = int(os.getenv("REQUEST_RETENTION_HOURS", 24))

# Offline push (empty URL disables it)
PUSH_GATEWAY_URL = os.getenv("PUSH_GATEWAY_URL", "")
PUSH_GATEWAY_TIMEOUT_SECONDS = float(os.getenv("PUSH_GATEWAY_TIMEOUT_SECONDS", 5))

# ==================== Logging ====================

LOG_LEVEL = os.getenv("DJANGO_LOG_LEVEL", "INFO")

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} [{name}] {threadName}: {message}',
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
        'django': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        'services': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'assistance': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'operators': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'realtime': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
