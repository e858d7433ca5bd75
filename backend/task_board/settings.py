"""
Django settings for task_board project.

Everything deployment-specific is read from the environment:

- TASK_API_BASE_URL: root of the task-management API
- TASK_API_TIMEOUT: seconds before an outbound call is abandoned
- TASK_BOARD_SECRET_KEY, TASK_BOARD_DEBUG, TASK_BOARD_ALLOWED_HOSTS
- TASK_BOARD_LOG_LEVEL
- IMPORT_MAX_UPLOAD_BYTES
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('TASK_BOARD_SECRET_KEY', 'django-insecure-task-board-dev-key')

DEBUG = os.environ.get('TASK_BOARD_DEBUG', 'true').lower() in ('1', 'true', 'yes')

ALLOWED_HOSTS = [h for h in os.environ.get('TASK_BOARD_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]


INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.staticfiles',
    'rest_framework',
    'drf_spectacular',
    'planner',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'task_board.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'task_board.wsgi.application'

# Only sessions live here; task data belongs to the task-management API.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

SESSION_ENGINE = 'django.contrib.sessions.backends.db'

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# ============================================
# TASK MANAGEMENT API
# ============================================

TASK_API = {
    'BASE_URL': os.environ.get('TASK_API_BASE_URL', 'http://localhost:8080/api'),
    'TIMEOUT': float(os.environ.get('TASK_API_TIMEOUT', '30')),
}

# The upload size limit is enforced by the import workflow, before any call.
IMPORT_WORKFLOW = {
    'MAX_UPLOAD_BYTES': int(os.environ.get('IMPORT_MAX_UPLOAD_BYTES', str(10 * 1024 * 1024))),
}


# ============================================
# REST FRAMEWORK
# ============================================

REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'Task Board API',
    'DESCRIPTION': 'Projects, tasks, Gantt chart rows and spreadsheet imports '
                   'on top of the task-management service.',
    'VERSION': '1.0.0',
}


# ============================================
# LOGGING
# ============================================

LOG_LEVEL = os.environ.get('TASK_BOARD_LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
        },
    },
    'loggers': {
        'planner': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'django': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
    },
}
