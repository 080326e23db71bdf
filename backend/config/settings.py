"""
Django settings for Legal Oracle backend.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
# Also seals the session cookie, so keep it long (>= 32 chars).
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-dev-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'False').lower() in ('true', '1', 'yes')

ALLOWED_HOSTS = [
    h.strip() for h in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
]

# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'apps.authn',
    'apps.docs',
    'apps.chat',
    'apps.history',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = []

WSGI_APPLICATION = 'config.wsgi.application'
ASGI_APPLICATION = 'config.asgi.application'

# No database: documents live with the client, history in a JSON file,
# and the session is a signed cookie.
DATABASES = {}

# Password validation (minimal for API-only backend)
AUTH_PASSWORD_VALIDATORS = []

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Request bodies carry base64 documents
DATA_UPLOAD_MAX_MEMORY_SIZE = int(os.getenv('DATA_UPLOAD_MAX_MEMORY_SIZE', 50 * 1024 * 1024))

# =============================================================================
# Django REST Framework
# =============================================================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'UNAUTHENTICATED_USER': None,
}

# =============================================================================
# Session (sealed cookie, 7 days)
# =============================================================================
SESSION_ENGINE = 'django.contrib.sessions.backends.signed_cookies'
SESSION_SERIALIZER = 'django.contrib.sessions.serializers.JSONSerializer'
SESSION_COOKIE_NAME = 'session'
SESSION_COOKIE_AGE = 7 * 24 * 60 * 60
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = 'Lax'
SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', str(not DEBUG)).lower() in ('true', '1', 'yes')

# =============================================================================
# Single admin account
# =============================================================================
ADMIN_EMAIL = os.getenv('ADMIN_EMAIL', '')

# Django password hash, generate with: python manage.py hash_password <password>
ADMIN_PASSWORD_HASH = os.getenv('ADMIN_PASSWORD_HASH', '')

# Password changes are persisted here and take precedence over ADMIN_PASSWORD_HASH
ADMIN_CREDENTIALS_FILE = Path(os.getenv('ADMIN_CREDENTIALS_FILE', BASE_DIR / 'data' / 'credentials.json'))

MIN_PASSWORD_LENGTH = int(os.getenv('MIN_PASSWORD_LENGTH', '8'))

# =============================================================================
# LLM Backends
# =============================================================================
# Provider used for mode="cloud": cohere, gemini or together
CLOUD_PROVIDER = os.getenv('CLOUD_PROVIDER', 'cohere').lower()

COHERE_API_KEY = os.getenv('COHERE_API_KEY', '')
COHERE_MODEL = os.getenv('COHERE_MODEL', 'command-a-03-2025')
COHERE_API_URL = os.getenv('COHERE_API_URL', 'https://api.cohere.ai/v1/chat')

GEMINI_API_KEY = os.getenv('GEMINI_API_KEY', '')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-1.5-flash')
GEMINI_BASE_URL = os.getenv('GEMINI_BASE_URL', 'https://generativelanguage.googleapis.com/v1beta')

TOGETHER_API_KEY = os.getenv('TOGETHER_API_KEY', '')
TOGETHER_MODEL = os.getenv('TOGETHER_MODEL', 'meta-llama/Llama-3.3-70B-Instruct-Turbo')
TOGETHER_BASE_URL = os.getenv('TOGETHER_BASE_URL', 'https://api.together.xyz/v1')

# Local inference (mode="local")
OLLAMA_BASE_URL = os.getenv('OLLAMA_BASE_URL', 'http://localhost:11434')
OLLAMA_CHAT_MODEL = os.getenv('OLLAMA_CHAT_MODEL', 'llama3')

# Transport timeout in seconds, applied by httpx to every read
LLM_TIMEOUT = int(os.getenv('LLM_TIMEOUT', '600'))
LLM_TEMPERATURE = float(os.getenv('LLM_TEMPERATURE', '0.7'))
LLM_MAX_TOKENS = int(os.getenv('LLM_MAX_TOKENS', '4096'))

# =============================================================================
# Uploaded Documents
# =============================================================================
# Extracted text kept per document in the system prompt
MAX_DOCUMENT_CHARS = int(os.getenv('MAX_DOCUMENT_CHARS', '50000'))

MAX_FILES_PER_REQUEST = int(os.getenv('MAX_FILES_PER_REQUEST', '20'))

# =============================================================================
# Chat History
# =============================================================================
CHAT_HISTORY_PATH = Path(os.getenv('CHAT_HISTORY_PATH', BASE_DIR / 'data' / 'chat_history.json'))
CHAT_HISTORY_MAX_SESSIONS = int(os.getenv('CHAT_HISTORY_MAX_SESSIONS', '50'))
CHAT_HISTORY_MAX_MESSAGES = int(os.getenv('CHAT_HISTORY_MAX_MESSAGES', '100'))

# =============================================================================
# Logging
# =============================================================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
        'json': {
            'format': '%(message)s',  # Audit logs are already JSON
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'audit': {
            'class': 'logging.StreamHandler',
            'formatter': 'json',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'apps.authn': {
            'handlers': ['console'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'apps.chat': {
            'handlers': ['console'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'apps.docs': {
            'handlers': ['console'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'apps.history': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'audit': {
            'handlers': ['audit'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
