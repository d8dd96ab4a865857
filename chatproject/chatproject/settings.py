"""
Django settings for chatproject.

Secrets and deployment switches come from the environment; nothing secret
is committed here.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = os.environ.get("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]

INSTALLED_APPS = [
    'daphne',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'channels',
    'chatapp',
    'voiceapp',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'chatproject.urls'

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

ASGI_APPLICATION = 'chatproject.asgi.application'

CHANNEL_LAYERS = {
    "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
}

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get("DJANGO_DB_PATH", BASE_DIR / 'db.sqlite3'),
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ---------------- Assistant ----------------
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash-exp")
GOOGLE_CLOUD_TTS_API_KEY = os.environ.get("GOOGLE_CLOUD_TTS_API_KEY")

# "django" keeps conversations in DATABASES; "supabase" uses a hosted project.
CHAT_STORE_BACKEND = os.environ.get("CHAT_STORE_BACKEND", "django")
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

VOICE_SETTINGS = {
    "ENABLE_MICROPHONE": os.environ.get("VOICE_MICROPHONE", "1") == "1",
    "INPUT_DEVICE_INDEX": None,
    "MAX_RECORDING_MS": 60_000,
    "TRANSCRIBE_TIMEOUT_S": 10.0,
    "CHUNK_LIMIT": 200,
    "WATCHDOG_INTERVAL_S": 0.1,
    "CLOUD_TTS": True,
    "LANGUAGE": os.environ.get("VOICE_LANGUAGE"),  # None: use the host locale
    "BASE_RATE": None,
}

CHAT_SETTINGS = {
    "DEFAULT_PERSONA": "general",
    "RESPONSE_LANGUAGE": os.environ.get("CHAT_RESPONSE_LANGUAGE", "en"),
    "HISTORY_TURNS": 10,
    "MAX_UPLOAD_BYTES": 10 * 1024 * 1024,
    "AUTOSAVE": False,
    "SPEAK_VOICE_REPLIES": True,
    "WEBSOCKET_VOICE": os.environ.get("CHAT_WEBSOCKET_VOICE", "1") == "1",
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {"handlers": ["console"], "level": os.environ.get("LOG_LEVEL", "INFO")},
    "loggers": {
        "google.genai": {"level": "WARNING"},
        "httpx": {"level": "WARNING"},
        "django.db.backends": {"level": "WARNING"},
    },
}
