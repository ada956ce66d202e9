"""Django settings for the EV charge planner project."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = BASE_DIR.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "change-me-in-production")
DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = [host for host in os.getenv("DJANGO_ALLOWED_HOSTS", "").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.staticfiles",
    "charge_planner",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
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
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": PROJECT_ROOT / "db.sqlite3",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "charge-planner-cache",
    }
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "charge_planner": {
            "handlers": ["console"],
            "level": os.getenv("CHARGE_PLANNER_LOG_LEVEL", "INFO"),
            "propagate": True,
        },
    },
}

OSRM_BASE_URL = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")
OSRM_TIMEOUT_SECONDS = float(os.getenv("OSRM_TIMEOUT_SECONDS", "12"))
OSRM_RETRY_COUNT = int(os.getenv("OSRM_RETRY_COUNT", "2"))
ROUTE_CACHE_TTL_SECONDS = int(os.getenv("ROUTE_CACHE_TTL_SECONDS", "600"))
ROUTE_MAX_POINTS = int(os.getenv("ROUTE_MAX_POINTS", "500"))

ELEVATION_BASE_URL = os.getenv("ELEVATION_BASE_URL", "https://api.open-elevation.com")
ELEVATION_TIMEOUT_SECONDS = float(os.getenv("ELEVATION_TIMEOUT_SECONDS", "15"))
ELEVATION_RETRY_COUNT = int(os.getenv("ELEVATION_RETRY_COUNT", "1"))
ELEVATION_BATCH_SIZE = int(os.getenv("ELEVATION_BATCH_SIZE", "512"))

OCM_BASE_URL = os.getenv("OCM_BASE_URL", "https://api.openchargemap.io/v3")
OCM_API_KEY = os.getenv("OCM_API_KEY", "")
OCM_USER_AGENT = os.getenv("OCM_USER_AGENT", "ev-charge-planner/1.0")
OCM_TIMEOUT_SECONDS = float(os.getenv("OCM_TIMEOUT_SECONDS", "10"))
OCM_MAX_RESULTS = int(os.getenv("OCM_MAX_RESULTS", "10"))

REGISTRY_MIN_INTERVAL_SECONDS = float(os.getenv("REGISTRY_MIN_INTERVAL_SECONDS", "2"))
REGISTRY_BACKOFF_BASE_SECONDS = float(os.getenv("REGISTRY_BACKOFF_BASE_SECONDS", "5"))
REGISTRY_BACKOFF_MAX_SECONDS = float(os.getenv("REGISTRY_BACKOFF_MAX_SECONDS", "30"))
REGISTRY_MAX_ATTEMPTS = int(os.getenv("REGISTRY_MAX_ATTEMPTS", "3"))
STATION_CACHE_TTL_SECONDS = int(os.getenv("STATION_CACHE_TTL_SECONDS", "3600"))

DISCOVERY_SEARCH_RADIUS_KM = float(os.getenv("DISCOVERY_SEARCH_RADIUS_KM", "15"))
DISCOVERY_CORRIDOR_KM = float(os.getenv("DISCOVERY_CORRIDOR_KM", "10"))
DISCOVERY_TIMEOUT_SECONDS = float(os.getenv("DISCOVERY_TIMEOUT_SECONDS", "60"))
DISCOVERY_MAX_WORKERS = int(os.getenv("DISCOVERY_MAX_WORKERS", "4"))

PLANNER_MIN_SOC = float(os.getenv("PLANNER_MIN_SOC", "20"))
PLANNER_MAX_SOC = float(os.getenv("PLANNER_MAX_SOC", "80"))
PLANNER_START_SOC = float(os.getenv("PLANNER_START_SOC", "85"))
PLANNER_ARRIVAL_SOC = float(os.getenv("PLANNER_ARRIVAL_SOC", "15"))
PLANNER_SAFETY_BUFFER_SOC = float(os.getenv("PLANNER_SAFETY_BUFFER_SOC", "5"))
PLANNER_RESERVE_SOC = float(os.getenv("PLANNER_RESERVE_SOC", "5"))
PLANNER_CHARGING_EFFICIENCY = float(os.getenv("PLANNER_CHARGING_EFFICIENCY", "0.85"))
PLANNER_REGEN_EFFICIENCY = float(os.getenv("PLANNER_REGEN_EFFICIENCY", "0.6"))
PLANNER_CLIMB_KWH_PER_100M = float(os.getenv("PLANNER_CLIMB_KWH_PER_100M", "0.5"))
PLANNER_MAX_SEGMENT_KM = float(os.getenv("PLANNER_MAX_SEGMENT_KM", "5"))
PLANNER_CORRIDOR_KM = float(os.getenv("PLANNER_CORRIDOR_KM", "10"))
PLANNER_MAX_BACKTRACK_KM = float(os.getenv("PLANNER_MAX_BACKTRACK_KM", "15"))
PLANNER_MAX_STOPS_PER_SEGMENT = int(os.getenv("PLANNER_MAX_STOPS_PER_SEGMENT", "3"))
