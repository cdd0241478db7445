"""
Configuration settings for different environments.
"""
import logging
import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

FALLBACK_API_BASE = 'https://housekeeping-backend.sagartmt.com/api'


def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        logger.warning("%s is not a number, using %s", name, default)
        return default


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('FLASK_SECRET_KEY')
    if not SECRET_KEY:
        # Temporary fallback - REPLACE THIS IN PRODUCTION
        logger.warning("FLASK_SECRET_KEY not set! Using fallback.")
        SECRET_KEY = 'temporary-fallback-key-CHANGE-THIS'

    # Session configuration
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)

    # CSRF Protection
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None  # No time limit for CSRF tokens
    WTF_CSRF_SSL_STRICT = False  # Allow CSRF over HTTP in development

    # Supabase
    SUPABASE_URL = os.getenv('SUPABASE_URL')
    SUPABASE_KEY = os.getenv('SUPABASE_ANON_KEY')

    # REST backend
    API_BASE_URL = os.getenv('API_BASE_URL', '')
    API_FALLBACK_URL = FALLBACK_API_BASE
    API_TIMEOUT_MS = _env_int('API_TIMEOUT_MS', 120000)
    FORCE_HTTPS_API = _env_bool('FORCE_HTTPS_API')

    # Dashboards
    TASK_PAGE_SIZE = _env_int('TASK_PAGE_SIZE', 50)
    STAFF_PAGE_SIZE = _env_int('STAFF_PAGE_SIZE', 20)
    USER_STATUS_CHECK_SECONDS = _env_int('USER_STATUS_CHECK_SECONDS', 60)

    # CORS
    FRONTEND_URL = os.getenv('FRONTEND_URL')
    CORS_ORIGINS = [
        'http://localhost:5000',
        'http://127.0.0.1:5000',
        'http://localhost:3000',  # If you have a separate frontend
    ]

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('LOG_DIR')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SESSION_COOKIE_SECURE = False  # Allow HTTP in development
    SESSION_COOKIE_NAME = 'session'  # Standard name for dev


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SESSION_COOKIE_SECURE = True  # Require HTTPS
    SESSION_COOKIE_NAME = '__Host-session'  # Security prefix
    WTF_CSRF_SSL_STRICT = True  # Enforce HTTPS for CSRF in production
    FORCE_HTTPS_API = True

    # Only the deployed frontend may call us cross-origin
    CORS_ORIGINS = [Config.FRONTEND_URL] if Config.FRONTEND_URL else []

    # Additional production settings
    TESTING = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    SESSION_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = False  # Disable CSRF for testing
    API_BASE_URL = 'http://backend.test/api'
    USER_STATUS_CHECK_SECONDS = 0
    LOG_DIR = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
