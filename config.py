"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'pharmapos')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'pharmapos')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'pharmapos')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Data backend: 'sql' talks to the database directly, 'rest' to a
    # PostgREST-compatible hosted backend.
    BACKEND_MODE = os.getenv('BACKEND_MODE', 'sql')
    BACKEND_URL = os.getenv('BACKEND_URL', 'http://localhost:54321/rest/v1')
    BACKEND_API_KEY = os.getenv('BACKEND_API_KEY', '')
    BACKEND_TIMEOUT = int(os.getenv('BACKEND_TIMEOUT', '10'))  # seconds

    # POS
    DEFAULT_PAYMENT_METHOD = os.getenv('DEFAULT_PAYMENT_METHOD', 'cash')
    INVENTORY_SNAPSHOT_MAX_AGE = int(os.getenv('INVENTORY_SNAPSHOT_MAX_AGE', '120'))  # seconds
    INVENTORY_CAS_RETRIES = int(os.getenv('INVENTORY_CAS_RETRIES', '3'))
    RECONCILE_BATCH_SIZE = int(os.getenv('RECONCILE_BATCH_SIZE', '50'))
    QUOTE_VALID_DAYS = int(os.getenv('QUOTE_VALID_DAYS', '7'))

    # Redis Cache Configuration
    # Promotions and combos are read on every cart recalculation
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_PROMOTIONS_TTL = int(os.getenv('CACHE_PROMOTIONS_TTL', '120'))
    CACHE_COMBOS_TTL = int(os.getenv('CACHE_COMBOS_TTL', '300'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'pharmapos')


class TestConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    BACKEND_MODE = 'sql'
    CACHE_ENABLED = False
    WTF_CSRF_ENABLED = False
