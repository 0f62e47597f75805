# telebill/config.py - Environment driven configuration
import os
from datetime import timedelta


def _env_bool(name, default='true'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration"""

    # Basic Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database settings
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///telebill.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_recycle': 300,
        'pool_pre_ping': True
    }

    # JWT settings
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=24)

    # CORS settings
    CORS_ORIGINS = ["*"]  # Change this in production

    # Billing gateway (XML-RPC over HTTPS with digest auth)
    GATEWAY_URL = os.environ.get('GATEWAY_URL')
    GATEWAY_USERNAME = os.environ.get('GATEWAY_USERNAME')
    GATEWAY_PASSWORD = os.environ.get('GATEWAY_PASSWORD')
    GATEWAY_TIMEOUT = float(os.environ.get('GATEWAY_TIMEOUT', '60.0'))
    GATEWAY_VERIFY_SSL = _env_bool('GATEWAY_VERIFY_SSL', 'true')

    # Internal scheduler key for HTTP-triggered billing runs
    INTERNAL_API_KEY = os.environ.get('INTERNAL_API_KEY')

    # Scheduled billing
    BILLING_SCHEDULE_HOUR = int(os.environ.get('BILLING_SCHEDULE_HOUR', '2'))
    BILLING_SCHEDULE_MINUTE = int(os.environ.get('BILLING_SCHEDULE_MINUTE', '0'))
    BILLING_LEASE_SECONDS = int(os.environ.get('BILLING_LEASE_SECONDS', '600'))
    BILLING_RUN_LOCK_SECONDS = int(os.environ.get('BILLING_RUN_LOCK_SECONDS', '1800'))
    BILLING_ERROR_PREVIEW_LIMIT = int(os.environ.get('BILLING_ERROR_PREVIEW_LIMIT', '10'))

    # Redis settings (run lock); leave unset to disable the lock
    REDIS_URL = os.environ.get('REDIS_URL')

    # Celery
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///dev_telebill.db'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://')

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',') if os.environ.get('CORS_ORIGINS') else []


class TestConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)
    REDIS_URL = None
    INTERNAL_API_KEY = 'test-internal-key'
    GATEWAY_URL = 'https://gateway.test'
    GATEWAY_USERNAME = 'tester'
    GATEWAY_PASSWORD = 'secret'
    GATEWAY_TIMEOUT = 5.0
    LOG_FILE = None


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestConfig,
    'default': DevelopmentConfig
}
