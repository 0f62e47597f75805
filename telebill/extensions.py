# telebill/extensions.py
"""
Flask Extensions - Centralized extension initialization
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
import redis

# Initialize extensions without app context
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()

# Redis client for the billing run lock
redis_client = None

def init_redis(app):
    """Initialize Redis client"""
    global redis_client
    redis_url = app.config.get('REDIS_URL')
    if not redis_url:
        app.logger.info("Redis not configured - billing run lock disabled")
        redis_client = None
        return None
    try:
        redis_client = redis.from_url(redis_url, decode_responses=True)
        redis_client.ping()  # Test connection
        app.logger.info("✅ Redis connection established")
        return redis_client
    except redis.RedisError as e:
        app.logger.error(f"❌ Redis connection failed: {e}")
        redis_client = None
        return None

def get_redis():
    """Get Redis client instance"""
    return redis_client
