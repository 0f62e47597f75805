from datetime import datetime
import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis

from telebill.extensions import db, get_redis

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health_check():
    """Liveness plus database and Redis reachability"""
    checks = {
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat(),
        'service': 'TeleBill Backend',
        'checks': {}
    }

    # Database check
    try:
        db.session.execute(text('SELECT 1'))
        checks['checks']['database'] = 'healthy'
    except SQLAlchemyError as e:
        logger.error(f"Health check database failure: {e}")
        checks['checks']['database'] = f'unhealthy: {str(e)}'
        checks['status'] = 'unhealthy'

    # Redis is optional; only the billing run lock uses it
    client = get_redis()
    if client is None:
        checks['checks']['redis'] = 'not_configured'
    else:
        try:
            client.ping()
            checks['checks']['redis'] = 'healthy'
        except redis.RedisError as e:
            checks['checks']['redis'] = f'unhealthy: {str(e)}'
            checks['status'] = 'degraded'

    status_code = 200 if checks['status'] != 'unhealthy' else 503
    return jsonify(checks), status_code
