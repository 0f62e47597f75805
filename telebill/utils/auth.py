# telebill/utils/auth.py
"""
Authentication helpers: JWT users, admin role checks and the internal
scheduler key used for HTTP-triggered billing runs
"""
import hmac
from functools import wraps
from typing import Optional

from flask import g, jsonify, request, current_app
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity

from telebill.extensions import db
from telebill.models import User


def get_current_user() -> Optional[User]:
    """User for the verified JWT in the current request, if any"""
    identity = get_jwt_identity()
    if identity is None:
        return None
    try:
        return db.session.get(User, int(identity))
    except (TypeError, ValueError):
        return None


def has_internal_api_key() -> bool:
    """True when the request carries the configured INTERNAL_API_KEY as a bearer token"""
    expected = current_app.config.get('INTERNAL_API_KEY')
    if not expected:
        return False
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return False
    return hmac.compare_digest(header[len('Bearer '):].strip(), expected)


def admin_required(f):
    """Decorator requiring a JWT for an active admin user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        verify_jwt_in_request()
        user = get_current_user()
        if user is None or not user.is_active:
            return jsonify({'success': False, 'error': 'User not found'}), 401
        if not user.is_admin:
            return jsonify({'success': False, 'error': 'Admin access required'}), 403
        g.current_user = user
        return f(*args, **kwargs)
    return decorated_function


def admin_or_internal_key(f):
    """Decorator accepting either the internal scheduler key or an admin JWT"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if has_internal_api_key():
            g.current_user = None
            g.trigger_type = 'scheduled'
            return f(*args, **kwargs)

        g.trigger_type = 'manual'
        return admin_required(f)(*args, **kwargs)
    return decorated_function
