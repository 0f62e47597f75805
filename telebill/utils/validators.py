from functools import wraps

from flask import request, jsonify
from marshmallow import ValidationError


def sanitize_string(text, max_length=None):
    """Sanitize text input"""
    if not text:
        return None

    # Strip whitespace and null bytes
    text = text.strip().replace('\x00', '')

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text or None


def validate_request_json(schema, optional=False):
    """
    Decorator to validate JSON request data.
    With optional=True an absent body is validated as {}.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                if optional and not request.get_data():
                    json_data = {}
                else:
                    if not request.is_json:
                        return jsonify({
                            'success': False,
                            'error': 'Content-Type must be application/json'
                        }), 400

                    json_data = request.get_json(silent=True)
                    if json_data is None:
                        return jsonify({
                            'success': False,
                            'error': 'Invalid JSON'
                        }), 400

                # Validated data replaces the raw body for the view
                request.validated_data = schema.load(json_data)

                return f(*args, **kwargs)

            except ValidationError as e:
                return jsonify({
                    'success': False,
                    'error': 'Validation failed',
                    'errors': e.messages
                }), 400

        return decorated_function
    return decorator


def validate_query_args(schema):
    """Decorator to validate query-string arguments"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                request.validated_args = schema.load(request.args.to_dict())
            except ValidationError as e:
                return jsonify({
                    'success': False,
                    'error': 'Validation failed',
                    'errors': e.messages
                }), 400
            return f(*args, **kwargs)
        return decorated_function
    return decorator
