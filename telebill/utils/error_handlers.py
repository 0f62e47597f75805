from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from marshmallow import ValidationError

from telebill.exceptions import ConfigurationError, GatewayError, InvalidBillingTransition


def register_error_handlers(app):
    """Register global error handlers"""

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        """Handle Marshmallow validation errors"""
        current_app.logger.warning(f"Validation error: {e.messages}")
        return jsonify({
            'success': False,
            'error': 'Validation failed',
            'errors': e.messages
        }), 400

    @app.errorhandler(InvalidBillingTransition)
    def handle_invalid_transition(e):
        return jsonify({
            'success': False,
            'error': str(e),
            'current_status': e.current_status
        }), 409

    @app.errorhandler(ConfigurationError)
    def handle_configuration_error(e):
        current_app.logger.error(f"Configuration error: {str(e)}")
        return jsonify({
            'success': False,
            'error': str(e)
        }), 503

    @app.errorhandler(GatewayError)
    def handle_gateway_error(e):
        current_app.logger.error(f"Gateway error: {str(e)}")
        return jsonify({
            'success': False,
            'error': 'Billing gateway unavailable'
        }), 502

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        """Handle database errors"""
        current_app.logger.error(f"Database error: {str(e)}")
        return jsonify({
            'success': False,
            'error': 'Database operation failed'
        }), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        """Handle HTTP errors"""
        return jsonify({
            'success': False,
            'error': e.description,
            'code': e.code
        }), e.code

    @app.errorhandler(Exception)
    def handle_generic_error(e):
        """Handle unexpected errors"""
        current_app.logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return jsonify({
            'success': False,
            'error': 'An unexpected error occurred'
        }), 500
