# Import route blueprints
from .billing import billing_bp
from .health import health_bp
from .phone_numbers import phone_numbers_bp


def register_blueprints(app):
    """Register all API blueprints"""
    app.register_blueprint(health_bp, url_prefix='/api')
    app.register_blueprint(billing_bp, url_prefix='/api/billing')
    app.register_blueprint(phone_numbers_bp, url_prefix='/api/phone-numbers')
