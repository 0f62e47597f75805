# telebill/__init__.py
import os
from pathlib import Path

from flask import Flask
from flask_cors import CORS

# Load environment variables before config classes read them
from dotenv import load_dotenv

project_root = Path(__file__).parent.parent
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)
else:
    load_dotenv()

from telebill.config import config
from telebill.extensions import db, migrate, jwt, init_redis


def create_app(config_name=None):
    """Flask application factory"""
    app = Flask(__name__)

    _configure_app(app, config_name)

    from telebill.utils.logging import setup_logging
    setup_logging(app)

    _init_extensions(app)
    _register_blueprints(app)

    from telebill.utils.error_handlers import register_error_handlers
    register_error_handlers(app)

    from telebill.cli import register_commands
    register_commands(app)

    app.logger.info("TeleBill backend startup complete")
    return app


def _configure_app(app, config_name=None):
    """Load the config class selected by name or FLASK_ENV"""
    config_name = config_name or os.environ.get('FLASK_ENV') or 'default'
    app.config.from_object(config.get(config_name, config['default']))

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        raise RuntimeError("DATABASE_URL must be set for the production configuration")


def _init_extensions(app):
    """Initialize Flask extensions"""
    # Models must be imported before migrate sees the metadata
    from telebill import models  # noqa: F401

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))
    init_redis(app)

    app.logger.info("Extensions initialized")


def _register_blueprints(app):
    """Register application blueprints"""
    from telebill.api import register_blueprints
    register_blueprints(app)
