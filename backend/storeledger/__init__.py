# backend/storeledger/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Service modules log under "storeledger.services.*"
    log_level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    logging.getLogger(__name__).setLevel(log_level)
    app.logger.setLevel(log_level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.payables import payables_bp
    from .routes.payments import payments_bp
    from .routes.loyalty import loyalty_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(payables_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(loyalty_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
