# backend/stockflow/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    # Registers the after-commit event dispatch
    from . import signals  # noqa: F401

    # Register blueprints
    from .routes.movement_requests import movement_requests_bp
    from .routes.returns import returns_bp
    from .routes.balances import balances_bp
    from .routes.movements import movements_bp

    app.register_blueprint(movement_requests_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(balances_bp)
    app.register_blueprint(movements_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
