# backend/retailpos/__init__.py
import logging
import os
from collections.abc import Mapping

from flask import Flask

from .config import Config, engine_options_for
from .extensions import db, migrate

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def create_app(config_object=None) -> Flask:
    """
    Build the application.

    config_object may be a config class (e.g. TestConfig) or a mapping of
    overrides applied on top of Config.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if isinstance(config_object, Mapping):
        app.config.update(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options_for(app.config["SQLALCHEMY_DATABASE_URI"], app.config["LOCK_TIMEOUT_SECONDS"]),
    )

    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger("retailpos").setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR, render_as_batch=True)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.locations import locations_bp
    from .routes.sales import sales_bp
    from .routes.payments import payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(locations_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(payments_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
