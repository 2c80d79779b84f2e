# backend/lustre/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.sales import sales_bp
    from .routes.consignments import consignments_bp
    from .routes.cash_drawer import cash_drawer_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(consignments_bp)
    app.register_blueprint(cash_drawer_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
