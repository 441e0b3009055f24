# --- pricing/__init__.py ---
from flask import Flask
from .config import Config
from .extensions import db
from .logging import setup_logging
from .services import price_order, complete_order, record_usage

__all__ = ["create_app", "db", "price_order", "complete_order", "record_usage"]

def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    config_class.init_app(app)

    if not app.testing:
        setup_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Init extensions
    db.init_app(app)

    # CLI
    from .cli import register_cli
    register_cli(app)

    with app.app_context():
        from . import model  # noqa: F401  (registers usage tables)
        db.create_all()

    return app
