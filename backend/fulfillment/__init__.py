# backend/fulfillment/__init__.py
from decimal import Decimal

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Must land before db.init_app(), which builds the engine
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Collaborators built once from config and passed to services explicitly
    from .services.vat_service import VatCalculator
    from .services.slip_verification import SlipVerificationClient
    from .services.receipt_service import TextReceiptRenderer

    app.extensions["vat_calculator"] = VatCalculator(default_rate=Decimal(str(app.config["DEFAULT_VAT_RATE"])))
    app.extensions["slip_verifier"] = SlipVerificationClient(
        api_url=app.config["SLIP_VERIFY_API_URL"],
        api_key=app.config["SLIP_VERIFY_API_KEY"],
        timeout=app.config["SLIP_VERIFY_TIMEOUT_SECONDS"],
    )
    app.extensions["receipt_renderer"] = TextReceiptRenderer(app.config["RECEIPT_OUTPUT_DIR"])

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.stock import stock_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(stock_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
