# backend/shopcore/__init__.py
from flask import Flask, jsonify, request

from .config import Config
from .errors import CommerceError
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.storefront import storefront_bp
    from .routes.webhooks import webhooks_bp
    from .routes.admin_inventory import admin_inventory_bp
    from .routes.admin_orders import admin_orders_bp
    from .routes.admin_coupons import admin_coupons_bp
    from .routes.admin_settings import admin_settings_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(storefront_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(admin_inventory_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(admin_coupons_bp)
    app.register_blueprint(admin_settings_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Cart-Session, X-Actor-Id"
            response.headers["Access-Control-Expose-Headers"] = "X-Cart-Session"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    @app.errorhandler(CommerceError)
    def handle_commerce_error(e: CommerceError):
        # Routes map their own errors; this catches anything that escapes
        return jsonify(e.to_dict()), e.http_status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
