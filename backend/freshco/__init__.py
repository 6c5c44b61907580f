# backend/freshco/__init__.py
import logging

from flask import Flask, g, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import AppError
from .extensions import db, migrate
from .responses import error_response


# Requests that run without a resolved tenant
TENANT_EXEMPT_ENDPOINTS = {
    "system.health",
    "companies.register_company",
    "companies.get_company_by_slug",
    "payments.payment_webhook",
    "static",
}


def _register_tenant_resolver(app: Flask) -> None:
    from .services.tenant_service import resolve_request_tenant

    @app.before_request
    def resolve_tenant():
        g.company_id = None
        g.company_slug = None
        if request.method == "OPTIONS":
            return None
        if request.endpoint is None or request.endpoint in TENANT_EXEMPT_ENDPOINTS:
            return None
        # Raises NotFoundError before any business table is touched
        resolve_request_tenant()
        return None


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def handle_app_error(exc: AppError):
        db.session.rollback()
        if exc.status_code >= 500:
            app.logger.error("%s: %s", exc.code, exc.message)
        return error_response(exc.message, exc.code, exc.status_code, exc.details)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        code = (exc.name or "HTTP_ERROR").upper().replace(" ", "_")
        return error_response(exc.description or exc.name, code, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error_response("Internal server error", "INTERNAL_ERROR", 500)


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.payment_gateway import init_payment_processor
    init_payment_processor(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.companies import companies_bp
    from .routes.catalog import warehouses_bp, products_bp, suppliers_bp
    from .routes.inventory import inventory_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.goods_receipts import goods_receipts_bp
    from .routes.purchase_invoices import purchase_invoices_bp, supplier_payments_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(companies_bp)
    app.register_blueprint(warehouses_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(goods_receipts_bp)
    app.register_blueprint(purchase_invoices_bp)
    app.register_blueprint(supplier_payments_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)

    _register_tenant_resolver(app)
    _register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in set(app.config.get("CORS_ALLOWED_ORIGINS", [])):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Tenant-Subdomain"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
