import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from portal_cotacoes.config import Config
from portal_cotacoes.db import close_db, get_db, init_db
from portal_cotacoes.db_migrations import register_db_cli
from portal_cotacoes.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)
from portal_cotacoes.tenant import resolve_request_tenant


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_tenant(app)
    _register_services(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _register_sweep_cli(app)
    _maybe_init_schema(app)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_services(app: Flask) -> None:
    from portal_cotacoes.application.quote_service import QuoteService
    from portal_cotacoes.domain.contracts import ProposalDefaults
    from portal_cotacoes.quotes.cache import KeyedTTLCache

    app.extensions["quote_service"] = QuoteService(
        cache=KeyedTTLCache(ttl_seconds=int(app.config.get("SUPPLIER_QUOTES_CACHE_TTL_SECONDS", 60))),
        defaults=ProposalDefaults(
            delivery_time=int(app.config.get("DEFAULT_DELIVERY_DAYS", 7)),
            payment_terms=str(app.config.get("DEFAULT_PAYMENT_TERMS") or "30 dias"),
            warranty_months=int(app.config.get("DEFAULT_WARRANTY_MONTHS", 12)),
        ),
    )


def _register_blueprints(app: Flask) -> None:
    from portal_cotacoes.routes.quote_routes import quote_bp

    app.register_blueprint(quote_bp)


def _register_sweep_cli(app: Flask) -> None:
    from portal_cotacoes.application.lifecycle_sweep import register_sweep_cli

    register_sweep_cli(app)


def _register_scheduler(app: Flask) -> None:
    from portal_cotacoes.application.lifecycle_sweep import start_lifecycle_scheduler

    start_lifecycle_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from portal_cotacoes.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(code="unexpected_error", details=str(exc))
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_tenant(app: Flask) -> None:
    @app.before_request
    def load_workspace() -> None:
        resolve_request_tenant()


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "scheduler": "running" if "lifecycle_scheduler" in app.extensions else "disabled",
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        try:
            get_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            payload["status"] = "degraded"
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return prometheus_metrics_text(), 200, {"Content-Type": "text/plain; version=0.0.4; charset=utf-8"}
