from models.base import init_engine_and_session, Base
import os
import logging
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, g, jsonify
from dotenv import load_dotenv
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from controllers.payments import payments_bp
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY
from services.payments.config import check_production_config

# --- Load .env exactly once, here ---
# If you run "python app.py", this ensures variables are loaded.
# If you use "flask run", Flask will also load .env automatically (when python-dotenv is installed).
load_dotenv()

PAYZONE_ENV_KEYS = (
    "PAYZONE_MERCHANT_ACCOUNT", "PAYZONE_PAYWALL_SECRET_KEY", "PAYZONE_PAYWALL_URL",
    "PAYZONE_NOTIFICATION_KEY", "PAYZONE_API_URL", "PAYZONE_ORIGINATOR_ID",
    "PAYZONE_PASSWORD", "PAYZONE_API_TIMEOUT", "PAYZONE_CALLBACK_STORE_TIMEOUT",
    "PAYZONE_CURRENCY",
)


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _configure_logging(app: Flask) -> None:
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # If file logging fails (e.g., read-only container), fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)

    # ---- Base config from environment (no hardcoded secrets) ----
    APP_ENV = os.getenv("APP_ENV", "development").lower()

    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key and APP_ENV == "production":
        raise RuntimeError("FLASK_SECRET_KEY must be set in production (.env)")
    if not secret_key:
        secret_key = os.urandom(32)  # dev-only fallback

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        APP_ENV=APP_ENV,
        **{k: os.getenv(k) for k in PAYZONE_ENV_KEYS},
    )
    if test_config:
        app.config.update(test_config)

    # Payzone sandbox defaults are for development only
    if app.config["APP_ENV"] == "production":
        check_production_config(app.config)

    _configure_logging(app)

    # ---- DB init (order store) ----
    if _env_bool("AUTO_CREATE_SCHEMA", True):
        from models import schema  # noqa: F401 - register tables
        engine, _Session = init_engine_and_session()
        Base.metadata.create_all(engine, checkfirst=True)

    # ---- Blueprints ----
    app.register_blueprint(payments_bp)

    # Prometheus
    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    # ---- Errors ----
    # The web app only ever talks JSON to this service.

    @app.errorhandler(HTTPException)
    def http_error(e):
        app.logger.warning("%s %s %s", e.code, request.method, request.path)
        return jsonify(success=False, message=e.description), e.code

    @app.errorhandler(Exception)
    def unhandled(e):
        app.logger.exception("Unhandled error on %s %s",
                             request.method, request.path)
        return jsonify(success=False, message="Internal server error"), 500

    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _log_request(resp):
        try:
            ms = (time() - getattr(g, "_t0", time())) * 1000
            app.logger.info("%s %s %s %s %.1fms",
                            request.remote_addr, request.method, request.full_path, resp.status_code, ms)

            # --- Skip self-scrapes to keep series clean ---
            ep = request.endpoint or ""
            path = request.path or ""
            if ep == "static" or path.startswith("/metrics"):
                return resp

            endpoint = ep.replace(".", "_") or "unknown"
            REQUEST_COUNT.labels(
                method=request.method, endpoint=endpoint, status=str(resp.status_code)).inc()
            REQUEST_LATENCY.labels(
                endpoint=endpoint, method=request.method).observe(ms / 1000.0)
        except Exception:
            app.logger.exception("Failed to log request")
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: the order store is reachable
        try:
            engine, _ = init_engine_and_session()
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ok"), 200
        except Exception as e:
            app.logger.exception("Readiness check failed")
            return jsonify(status="error", error=str(e)), 500

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production FLASK_SECRET_KEY=... PAYZONE_*=... when deploying
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "3001")), debug=(
        app.config["APP_ENV"] != "production"))
