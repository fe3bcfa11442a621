import logging
import os

from flask import Flask, jsonify
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from digimarket.config import Config
from digimarket.extensions import cors, db, login_manager, migrate
from digimarket.utils.errors import MarketError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    app.logger.handlers[:] = [handler]
    app.logger.setLevel(level)
    app.logger.propagate = False


def _check_production(app: Flask) -> None:
    if (app.config.get("ENV_NAME") or "dev") not in ("prod", "production"):
        return
    secret = (app.config.get("SECRET_KEY") or "").strip()
    if not secret or secret == "dev-secret-change-me" or len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
    if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
        raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MarketError)
    def _market_error(e: MarketError):
        if e.status_code >= 500:
            app.logger.error("%s: %s", type(e).__name__, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"ok": False, "message": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        db.session.rollback()
        app.logger.exception("unhandled error")
        return jsonify({"ok": False, "message": "Internal server error"}), 500


def create_app(overrides: dict | None = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    _configure_logging(app)
    _check_production(app)

    db_url = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
        os.makedirs(Config.INSTANCE_DIR, exist_ok=True)

    # CORS configuration
    cors_origins = (app.config.get("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and app.config["ENV_NAME"] not in ("prod", "production"):
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    import digimarket.auth  # noqa: F401  registers the login_manager loaders
    from digimarket.payments.registry import init_payments
    from digimarket.segments.segment_admin import admin_bp
    from digimarket.segments.segment_buyer_orders import buyer_orders_bp
    from digimarket.segments.segment_checkout import checkout_bp
    from digimarket.segments.segment_cron import cron_bp
    from digimarket.segments.segment_notifications import notifications_bp
    from digimarket.segments.segment_payment_webhooks import webhooks_bp
    from digimarket.segments.segment_seller_inventory import seller_inventory_bp
    from digimarket.segments.segment_seller_withdrawals import seller_withdrawals_bp
    from digimarket.segments.segment_wallets import wallets_bp

    # Register API routes
    app.register_blueprint(checkout_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(buyer_orders_bp)
    app.register_blueprint(seller_inventory_bp)
    app.register_blueprint(seller_withdrawals_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(notifications_bp)

    _register_error_handlers(app)
    init_payments(app)

    if app.config["ENV_NAME"] not in ("prod", "production"):
        with app.app_context():
            db.create_all()

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            db.session.rollback()
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "digimarket-backend",
            "env": app.config["ENV_NAME"],
            "db": db_state,
        })

    if app.config.get("SCHEDULER_ENABLED") and not app.testing:
        from digimarket.jobs.scheduler import start_scheduler

        start_scheduler(app)

    return app
