import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


class Config:
    # Base directory of the backend (one level above this `digimarket` package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, "instance")

    ENV_NAME = _env("DIGIMARKET_ENV", "dev").lower()
    SECRET_KEY = _env("SECRET_KEY", "dev-secret-change-me")
    LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()

    _default_sqlite_path = os.path.join(INSTANCE_DIR, "digimarket.db").replace("\\", "/")
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        _env("DATABASE_URL") or _env("SQLALCHEMY_DATABASE_URI") or f"sqlite:///{_default_sqlite_path}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for web builds
    CORS_ORIGINS = _env("CORS_ORIGINS")

    CRON_SECRET = _env("CRON_SECRET")
    ENCRYPTION_KEY = _env("ENCRYPTION_KEY")
    SCHEDULER_ENABLED = _env("SCHEDULER_ENABLED", "0") == "1"
    PUBLIC_APP_URL = _env("PUBLIC_APP_URL", "http://localhost:3000")

    # Card checkout (Stripe hosted sessions)
    STRIPE_SECRET_KEY = _env("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = _env("STRIPE_WEBHOOK_SECRET")

    # Local QR provider
    QR_API_URL = _env("QR_API_URL")
    QR_API_KEY = _env("QR_API_KEY")
    QR_WEBHOOK_SECRET = _env("QR_WEBHOOK_SECRET")

    # Crypto transfers (Binance spot deposit history, read-only key)
    BINANCE_SPOT_API_KEY = _env("BINANCE_SPOT_API_KEY")
    BINANCE_SPOT_SECRET_KEY = _env("BINANCE_SPOT_SECRET_KEY")
    BINANCE_DEPOSIT_ADDRESS = _env("BINANCE_DEPOSIT_ADDRESS")
    BINANCE_DEPOSIT_COIN = _env("BINANCE_DEPOSIT_COIN", "USDT")
    BINANCE_DEPOSIT_NETWORK = _env("BINANCE_DEPOSIT_NETWORK", "TRC20")

    # Transactional email over HTTP
    MAIL_API_URL = _env("MAIL_API_URL")
    MAIL_API_KEY = _env("MAIL_API_KEY")
    MAIL_FROM = _env("MAIL_FROM", "no-reply@digimarket.local")

    ACCESS_TOKEN_TTL_SECONDS = int(_env("ACCESS_TOKEN_TTL_SECONDS", "604800"))
