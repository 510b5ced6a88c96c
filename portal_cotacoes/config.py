import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "portal_cotacoes.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)
    DB_SEED_DEMO = _bool_env("DB_SEED_DEMO", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-portal-cotacoes")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    LIFECYCLE_SWEEP_ENABLED = _bool_env("LIFECYCLE_SWEEP_ENABLED", True)
    LIFECYCLE_SWEEP_INTERVAL_SECONDS = _int_env("LIFECYCLE_SWEEP_INTERVAL_SECONDS", 300)
    LIFECYCLE_SWEEP_MIN_BACKOFF_SECONDS = _int_env("LIFECYCLE_SWEEP_MIN_BACKOFF_SECONDS", 30)
    LIFECYCLE_SWEEP_MAX_BACKOFF_SECONDS = _int_env("LIFECYCLE_SWEEP_MAX_BACKOFF_SECONDS", 1800)
    VISIT_OVERDUE_GRACE_HOURS = _int_env("VISIT_OVERDUE_GRACE_HOURS", 24)

    SUPPLIER_QUOTES_CACHE_TTL_SECONDS = _int_env("SUPPLIER_QUOTES_CACHE_TTL_SECONDS", 60)

    DEFAULT_DELIVERY_DAYS = _int_env("DEFAULT_DELIVERY_DAYS", 7)
    DEFAULT_PAYMENT_TERMS = os.environ.get("DEFAULT_PAYMENT_TERMS", "30 dias")
    DEFAULT_WARRANTY_MONTHS = _int_env("DEFAULT_WARRANTY_MONTHS", 12)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-portal-cotacoes":
            raise RuntimeError("SECRET_KEY insegura para producao.")
