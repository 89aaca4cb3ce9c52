"""
BuildTrack configuration classes, selected by ``APP_ENV``.

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Everything is read from the environment at import time; the testing class
pins the values the test-suite relies on.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'buildtrack_dev.db')}"

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}

DEFAULT_DISCREPANCY_THRESHOLDS = {
    "variance_percentage": 5,
    "variance_amount": 100,
    "loss_percentage": 10,
    "loss_amount": 50,
    "wastage_percentage": 15,
}

_THRESHOLD_ENV = {
    "variance_percentage": "DISCREPANCY_VARIANCE_PCT",
    "variance_amount": "DISCREPANCY_VARIANCE_AMOUNT",
    "loss_percentage": "DISCREPANCY_LOSS_PCT",
    "loss_amount": "DISCREPANCY_LOSS_AMOUNT",
    "wastage_percentage": "DISCREPANCY_WASTAGE_PCT",
}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _discrepancy_thresholds() -> dict:
    """Discrepancy detection limits, each overridable by its own env var."""
    return {
        key: _float_env(env_name, DEFAULT_DISCREPANCY_THRESHOLDS[key])
        for key, env_name in _THRESHOLD_ENV.items()
    }


def _database_url(fallback=None):
    # SQLAlchemy 2.0 rejects the legacy postgres:// scheme
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # "key:role[:user],..." checked when API_AUTH_ENABLED is truthy
    API_KEYS = os.getenv("API_KEYS", "")
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")

    # Limiter storage; "memory://" keeps counters per process
    RATELIMIT_ENABLED = True
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_STORAGE_URI = REDIS_URL
    SUPPLIER_RESPONSE_RATE_LIMIT = os.getenv("SUPPLIER_RESPONSE_RATE_LIMIT", "20 per minute")
    WRITE_RATE_LIMIT = os.getenv("WRITE_RATE_LIMIT", "120 per minute")

    PO_RESPONSE_TOKEN_TTL_HOURS = _float_env("PO_RESPONSE_TOKEN_TTL_HOURS", 168)
    DISCREPANCY_THRESHOLDS = _discrepancy_thresholds()


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)
    # role and user come from X-User-Role / X-User unless keys are switched on
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    # StaticPool for in-memory SQLite takes no sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False
    PO_RESPONSE_TOKEN_TTL_HOURS = 168
    DISCREPANCY_THRESHOLDS = dict(DEFAULT_DISCREPANCY_THRESHOLDS)


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not value
        ]
        if missing:
            raise RuntimeError(f"Production requires environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
