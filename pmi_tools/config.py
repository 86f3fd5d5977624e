"""
Environment-specific settings for create_app().

APP_ENV selects one of the classes in ``config``; create_app instantiates
it so ProductionConfig can refuse to start without its required variables.
"""

import os
import secrets

PROJECT_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
INSTANCE_DIR = os.path.join(PROJECT_ROOT, "instance")


def _database_url(var, fallback=None):
    """Read a DB URL from the environment, normalising the legacy postgres:// scheme."""
    url = os.getenv(var, "")
    if not url:
        return fallback
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    """Settings shared by every environment."""

    DEBUG = False
    TESTING = False
    # Random per process outside production; sessions do not survive a restart
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)

    # Bearer tokens issued by the campus SSO gateway
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Days from start_date used when an assignment has no explicit target
    ONBOARDING_DEFAULT_TARGET_DAYS = int(os.getenv("ONBOARDING_DEFAULT_TARGET_DAYS", "180"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        "DATABASE_URL", f"sqlite:///{os.path.join(INSTANCE_DIR, 'pmi_tools_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    # In-memory SQLite rejects pool arguments
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "pmi-tools-test-signing-key-0123456789abcdef"
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, present in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not present
        ]
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
