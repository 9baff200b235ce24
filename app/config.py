"""
Construction Collaboration Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'workflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_bool(name, default):
    return os.getenv(name, str(default)).lower() == "true"


def _database_url():
    # SQLAlchemy 2 rejects the legacy postgres:// scheme some hosts still hand out
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Base configuration shared across all environments."""

    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    LOG_LEVEL = os.getenv("LOG_LEVEL")

    # Workflow
    WORKFLOW_AUTO_ASSIGN_REVIEWERS = _env_bool("WORKFLOW_AUTO_ASSIGN_REVIEWERS", True)
    WORKFLOW_REMINDER_SCHEDULE = {
        "first": int(os.getenv("WORKFLOW_REMINDER_FIRST_DAYS", "3")),
        "second": int(os.getenv("WORKFLOW_REMINDER_SECOND_DAYS", "7")),
        "escalation": int(os.getenv("WORKFLOW_REMINDER_ESCALATION_DAYS", "14")),
    }
    # Recorded only; a request is never closed without the raiser's action
    WORKFLOW_AUTO_CLOSE_ON_RESPONSE = _env_bool("WORKFLOW_AUTO_CLOSE_ON_RESPONSE", False)

    # Side-effect queue
    SIDE_EFFECT_MAX_ATTEMPTS = int(os.getenv("SIDE_EFFECT_MAX_ATTEMPTS", "5"))
    SIDE_EFFECT_RETRY_BACKOFF_SECONDS = int(os.getenv("SIDE_EFFECT_RETRY_BACKOFF_SECONDS", "30"))
    SIDE_EFFECT_INLINE_DRAIN = _env_bool("SIDE_EFFECT_INLINE_DRAIN", False)

    # Award reconciliation
    AWARD_RECONCILE_MAX_ATTEMPTS = int(os.getenv("AWARD_RECONCILE_MAX_ATTEMPTS", "10"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    # Side effects run synchronously so tests can observe them
    SIDE_EFFECT_INLINE_DRAIN = True
    SIDE_EFFECT_RETRY_BACKOFF_SECONDS = 0


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    @classmethod
    def validate(cls):
        """Called by the app factory; class-level config is never instantiated."""
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
