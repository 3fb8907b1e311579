"""
QA Tracking Dashboard
Configuration classes.

    APP_ENV=development|testing|production   (create_app(None) reads this)

Development falls back to a local SQLite file and testing to an in-memory
SQLite database; production refuses to start without DATABASE_URL and
SECRET_KEY.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'qa_tracker_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

DEFAULT_PLATFORM_CONTEXT = (
    "도매랑(Domerang)은 쇼핑몰(소비자 구매) · 공급사(도매 상품 공급) · 관리자(플랫폼 운영) "
    "3개 시스템으로 구성된 B2B 도매 플랫폼입니다."
)

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _database_url(fallback=None):
    # Railway/Heroku hand out postgres://; SQLAlchemy 2 only accepts postgresql://
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Spreadsheet uploads are the largest bodies we accept
    MAX_CONTENT_LENGTH = _env_int("MAX_UPLOAD_MB", 10) * 1024 * 1024

    # Flask-Limiter reads RATELIMIT_* keys directly
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_AI = os.getenv("RATELIMIT_AI", "10/minute")
    RATELIMIT_WRITE = os.getenv("RATELIMIT_WRITE", "60/minute")
    RATELIMIT_READ = os.getenv("RATELIMIT_READ", "200/minute")

    # LLM: AI endpoints answer 500 until the selected model has a key
    AI_CHAT_MODEL = os.getenv("AI_CHAT_MODEL", "gemini-2.0-flash")
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
    AI_PLATFORM_CONTEXT = os.getenv("AI_PLATFORM_CONTEXT", DEFAULT_PLATFORM_CONTEXT)

    REQUIREMENT_DELETE_CHUNK = _env_int("REQUIREMENT_DELETE_CHUNK", 100)
    CHANGE_HISTORY_LIMIT = _env_int("CHANGE_HISTORY_LIMIT", 20)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # SQLite :memory: rejects pool sizing
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    RATELIMIT_ENABLED = False
    AI_CHAT_MODEL = "local-stub"


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
