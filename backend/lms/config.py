import os
from datetime import timedelta
from dotenv import load_dotenv


load_dotenv()


def _env_bool(name, default=False):
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or os.getenv("JWT_SECRET_KEY", "fallback-secret")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "fallback-jwt")
    SQLALCHEMY_DATABASE_URI = os.getenv("SQLALCHEMY_DATABASE_URI", "sqlite:///lms.sqlite3")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = os.getenv("REDIS_URL")
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", "static/uploads/")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    MAX_CONTENT_LENGTH = 64 * 1024 * 1024  # call recordings
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    AUDIT_LOG_FILE = os.getenv("AUDIT_LOG_FILE", os.path.join("logs", "audit.log"))

    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=7)
    JWT_TOKEN_LOCATION = ["cookies"]
    JWT_COOKIE_SECURE = _env_bool("JWT_COOKIE_SECURE", True)  # only over HTTPS
    JWT_COOKIE_SAMESITE = "Lax"
    JWT_COOKIE_CSRF_PROTECT = False

    # A "no" on a fatal parameter fails the evaluation regardless of the aggregate.
    FATAL_PARAMETER_FAILS_EVALUATION = _env_bool("FATAL_PARAMETER_FAILS_EVALUATION", True)
    # Accepted range for "numeric" parameter ratings.
    NUMERIC_RATING_MIN = float(os.getenv("NUMERIC_RATING_MIN", "0"))
    NUMERIC_RATING_MAX = float(os.getenv("NUMERIC_RATING_MAX", "5"))
