from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis

from lms.extensions import db

base_bp = Blueprint("base", __name__)


@base_bp.route("/")
def home():
    return jsonify({"message": "Welcome to the LMS API!"})


def _ping_redis():
    url = current_app.config.get("REDIS_URL")
    if not url:
        return "not_configured"
    try:
        client = redis.Redis.from_url(url, socket_connect_timeout=1, socket_timeout=1)
        client.ping()
        return "ok"
    except redis.RedisError as e:
        current_app.logger.warning("Redis health check failed: %s", e)
        return "error"


@base_bp.route("/api/health")
def health():
    checks = {}
    try:
        db.session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        current_app.logger.error("Database health check failed: %s", e)
        db.session.rollback()
        checks["database"] = "error"

    checks["redis"] = _ping_redis()

    healthy = all(value != "error" for value in checks.values())
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
