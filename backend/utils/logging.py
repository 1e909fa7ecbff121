import logging
from datetime import datetime
from flask import request, jsonify
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level="INFO"):
    root = logging.getLogger()
    if getattr(root, "_lms_configured", False):
        root.setLevel(level)
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    root._lms_configured = True


def log_rate_limit_violation(request_limit):
    # models import db from extensions, which imports this module
    from lms.models import AuditLog, db

    try:
        verify_jwt_in_request(optional=True)
        user_id = get_jwt_identity()
    except (JWTExtendedException, PyJWTError):
        user_id = None

    log = AuditLog(
        user_id=int(user_id) if user_id else None,
        action=f"RATE_LIMIT_EXCEEDED: {request.method} {request.path} ({request_limit.limit})",
        ip_address=request.remote_addr,
        timestamp=datetime.utcnow(),
    )
    db.session.add(log)
    db.session.commit()

    logging.getLogger(__name__).warning("rate limit exceeded path=%s ip=%s", request.path, request.remote_addr)
    return jsonify({
        "message": "Rate limit exceeded. Please slow down."
    }), 429
