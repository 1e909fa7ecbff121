from functools import wraps
from flask_jwt_extended import get_jwt_identity
from flask import jsonify, g
from lms.models import db, User, normalize_role
from utils.permissions import has_permission
from utils.access_control import ensure_same_organization


def get_current_user():
    """
    Loads the user behind the current JWT once per request.
    Returns None for missing, deleted or deactivated accounts.
    """
    if "current_user" in g:
        return g.current_user

    user = None
    identity = get_jwt_identity()
    if identity is not None:
        try:
            user = db.session.get(User, int(identity))
        except (TypeError, ValueError):
            user = None
    if user is not None and (user.deleted or not user.active):
        user = None
    g.current_user = user
    return user


def user_required(fn):
    """Rejects requests whose token no longer maps to an active user."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not get_current_user():
            return jsonify({"message": "User not found"}), 401
        return fn(*args, **kwargs)
    return wrapper


def role_required(*allowed_roles):
    """
    Restrict access to users with specific roles.
    Usage: @role_required("admin", "owner")
    """
    allowed_roles = {normalize_role(role) for role in allowed_roles}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = get_current_user()
            if not user:
                return jsonify({"message": "User not found"}), 401

            if user.role not in allowed_roles:
                return jsonify({"message": "Access forbidden: insufficient permissions"}), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def permission_required(permission):
    """
    Restrict access to users whose role grants a permission in their organization.
    Usage: @permission_required("manage_batches")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = get_current_user()
            if not user:
                return jsonify({"message": "User not found"}), 401

            if not has_permission(user, permission):
                return jsonify({"message": f"Missing permission: {permission}"}), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def same_organization_required(fn):
    """
    Rejects requests whose <org_id> URL segment names another tenant.
    Usage: @same_organization_required on routes taking org_id.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = get_current_user()
        if not user:
            return jsonify({"message": "User not found"}), 401
        try:
            ensure_same_organization(user, kwargs.get("org_id"))
        except PermissionError as e:
            return jsonify({"message": str(e)}), 403
        return fn(*args, **kwargs)
    return wrapper
