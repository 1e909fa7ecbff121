from flask import Blueprint, request, jsonify, current_app, make_response
from flask_jwt_extended import (
    create_access_token, create_refresh_token, jwt_required,
    get_jwt_identity, get_jwt
)
from lms.models import User, Organization, TokenBlocklist, RoleEnum
from lms.extensions import db, limiter
from utils.audit import log_event
from utils.decorators import get_current_user, user_required
from utils.permissions import get_role_permissions
from datetime import datetime
import re

auth_bp = Blueprint('auth', __name__)
USERNAME_RE = re.compile(r'^[\w.@+-]{3,}$')


def _set_auth_cookies(response, access_token, refresh_token=None):
    secure_flag = current_app.config["JWT_COOKIE_SECURE"]
    same_site = current_app.config["JWT_COOKIE_SAMESITE"]

    response.set_cookie(
        "access_token_cookie",
        access_token,
        max_age=int(current_app.config["JWT_ACCESS_TOKEN_EXPIRES"].total_seconds()),
        httponly=True,
        secure=secure_flag,
        samesite=same_site,
        path="/"
    )
    if refresh_token:
        response.set_cookie(
            "refresh_token_cookie",
            refresh_token,
            max_age=int(current_app.config["JWT_REFRESH_TOKEN_EXPIRES"].total_seconds()),
            httponly=True,
            secure=secure_flag,
            samesite=same_site,
            path="/auth/refresh"
        )
    return response


def _user_payload(user):
    data = user.to_dict()
    data["permissions"] = get_role_permissions(user.organization_id, user.role)
    return data


@auth_bp.route('/register', methods=['POST'])
@limiter.limit("5 per minute", override_defaults=False)
def register():
    data = request.get_json() or {}
    organization_name = (data.get('organization_name') or '').strip()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    email = (data.get('email') or '').strip()
    full_name = (data.get('full_name') or '').strip()

    if not organization_name or not username or not password or not email:
        return jsonify({"message": "Organization name, username, password and email are required"}), 400

    if not USERNAME_RE.match(username):
        return jsonify({"message": "Invalid username format"}), 400

    if len(password) < 8:
        return jsonify({"message": "Password must be at least 8 characters"}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({"message": "Username already exists"}), 409

    if Organization.query.filter_by(name=organization_name).first():
        return jsonify({"message": "Organization already exists"}), 409

    organization = Organization(name=organization_name)
    db.session.add(organization)
    db.session.flush()

    user = User(
        username=username,
        email=email,
        full_name=full_name or username,
        role=RoleEnum.owner,
        organization_id=organization.id,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    log_event("ORGANIZATION_REGISTERED", user_id=user.id, ip=request.remote_addr,
              description=f"{username} registered {organization_name}", organization_id=organization.id)

    return jsonify({
        "message": "Organization created",
        "organization": organization.to_dict(),
        "user": user.to_dict()
    }), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("5 per minute", override_defaults=False)
def login():
    data = request.get_json() or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    ip = request.remote_addr

    if not username or not password:
        return jsonify({"message": "Username and password are required"}), 400

    if not USERNAME_RE.match(username):
        return jsonify({"message": "Invalid username format"}), 400

    user = User.query.filter_by(username=username).first()

    if user and user.check_password(password):
        if user.deleted or not user.active:
            log_event("LOGIN_BLOCKED", user_id=user.id, ip=ip, level="WARNING",
                      description=f"Inactive account {username} tried to log in",
                      organization_id=user.organization_id)
            return jsonify({"message": "Account is inactive"}), 403

        access_token = create_access_token(
            identity=str(user.id),
            additional_claims={"role": user.role.value, "organization_id": user.organization_id}
        )
        refresh_token = create_refresh_token(identity=str(user.id))

        response = make_response(jsonify({"message": "Login successful", "user": _user_payload(user)}))
        _set_auth_cookies(response, access_token, refresh_token)

        log_event("LOGIN_SUCCESS", user_id=user.id, ip=ip, description=f"{username} logged in",
                  organization_id=user.organization_id)
        return response

    log_event("LOGIN_FAILED", ip=ip, level="WARNING", description=f"Failed login attempt for {username}")
    return jsonify({"message": "Invalid username or password"}), 401


@auth_bp.route('/me', methods=['GET'])
@jwt_required()
@user_required
def me():
    return jsonify(_user_payload(get_current_user())), 200


@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
@user_required
def refresh_access_token():
    user = get_current_user()
    access_token = create_access_token(
        identity=str(user.id),
        additional_claims={"role": user.role.value, "organization_id": user.organization_id}
    )

    response = make_response(jsonify({"message": "Token refreshed"}))
    _set_auth_cookies(response, access_token)

    log_event("REFRESH_TOKEN", user_id=user.id, ip=request.remote_addr, organization_id=user.organization_id)
    return response


@auth_bp.route("/logout", methods=["POST"])
@jwt_required()
def logout():
    claims = get_jwt()
    user_id = get_jwt_identity()
    expires = datetime.utcfromtimestamp(claims["exp"])

    token_block = TokenBlocklist(jti=claims["jti"], token_type=claims.get("type", "access"),
                                 user_id=int(user_id), expires_at=expires)
    db.session.add(token_block)
    db.session.commit()

    response = make_response(jsonify({"message": "Successfully logged out"}))
    response.delete_cookie("access_token_cookie", path="/")
    response.delete_cookie("refresh_token_cookie", path="/auth/refresh")

    log_event("LOGOUT", user_id=user_id, ip=request.remote_addr)
    return response
