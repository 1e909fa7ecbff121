from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from lms.models import RolePermission, RoleEnum, normalize_role
from lms.extensions import db
from utils.audit import log_event
from utils.decorators import get_current_user, role_required, user_required
from utils.permissions import PERMISSIONS, get_role_permissions, validate_permissions

permissions_bp = Blueprint('permissions', __name__)


@permissions_bp.route('/permissions', methods=['GET'])
@jwt_required()
@user_required
def list_role_permissions():
    user = get_current_user()
    return jsonify({
        "available_permissions": PERMISSIONS,
        "roles": {
            role.value: get_role_permissions(user.organization_id, role) for role in RoleEnum
        }
    }), 200


@permissions_bp.route('/permissions/<role>', methods=['GET'])
@jwt_required()
@user_required
def get_permissions_for_role(role):
    user = get_current_user()
    try:
        role = normalize_role(role)
    except ValueError:
        return jsonify({"message": f"Unknown role: {role}"}), 404

    return jsonify({
        "role": role.value,
        "permissions": get_role_permissions(user.organization_id, role)
    }), 200


@permissions_bp.route('/permissions/<role>', methods=['PATCH'])
@jwt_required()
@role_required("owner", "admin")
def update_permissions_for_role(role):
    user = get_current_user()
    try:
        role = normalize_role(role)
    except ValueError:
        return jsonify({"message": f"Unknown role: {role}"}), 404

    if role == RoleEnum.owner:
        return jsonify({"message": "Owner permissions cannot be modified"}), 403
    if role == RoleEnum.admin and user.role != RoleEnum.owner:
        return jsonify({"message": "Only the owner can modify admin permissions"}), 403

    data = request.get_json() or {}
    try:
        permissions = validate_permissions(data.get("permissions"))
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    record = RolePermission.query.filter_by(organization_id=user.organization_id, role=role).first()
    previous = list(record.permissions or []) if record else get_role_permissions(user.organization_id, role)
    if record is None:
        record = RolePermission(organization_id=user.organization_id, role=role)
        db.session.add(record)
    record.permissions = permissions
    db.session.commit()

    log_event("PERMISSIONS_UPDATED", user_id=user.id, ip=request.remote_addr,
              organization_id=user.organization_id,
              description=f"{role.value}: {sorted(previous)} -> {permissions}")

    return jsonify({"role": role.value, "permissions": permissions}), 200
