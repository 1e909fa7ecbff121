from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import IntegrityError
from lms.models import User, Location, RoleEnum, UserCategoryEnum, normalize_role
from lms.extensions import db
from utils.access_control import build_manager_map, is_subordinate
from utils.audit import log_event
from utils.decorators import get_current_user, user_required, permission_required, same_organization_required
from utils.pagination import apply_pagination_and_search, pagination_meta
from utils.permissions import has_permission
from utils.serialization import parse_date, parse_enum, parse_int

users_bp = Blueprint('users', __name__)

SEARCH_COLUMNS = ["username", "full_name", "email", "employee_id"]


def _org_user(organization_id, user_id):
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user or user.organization_id != organization_id or user.deleted:
        return None
    return user


def _resolve_manager(current_user, target, manager_id):
    """
    Validates a manager assignment for target (None when creating).
    Raises ValueError for unknown managers or a cycle in the chain.
    """
    if manager_id in (None, ""):
        return None
    manager = _org_user(current_user.organization_id, parse_int(manager_id, "manager_id"))
    if not manager:
        raise ValueError("Manager not found in this organization")
    if target is not None:
        if manager.id == target.id:
            raise ValueError("A user cannot be their own manager")
        if is_subordinate(manager.id, target.id, build_manager_map(current_user.organization_id)):
            raise ValueError("This manager assignment would create a cycle in the reporting chain")
    return manager


@users_bp.route('/organizations/<int:org_id>/users', methods=['GET'])
@jwt_required()
@permission_required("view_users")
@same_organization_required
def list_users(org_id):
    query = User.query.filter_by(organization_id=org_id, deleted=False)

    role = request.args.get("role")
    if role:
        try:
            query = query.filter(User.role == normalize_role(role))
        except ValueError:
            return jsonify({"message": f"Unknown role: {role}"}), 400

    manager_id = request.args.get("manager_id", type=int)
    if manager_id:
        query = query.filter(User.manager_id == manager_id)

    pagination = apply_pagination_and_search(
        query.order_by(User.full_name, User.id),
        User,
        request.args.get("search", ""),
        SEARCH_COLUMNS,
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 25, type=int),
    )
    return jsonify({
        "users": [user.to_dict() for user in pagination.items],
        **pagination_meta(pagination),
    }), 200


@users_bp.route('/users', methods=['POST'])
@jwt_required()
@permission_required("manage_users")
def create_user():
    current_user = get_current_user()
    data = request.get_json() or {}

    missing = [field for field in ('username', 'password', 'email', 'role') if not data.get(field)]
    if missing:
        return jsonify({"message": f"Missing required fields: {', '.join(missing)}"}), 400

    try:
        role = normalize_role(data.get("role"))
    except ValueError:
        return jsonify({"message": f"Unknown role: {data.get('role')}"}), 400

    if role == RoleEnum.owner:
        return jsonify({"message": "An organization has exactly one owner"}), 403
    if role == RoleEnum.admin and current_user.role != RoleEnum.owner:
        return jsonify({"message": "Only the owner can create admins"}), 403

    username = str(data["username"]).strip()
    if User.query.filter_by(username=username).first():
        return jsonify({"message": "Username already exists"}), 409

    try:
        manager = _resolve_manager(current_user, None, data.get("manager_id"))
        location_id = parse_int(data.get("location_id"), "location_id", required=False)
        if location_id is not None:
            location = db.session.get(Location, location_id)
            if not location or location.organization_id != current_user.organization_id:
                raise ValueError("Location not found in this organization")
        category = parse_enum(
            UserCategoryEnum,
            data.get("category") or ("trainee" if role == RoleEnum.trainee else "active"),
            "category",
        )
        date_of_joining = parse_date(data.get("date_of_joining"), "date_of_joining", required=False)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    user = User(
        username=username,
        email=str(data["email"]).strip(),
        full_name=(data.get("full_name") or username).strip(),
        employee_id=data.get("employee_id") or None,
        phone_number=data.get("phone_number"),
        date_of_joining=date_of_joining,
        role=role,
        category=category,
        organization_id=current_user.organization_id,
        location_id=location_id,
        manager_id=manager.id if manager else None,
    )
    user.set_password(str(data["password"]))
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "Username or employee id already exists"}), 409

    log_event("USER_CREATED", user_id=current_user.id, ip=request.remote_addr,
              organization_id=current_user.organization_id,
              description=f"Created {user.username} as {role.value}")
    return jsonify(user.to_dict()), 201


@users_bp.route('/users/<int:user_id>', methods=['GET'])
@jwt_required()
@user_required
def get_user(user_id):
    current_user = get_current_user()
    user = _org_user(current_user.organization_id, user_id)
    if not user:
        return jsonify({"message": "User not found"}), 404
    if user.id != current_user.id and not has_permission(current_user, "view_users"):
        return jsonify({"message": "Access forbidden: insufficient permissions"}), 403
    return jsonify(user.to_dict()), 200


@users_bp.route('/users/<int:user_id>', methods=['PATCH'])
@jwt_required()
@permission_required("edit_users")
def update_user(user_id):
    current_user = get_current_user()
    user = _org_user(current_user.organization_id, user_id)
    if not user:
        return jsonify({"message": "User not found"}), 404
    if user.role == RoleEnum.owner and current_user.id != user.id:
        return jsonify({"message": "Only the owner can edit the owner account"}), 403

    data = request.get_json() or {}
    try:
        if "role" in data:
            role = normalize_role(data["role"])
            if role == RoleEnum.owner or (user.role == RoleEnum.owner and role != RoleEnum.owner):
                raise PermissionError("The owner role cannot be reassigned")
            if role == RoleEnum.admin and current_user.role != RoleEnum.owner:
                raise PermissionError("Only the owner can promote users to admin")
            user.role = role
        if "manager_id" in data:
            manager = _resolve_manager(current_user, user, data.get("manager_id"))
            user.manager_id = manager.id if manager else None
        if "location_id" in data:
            location_id = parse_int(data.get("location_id"), "location_id", required=False)
            if location_id is not None:
                location = db.session.get(Location, location_id)
                if not location or location.organization_id != current_user.organization_id:
                    raise ValueError("Location not found in this organization")
            user.location_id = location_id
        if "category" in data:
            user.category = parse_enum(UserCategoryEnum, data["category"], "category")
        if "date_of_joining" in data:
            user.date_of_joining = parse_date(data["date_of_joining"], "date_of_joining", required=False)
        for field in ("full_name", "email", "phone_number", "employee_id"):
            if field in data:
                setattr(user, field, data[field])
        for field in ("active", "certified"):
            if field in data:
                setattr(user, field, bool(data[field]))
        if "password" in data and data["password"]:
            user.set_password(str(data["password"]))
    except PermissionError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 403
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "Employee id already exists"}), 409

    log_event("USER_UPDATED", user_id=current_user.id, ip=request.remote_addr,
              organization_id=current_user.organization_id,
              description=f"Updated {user.username}: {', '.join(sorted(data))}")
    return jsonify(user.to_dict()), 200


@users_bp.route('/users/<int:user_id>', methods=['DELETE'])
@jwt_required()
@permission_required("delete_users")
def delete_user(user_id):
    current_user = get_current_user()
    user = _org_user(current_user.organization_id, user_id)
    if not user:
        return jsonify({"message": "User not found"}), 404
    if user.role == RoleEnum.owner:
        return jsonify({"message": "The owner cannot be deleted"}), 403
    if user.id == current_user.id:
        return jsonify({"message": "You cannot delete your own account"}), 400

    user.soft_delete()
    user.active = False
    db.session.commit()

    log_event("USER_DELETED", user_id=current_user.id, ip=request.remote_addr, level="WARNING",
              organization_id=current_user.organization_id, description=f"Soft-deleted {user.username}")
    return jsonify({"message": "User deleted"}), 200


@users_bp.route('/users/<int:user_id>/reports', methods=['GET'])
@jwt_required()
@user_required
def list_reports(user_id):
    current_user = get_current_user()
    user = _org_user(current_user.organization_id, user_id)
    if not user:
        return jsonify({"message": "User not found"}), 404
    if user.id != current_user.id and not has_permission(current_user, "view_users"):
        return jsonify({"message": "Access forbidden: insufficient permissions"}), 403

    manager_map = build_manager_map(current_user.organization_id)
    report_ids = [uid for uid in manager_map if is_subordinate(uid, user.id, manager_map)]
    reports = (
        User.query.filter(User.id.in_(report_ids), User.deleted.is_(False)).order_by(User.full_name).all()
        if report_ids else []
    )
    return jsonify({
        "user_id": user.id,
        "reports": [report.to_dict() for report in reports],
    }), 200
