from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import IntegrityError
from lms.models import Organization, Location, LineOfBusiness, Process, Batch, ProcessStatusEnum
from lms.extensions import db
from utils.decorators import get_current_user, user_required, permission_required, same_organization_required
from utils.serialization import parse_enum, parse_int

organizations_bp = Blueprint('organizations', __name__)

LOCATION_FIELDS = ("name", "address", "city", "state", "country")
PHASE_DAY_FIELDS = ("induction_days", "training_days", "certification_days", "ojt_days", "ojt_certification_days")


def _commit_or_conflict(message):
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": message}), 409
    return None


def _get_owned(model, org_id, item_id):
    item = db.session.get(model, item_id)
    if not item or item.organization_id != org_id:
        return None
    return item


@organizations_bp.route('/organization', methods=['GET'])
@jwt_required()
@user_required
def get_organization():
    user = get_current_user()
    organization = db.get_or_404(Organization, user.organization_id)
    data = organization.to_dict()
    data["locations"] = [loc.to_dict() for loc in organization.locations]
    data["line_of_businesses"] = [lob.to_dict() for lob in organization.line_of_businesses]
    data["processes"] = [proc.to_dict() for proc in organization.processes]
    return jsonify(data), 200


# ---------------------------- Locations ----------------------------

@organizations_bp.route('/organizations/<int:org_id>/locations', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_locations(org_id):
    locations = Location.query.filter_by(organization_id=org_id).order_by(Location.name).all()
    return jsonify([loc.to_dict() for loc in locations]), 200


@organizations_bp.route('/organizations/<int:org_id>/locations', methods=['POST'])
@jwt_required()
@permission_required("manage_locations")
@same_organization_required
def create_location(org_id):
    data = request.get_json() or {}
    missing = [field for field in LOCATION_FIELDS if not str(data.get(field) or "").strip()]
    if missing:
        return jsonify({"message": f"Missing required fields: {', '.join(missing)}"}), 400

    location = Location(organization_id=org_id, **{f: str(data[f]).strip() for f in LOCATION_FIELDS})
    db.session.add(location)
    conflict = _commit_or_conflict("A location with this name already exists")
    if conflict:
        return conflict
    return jsonify(location.to_dict()), 201


@organizations_bp.route('/organizations/<int:org_id>/locations/<int:location_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_locations")
@same_organization_required
def update_location(org_id, location_id):
    location = _get_owned(Location, org_id, location_id)
    if not location:
        return jsonify({"message": "Location not found"}), 404

    data = request.get_json() or {}
    for field in LOCATION_FIELDS:
        if field in data:
            value = str(data[field] or "").strip()
            if not value:
                return jsonify({"message": f"{field} cannot be empty"}), 400
            setattr(location, field, value)

    conflict = _commit_or_conflict("A location with this name already exists")
    if conflict:
        return conflict
    return jsonify(location.to_dict()), 200


@organizations_bp.route('/organizations/<int:org_id>/locations/<int:location_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_locations")
@same_organization_required
def delete_location(org_id, location_id):
    location = _get_owned(Location, org_id, location_id)
    if not location:
        return jsonify({"message": "Location not found"}), 404
    if Batch.query.filter_by(location_id=location.id).first():
        return jsonify({"message": "Location is used by existing batches"}), 409

    db.session.delete(location)
    db.session.commit()
    return jsonify({"message": "Location deleted"}), 200


# ------------------------- Lines of business -------------------------

@organizations_bp.route('/organizations/<int:org_id>/line-of-businesses', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_line_of_businesses(org_id):
    lobs = LineOfBusiness.query.filter_by(organization_id=org_id).order_by(LineOfBusiness.name).all()
    return jsonify([lob.to_dict() for lob in lobs]), 200


@organizations_bp.route('/organizations/<int:org_id>/line-of-businesses', methods=['POST'])
@jwt_required()
@permission_required("manage_processes")
@same_organization_required
def create_line_of_business(org_id):
    data = request.get_json() or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"message": "Name is required"}), 400

    lob = LineOfBusiness(organization_id=org_id, name=name, description=(data.get("description") or "").strip())
    db.session.add(lob)
    conflict = _commit_or_conflict("A line of business with this name already exists")
    if conflict:
        return conflict
    return jsonify(lob.to_dict()), 201


@organizations_bp.route('/organizations/<int:org_id>/line-of-businesses/<int:lob_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_processes")
@same_organization_required
def update_line_of_business(org_id, lob_id):
    lob = _get_owned(LineOfBusiness, org_id, lob_id)
    if not lob:
        return jsonify({"message": "Line of business not found"}), 404

    data = request.get_json() or {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return jsonify({"message": "Name cannot be empty"}), 400
        lob.name = name
    if "description" in data:
        lob.description = (data.get("description") or "").strip()

    conflict = _commit_or_conflict("A line of business with this name already exists")
    if conflict:
        return conflict
    return jsonify(lob.to_dict()), 200


@organizations_bp.route('/organizations/<int:org_id>/line-of-businesses/<int:lob_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_processes")
@same_organization_required
def delete_line_of_business(org_id, lob_id):
    lob = _get_owned(LineOfBusiness, org_id, lob_id)
    if not lob:
        return jsonify({"message": "Line of business not found"}), 404
    if lob.processes:
        return jsonify({"message": "Line of business still has processes"}), 409

    db.session.delete(lob)
    db.session.commit()
    return jsonify({"message": "Line of business deleted"}), 200


# ----------------------------- Processes -----------------------------

def _apply_process_fields(process, data, org_id, creating=False):
    """Validates and copies process fields; raises ValueError on bad input."""
    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Name is required")
        process.name = name
    if "description" in data:
        process.description = data.get("description")
    if creating or "line_of_business_id" in data:
        lob_id = parse_int(data.get("line_of_business_id"), "line_of_business_id")
        lob = db.session.get(LineOfBusiness, lob_id)
        if not lob or lob.organization_id != org_id:
            raise ValueError("Line of business not found in this organization")
        process.line_of_business_id = lob.id
    if "status" in data:
        process.status = parse_enum(ProcessStatusEnum, data.get("status"), "status")
    for field in PHASE_DAY_FIELDS:
        if field in data or creating:
            setattr(process, field, parse_int(data.get(field, 0), field, minimum=0))


@organizations_bp.route('/organizations/<int:org_id>/processes', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_processes(org_id):
    query = Process.query.filter_by(organization_id=org_id)
    lob_id = request.args.get("line_of_business_id", type=int)
    if lob_id:
        query = query.filter_by(line_of_business_id=lob_id)
    return jsonify([proc.to_dict() for proc in query.order_by(Process.name).all()]), 200


@organizations_bp.route('/organizations/<int:org_id>/processes', methods=['POST'])
@jwt_required()
@permission_required("manage_processes")
@same_organization_required
def create_process(org_id):
    process = Process(organization_id=org_id)
    try:
        _apply_process_fields(process, request.get_json() or {}, org_id, creating=True)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    db.session.add(process)
    conflict = _commit_or_conflict("A process with this name already exists")
    if conflict:
        return conflict
    return jsonify(process.to_dict()), 201


@organizations_bp.route('/organizations/<int:org_id>/processes/<int:process_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_processes")
@same_organization_required
def update_process(org_id, process_id):
    process = _get_owned(Process, org_id, process_id)
    if not process:
        return jsonify({"message": "Process not found"}), 404

    try:
        _apply_process_fields(process, request.get_json() or {}, org_id)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400

    conflict = _commit_or_conflict("A process with this name already exists")
    if conflict:
        return conflict
    return jsonify(process.to_dict()), 200


@organizations_bp.route('/organizations/<int:org_id>/processes/<int:process_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_processes")
@same_organization_required
def delete_process(org_id, process_id):
    process = _get_owned(Process, org_id, process_id)
    if not process:
        return jsonify({"message": "Process not found"}), 404
    if Batch.query.filter_by(process_id=process.id).first():
        return jsonify({"message": "Process is used by existing batches"}), 409

    db.session.delete(process)
    db.session.commit()
    return jsonify({"message": "Process deleted"}), 200
