from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from lms.models import PhaseChangeRequest, BatchStatusEnum, RequestStatusEnum, RoleEnum, BATCH_PHASES
from lms.extensions import db
from lms.routes.batches import load_batch
from utils.audit import log_event
from utils.decorators import get_current_user, user_required, same_organization_required
from utils.phases import move_batch_to_phase
from utils.serialization import parse_enum

phase_requests_bp = Blueprint('phase_requests', __name__)

ADMIN_ROLES = {RoleEnum.owner, RoleEnum.admin}


@phase_requests_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/phase-change-requests',
                         methods=['POST'])
@jwt_required()
@user_required
@same_organization_required
def create_phase_change_request(org_id, batch_id):
    user = get_current_user()
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error
    if batch.trainer_id != user.id:
        return jsonify({"message": "Only the batch trainer can request a phase change"}), 403
    if not user.manager_id:
        return jsonify({"message": "You have no manager to approve this request"}), 400

    data = request.get_json() or {}
    justification = (data.get("justification") or "").strip()
    try:
        requested = parse_enum(BatchStatusEnum, data.get("requested_phase"), "requested_phase")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    if not justification:
        return jsonify({"message": "Justification is required"}), 400
    if BATCH_PHASES.index(requested) <= BATCH_PHASES.index(batch.status):
        return jsonify({"message": "Requested phase must come after the current phase"}), 400

    pending = PhaseChangeRequest.query.filter_by(batch_id=batch.id, status=RequestStatusEnum.pending).first()
    if pending:
        return jsonify({"message": "This batch already has a pending phase change request"}), 409

    phase_request = PhaseChangeRequest(
        organization_id=org_id,
        batch_id=batch.id,
        trainer_id=user.id,
        manager_id=user.manager_id,
        current_phase=batch.status,
        requested_phase=requested,
        justification=justification,
    )
    db.session.add(phase_request)
    db.session.commit()

    log_event("PHASE_CHANGE_REQUESTED", user_id=user.id, ip=request.remote_addr, organization_id=org_id,
              description=f"Batch {batch.id}: {batch.status.value} -> {requested.value}")
    return jsonify(phase_request.to_dict()), 201


@phase_requests_bp.route('/organizations/<int:org_id>/trainers/<int:trainer_id>/phase-change-requests',
                         methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_trainer_requests(org_id, trainer_id):
    user = get_current_user()
    if user.id != trainer_id and user.role not in ADMIN_ROLES:
        return jsonify({"message": "You can only view your own requests"}), 403

    requests = (
        PhaseChangeRequest.query.filter_by(organization_id=org_id, trainer_id=trainer_id)
        .order_by(PhaseChangeRequest.created_at.desc()).all()
    )
    return jsonify([item.to_dict() for item in requests]), 200


@phase_requests_bp.route('/organizations/<int:org_id>/managers/<int:manager_id>/phase-change-requests',
                         methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_manager_requests(org_id, manager_id):
    user = get_current_user()
    if user.id != manager_id and user.role not in ADMIN_ROLES:
        return jsonify({"message": "You can only view requests assigned to you"}), 403

    query = PhaseChangeRequest.query.filter_by(organization_id=org_id, manager_id=manager_id)
    status = request.args.get("status")
    if status:
        try:
            query = query.filter_by(status=parse_enum(RequestStatusEnum, status, "status"))
        except ValueError as e:
            return jsonify({"message": str(e)}), 400
    return jsonify([item.to_dict() for item in query.order_by(PhaseChangeRequest.created_at.desc()).all()]), 200


@phase_requests_bp.route('/organizations/<int:org_id>/phase-change-requests/<int:request_id>',
                         methods=['PATCH'])
@jwt_required()
@user_required
@same_organization_required
def review_phase_change_request(org_id, request_id):
    user = get_current_user()
    phase_request = db.session.get(PhaseChangeRequest, request_id)
    if not phase_request or phase_request.organization_id != org_id:
        return jsonify({"message": "Request not found"}), 404
    if phase_request.manager_id != user.id and user.role not in ADMIN_ROLES:
        return jsonify({"message": "Only the assigned manager can review this request"}), 403
    if phase_request.status != RequestStatusEnum.pending:
        return jsonify({"message": "Request has already been reviewed"}), 409

    data = request.get_json() or {}
    try:
        decision = parse_enum(RequestStatusEnum, data.get("status"), "status")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    if decision == RequestStatusEnum.pending:
        return jsonify({"message": "Status must be approved or rejected"}), 400

    batch = phase_request.batch
    if decision == RequestStatusEnum.approved:
        if batch.status != phase_request.current_phase:
            return jsonify({"message": "Batch phase changed since the request was made"}), 409
        move_batch_to_phase(
            batch, phase_request.requested_phase, user_id=user.id,
            description=f"Phase change approved: {batch.status.value} to {phase_request.requested_phase.value}",
        )

    phase_request.status = decision
    phase_request.manager_comments = data.get("manager_comments")
    db.session.commit()

    log_event("PHASE_CHANGE_" + decision.value.upper(), user_id=user.id, ip=request.remote_addr,
              organization_id=org_id, description=f"Request {phase_request.id} for batch {batch.id}")
    return jsonify({"request": phase_request.to_dict(), "batch": batch.to_dict()}), 200
