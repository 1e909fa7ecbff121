from datetime import date
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from lms.models import AttendanceRecord, UserBatchProcess, User, AttendanceStatusEnum, BatchStatusEnum
from lms.extensions import db
from lms.routes.batches import load_batch
from utils.access_control import can_view_batch, build_manager_map
from utils.decorators import get_current_user, user_required, same_organization_required
from utils.serialization import parse_date, parse_enum, parse_int

attendance_bp = Blueprint('attendance', __name__)

INACTIVE_PHASES = {BatchStatusEnum.planned, BatchStatusEnum.completed}


@attendance_bp.route('/attendance', methods=['POST'])
@jwt_required()
@user_required
def mark_attendance():
    user = get_current_user()
    data = request.get_json() or {}

    try:
        trainee_id = parse_int(data.get("trainee_id"), "trainee_id")
        batch_id = parse_int(data.get("batch_id"), "batch_id")
        status = parse_enum(AttendanceStatusEnum, data.get("status"), "status")
        on_date = parse_date(data.get("date") or date.today().isoformat(), "date")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    batch, error = load_batch(user.organization_id, batch_id)
    if error:
        return error
    if batch.status in INACTIVE_PHASES:
        return jsonify({"message": f"Attendance cannot be marked for a {batch.status.value} batch"}), 400

    try:
        phase = parse_enum(BatchStatusEnum, data.get("phase") or batch.status.value, "phase")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    if phase in INACTIVE_PHASES:
        return jsonify({"message": "Attendance phase must be an active training phase"}), 400

    enrollment = UserBatchProcess.query.filter_by(user_id=trainee_id, batch_id=batch.id, status="active").first()
    if not enrollment:
        return jsonify({"message": "Trainee is not actively enrolled in this batch"}), 400

    record = AttendanceRecord.query.filter_by(trainee_id=trainee_id, batch_id=batch.id, date=on_date).first()
    created = record is None
    if created:
        record = AttendanceRecord(trainee_id=trainee_id, batch_id=batch.id, date=on_date,
                                  organization_id=batch.organization_id)
        db.session.add(record)
    record.status = status
    record.phase = phase
    record.marked_by_id = user.id
    db.session.commit()

    return jsonify(record.to_dict()), 201 if created else 200


@attendance_bp.route('/attendance/<int:trainee_id>', methods=['GET'])
@jwt_required()
@user_required
def trainee_attendance(trainee_id):
    user = get_current_user()
    trainee = db.session.get(User, trainee_id)
    if not trainee or trainee.organization_id != user.organization_id:
        return jsonify({"message": "Trainee not found"}), 404

    query = AttendanceRecord.query.filter_by(trainee_id=trainee_id)
    batch_id = request.args.get("batch_id", type=int)
    if batch_id:
        query = query.filter_by(batch_id=batch_id)
    records = query.order_by(AttendanceRecord.date.desc()).all()

    if user.id != trainee_id:
        manager_map = build_manager_map(user.organization_id)
        visible = {}
        for record in records:
            if record.batch_id not in visible:
                visible[record.batch_id] = can_view_batch(user, record.batch, manager_map)
        records = [record for record in records if visible[record.batch_id]]

    return jsonify([record.to_dict() for record in records]), 200


@attendance_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/attendance', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def batch_attendance(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    try:
        on_date = parse_date(request.args.get("date") or date.today().isoformat(), "date")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    enrollments = UserBatchProcess.query.filter_by(batch_id=batch.id, status="active").all()
    records = {
        record.trainee_id: record
        for record in AttendanceRecord.query.filter_by(batch_id=batch.id, date=on_date).all()
    }

    sheet = []
    for enrollment in enrollments:
        record = records.get(enrollment.user_id)
        sheet.append({
            "trainee_id": enrollment.user_id,
            "full_name": enrollment.user.full_name,
            "status": record.status.value if record else None,
            "last_updated": record.updated_at.isoformat() if record else None,
        })
    return jsonify({"batch_id": batch.id, "date": on_date.isoformat(), "trainees": sheet}), 200
