from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func
from lms.models import AttendanceRecord, Evaluation, UserBatchProcess, AttendanceStatusEnum, BATCH_PHASES
from lms.extensions import db
from utils.access_control import visible_batches
from utils.decorators import get_current_user, user_required, same_organization_required

dashboard_bp = Blueprint('dashboard', __name__)

PRESENT_STATUSES = (AttendanceStatusEnum.present, AttendanceStatusEnum.late)


@dashboard_bp.route('/organizations/<int:org_id>/dashboard', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def summary(org_id):
    """Training overview limited to the batches the caller can view."""
    user = get_current_user()
    batches = visible_batches(user)
    batch_ids = [batch.id for batch in batches]

    # Batches by phase
    by_phase = {phase.value: 0 for phase in BATCH_PHASES}
    for batch in batches:
        by_phase[batch.status.value] += 1

    if not batch_ids:
        return jsonify({
            "total_batches": 0,
            "batches_by_phase": by_phase,
            "active_trainees": 0,
            "attendance_rate": None,
            "attendance_by_status": {},
            "average_score": None,
            "pass_rate": None,
            "evaluation_count": 0,
        }), 200

    active_trainees = (
        db.session.query(func.count(func.distinct(UserBatchProcess.user_id)))
        .filter(UserBatchProcess.batch_id.in_(batch_ids), UserBatchProcess.status == "active")
        .scalar()
    )

    # Attendance
    attendance_counts = dict(
        db.session.query(AttendanceRecord.status, func.count(AttendanceRecord.id))
        .filter(AttendanceRecord.batch_id.in_(batch_ids))
        .group_by(AttendanceRecord.status)
        .all()
    )
    total_marked = sum(attendance_counts.values())
    present = sum(attendance_counts.get(status, 0) for status in PRESENT_STATUSES)
    attendance_rate = round(present / total_marked * 100, 2) if total_marked else None

    # Evaluations
    evaluations = Evaluation.query.filter(Evaluation.batch_id.in_(batch_ids)).all()
    scores = [evaluation.final_score for evaluation in evaluations]
    decided = [evaluation.passed for evaluation in evaluations if evaluation.passed is not None]

    return jsonify({
        "total_batches": len(batches),
        "batches_by_phase": by_phase,
        "active_trainees": active_trainees,
        "attendance_rate": attendance_rate,
        "attendance_by_status": {status.value: count for status, count in attendance_counts.items()},
        "average_score": round(sum(scores) / len(scores), 2) if scores else None,
        "pass_rate": round(sum(1 for p in decided if p) / len(decided) * 100, 2) if decided else None,
        "evaluation_count": len(evaluations),
    }), 200
