import pandas as pd
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from lms.models import (
    Batch, BatchTemplate, BatchHistory, UserBatchProcess, User, Process, Location, LineOfBusiness,
    AttendanceRecord, Evaluation, PhaseChangeRequest,
    BatchStatusEnum, BatchCategoryEnum, RoleEnum, UserCategoryEnum,
)
from lms.extensions import db
from utils.access_control import visible_batches, get_visible_batch
from utils.audit import log_event
from utils.decorators import get_current_user, user_required, permission_required, same_organization_required
from utils.phases import compute_phase_dates, record_history, start_batch, phase_start_field, phase_end_field, TIMED_PHASES
from utils.serialization import parse_date, parse_enum, parse_int

batches_bp = Blueprint('batches', __name__)

TRAINER_ROLES = {RoleEnum.trainer, RoleEnum.team_lead}


class EnrollmentConflict(ValueError):
    pass


def load_batch(org_id, batch_id):
    """Returns (batch, None) or (None, error response) for a batch the caller may view."""
    user = get_current_user()
    try:
        batch = get_visible_batch(user, batch_id)
    except LookupError as e:
        return None, (jsonify({"message": str(e)}), 404)
    except PermissionError as e:
        return None, (jsonify({"message": str(e)}), 403)
    if batch.organization_id != org_id:
        return None, (jsonify({"message": "Batch not found"}), 404)
    return batch, None


def enrolled_counts(batch_ids):
    if not batch_ids:
        return {}
    rows = (
        db.session.query(UserBatchProcess.batch_id, func.count(UserBatchProcess.id))
        .filter(UserBatchProcess.batch_id.in_(batch_ids), UserBatchProcess.status == "active")
        .group_by(UserBatchProcess.batch_id)
        .all()
    )
    return dict(rows)


def _batch_payload(batch, enrolled, include_related=False):
    data = batch.to_dict(include_related=include_related)
    data["enrolled_count"] = enrolled
    data["capacity_remaining"] = max(batch.capacity_limit - enrolled, 0)
    return data


def _owned(model, org_id, item_id, label):
    item = db.session.get(model, parse_int(item_id, f"{label}_id"))
    if not item or item.organization_id != org_id:
        raise ValueError(f"{label.replace('_', ' ').capitalize()} not found in this organization")
    return item


def _resolve_trainer(org_id, trainer_id):
    trainer = db.session.get(User, parse_int(trainer_id, "trainer_id"))
    if not trainer or trainer.organization_id != org_id or trainer.deleted:
        raise ValueError("Trainer not found in this organization")
    if trainer.role not in TRAINER_ROLES:
        raise ValueError("Assigned trainer must have the trainer or team_lead role")
    return trainer


def _validate_phase_dates(batch):
    """Each planned phase must end on or after its start and not start before the previous one ends."""
    previous_end = None
    for phase in TIMED_PHASES:
        start = getattr(batch, phase_start_field(phase))
        end = getattr(batch, phase_end_field(phase))
        if start and end and end < start:
            raise ValueError(f"{phase.value} end date is before its start date")
        if start and previous_end and start < previous_end:
            raise ValueError(f"{phase.value} starts before the previous phase ends")
        previous_end = end or previous_end
    if batch.induction_start_date and batch.induction_start_date < batch.start_date:
        raise ValueError("Induction cannot start before the batch start date")


def _apply_batch_fields(batch, data, org_id, creating=False):
    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Batch name is required")
        batch.name = name
    if creating or "process_id" in data:
        process = _owned(Process, org_id, data.get("process_id"), "process")
        batch.process_id = process.id
    if creating or "location_id" in data:
        batch.location_id = _owned(Location, org_id, data.get("location_id"), "location").id
    if creating or "line_of_business_id" in data:
        batch.line_of_business_id = _owned(LineOfBusiness, org_id, data.get("line_of_business_id"),
                                           "line_of_business").id
    if creating or "trainer_id" in data:
        batch.trainer_id = _resolve_trainer(org_id, data.get("trainer_id")).id
    if creating or "capacity_limit" in data:
        batch.capacity_limit = parse_int(data.get("capacity_limit"), "capacity_limit", minimum=1)
    if creating or "batch_category" in data:
        batch.batch_category = parse_enum(BatchCategoryEnum, data.get("batch_category") or "new_training",
                                          "batch_category")

    process = db.session.get(Process, batch.process_id)
    if process and process.line_of_business_id != batch.line_of_business_id:
        raise ValueError("Process does not belong to the selected line of business")

    if creating or "start_date" in data:
        batch.start_date = parse_date(data.get("start_date"), "start_date")
        if creating:
            for field, value in compute_phase_dates(batch.start_date, process).items():
                setattr(batch, field, value)

    for field in Batch.DATE_FIELDS:
        if field != "start_date" and field in data:
            setattr(batch, field, parse_date(data.get(field), field, required=field == "induction_start_date"))

    _validate_phase_dates(batch)


# ------------------------------- Batches -------------------------------

@batches_bp.route('/organizations/<int:org_id>/batches', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_batches(org_id):
    user = get_current_user()
    query = Batch.query

    status = request.args.get("status")
    if status:
        try:
            query = query.filter(Batch.status == parse_enum(BatchStatusEnum, status, "status"))
        except ValueError as e:
            return jsonify({"message": str(e)}), 400

    batches = visible_batches(user, query)
    counts = enrolled_counts([batch.id for batch in batches])
    return jsonify([_batch_payload(batch, counts.get(batch.id, 0)) for batch in batches]), 200


@batches_bp.route('/organizations/<int:org_id>/batches', methods=['POST'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def create_batch(org_id):
    user = get_current_user()
    batch = Batch(organization_id=org_id, status=BatchStatusEnum.planned)
    try:
        _apply_batch_fields(batch, request.get_json() or {}, org_id, creating=True)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    db.session.add(batch)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "A batch with this name already exists"}), 409

    record_history(batch, "status_update", f"Batch {batch.name} created", new_value=batch.status.value,
                   user_id=user.id)
    db.session.commit()

    log_event("BATCH_CREATED", user_id=user.id, ip=request.remote_addr, organization_id=org_id,
              description=f"Batch {batch.id} ({batch.name})")
    return jsonify(_batch_payload(batch, 0, include_related=True)), 201


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def get_batch(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error
    counts = enrolled_counts([batch.id])
    return jsonify(_batch_payload(batch, counts.get(batch.id, 0), include_related=True)), 200


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def update_batch(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    data = request.get_json() or {}
    if "status" in data:
        return jsonify({"message": "Batch status changes go through start or phase change requests"}), 400

    try:
        _apply_batch_fields(batch, data, org_id)
        if "capacity_limit" in data and batch.capacity_limit < enrolled_counts([batch.id]).get(batch.id, 0):
            raise ValueError("Capacity cannot be lower than the number of enrolled trainees")
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "A batch with this name already exists"}), 409

    counts = enrolled_counts([batch.id])
    return jsonify(_batch_payload(batch, counts.get(batch.id, 0), include_related=True)), 200


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def delete_batch(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error
    if batch.status != BatchStatusEnum.planned:
        return jsonify({"message": "Only planned batches can be deleted"}), 400

    dependents = {
        "attendance records": AttendanceRecord.query.filter_by(batch_id=batch.id).count(),
        "evaluations": Evaluation.query.filter_by(batch_id=batch.id).count(),
        "phase change requests": PhaseChangeRequest.query.filter_by(batch_id=batch.id).count(),
    }
    blocking = [f"{count} {name}" for name, count in dependents.items() if count]
    if blocking:
        return jsonify({"message": f"Batch still has {', '.join(blocking)}"}), 409

    db.session.delete(batch)
    db.session.commit()
    log_event("BATCH_DELETED", user_id=get_current_user().id, ip=request.remote_addr,
              organization_id=org_id, description=f"Batch {batch_id}")
    return jsonify({"message": "Batch deleted"}), 200


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/start', methods=['POST'])
@jwt_required()
@user_required
@same_organization_required
def start_batch_route(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    user = get_current_user()
    try:
        start_batch(batch, user_id=user.id)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    db.session.commit()

    log_event("BATCH_STARTED", user_id=user.id, ip=request.remote_addr, organization_id=org_id,
              description=f"Batch {batch.id} moved to induction")
    return jsonify(batch.to_dict()), 200


# ------------------------------- History -------------------------------

@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/history', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def batch_history(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error
    events = BatchHistory.query.filter_by(batch_id=batch.id).order_by(BatchHistory.date.desc(),
                                                                      BatchHistory.id.desc()).all()
    return jsonify([event.to_dict() for event in events]), 200


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/history', methods=['POST'])
@jwt_required()
@user_required
@same_organization_required
def add_batch_history(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    data = request.get_json() or {}
    event_type = data.get("event_type", "note")
    description = (data.get("description") or "").strip()
    if event_type not in {"milestone", "note"}:
        return jsonify({"message": "Only milestone and note events can be added manually"}), 400
    if not description:
        return jsonify({"message": "Description is required"}), 400

    entry = record_history(batch, event_type, description, user_id=get_current_user().id)
    db.session.commit()
    return jsonify(entry.to_dict()), 201


# ------------------------------- Trainees -------------------------------

def _active_count(batch):
    return enrolled_counts([batch.id]).get(batch.id, 0)


def _enroll(batch, trainee):
    """Creates or reactivates an enrollment; raises EnrollmentConflict on capacity or duplicates."""
    if _active_count(batch) >= batch.capacity_limit:
        raise EnrollmentConflict(f"Batch {batch.name} is at capacity ({batch.capacity_limit})")

    elsewhere = UserBatchProcess.query.filter(
        UserBatchProcess.user_id == trainee.id,
        UserBatchProcess.status == "active",
        UserBatchProcess.batch_id != batch.id,
    ).first()
    if elsewhere:
        raise EnrollmentConflict(f"{trainee.username} is already active in batch {elsewhere.batch_id}")

    enrollment = UserBatchProcess.query.filter_by(
        user_id=trainee.id, batch_id=batch.id, process_id=batch.process_id
    ).first()
    if enrollment and enrollment.status == "active":
        raise EnrollmentConflict(f"{trainee.username} is already enrolled in this batch")
    if enrollment is None:
        enrollment = UserBatchProcess(user_id=trainee.id, batch_id=batch.id, process_id=batch.process_id)
        db.session.add(enrollment)
    enrollment.status = "active"
    db.session.flush()
    return enrollment


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/trainees', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_trainees(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    status = request.args.get("status", "active")
    enrollments = UserBatchProcess.query.filter_by(batch_id=batch.id, status=status).all()
    return jsonify([
        {**enrollment.to_dict(), "user": enrollment.user.to_dict()} for enrollment in enrollments
    ]), 200


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/trainees', methods=['POST'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def add_trainees(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error
    if batch.status == BatchStatusEnum.completed:
        return jsonify({"message": "Cannot add trainees to a completed batch"}), 400

    data = request.get_json() or {}
    trainee_ids = data.get("trainee_ids") or ([data["trainee_id"]] if data.get("trainee_id") else [])
    if not trainee_ids:
        return jsonify({"message": "trainee_id or trainee_ids is required"}), 400

    added = []
    try:
        for trainee_id in trainee_ids:
            trainee = db.session.get(User, parse_int(trainee_id, "trainee_id"))
            if not trainee or trainee.organization_id != org_id or trainee.deleted:
                raise LookupError(f"Trainee {trainee_id} not found in this organization")
            if trainee.role != RoleEnum.trainee:
                raise ValueError(f"{trainee.username} is not a trainee")
            added.append(_enroll(batch, trainee))
    except LookupError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 404
    except EnrollmentConflict as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 409
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400

    user = get_current_user()
    record_history(batch, "milestone", f"{len(added)} trainee(s) added", user_id=user.id)
    db.session.commit()
    return jsonify([enrollment.to_dict() for enrollment in added]), 201


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/trainees/<int:trainee_id>',
                  methods=['DELETE'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def remove_trainee(org_id, batch_id, trainee_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    enrollment = UserBatchProcess.query.filter_by(batch_id=batch.id, user_id=trainee_id, status="active").first()
    if not enrollment:
        return jsonify({"message": "Trainee is not active in this batch"}), 404

    enrollment.status = "removed"
    record_history(batch, "status_update", f"Trainee {trainee_id} removed", previous_value="active",
                   new_value="removed", user_id=get_current_user().id)
    db.session.commit()
    return jsonify({"message": "Trainee removed"}), 200


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/trainees/<int:trainee_id>/transfer',
                  methods=['POST'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def transfer_trainee(org_id, batch_id, trainee_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    data = request.get_json() or {}
    try:
        target_id = parse_int(data.get("target_batch_id"), "target_batch_id")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    if target_id == batch.id:
        return jsonify({"message": "Target batch must differ from the current batch"}), 400

    target, error = load_batch(org_id, target_id)
    if error:
        return error
    if target.status == BatchStatusEnum.completed:
        return jsonify({"message": "Cannot transfer into a completed batch"}), 400

    enrollment = UserBatchProcess.query.filter_by(batch_id=batch.id, user_id=trainee_id, status="active").first()
    if not enrollment:
        return jsonify({"message": "Trainee is not active in this batch"}), 404

    enrollment.status = "transferred"
    db.session.flush()
    try:
        new_enrollment = _enroll(target, enrollment.user)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 409

    user = get_current_user()
    record_history(batch, "status_update", f"Trainee {trainee_id} transferred to batch {target.id}",
                   previous_value="active", new_value="transferred", user_id=user.id)
    record_history(target, "milestone", f"Trainee {trainee_id} transferred from batch {batch.id}",
                   user_id=user.id)
    db.session.commit()
    return jsonify(new_enrollment.to_dict()), 200


BULK_COLUMNS = ('username', 'full_name', 'email', 'employee_id', 'phone_number', 'date_of_joining', 'password')


@batches_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/trainees/bulk', methods=['POST'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def bulk_upload_trainees(org_id, batch_id):
    """
    Creates trainee accounts from a CSV upload (`file`) and enrolls them.
    Bad rows are reported and skipped; good rows are kept.
    """
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error
    if batch.status == BatchStatusEnum.completed:
        return jsonify({"message": "Cannot add trainees to a completed batch"}), 400

    file = request.files.get('file')
    if not file or not file.filename:
        return jsonify({"message": "No file uploaded"}), 400
    if file.filename.rsplit('.', 1)[-1].lower() != 'csv':
        return jsonify({"message": "Unsupported file format. Use CSV."}), 400

    try:
        df = pd.read_csv(file, dtype=str).fillna("")
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        return jsonify({"message": "Failed to read file", "details": str(e)}), 400

    missing = [column for column in ('username', 'email', 'password') if column not in df.columns]
    if missing:
        return jsonify({"message": f"Missing columns: {', '.join(missing)}"}), 400

    user = get_current_user()
    created, errors = [], []
    seen_usernames, seen_employee_ids = set(), set()
    for index, row in enumerate(df.to_dict(orient="records"), start=2):
        row = {column: str(row.get(column, "")).strip() for column in BULK_COLUMNS}
        try:
            if not row['username'] or not row['email'] or not row['password']:
                raise ValueError("username, email and password are required")
            if row['username'] in seen_usernames or User.query.filter_by(username=row['username']).first():
                raise ValueError(f"Username {row['username']} already exists")
            employee_id = row['employee_id'] or None
            if employee_id and (employee_id in seen_employee_ids
                                or User.query.filter_by(employee_id=employee_id).first()):
                raise ValueError(f"Employee id {employee_id} already exists")
            date_of_joining = parse_date(row['date_of_joining'], "date_of_joining", required=False)
            if _active_count(batch) >= batch.capacity_limit:
                raise EnrollmentConflict(f"Batch {batch.name} is at capacity ({batch.capacity_limit})")
        except ValueError as e:
            errors.append(f"Row {index}: {e}")
            continue

        trainee = User(
            username=row['username'],
            email=row['email'],
            full_name=row['full_name'] or row['username'],
            employee_id=employee_id,
            phone_number=row['phone_number'] or None,
            date_of_joining=date_of_joining,
            role=RoleEnum.trainee,
            category=UserCategoryEnum.trainee,
            organization_id=org_id,
            location_id=batch.location_id,
            manager_id=batch.trainer_id,
        )
        trainee.set_password(row['password'])
        db.session.add(trainee)
        db.session.flush()
        _enroll(batch, trainee)
        seen_usernames.add(trainee.username)
        if employee_id:
            seen_employee_ids.add(employee_id)
        created.append(trainee)

    if created:
        record_history(batch, "milestone", f"{len(created)} trainee(s) added by bulk upload", user_id=user.id)
    db.session.commit()

    log_event("TRAINEES_BULK_UPLOADED", user_id=user.id, ip=request.remote_addr, organization_id=org_id,
              description=f"Batch {batch.id}: {len(created)} created, {len(errors)} failed")
    return jsonify({
        "message": "Bulk upload completed",
        "success_count": len(created),
        "failure_count": len(errors),
        "errors": errors,
        "trainees": [trainee.to_dict() for trainee in created],
    }), 201 if created else 400


# ---------------------------- Batch templates ----------------------------

@batches_bp.route('/organizations/<int:org_id>/batch-templates', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_batch_templates(org_id):
    templates = BatchTemplate.query.filter_by(organization_id=org_id).order_by(BatchTemplate.name).all()
    return jsonify([template.to_dict() for template in templates]), 200


@batches_bp.route('/organizations/<int:org_id>/batch-templates', methods=['POST'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def create_batch_template(org_id):
    data = request.get_json() or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"message": "Template name is required"}), 400

    try:
        template = BatchTemplate(
            organization_id=org_id,
            name=name,
            description=data.get("description"),
            process_id=_owned(Process, org_id, data.get("process_id"), "process").id,
            location_id=_owned(Location, org_id, data.get("location_id"), "location").id,
            line_of_business_id=_owned(LineOfBusiness, org_id, data.get("line_of_business_id"),
                                       "line_of_business").id,
            trainer_id=_resolve_trainer(org_id, data.get("trainer_id")).id,
            batch_category=parse_enum(BatchCategoryEnum, data.get("batch_category") or "new_training",
                                      "batch_category"),
            capacity_limit=parse_int(data.get("capacity_limit"), "capacity_limit", minimum=1),
        )
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    db.session.add(template)
    db.session.commit()
    return jsonify(template.to_dict()), 201


@batches_bp.route('/organizations/<int:org_id>/batch-templates/<int:template_id>', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def get_batch_template(org_id, template_id):
    template = db.session.get(BatchTemplate, template_id)
    if not template or template.organization_id != org_id:
        return jsonify({"message": "Template not found"}), 404
    return jsonify(template.to_dict()), 200


@batches_bp.route('/organizations/<int:org_id>/batch-templates/<int:template_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_batches")
@same_organization_required
def delete_batch_template(org_id, template_id):
    template = db.session.get(BatchTemplate, template_id)
    if not template or template.organization_id != org_id:
        return jsonify({"message": "Template not found"}), 404
    db.session.delete(template)
    db.session.commit()
    return jsonify({"message": "Template deleted"}), 200
