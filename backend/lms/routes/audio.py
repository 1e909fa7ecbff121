import os
import uuid
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from werkzeug.utils import secure_filename
from lms.models import (
    AudioFile, AudioFileAllocation, EvaluationTemplate, Process, User,
    AudioStatusEnum, RoleEnum, TemplateStatusEnum,
)
from lms.extensions import db
from lms.routes.evaluations import create_scored_evaluation
from utils.access_control import ORG_WIDE_ROLES
from utils.audit import log_event
from utils.decorators import get_current_user, user_required, permission_required
from utils.scoring import ScoringError
from utils.serialization import parse_date, parse_float, parse_int

audio_bp = Blueprint('audio', __name__)

ALLOWED_EXTENSIONS = {'mp3', 'wav', 'm4a', 'ogg', 'webm'}


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def save_file(file, folder):
    filename = secure_filename(file.filename)
    unique_filename = f"{uuid.uuid4().hex}_{filename}"
    upload_folder = os.path.join(current_app.config.get('UPLOAD_FOLDER', 'static/uploads'), folder)
    os.makedirs(upload_folder, exist_ok=True)
    filepath = os.path.join(upload_folder, unique_filename)
    file.save(filepath)
    return filepath.replace('\\', '/')


def _audio_fields(data, user):
    fields = {
        "duration": parse_float(data.get("duration"), "duration", minimum=0, required=False),
        "language": data.get("language") or None,
        "call_date": parse_date(data.get("call_date"), "call_date", required=False),
        "process_id": None,
    }
    process_id = parse_int(data.get("process_id"), "process_id", required=False)
    if process_id is not None:
        process = db.session.get(Process, process_id)
        if not process or process.organization_id != user.organization_id:
            raise ValueError("Process not found in this organization")
        fields["process_id"] = process.id
    metrics = data.get("call_metrics")
    if metrics is not None and not isinstance(metrics, dict):
        raise ValueError("call_metrics must be an object")
    fields["call_metrics"] = metrics
    return fields


@audio_bp.route('/audio-files', methods=['POST'])
@jwt_required()
@permission_required("manage_audio")
def register_audio_file():
    """
    Registers a call recording. Multipart requests carry the file under `file`
    and are stored locally; JSON requests register an existing `file_url`.
    """
    user = get_current_user()
    upload = request.files.get('file')
    data = request.form if upload else (request.get_json() or {})

    try:
        fields = _audio_fields(data, user)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    if upload:
        if not upload.filename or not allowed_file(upload.filename):
            return jsonify({"message": "Unsupported audio file type"}), 400
        filename = secure_filename(upload.filename)
        file_url = save_file(upload, 'audio')
    else:
        filename = (data.get("filename") or "").strip()
        file_url = (data.get("file_url") or "").strip()
        if not filename or not file_url:
            return jsonify({"message": "filename and file_url are required"}), 400
        if not allowed_file(filename):
            return jsonify({"message": "Unsupported audio file type"}), 400

    audio = AudioFile(
        organization_id=user.organization_id,
        filename=filename,
        file_url=file_url,
        uploaded_by=user.id,
        status=AudioStatusEnum.pending,
        **fields,
    )
    db.session.add(audio)
    db.session.commit()
    return jsonify(audio.to_dict()), 201


@audio_bp.route('/audio-files', methods=['GET'])
@jwt_required()
@permission_required("manage_audio")
def list_audio_files():
    user = get_current_user()
    query = AudioFile.query.filter_by(organization_id=user.organization_id)
    status = request.args.get("status")
    if status:
        try:
            query = query.filter_by(status=AudioStatusEnum(status))
        except ValueError:
            return jsonify({"message": f"Invalid status: {status}"}), 400
    return jsonify([a.to_dict() for a in query.order_by(AudioFile.id.desc()).all()]), 200


@audio_bp.route('/audio-files/allocate', methods=['POST'])
@jwt_required()
@permission_required("manage_audio")
def allocate_audio_files():
    user = get_current_user()
    data = request.get_json() or {}

    audio_ids = data.get("audio_file_ids")
    if not isinstance(audio_ids, list) or not audio_ids:
        return jsonify({"message": "audio_file_ids must be a non-empty list"}), 400
    try:
        analyst_id = parse_int(data.get("quality_analyst_id"), "quality_analyst_id")
        template_id = parse_int(data.get("evaluation_template_id"), "evaluation_template_id", required=False)
        due_date = parse_date(data.get("due_date"), "due_date", required=False)
        audio_ids = [parse_int(value, "audio_file_ids") for value in audio_ids]
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    analyst = db.session.get(User, analyst_id)
    if (not analyst or analyst.organization_id != user.organization_id
            or analyst.role != RoleEnum.quality_analyst or not analyst.active):
        return jsonify({"message": "quality_analyst_id must be an active quality analyst"}), 400

    if template_id is not None:
        template = db.session.get(EvaluationTemplate, template_id)
        if not template or template.organization_id != user.organization_id:
            return jsonify({"message": "Evaluation template not found"}), 404
        if template.status != TemplateStatusEnum.active:
            return jsonify({"message": "Evaluation template must be active"}), 400

    files = AudioFile.query.filter(
        AudioFile.id.in_(audio_ids), AudioFile.organization_id == user.organization_id
    ).all()
    missing = sorted(set(audio_ids) - {f.id for f in files})
    if missing:
        return jsonify({"message": f"Audio files not found: {missing}"}), 404
    evaluated = [f.id for f in files if f.status == AudioStatusEnum.evaluated]
    if evaluated:
        return jsonify({"message": f"Audio files already evaluated: {evaluated}"}), 409

    allocations = []
    for audio in files:
        allocation = audio.allocation
        if allocation is None:
            allocation = AudioFileAllocation(organization_id=user.organization_id, audio_file_id=audio.id)
            db.session.add(allocation)
        allocation.quality_analyst_id = analyst.id
        allocation.allocated_by = user.id
        allocation.evaluation_template_id = template_id
        allocation.due_date = due_date
        allocation.status = AudioStatusEnum.allocated
        audio.status = AudioStatusEnum.allocated
        allocations.append(allocation)
    db.session.commit()

    log_event("AUDIO_ALLOCATED", user_id=user.id, ip=request.remote_addr,
              organization_id=user.organization_id,
              description=f"{len(allocations)} file(s) to user {analyst.id}")
    return jsonify([a.to_dict(include_related=True) for a in allocations]), 201


@audio_bp.route('/audio-file-allocations', methods=['GET'])
@jwt_required()
@user_required
def list_allocations():
    user = get_current_user()
    query = AudioFileAllocation.query.filter_by(organization_id=user.organization_id)
    if user.role == RoleEnum.quality_analyst:
        query = query.filter_by(quality_analyst_id=user.id)
    elif user.role not in ORG_WIDE_ROLES:
        return jsonify({"message": "Access denied"}), 403

    status = request.args.get("status")
    if status:
        try:
            query = query.filter_by(status=AudioStatusEnum(status))
        except ValueError:
            return jsonify({"message": f"Invalid status: {status}"}), 400

    allocations = query.order_by(AudioFileAllocation.due_date, AudioFileAllocation.id).all()
    return jsonify([a.to_dict(include_related=True) for a in allocations]), 200


@audio_bp.route('/audio-file-allocations/<int:allocation_id>/evaluate', methods=['POST'])
@jwt_required()
@user_required
def evaluate_allocation(allocation_id):
    user = get_current_user()
    allocation = db.session.get(AudioFileAllocation, allocation_id)
    if not allocation or allocation.organization_id != user.organization_id:
        return jsonify({"message": "Allocation not found"}), 404
    if allocation.quality_analyst_id != user.id and user.role not in ORG_WIDE_ROLES:
        return jsonify({"message": "This file is allocated to another analyst"}), 403
    if allocation.status == AudioStatusEnum.evaluated:
        return jsonify({"message": "This file has already been evaluated"}), 409

    data = request.get_json() or {}
    try:
        template_id = parse_int(data.get("template_id") or allocation.evaluation_template_id, "template_id")
        trainee_id = parse_int(data.get("trainee_id"), "trainee_id", required=False)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    template = db.session.get(EvaluationTemplate, template_id)
    if not template or template.organization_id != user.organization_id:
        return jsonify({"message": "Evaluation template not found"}), 404
    if template.status != TemplateStatusEnum.active:
        return jsonify({"message": "Evaluation template must be active"}), 400
    if trainee_id is not None:
        trainee = db.session.get(User, trainee_id)
        if not trainee or trainee.organization_id != user.organization_id:
            return jsonify({"message": "Trainee not found"}), 404

    try:
        evaluation = create_scored_evaluation(
            user, template, data.get("scores"),
            trainee_id=trainee_id,
            evaluation_type="audio",
            audio_allocation_id=allocation.id,
        )
    except ScoringError as e:
        return jsonify({"message": str(e), "errors": e.details}), 400

    allocation.status = AudioStatusEnum.evaluated
    allocation.audio_file.status = AudioStatusEnum.evaluated
    db.session.commit()

    log_event("AUDIO_EVALUATED", user_id=user.id, ip=request.remote_addr,
              organization_id=user.organization_id,
              description=f"Allocation {allocation.id} scored {evaluation.final_score}")
    data = evaluation.to_dict(include_related=True)
    data["allocation"] = allocation.to_dict()
    return jsonify(data), 201
