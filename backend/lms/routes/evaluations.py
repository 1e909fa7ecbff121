from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from lms.models import (
    EvaluationTemplate, EvaluationPillar, EvaluationParameter, Evaluation, EvaluationParameterResult,
    Process, User, UserBatchProcess, Batch, TemplateStatusEnum, RatingTypeEnum, RoleEnum,
)
from lms.extensions import db
from lms.routes.batches import load_batch
from utils.access_control import can_view_batch
from utils.audit import log_event
from utils.decorators import (
    get_current_user, user_required, role_required, permission_required, same_organization_required,
)
from utils.scoring import ScoringError, score_evaluation
from utils.serialization import parse_enum, parse_float, parse_int

evaluations_bp = Blueprint('evaluations', __name__)

EVALUATOR_ROLES = ("owner", "admin", "manager", "team_lead", "quality_analyst", "trainer")
ORG_REVIEW_ROLES = {RoleEnum.owner, RoleEnum.admin, RoleEnum.manager, RoleEnum.quality_analyst}


def _template_for(user, template_id):
    template = db.session.get(EvaluationTemplate, template_id)
    if not template or template.organization_id != user.organization_id:
        return None
    return template


def _editable(template):
    if template.status != TemplateStatusEnum.draft:
        return jsonify({"message": "Only draft templates can be edited; duplicate it instead"}), 400
    return None


def create_scored_evaluation(user, template, scores, trainee_id=None, batch_id=None,
                             evaluation_type="standard", audio_allocation_id=None):
    """
    Scores a submission and stages the Evaluation with one result per parameter.
    Raises ScoringError for incomplete or malformed submissions.
    """
    outcome = score_evaluation(
        template, scores,
        fatal_fails=current_app.config.get("FATAL_PARAMETER_FAILS_EVALUATION", True),
        numeric_range=(current_app.config.get("NUMERIC_RATING_MIN", 0.0),
                       current_app.config.get("NUMERIC_RATING_MAX", 5.0)),
    )
    evaluation = Evaluation(
        organization_id=user.organization_id,
        template_id=template.id,
        trainee_id=trainee_id,
        batch_id=batch_id,
        evaluator_id=user.id,
        evaluation_type=evaluation_type,
        audio_allocation_id=audio_allocation_id,
        final_score=outcome["final_score"],
        passed=outcome["passed"],
        fatal_triggered=outcome["fatal_triggered"],
        status="completed",
    )
    evaluation.results = [EvaluationParameterResult(**result) for result in outcome["results"]]
    db.session.add(evaluation)
    return evaluation


# ------------------------------ Templates ------------------------------

@evaluations_bp.route('/organizations/<int:org_id>/evaluation-templates', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_templates(org_id):
    query = EvaluationTemplate.query.filter_by(organization_id=org_id)
    status = request.args.get("status")
    if status:
        try:
            query = query.filter_by(status=parse_enum(TemplateStatusEnum, status, "status"))
        except ValueError as e:
            return jsonify({"message": str(e)}), 400
    process_id = request.args.get("process_id", type=int)
    if process_id:
        query = query.filter_by(process_id=process_id)
    return jsonify([t.to_dict() for t in query.order_by(EvaluationTemplate.created_at.desc()).all()]), 200


@evaluations_bp.route('/organizations/<int:org_id>/evaluation-templates', methods=['POST'])
@jwt_required()
@permission_required("manage_evaluations")
@same_organization_required
def create_template(org_id):
    user = get_current_user()
    data = request.get_json() or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"message": "Template name is required"}), 400

    try:
        process = db.session.get(Process, parse_int(data.get("process_id"), "process_id"))
        if not process or process.organization_id != org_id:
            raise ValueError("Process not found in this organization")
        passing_score = parse_float(data.get("passing_score"), "passing_score", minimum=0, maximum=100,
                                    required=False)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    template = EvaluationTemplate(
        organization_id=org_id,
        process_id=process.id,
        name=name,
        description=data.get("description"),
        passing_score=passing_score,
        status=TemplateStatusEnum.draft,
        created_by=user.id,
    )
    db.session.add(template)
    db.session.commit()
    return jsonify(template.to_dict(include_related=True)), 201


@evaluations_bp.route('/evaluation-templates/<int:template_id>', methods=['GET'])
@jwt_required()
@user_required
def get_template(template_id):
    template = _template_for(get_current_user(), template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    return jsonify(template.to_dict(include_related=True)), 200


@evaluations_bp.route('/evaluation-templates/<int:template_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_evaluations")
def update_template(template_id):
    template = _template_for(get_current_user(), template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404

    data = request.get_json() or {}
    try:
        if "status" in data:
            status = parse_enum(TemplateStatusEnum, data["status"], "status")
            if status == TemplateStatusEnum.active and not template.parameters():
                raise ValueError("A template needs at least one parameter before it can be activated")
            template.status = status
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValueError("Template name cannot be empty")
            template.name = name
        if "description" in data:
            template.description = data.get("description")
        if "passing_score" in data:
            template.passing_score = parse_float(data.get("passing_score"), "passing_score", minimum=0,
                                                 maximum=100, required=False)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400

    db.session.commit()
    return jsonify(template.to_dict(include_related=True)), 200


@evaluations_bp.route('/evaluation-templates/<int:template_id>/finalize', methods=['POST'])
@jwt_required()
@permission_required("manage_evaluations")
def finalize_template(template_id):
    template = _template_for(get_current_user(), template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    if template.status != TemplateStatusEnum.draft:
        return jsonify({"message": "Only draft templates can be finalized"}), 400
    if not template.parameters():
        return jsonify({"message": "A template needs at least one parameter before it can be finalized"}), 400

    template.status = TemplateStatusEnum.active
    db.session.commit()
    return jsonify(template.to_dict(include_related=True)), 200


@evaluations_bp.route('/evaluation-templates/<int:template_id>/duplicate', methods=['POST'])
@jwt_required()
@permission_required("manage_evaluations")
def duplicate_template(template_id):
    user = get_current_user()
    source = _template_for(user, template_id)
    if not source:
        return jsonify({"message": "Template not found"}), 404

    data = request.get_json(silent=True) or {}
    copy = EvaluationTemplate(
        organization_id=source.organization_id,
        process_id=source.process_id,
        name=(data.get("name") or f"{source.name} (Copy)").strip(),
        description=source.description,
        passing_score=source.passing_score,
        status=TemplateStatusEnum.draft,
        created_by=user.id,
    )
    for pillar in source.pillars:
        pillar_copy = EvaluationPillar(
            name=pillar.name,
            description=pillar.description,
            weightage=pillar.weightage,
            order_index=pillar.order_index,
        )
        for param in pillar.parameters:
            pillar_copy.parameters.append(EvaluationParameter(
                name=param.name,
                description=param.description,
                guidelines=param.guidelines,
                rating_type=param.rating_type,
                weightage=param.weightage,
                weightage_enabled=param.weightage_enabled,
                is_fatal=param.is_fatal,
                requires_comment=param.requires_comment,
                no_reasons=list(param.no_reasons or []),
                order_index=param.order_index,
            ))
        copy.pillars.append(pillar_copy)

    db.session.add(copy)
    db.session.commit()
    return jsonify(copy.to_dict(include_related=True)), 201


@evaluations_bp.route('/evaluation-templates/<int:template_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_evaluations")
def delete_template(template_id):
    template = _template_for(get_current_user(), template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    if Evaluation.query.filter_by(template_id=template.id).first():
        return jsonify({"message": "Template has evaluations; archive it instead"}), 409

    db.session.delete(template)
    db.session.commit()
    return jsonify({"message": "Template deleted"}), 200


# ------------------------------- Pillars -------------------------------

def _apply_pillar_fields(pillar, data, creating=False):
    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Pillar name is required")
        pillar.name = name
    if "description" in data:
        pillar.description = data.get("description")
    if creating or "weightage" in data:
        pillar.weightage = parse_float(data.get("weightage", 0), "weightage", minimum=0, maximum=100)
    if "order_index" in data:
        pillar.order_index = parse_int(data.get("order_index"), "order_index", minimum=0)


@evaluations_bp.route('/evaluation-templates/<int:template_id>/pillars', methods=['POST'])
@jwt_required()
@permission_required("manage_evaluations")
def create_pillar(template_id):
    template = _template_for(get_current_user(), template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    error = _editable(template)
    if error:
        return error

    pillar = EvaluationPillar(template_id=template.id, order_index=len(template.pillars))
    try:
        _apply_pillar_fields(pillar, request.get_json() or {}, creating=True)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    db.session.add(pillar)
    db.session.commit()
    return jsonify(pillar.to_dict(include_related=True)), 201


def _pillar_for(user, pillar_id):
    pillar = db.session.get(EvaluationPillar, pillar_id)
    if not pillar or pillar.template.organization_id != user.organization_id:
        return None
    return pillar


@evaluations_bp.route('/evaluation-pillars/<int:pillar_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_evaluations")
def update_pillar(pillar_id):
    pillar = _pillar_for(get_current_user(), pillar_id)
    if not pillar:
        return jsonify({"message": "Pillar not found"}), 404
    error = _editable(pillar.template)
    if error:
        return error

    try:
        _apply_pillar_fields(pillar, request.get_json() or {})
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400
    db.session.commit()
    return jsonify(pillar.to_dict(include_related=True)), 200


@evaluations_bp.route('/evaluation-pillars/<int:pillar_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_evaluations")
def delete_pillar(pillar_id):
    pillar = _pillar_for(get_current_user(), pillar_id)
    if not pillar:
        return jsonify({"message": "Pillar not found"}), 404
    error = _editable(pillar.template)
    if error:
        return error

    db.session.delete(pillar)
    db.session.commit()
    return jsonify({"message": "Pillar deleted"}), 200


# ------------------------------ Parameters ------------------------------

def _apply_parameter_fields(param, data, creating=False):
    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Parameter name is required")
        param.name = name
    for field in ("description", "guidelines"):
        if field in data:
            setattr(param, field, data.get(field))
    if creating or "rating_type" in data:
        param.rating_type = parse_enum(RatingTypeEnum, data.get("rating_type") or "yes_no_na", "rating_type")
    if creating or "weightage" in data:
        param.weightage = parse_float(data.get("weightage", 0), "weightage", minimum=0, maximum=100)
    for field in ("weightage_enabled", "is_fatal", "requires_comment"):
        if field in data:
            setattr(param, field, bool(data[field]))
        elif creating:
            setattr(param, field, field == "weightage_enabled")
    if "no_reasons" in data:
        reasons = data.get("no_reasons") or []
        if not isinstance(reasons, list) or not all(isinstance(r, str) for r in reasons):
            raise ValueError("no_reasons must be a list of strings")
        param.no_reasons = [r.strip() for r in reasons if r.strip()]
    elif creating:
        param.no_reasons = []
    if "order_index" in data:
        param.order_index = parse_int(data.get("order_index"), "order_index", minimum=0)


@evaluations_bp.route('/evaluation-pillars/<int:pillar_id>/parameters', methods=['POST'])
@jwt_required()
@permission_required("manage_evaluations")
def create_parameter(pillar_id):
    pillar = _pillar_for(get_current_user(), pillar_id)
    if not pillar:
        return jsonify({"message": "Pillar not found"}), 404
    error = _editable(pillar.template)
    if error:
        return error

    param = EvaluationParameter(pillar_id=pillar.id, order_index=len(pillar.parameters))
    try:
        _apply_parameter_fields(param, request.get_json() or {}, creating=True)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    db.session.add(param)
    db.session.commit()
    return jsonify(param.to_dict()), 201


def _parameter_for(user, parameter_id):
    param = db.session.get(EvaluationParameter, parameter_id)
    if not param or param.pillar.template.organization_id != user.organization_id:
        return None
    return param


@evaluations_bp.route('/evaluation-parameters/<int:parameter_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_evaluations")
def update_parameter(parameter_id):
    param = _parameter_for(get_current_user(), parameter_id)
    if not param:
        return jsonify({"message": "Parameter not found"}), 404
    error = _editable(param.pillar.template)
    if error:
        return error

    try:
        _apply_parameter_fields(param, request.get_json() or {})
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400
    db.session.commit()
    return jsonify(param.to_dict()), 200


@evaluations_bp.route('/evaluation-parameters/<int:parameter_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_evaluations")
def delete_parameter(parameter_id):
    param = _parameter_for(get_current_user(), parameter_id)
    if not param:
        return jsonify({"message": "Parameter not found"}), 404
    error = _editable(param.pillar.template)
    if error:
        return error

    db.session.delete(param)
    db.session.commit()
    return jsonify({"message": "Parameter deleted"}), 200


# ------------------------------ Evaluations ------------------------------

@evaluations_bp.route('/evaluations', methods=['POST'])
@jwt_required()
@role_required(*EVALUATOR_ROLES)
def submit_evaluation():
    user = get_current_user()
    data = request.get_json() or {}

    try:
        template_id = parse_int(data.get("template_id"), "template_id")
        trainee_id = parse_int(data.get("trainee_id"), "trainee_id")
        batch_id = parse_int(data.get("batch_id"), "batch_id")
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    template = _template_for(user, template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    if template.status != TemplateStatusEnum.active:
        return jsonify({"message": "Evaluations can only use active templates"}), 400

    batch = db.session.get(Batch, batch_id)
    if not batch or batch.organization_id != user.organization_id:
        return jsonify({"message": "Batch not found"}), 404
    if user.role not in ORG_REVIEW_ROLES and not can_view_batch(user, batch):
        return jsonify({"message": "You do not have access to this batch"}), 403

    enrolled = UserBatchProcess.query.filter_by(user_id=trainee_id, batch_id=batch.id, status="active").first()
    if not enrolled:
        return jsonify({"message": "Trainee is not actively enrolled in this batch"}), 400

    try:
        evaluation = create_scored_evaluation(user, template, data.get("scores"),
                                              trainee_id=trainee_id, batch_id=batch.id)
    except ScoringError as e:
        return jsonify({"message": str(e), "errors": e.details}), 400
    db.session.commit()

    log_event("EVALUATION_SUBMITTED", user_id=user.id, ip=request.remote_addr,
              organization_id=user.organization_id,
              description=f"Evaluation {evaluation.id} for trainee {trainee_id}: {evaluation.final_score}")
    return jsonify(evaluation.to_dict(include_related=True)), 201


@evaluations_bp.route('/evaluations/<int:evaluation_id>', methods=['GET'])
@jwt_required()
@user_required
def get_evaluation(evaluation_id):
    user = get_current_user()
    evaluation = db.session.get(Evaluation, evaluation_id)
    if not evaluation or evaluation.organization_id != user.organization_id:
        return jsonify({"message": "Evaluation not found"}), 404

    allowed = (
        user.role in ORG_REVIEW_ROLES
        or user.id in (evaluation.evaluator_id, evaluation.trainee_id)
        or (evaluation.batch_id and can_view_batch(user, db.session.get(Batch, evaluation.batch_id)))
    )
    if not allowed:
        return jsonify({"message": "You do not have access to this evaluation"}), 403

    data = evaluation.to_dict(include_related=True)
    data["template"] = evaluation.template.to_dict(include_related=True)
    trainee = db.session.get(User, evaluation.trainee_id) if evaluation.trainee_id else None
    data["trainee"] = {"id": trainee.id, "full_name": trainee.full_name} if trainee else None
    return jsonify(data), 200


@evaluations_bp.route('/organizations/<int:org_id>/batches/<int:batch_id>/evaluations', methods=['GET'])
@jwt_required()
@user_required
@same_organization_required
def list_batch_evaluations(org_id, batch_id):
    batch, error = load_batch(org_id, batch_id)
    if error:
        return error

    query = Evaluation.query.filter_by(batch_id=batch.id)
    trainee_id = request.args.get("trainee_id", type=int)
    if trainee_id:
        query = query.filter_by(trainee_id=trainee_id)
    evaluations = query.order_by(Evaluation.created_at.desc()).all()
    return jsonify([evaluation.to_dict() for evaluation in evaluations]), 200
