import json
from datetime import datetime, timedelta
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from lms.models import (
    Question, QuizTemplate, Quiz, QuizAttempt, Process, UserBatchProcess,
    QuestionTypeEnum, TemplateStatusEnum, RoleEnum,
)
from lms.extensions import db
from utils.decorators import get_current_user, user_required, permission_required
from utils.quiz import select_random_questions, shortage_details, prepare_quiz_questions, grade_quiz
from utils.serialization import parse_enum, parse_float, parse_int

quizzes_bp = Blueprint('quizzes', __name__)

STAFF_ROLES = {RoleEnum.owner, RoleEnum.admin, RoleEnum.manager, RoleEnum.team_lead,
               RoleEnum.quality_analyst, RoleEnum.trainer}


def _owned(model, user, item_id):
    item = db.session.get(model, item_id)
    if not item or item.organization_id != user.organization_id:
        return None
    return item


def _check_process(user, process_id):
    if process_id in (None, ""):
        return None
    process = db.session.get(Process, parse_int(process_id, "process_id"))
    if not process or process.organization_id != user.organization_id:
        raise ValueError("Process not found in this organization")
    return process.id


# ---------------------------- Question bank ----------------------------

def _apply_question_fields(question, data, user, creating=False):
    if creating or "question" in data:
        text = (data.get("question") or "").strip()
        if not text:
            raise ValueError("Question text is required")
        question.question = text
    if creating or "type" in data:
        question.type = parse_enum(QuestionTypeEnum, data.get("type"), "type")
    if creating or "options" in data:
        options = data.get("options") or []
        if not isinstance(options, list):
            raise ValueError("options must be a list")
        question.options = [str(option) for option in options]
    if creating or "correct_answer" in data:
        answer = data.get("correct_answer")
        if answer in (None, ""):
            raise ValueError("correct_answer is required")
        question.correct_answer = str(answer)
    if "explanation" in data:
        question.explanation = data.get("explanation")
    if creating or "difficulty_level" in data:
        question.difficulty_level = parse_int(data.get("difficulty_level", 1), "difficulty_level", minimum=1)
        if question.difficulty_level > 5:
            raise ValueError("difficulty_level must be <= 5")
    if creating or "category" in data:
        question.category = (data.get("category") or "general").strip()
    if "process_id" in data:
        question.process_id = _check_process(user, data.get("process_id"))

    if question.type == QuestionTypeEnum.multiple_choice:
        if len(question.options) < 2:
            raise ValueError("Multiple choice questions need at least two options")
        answer = question.correct_answer
        if not (answer in question.options or (answer.isdigit() and int(answer) < len(question.options))):
            raise ValueError("correct_answer must be one of the options or an option index")
    elif question.type == QuestionTypeEnum.true_false:
        if question.correct_answer.strip().lower() not in ("true", "false"):
            raise ValueError("correct_answer must be true or false")
        question.options = ["True", "False"]


@quizzes_bp.route('/questions', methods=['GET'])
@jwt_required()
@permission_required("manage_quizzes")
def list_questions():
    user = get_current_user()
    query = Question.query.filter_by(organization_id=user.organization_id)
    process_id = request.args.get("process_id", type=int)
    if process_id:
        query = query.filter_by(process_id=process_id)
    category = request.args.get("category")
    if category:
        query = query.filter_by(category=category)
    return jsonify([q.to_dict() for q in query.order_by(Question.id).all()]), 200


@quizzes_bp.route('/questions', methods=['POST'])
@jwt_required()
@permission_required("manage_quizzes")
def create_question():
    user = get_current_user()
    question = Question(organization_id=user.organization_id, created_by=user.id)
    try:
        _apply_question_fields(question, request.get_json() or {}, user, creating=True)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    db.session.add(question)
    db.session.commit()
    return jsonify(question.to_dict()), 201


@quizzes_bp.route('/questions/<int:question_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_quizzes")
def update_question(question_id):
    user = get_current_user()
    question = _owned(Question, user, question_id)
    if not question:
        return jsonify({"message": "Question not found"}), 404
    try:
        _apply_question_fields(question, request.get_json() or {}, user)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400
    db.session.commit()
    return jsonify(question.to_dict()), 200


@quizzes_bp.route('/questions/<int:question_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_quizzes")
def delete_question(question_id):
    user = get_current_user()
    question = _owned(Question, user, question_id)
    if not question:
        return jsonify({"message": "Question not found"}), 404
    db.session.delete(question)
    db.session.commit()
    return jsonify({"message": "Question deleted"}), 200


@quizzes_bp.route('/random-questions', methods=['GET'])
@jwt_required()
@permission_required("manage_quizzes")
def random_questions():
    user = get_current_user()
    try:
        category_distribution = json.loads(request.args["category_distribution"]) \
            if request.args.get("category_distribution") else None
        difficulty_distribution = json.loads(request.args["difficulty_distribution"]) \
            if request.args.get("difficulty_distribution") else None
        questions = select_random_questions(
            user.organization_id,
            parse_int(request.args.get("count"), "count", minimum=1),
            category_distribution=category_distribution,
            difficulty_distribution=difficulty_distribution,
            process_id=request.args.get("process_id", type=int),
        )
    except json.JSONDecodeError:
        return jsonify({"message": "Distributions must be JSON objects of {key: count}"}), 400
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    return jsonify([q.to_dict() for q in questions]), 200


# ---------------------------- Quiz templates ----------------------------

def _apply_quiz_template_fields(template, data, user, creating=False):
    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Template name is required")
        template.name = name
    if "description" in data:
        template.description = data.get("description")
    if creating or "question_count" in data:
        template.question_count = parse_int(data.get("question_count"), "question_count", minimum=1)
    if creating or "time_limit" in data:
        template.time_limit = parse_int(data.get("time_limit", 30), "time_limit", minimum=1)
    if creating or "passing_score" in data:
        template.passing_score = parse_float(data.get("passing_score", 70), "passing_score", minimum=0,
                                             maximum=100)
    for field in ("shuffle_questions", "shuffle_options"):
        if field in data or creating:
            setattr(template, field, bool(data.get(field, False)))
    for field in ("category_distribution", "difficulty_distribution"):
        if field in data:
            value = data.get(field) or None
            if value is not None and (not isinstance(value, dict)
                                      or any(not str(v).isdigit() for v in value.values())):
                raise ValueError(f"{field} must map keys to non-negative counts")
            if value is not None and sum(int(v) for v in value.values()) > template.question_count:
                raise ValueError(f"{field} asks for more questions than question_count")
            setattr(template, field, {str(k): int(v) for k, v in value.items()} if value else None)
    if "process_id" in data:
        template.process_id = _check_process(user, data.get("process_id"))


@quizzes_bp.route('/quiz-templates', methods=['GET'])
@jwt_required()
@permission_required("manage_quizzes")
def list_quiz_templates():
    user = get_current_user()
    query = QuizTemplate.query.filter_by(organization_id=user.organization_id)
    process_id = request.args.get("process_id", type=int)
    if process_id:
        query = query.filter_by(process_id=process_id)
    return jsonify([t.to_dict() for t in query.order_by(QuizTemplate.id).all()]), 200


@quizzes_bp.route('/quiz-templates', methods=['POST'])
@jwt_required()
@permission_required("manage_quizzes")
def create_quiz_template():
    user = get_current_user()
    template = QuizTemplate(organization_id=user.organization_id, created_by=user.id)
    try:
        _apply_quiz_template_fields(template, request.get_json() or {}, user, creating=True)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    db.session.add(template)
    db.session.commit()
    return jsonify(template.to_dict()), 201


@quizzes_bp.route('/quiz-templates/<int:template_id>', methods=['PATCH'])
@jwt_required()
@permission_required("manage_quizzes")
def update_quiz_template(template_id):
    user = get_current_user()
    template = _owned(QuizTemplate, user, template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    try:
        _apply_quiz_template_fields(template, request.get_json() or {}, user)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"message": str(e)}), 400
    db.session.commit()
    return jsonify(template.to_dict()), 200


@quizzes_bp.route('/quiz-templates/<int:template_id>', methods=['DELETE'])
@jwt_required()
@permission_required("manage_quizzes")
def delete_quiz_template(template_id):
    user = get_current_user()
    template = _owned(QuizTemplate, user, template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404
    # quizzes and their attempts cascade
    db.session.delete(template)
    db.session.commit()
    return jsonify({"message": "Template and its quizzes deleted"}), 200


@quizzes_bp.route('/quiz-templates/<int:template_id>/generate', methods=['POST'])
@jwt_required()
@permission_required("manage_quizzes")
def generate_quiz(template_id):
    user = get_current_user()
    template = _owned(QuizTemplate, user, template_id)
    if not template:
        return jsonify({"message": "Template not found"}), 404

    try:
        questions = select_random_questions(
            user.organization_id,
            template.question_count,
            category_distribution=template.category_distribution,
            difficulty_distribution=template.difficulty_distribution,
            process_id=template.process_id,
        )
    except ValueError as e:
        return jsonify({"message": str(e)}), 400

    if len(questions) < template.question_count:
        return jsonify({
            "message": "Not enough questions available to generate quiz",
            "details": shortage_details(template),
        }), 400

    now = datetime.utcnow()
    quiz = Quiz(
        organization_id=user.organization_id,
        template_id=template.id,
        process_id=template.process_id,
        name=template.name,
        description=template.description,
        time_limit=template.time_limit,
        passing_score=template.passing_score,
        question_ids=[q.id for q in questions],
        status=TemplateStatusEnum.active,
        start_time=now,
        end_time=now + timedelta(minutes=template.time_limit),
        created_by=user.id,
    )
    db.session.add(quiz)
    db.session.commit()
    return jsonify(quiz.to_dict()), 201


# -------------------------------- Quizzes --------------------------------

def _quiz_items(quiz, user, include_answer=False):
    # shuffle seed uses the quiz start date, never the request date
    template = quiz.template
    return prepare_quiz_questions(
        quiz.questions(),
        user_id=user.id,
        quiz_id=quiz.id,
        shuffle_questions=bool(template and template.shuffle_questions),
        shuffle_options=bool(template and template.shuffle_options),
        on_date=quiz.start_time.date() if quiz.start_time else None,
        include_answer=include_answer,
    )


@quizzes_bp.route('/quizzes/<int:quiz_id>', methods=['GET'])
@jwt_required()
@user_required
def get_quiz(quiz_id):
    user = get_current_user()
    quiz = _owned(Quiz, user, quiz_id)
    if not quiz:
        return jsonify({"message": "Quiz not found"}), 404

    data = quiz.to_dict()
    data["questions"] = _quiz_items(quiz, user)
    return jsonify(data), 200


@quizzes_bp.route('/quizzes/<int:quiz_id>/submit', methods=['POST'])
@jwt_required()
@user_required
def submit_quiz(quiz_id):
    user = get_current_user()
    quiz = _owned(Quiz, user, quiz_id)
    if not quiz:
        return jsonify({"message": "Quiz not found"}), 404
    if quiz.status != TemplateStatusEnum.active:
        return jsonify({"message": "Quiz is not active"}), 400

    data = request.get_json() or {}
    answers = data.get("answers")
    if not isinstance(answers, dict):
        return jsonify({"message": "answers must be an object of {question_id: answer}"}), 400

    score, graded = grade_quiz(_quiz_items(quiz, user, include_answer=True), answers)
    attempt = QuizAttempt(
        quiz_id=quiz.id,
        user_id=user.id,
        organization_id=user.organization_id,
        score=score,
        passed=score >= quiz.passing_score,
        answers=graded,
    )
    db.session.add(attempt)
    db.session.commit()
    return jsonify(attempt.to_dict()), 201


@quizzes_bp.route('/quiz-attempts/<int:attempt_id>', methods=['GET'])
@jwt_required()
@user_required
def get_attempt(attempt_id):
    user = get_current_user()
    attempt = _owned(QuizAttempt, user, attempt_id)
    if not attempt:
        return jsonify({"message": "Attempt not found"}), 404
    if attempt.user_id != user.id and user.role not in STAFF_ROLES:
        return jsonify({"message": "You can only view your own attempts"}), 403

    data = attempt.to_dict()
    data["quiz"] = attempt.quiz.to_dict()
    return jsonify(data), 200


@quizzes_bp.route('/trainee/quizzes', methods=['GET'])
@jwt_required()
@user_required
def trainee_quizzes():
    user = get_current_user()
    process_ids = {
        row.process_id for row in UserBatchProcess.query.filter_by(user_id=user.id, status="active").all()
    }
    if not process_ids:
        return jsonify([]), 200

    quizzes = (
        Quiz.query.filter(
            Quiz.organization_id == user.organization_id,
            Quiz.status == TemplateStatusEnum.active,
            Quiz.process_id.in_(process_ids),
        )
        .order_by(Quiz.created_at.desc())
        .all()
    )
    attempts = {}
    for attempt in QuizAttempt.query.filter_by(user_id=user.id).all():
        attempts.setdefault(attempt.quiz_id, []).append(attempt)

    payload = []
    for quiz in quizzes:
        data = quiz.to_dict()
        mine = attempts.get(quiz.id, [])
        data["attempt_count"] = len(mine)
        data["best_score"] = max((a.score for a in mine), default=None)
        payload.append(data)
    return jsonify(payload), 200
