from datetime import datetime
from lms.extensions import db
from .base import TimestampMixin, QuestionTypeEnum, TemplateStatusEnum


class Question(db.Model, TimestampMixin):
    __tablename__ = 'questions'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=True, index=True)
    question = db.Column(db.Text, nullable=False)
    type = db.Column(db.Enum(QuestionTypeEnum), nullable=False)
    options = db.Column(db.JSON, nullable=False, default=list)
    correct_answer = db.Column(db.String(255), nullable=False)
    explanation = db.Column(db.Text)
    difficulty_level = db.Column(db.Integer, nullable=False, default=1)
    category = db.Column(db.String(80), nullable=False, default="general", index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    def to_dict(self, include_answer=True):
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "process_id": self.process_id,
            "question": self.question,
            "type": self.type.value,
            "options": list(self.options or []),
            "explanation": self.explanation,
            "difficulty_level": self.difficulty_level,
            "category": self.category,
        }
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


class QuizTemplate(db.Model, TimestampMixin):
    __tablename__ = 'quiz_templates'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    time_limit = db.Column(db.Integer, nullable=False, default=30)  # minutes
    question_count = db.Column(db.Integer, nullable=False)
    passing_score = db.Column(db.Float, nullable=False, default=70)
    shuffle_questions = db.Column(db.Boolean, nullable=False, default=False)
    shuffle_options = db.Column(db.Boolean, nullable=False, default=False)
    category_distribution = db.Column(db.JSON, nullable=True)
    difficulty_distribution = db.Column(db.JSON, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    quizzes = db.relationship('Quiz', backref='template', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "process_id": self.process_id,
            "name": self.name,
            "description": self.description,
            "time_limit": self.time_limit,
            "question_count": self.question_count,
            "passing_score": self.passing_score,
            "shuffle_questions": self.shuffle_questions,
            "shuffle_options": self.shuffle_options,
            "category_distribution": self.category_distribution,
            "difficulty_distribution": self.difficulty_distribution,
        }


class Quiz(db.Model):
    __tablename__ = 'quizzes'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    template_id = db.Column(db.Integer, db.ForeignKey('quiz_templates.id'), nullable=False)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    time_limit = db.Column(db.Integer, nullable=False)
    passing_score = db.Column(db.Float, nullable=False)
    question_ids = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.Enum(TemplateStatusEnum), nullable=False, default=TemplateStatusEnum.active)
    start_time = db.Column(db.DateTime, default=datetime.utcnow)
    end_time = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    attempts = db.relationship('QuizAttempt', backref='quiz', lazy=True, cascade="all, delete-orphan")

    def questions(self):
        """Questions in stored order; ids that no longer resolve are skipped."""
        if not self.question_ids:
            return []
        by_id = {q.id: q for q in Question.query.filter(Question.id.in_(self.question_ids)).all()}
        return [by_id[qid] for qid in self.question_ids if qid in by_id]

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "template_id": self.template_id,
            "process_id": self.process_id,
            "name": self.name,
            "description": self.description,
            "time_limit": self.time_limit,
            "passing_score": self.passing_score,
            "question_ids": list(self.question_ids or []),
            "status": self.status.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


class QuizAttempt(db.Model):
    __tablename__ = 'quiz_attempts'

    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quizzes.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    score = db.Column(db.Float, nullable=False)
    passed = db.Column(db.Boolean, nullable=False, default=False)
    answers = db.Column(db.JSON, nullable=False, default=list)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "user_id": self.user_id,
            "score": self.score,
            "passed": self.passed,
            "answers": self.answers,
            "completed_at": self.completed_at.isoformat(),
        }
