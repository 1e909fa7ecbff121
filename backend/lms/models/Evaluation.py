from datetime import datetime
from lms.extensions import db
from .base import TimestampMixin, TemplateStatusEnum, RatingTypeEnum


class EvaluationTemplate(db.Model, TimestampMixin):
    __tablename__ = 'evaluation_templates'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.Enum(TemplateStatusEnum), nullable=False, default=TemplateStatusEnum.draft)
    passing_score = db.Column(db.Float, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    pillars = db.relationship('EvaluationPillar', backref='template', lazy=True, cascade="all, delete-orphan",
                              order_by='EvaluationPillar.order_index')

    def parameters(self):
        return [param for pillar in self.pillars for param in pillar.parameters]

    def to_dict(self, include_related=False):
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "process_id": self.process_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "passing_score": self.passing_score,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }
        if include_related:
            data["pillars"] = [pillar.to_dict(include_related=True) for pillar in self.pillars]
            data["total_pillar_weightage"] = sum(p.weightage for p in self.pillars)
        return data


class EvaluationPillar(db.Model):
    __tablename__ = 'evaluation_pillars'

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('evaluation_templates.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    weightage = db.Column(db.Float, nullable=False, default=0)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    parameters = db.relationship('EvaluationParameter', backref='pillar', lazy=True, cascade="all, delete-orphan",
                                 order_by='EvaluationParameter.order_index')

    def to_dict(self, include_related=False):
        data = {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "weightage": self.weightage,
            "order_index": self.order_index,
        }
        if include_related:
            data["parameters"] = [param.to_dict() for param in self.parameters]
            data["total_parameter_weightage"] = sum(p.weightage for p in self.parameters if p.weightage_enabled)
        return data


class EvaluationParameter(db.Model):
    __tablename__ = 'evaluation_parameters'

    id = db.Column(db.Integer, primary_key=True)
    pillar_id = db.Column(db.Integer, db.ForeignKey('evaluation_pillars.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    guidelines = db.Column(db.Text)
    rating_type = db.Column(db.Enum(RatingTypeEnum), nullable=False, default=RatingTypeEnum.yes_no_na)
    weightage = db.Column(db.Float, nullable=False, default=0)
    weightage_enabled = db.Column(db.Boolean, nullable=False, default=True)
    is_fatal = db.Column(db.Boolean, nullable=False, default=False)
    requires_comment = db.Column(db.Boolean, nullable=False, default=False)
    no_reasons = db.Column(db.JSON, nullable=False, default=list)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "pillar_id": self.pillar_id,
            "name": self.name,
            "description": self.description,
            "guidelines": self.guidelines,
            "rating_type": self.rating_type.value,
            "weightage": self.weightage,
            "weightage_enabled": self.weightage_enabled,
            "is_fatal": self.is_fatal,
            "requires_comment": self.requires_comment,
            "no_reasons": self.no_reasons or [],
            "order_index": self.order_index,
        }


class Evaluation(db.Model):
    __tablename__ = 'evaluations'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    template_id = db.Column(db.Integer, db.ForeignKey('evaluation_templates.id'), nullable=False)
    trainee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('organization_batches.id'), nullable=True, index=True)
    evaluator_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    audio_allocation_id = db.Column(db.Integer, db.ForeignKey('audio_file_allocations.id'), nullable=True)
    evaluation_type = db.Column(db.String(20), nullable=False, default='standard')  # standard, audio
    final_score = db.Column(db.Float, nullable=False)
    passed = db.Column(db.Boolean, nullable=True)
    fatal_triggered = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default='completed')
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    template = db.relationship('EvaluationTemplate')
    results = db.relationship('EvaluationParameterResult', backref='evaluation', lazy=True,
                              cascade="all, delete-orphan")

    def to_dict(self, include_related=False):
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "template_id": self.template_id,
            "trainee_id": self.trainee_id,
            "batch_id": self.batch_id,
            "evaluator_id": self.evaluator_id,
            "audio_allocation_id": self.audio_allocation_id,
            "evaluation_type": self.evaluation_type,
            "final_score": self.final_score,
            "passed": self.passed,
            "fatal_triggered": self.fatal_triggered,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
        if include_related:
            data["scores"] = [result.to_dict() for result in self.results]
        return data


class EvaluationParameterResult(db.Model):
    __tablename__ = 'evaluation_parameter_results'

    id = db.Column(db.Integer, primary_key=True)
    evaluation_id = db.Column(db.Integer, db.ForeignKey('evaluations.id'), nullable=False, index=True)
    parameter_id = db.Column(db.Integer, db.ForeignKey('evaluation_parameters.id'), nullable=False)
    score = db.Column(db.String(20), nullable=False)
    normalized_score = db.Column(db.Float, nullable=True)  # None for N/A
    comment = db.Column(db.Text)
    no_reason = db.Column(db.String(255))

    __table_args__ = (
        db.UniqueConstraint('evaluation_id', 'parameter_id', name='uq_evaluation_parameter'),
    )

    def to_dict(self):
        return {
            "parameter_id": self.parameter_id,
            "score": self.score,
            "normalized_score": self.normalized_score,
            "comment": self.comment,
            "no_reason": self.no_reason,
        }
