from datetime import datetime
from lms.extensions import db
from .base import TimestampMixin, BatchStatusEnum, BatchCategoryEnum, RequestStatusEnum


class BatchTemplate(db.Model, TimestampMixin):
    __tablename__ = 'batch_templates'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('organization_locations.id'), nullable=False)
    line_of_business_id = db.Column(db.Integer, db.ForeignKey('organization_line_of_businesses.id'), nullable=False)
    trainer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    batch_category = db.Column(db.Enum(BatchCategoryEnum), nullable=False)
    capacity_limit = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "process_id": self.process_id,
            "location_id": self.location_id,
            "line_of_business_id": self.line_of_business_id,
            "trainer_id": self.trainer_id,
            "batch_category": self.batch_category.value,
            "capacity_limit": self.capacity_limit,
        }


class Batch(db.Model, TimestampMixin):
    __tablename__ = 'organization_batches'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    batch_category = db.Column(db.Enum(BatchCategoryEnum), nullable=False, default=BatchCategoryEnum.new_training)
    status = db.Column(db.Enum(BatchStatusEnum), nullable=False, default=BatchStatusEnum.planned, index=True)
    capacity_limit = db.Column(db.Integer, nullable=False)

    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('organization_locations.id'), nullable=False)
    line_of_business_id = db.Column(db.Integer, db.ForeignKey('organization_line_of_businesses.id'), nullable=False)
    trainer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)

    # planned phase windows
    induction_start_date = db.Column(db.Date, nullable=False)
    induction_end_date = db.Column(db.Date)
    training_start_date = db.Column(db.Date)
    training_end_date = db.Column(db.Date)
    certification_start_date = db.Column(db.Date)
    certification_end_date = db.Column(db.Date)
    ojt_start_date = db.Column(db.Date)
    ojt_end_date = db.Column(db.Date)
    ojt_certification_start_date = db.Column(db.Date)
    ojt_certification_end_date = db.Column(db.Date)
    handover_to_ops_date = db.Column(db.Date)

    # stamped when a phase actually starts or ends
    actual_induction_start_date = db.Column(db.Date)
    actual_induction_end_date = db.Column(db.Date)
    actual_training_start_date = db.Column(db.Date)
    actual_training_end_date = db.Column(db.Date)
    actual_certification_start_date = db.Column(db.Date)
    actual_certification_end_date = db.Column(db.Date)
    actual_ojt_start_date = db.Column(db.Date)
    actual_ojt_end_date = db.Column(db.Date)
    actual_ojt_certification_start_date = db.Column(db.Date)
    actual_ojt_certification_end_date = db.Column(db.Date)
    actual_handover_to_ops_date = db.Column(db.Date)

    trainer = db.relationship('User', foreign_keys=[trainer_id])
    process = db.relationship('Process')
    location = db.relationship('Location')
    line_of_business = db.relationship('LineOfBusiness')
    enrollments = db.relationship('UserBatchProcess', backref='batch', lazy=True, cascade="all, delete-orphan")
    history = db.relationship('BatchHistory', backref='batch', lazy=True, cascade="all, delete-orphan",
                              order_by='BatchHistory.date')

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'name', name='uq_batch_org_name'),
    )

    DATE_FIELDS = (
        "start_date", "end_date",
        "induction_start_date", "induction_end_date",
        "training_start_date", "training_end_date",
        "certification_start_date", "certification_end_date",
        "ojt_start_date", "ojt_end_date",
        "ojt_certification_start_date", "ojt_certification_end_date",
        "handover_to_ops_date",
    )

    def to_dict(self, include_related=False):
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "batch_category": self.batch_category.value,
            "status": self.status.value,
            "capacity_limit": self.capacity_limit,
            "process_id": self.process_id,
            "location_id": self.location_id,
            "line_of_business_id": self.line_of_business_id,
            "trainer_id": self.trainer_id,
        }
        for field in self.DATE_FIELDS:
            value = getattr(self, field)
            data[field] = value.isoformat() if value else None

        if include_related:
            data["process"] = self.process.to_dict() if self.process else None
            data["location"] = self.location.to_dict() if self.location else None
            data["line_of_business"] = self.line_of_business.to_dict() if self.line_of_business else None
            data["trainer"] = {
                "id": self.trainer.id,
                "full_name": self.trainer.full_name,
            } if self.trainer else None
        return data


class UserBatchProcess(db.Model, TimestampMixin):
    __tablename__ = 'user_batch_processes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('organization_batches.id'), nullable=False, index=True)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')  # active, removed, transferred, completed
    joined_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship('User')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'batch_id', 'process_id', name='uq_user_batch_process'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "batch_id": self.batch_id,
            "process_id": self.process_id,
            "status": self.status,
            "joined_at": self.joined_at.isoformat(),
        }


class BatchHistory(db.Model):
    __tablename__ = 'batch_history'

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('organization_batches.id'), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    event_type = db.Column(db.String(30), nullable=False)  # phase_change, status_update, milestone, note
    description = db.Column(db.Text, nullable=False)
    previous_value = db.Column(db.String(60))
    new_value = db.Column(db.String(60))
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "event_type": self.event_type,
            "description": self.description,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "date": self.date.isoformat(),
            "user_id": self.user_id,
        }


class PhaseChangeRequest(db.Model, TimestampMixin):
    __tablename__ = 'batch_phase_change_requests'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey('organization_batches.id'), nullable=False, index=True)
    trainer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    current_phase = db.Column(db.Enum(BatchStatusEnum), nullable=False)
    requested_phase = db.Column(db.Enum(BatchStatusEnum), nullable=False)
    justification = db.Column(db.Text, nullable=False)
    status = db.Column(db.Enum(RequestStatusEnum), nullable=False, default=RequestStatusEnum.pending)
    manager_comments = db.Column(db.Text)

    batch = db.relationship('Batch')

    def to_dict(self):
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "trainer_id": self.trainer_id,
            "manager_id": self.manager_id,
            "current_phase": self.current_phase.value,
            "requested_phase": self.requested_phase.value,
            "justification": self.justification,
            "status": self.status.value,
            "manager_comments": self.manager_comments,
            "created_at": self.created_at.isoformat(),
        }
