from lms.extensions import db
from .base import TimestampMixin, AttendanceStatusEnum, BatchStatusEnum


class AttendanceRecord(db.Model, TimestampMixin):
    __tablename__ = 'attendance'

    id = db.Column(db.Integer, primary_key=True)
    trainee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('organization_batches.id'), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.Enum(AttendanceStatusEnum), nullable=False)
    phase = db.Column(db.Enum(BatchStatusEnum), nullable=False)
    marked_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    trainee = db.relationship('User', foreign_keys=[trainee_id])
    batch = db.relationship('Batch')

    __table_args__ = (
        db.UniqueConstraint('trainee_id', 'date', 'batch_id', name='uq_attendance_trainee_date_batch'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "trainee_id": self.trainee_id,
            "batch_id": self.batch_id,
            "date": self.date.isoformat(),
            "status": self.status.value,
            "phase": self.phase.value,
            "marked_by_id": self.marked_by_id,
        }
