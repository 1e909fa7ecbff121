from lms.extensions import db
from .base import TimestampMixin, AudioStatusEnum


class AudioFile(db.Model, TimestampMixin):
    __tablename__ = 'audio_files'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    process_id = db.Column(db.Integer, db.ForeignKey('organization_processes.id'), nullable=True)
    filename = db.Column(db.String(255), nullable=False)
    file_url = db.Column(db.String(1024), nullable=False)
    duration = db.Column(db.Float, nullable=True)  # seconds
    language = db.Column(db.String(40), nullable=True)
    call_date = db.Column(db.Date, nullable=True)
    call_metrics = db.Column(db.JSON, nullable=True)
    status = db.Column(db.Enum(AudioStatusEnum), nullable=False, default=AudioStatusEnum.pending, index=True)
    uploaded_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    allocation = db.relationship('AudioFileAllocation', backref='audio_file', uselist=False)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "process_id": self.process_id,
            "filename": self.filename,
            "file_url": self.file_url,
            "duration": self.duration,
            "language": self.language,
            "call_date": self.call_date.isoformat() if self.call_date else None,
            "call_metrics": self.call_metrics,
            "status": self.status.value,
        }


class AudioFileAllocation(db.Model, TimestampMixin):
    __tablename__ = 'audio_file_allocations'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    audio_file_id = db.Column(db.Integer, db.ForeignKey('audio_files.id'), nullable=False, unique=True)
    quality_analyst_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    allocated_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    evaluation_template_id = db.Column(db.Integer, db.ForeignKey('evaluation_templates.id'), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.Enum(AudioStatusEnum), nullable=False, default=AudioStatusEnum.allocated)

    def to_dict(self, include_related=False):
        data = {
            "id": self.id,
            "audio_file_id": self.audio_file_id,
            "quality_analyst_id": self.quality_analyst_id,
            "allocated_by": self.allocated_by,
            "evaluation_template_id": self.evaluation_template_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status.value,
        }
        if include_related:
            data["audio_file"] = self.audio_file.to_dict() if self.audio_file else None
        return data
