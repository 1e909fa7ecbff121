from datetime import datetime
from lms.extensions import db
from .base import TimestampMixin, ProcessStatusEnum


class Organization(db.Model):
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    users = db.relationship('User', back_populates='organization', lazy=True)
    locations = db.relationship('Location', backref='organization', lazy=True)
    line_of_businesses = db.relationship('LineOfBusiness', backref='organization', lazy=True)
    processes = db.relationship('Process', backref='organization', lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }


class Location(db.Model):
    __tablename__ = 'organization_locations'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(80), nullable=False)
    state = db.Column(db.String(80), nullable=False)
    country = db.Column(db.String(80), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'name', name='uq_location_org_name'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
        }


class LineOfBusiness(db.Model):
    __tablename__ = 'organization_line_of_businesses'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    processes = db.relationship('Process', backref='line_of_business', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'name', name='uq_lob_org_name'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
        }


class Process(db.Model, TimestampMixin):
    __tablename__ = 'organization_processes'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    line_of_business_id = db.Column(db.Integer, db.ForeignKey('organization_line_of_businesses.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.Enum(ProcessStatusEnum), nullable=False, default=ProcessStatusEnum.active)

    # phase durations, in days
    induction_days = db.Column(db.Integer, nullable=False, default=0)
    training_days = db.Column(db.Integer, nullable=False, default=0)
    certification_days = db.Column(db.Integer, nullable=False, default=0)
    ojt_days = db.Column(db.Integer, nullable=False, default=0)
    ojt_certification_days = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'name', name='uq_process_org_name'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "line_of_business_id": self.line_of_business_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "induction_days": self.induction_days,
            "training_days": self.training_days,
            "certification_days": self.certification_days,
            "ojt_days": self.ojt_days,
            "ojt_certification_days": self.ojt_certification_days,
        }
