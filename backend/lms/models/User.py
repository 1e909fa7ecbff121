from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from lms.extensions import db
from .base import SoftDeleteMixin, RoleEnum, UserCategoryEnum


class User(db.Model, SoftDeleteMixin):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), nullable=False)
    password_hash = db.Column(db.String(512), nullable=False)
    full_name = db.Column(db.String(120), nullable=True)
    employee_id = db.Column(db.String(40), unique=True, nullable=True)
    phone_number = db.Column(db.String(20), nullable=True)
    date_of_joining = db.Column(db.Date, nullable=True)

    role = db.Column(db.Enum(RoleEnum), nullable=False, index=True)
    category = db.Column(db.Enum(UserCategoryEnum), nullable=False, default=UserCategoryEnum.active)
    active = db.Column(db.Boolean, nullable=False, default=True)
    certified = db.Column(db.Boolean, nullable=False, default=False)

    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey('organization_locations.id'), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    organization = db.relationship('Organization', back_populates='users')
    manager = db.relationship('User', remote_side=[id], backref='direct_reports')
    audit_logs = db.relationship('AuditLog', backref='user', lazy=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "employee_id": self.employee_id,
            "phone_number": self.phone_number,
            "date_of_joining": self.date_of_joining.isoformat() if self.date_of_joining else None,
            "role": self.role.value,
            "category": self.category.value,
            "active": self.active,
            "certified": self.certified,
            "organization_id": self.organization_id,
            "location_id": self.location_id,
            "manager_id": self.manager_id,
        }


class RolePermission(db.Model):
    __tablename__ = 'role_permissions'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    role = db.Column(db.Enum(RoleEnum), nullable=False)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'role', name='uq_role_permissions_org_role'),
    )


class TokenBlocklist(db.Model):
    __tablename__ = 'token_blocklist'

    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(36), nullable=False, index=True)
    token_type = db.Column(db.String(10), nullable=False, default="access")
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    user = db.relationship("User", backref="revoked_tokens")
