from datetime import datetime
from lms.extensions import db
import enum


class SoftDeleteMixin:
    deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_at = db.Column(db.DateTime)

    def soft_delete(self):
        self.deleted = True
        self.deleted_at = datetime.utcnow()

    def restore(self):
        self.deleted = False
        self.deleted_at = None


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class RoleEnum(enum.Enum):
    owner = "owner"
    admin = "admin"
    manager = "manager"
    team_lead = "team_lead"
    quality_analyst = "quality_analyst"
    trainer = "trainer"
    advisor = "advisor"
    trainee = "trainee"


# Older records and clients spell some roles differently.
ROLE_ALIASES = {
    "qualityassurance": "quality_analyst",
    "quality_assurance": "quality_analyst",
    "qa": "quality_analyst",
    "teamlead": "team_lead",
}


def normalize_role(value):
    """Returns the canonical RoleEnum for a role name or raises ValueError."""
    if isinstance(value, RoleEnum):
        return value
    name = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    return RoleEnum(ROLE_ALIASES.get(name, name))


class UserCategoryEnum(enum.Enum):
    active = "active"
    trainee = "trainee"


class BatchStatusEnum(enum.Enum):
    planned = "planned"
    induction = "induction"
    training = "training"
    certification = "certification"
    ojt = "ojt"
    ojt_certification = "ojt_certification"
    completed = "completed"


BATCH_PHASES = [phase for phase in BatchStatusEnum]


class BatchCategoryEnum(enum.Enum):
    new_training = "new_training"
    upskill = "upskill"


class ProcessStatusEnum(enum.Enum):
    active = "active"
    inactive = "inactive"
    archived = "archived"


class TemplateStatusEnum(enum.Enum):
    draft = "draft"
    active = "active"
    archived = "archived"


class RatingTypeEnum(enum.Enum):
    yes_no_na = "yes_no_na"
    numeric = "numeric"
    custom = "custom"


class AttendanceStatusEnum(enum.Enum):
    present = "present"
    absent = "absent"
    late = "late"
    leave = "leave"


class RequestStatusEnum(enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class QuestionTypeEnum(enum.Enum):
    multiple_choice = "multiple_choice"
    true_false = "true_false"
    short_answer = "short_answer"


class AudioStatusEnum(enum.Enum):
    pending = "pending"
    allocated = "allocated"
    evaluated = "evaluated"
    archived = "archived"
