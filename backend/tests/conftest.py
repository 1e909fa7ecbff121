from __future__ import annotations

from datetime import date
from itertools import count

import pytest
from flask_jwt_extended import create_access_token

from lms import create_app
from lms.config import Config
from lms.extensions import db
from lms.models import (
    Organization, Location, LineOfBusiness, Process, User, Batch, UserBatchProcess,
    EvaluationTemplate, EvaluationPillar, EvaluationParameter, Question,
    RoleEnum, UserCategoryEnum, BatchStatusEnum, TemplateStatusEnum, RatingTypeEnum, QuestionTypeEnum,
)
from utils.phases import compute_phase_dates


@pytest.fixture
def app_client(tmp_path):
    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = "sqlite://"
        RATELIMIT_ENABLED = False
        REDIS_URL = None
        JWT_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs256"
        JWT_TOKEN_LOCATION = ["headers", "cookies"]
        JWT_COOKIE_SECURE = False
        AUDIT_LOG_FILE = str(tmp_path / "audit.log")
        UPLOAD_FOLDER = str(tmp_path / "uploads")

    app = create_app(TestConfig)
    yield app, app.test_client()
    with app.app_context():
        db.drop_all()


class Seeder:
    """
    Builds fixture rows inside short-lived app contexts and hands back ids,
    so every request under test loads its own session state.
    """

    def __init__(self, app):
        self.app = app
        self._seq = count(1)

    def _save(self, obj):
        with self.app.app_context():
            db.session.add(obj)
            db.session.commit()
            return obj.id

    def org(self, name=None):
        return self._save(Organization(name=name or f"Org {next(self._seq)}"))

    def user(self, org_id, role, manager_id=None, username=None, password="password123", **extra):
        role = RoleEnum(role) if isinstance(role, str) else role
        username = username or f"{role.value}_{next(self._seq)}"
        with self.app.app_context():
            user = User(
                username=username,
                email=f"{username}@example.com",
                full_name=username.replace("_", " ").title(),
                role=role,
                category=UserCategoryEnum.trainee if role == RoleEnum.trainee else UserCategoryEnum.active,
                organization_id=org_id,
                manager_id=manager_id,
                **extra,
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    def structure(self, org_id, days=(2, 5, 2, 3, 1)):
        """A location, line of business and process; returns their ids."""
        with self.app.app_context():
            n = next(self._seq)
            location = Location(organization_id=org_id, name=f"Site {n}", address="1 Main Rd",
                                city="Durban", state="KZN", country="ZA")
            lob = LineOfBusiness(organization_id=org_id, name=f"LOB {n}", description="")
            db.session.add_all([location, lob])
            db.session.flush()
            process = Process(
                organization_id=org_id, line_of_business_id=lob.id, name=f"Process {n}",
                induction_days=days[0], training_days=days[1], certification_days=days[2],
                ojt_days=days[3], ojt_certification_days=days[4],
            )
            db.session.add(process)
            db.session.commit()
            return {"location_id": location.id, "line_of_business_id": lob.id, "process_id": process.id}

    def batch(self, org_id, trainer_id, structure=None, start_date=None, status=BatchStatusEnum.planned,
              capacity_limit=10, name=None):
        structure = structure or self.structure(org_id)
        start_date = start_date or date.today()
        with self.app.app_context():
            process = db.session.get(Process, structure["process_id"])
            batch = Batch(
                organization_id=org_id,
                name=name or f"Batch {next(self._seq)}",
                status=status,
                capacity_limit=capacity_limit,
                trainer_id=trainer_id,
                start_date=start_date,
                **structure,
                **compute_phase_dates(start_date, process),
            )
            db.session.add(batch)
            db.session.commit()
            return batch.id

    def enroll(self, batch_id, user_id, status="active"):
        with self.app.app_context():
            batch = db.session.get(Batch, batch_id)
            enrollment = UserBatchProcess(user_id=user_id, batch_id=batch_id, process_id=batch.process_id,
                                          status=status)
            db.session.add(enrollment)
            db.session.commit()
            return enrollment.id

    def evaluation_template(self, org_id, created_by, process_id, passing_score=80.0,
                            status=TemplateStatusEnum.active, parameters=None):
        """
        parameters: list of dicts for one pillar; defaults to two yes/no
        parameters weighted 60/40, the second one fatal.
        Returns (template_id, [parameter ids]).
        """
        parameters = parameters or [
            {"name": "Greeting", "weightage": 60},
            {"name": "Verification", "weightage": 40, "is_fatal": True},
        ]
        with self.app.app_context():
            template = EvaluationTemplate(organization_id=org_id, process_id=process_id, name="Call Audit",
                                          status=status, passing_score=passing_score, created_by=created_by)
            pillar = EvaluationPillar(name="Core", weightage=100, order_index=0)
            pillar.parameters = [
                EvaluationParameter(order_index=index, **{"rating_type": RatingTypeEnum.yes_no_na, **fields})
                for index, fields in enumerate(parameters)
            ]
            template.pillars = [pillar]
            db.session.add(template)
            db.session.commit()
            return template.id, [param.id for param in pillar.parameters]

    def question(self, org_id, created_by, category="general", difficulty=1, process_id=None,
                 type=QuestionTypeEnum.multiple_choice, options=None, correct_answer="0"):
        options = ["A", "B", "C"] if options is None else options
        return self._save(Question(
            organization_id=org_id, created_by=created_by, process_id=process_id,
            question=f"Question {next(self._seq)}?", type=type, options=options,
            correct_answer=correct_answer, difficulty_level=difficulty, category=category,
        ))

    def token(self, user_id):
        with self.app.app_context():
            return create_access_token(identity=str(user_id))

    def headers(self, user_id):
        return {"Authorization": f"Bearer {self.token(user_id)}"}

    def get(self, model, item_id):
        """Loads a detached row with its column attributes populated."""
        with self.app.app_context():
            obj = db.session.get(model, item_id)
            if obj is not None:
                db.session.refresh(obj)
                db.session.expunge(obj)
            return obj


@pytest.fixture
def seed(app_client):
    app, _client = app_client
    return Seeder(app)
