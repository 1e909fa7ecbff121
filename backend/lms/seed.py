import os
from datetime import date
from lms.extensions import db
from lms.models import (
    Organization, Location, LineOfBusiness, Process, User, Batch, UserBatchProcess,
    EvaluationTemplate, EvaluationPillar, EvaluationParameter, Question,
    RoleEnum, UserCategoryEnum, BatchCategoryEnum, TemplateStatusEnum, RatingTypeEnum, QuestionTypeEnum,
)
from utils.phases import compute_phase_dates, record_history

DEMO_ORGANIZATION = "Demo Contact Center"


def _user(org, username, role, manager=None, password="changeme123", **extra):
    user = User.query.filter_by(username=username).first()
    if user:
        return user
    user = User(
        username=username,
        email=f"{username}@example.com",
        full_name=username.replace("_", " ").title(),
        role=role,
        organization_id=org.id,
        manager_id=manager.id if manager else None,
        **extra,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def seed_demo_data():
    """
    Creates a demo organization with a reporting chain, one process, one planned
    batch with enrolled trainees, an active evaluation template and a small
    question bank. Running it twice returns the existing organization.
    """
    org = Organization.query.filter_by(name=DEMO_ORGANIZATION).first()
    if org:
        return org

    org = Organization(name=DEMO_ORGANIZATION)
    db.session.add(org)
    db.session.flush()

    owner_password = os.getenv("ADMIN_PASSWORD", "changeme123")
    owner = _user(org, "demo_owner", RoleEnum.owner, password=owner_password)
    manager = _user(org, "demo_manager", RoleEnum.manager, manager=owner)
    team_lead = _user(org, "demo_team_lead", RoleEnum.team_lead, manager=manager)
    trainer = _user(org, "demo_trainer", RoleEnum.trainer, manager=team_lead)
    _user(org, "demo_analyst", RoleEnum.quality_analyst, manager=manager)
    trainees = [
        _user(org, f"demo_trainee_{n}", RoleEnum.trainee, manager=trainer, category=UserCategoryEnum.trainee)
        for n in range(1, 4)
    ]

    location = Location(organization_id=org.id, name="Main Floor", address="1 Example Way",
                        city="Cape Town", state="Western Cape", country="South Africa")
    lob = LineOfBusiness(organization_id=org.id, name="Customer Care", description="Inbound support")
    db.session.add_all([location, lob])
    db.session.flush()

    process = Process(organization_id=org.id, line_of_business_id=lob.id, name="Billing Support",
                      induction_days=2, training_days=10, certification_days=2, ojt_days=5,
                      ojt_certification_days=1)
    db.session.add(process)
    db.session.flush()

    start = date.today()
    batch = Batch(
        organization_id=org.id,
        name="Billing Support - Wave 1",
        batch_category=BatchCategoryEnum.new_training,
        capacity_limit=20,
        process_id=process.id,
        location_id=location.id,
        line_of_business_id=lob.id,
        trainer_id=trainer.id,
        start_date=start,
        **compute_phase_dates(start, process),
    )
    db.session.add(batch)
    db.session.flush()
    record_history(batch, "status_update", "Batch created", new_value=batch.status.value, user_id=owner.id)
    for trainee in trainees:
        db.session.add(UserBatchProcess(user_id=trainee.id, batch_id=batch.id, process_id=process.id))

    template = EvaluationTemplate(organization_id=org.id, process_id=process.id, name="Call Quality",
                                  status=TemplateStatusEnum.active, passing_score=80, created_by=owner.id)
    opening = EvaluationPillar(name="Opening", weightage=40, order_index=0)
    opening.parameters = [
        EvaluationParameter(name="Greeting", weightage=50, order_index=0),
        EvaluationParameter(name="Verification", weightage=50, is_fatal=True, requires_comment=True,
                            no_reasons=["Skipped verification", "Incomplete verification"], order_index=1),
    ]
    resolution = EvaluationPillar(name="Resolution", weightage=60, order_index=1)
    resolution.parameters = [
        EvaluationParameter(name="Accuracy", rating_type=RatingTypeEnum.numeric, weightage=70, order_index=0),
        EvaluationParameter(name="Closing", weightage=30, order_index=1),
    ]
    template.pillars = [opening, resolution]
    db.session.add(template)

    questions = [
        ("Which system holds the customer's invoice history?", QuestionTypeEnum.multiple_choice,
         ["CRM", "Billing portal", "Ticketing"], "1", 1, "systems"),
        ("A refund can be issued without verification.", QuestionTypeEnum.true_false,
         ["True", "False"], "false", 2, "compliance"),
        ("What is the maximum goodwill credit in dollars?", QuestionTypeEnum.short_answer,
         [], "25", 3, "policy"),
    ]
    for text, kind, options, answer, level, category in questions:
        db.session.add(Question(organization_id=org.id, process_id=process.id, question=text, type=kind,
                                options=options, correct_answer=answer, difficulty_level=level,
                                category=category, created_by=owner.id))

    db.session.commit()
    return org
