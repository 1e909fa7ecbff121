import logging
from datetime import date, timedelta

from lms.models import db, Batch, BatchHistory, UserBatchProcess, BatchStatusEnum, BATCH_PHASES

logger = logging.getLogger(__name__)

TIMED_PHASES = [
    BatchStatusEnum.induction,
    BatchStatusEnum.training,
    BatchStatusEnum.certification,
    BatchStatusEnum.ojt,
    BatchStatusEnum.ojt_certification,
]


def next_phase(phase):
    """The phase after `phase`, or None for completed."""
    index = BATCH_PHASES.index(phase)
    if index == len(BATCH_PHASES) - 1:
        return None
    return BATCH_PHASES[index + 1]


def phase_start_field(phase):
    return f"{phase.value}_start_date" if phase in TIMED_PHASES else None


def phase_end_field(phase):
    return f"{phase.value}_end_date" if phase in TIMED_PHASES else None


def actual_start_field(phase):
    if phase == BatchStatusEnum.completed:
        return "actual_handover_to_ops_date"
    return f"actual_{phase.value}_start_date" if phase in TIMED_PHASES else None


def actual_end_field(phase):
    return f"actual_{phase.value}_end_date" if phase in TIMED_PHASES else None


def compute_phase_dates(start_date, process):
    """
    Plans consecutive phase windows from a start date and the process's
    per-phase durations. A zero-day phase starts and ends on the same day.
    """
    dates = {}
    cursor = start_date
    for phase in TIMED_PHASES:
        days = getattr(process, f"{phase.value}_days", 0) or 0
        end = cursor + timedelta(days=max(days - 1, 0))
        dates[phase_start_field(phase)] = cursor
        dates[phase_end_field(phase)] = end
        cursor = end + timedelta(days=1) if days > 0 else cursor
    dates["handover_to_ops_date"] = cursor
    dates["end_date"] = cursor
    return dates


def record_history(batch, event_type, description, previous_value=None, new_value=None, user_id=None):
    entry = BatchHistory(
        batch_id=batch.id,
        organization_id=batch.organization_id,
        event_type=event_type,
        description=description,
        previous_value=previous_value,
        new_value=new_value,
        user_id=user_id,
    )
    db.session.add(entry)
    return entry


def move_batch_to_phase(batch, target, on_date=None, user_id=None, description=None):
    """
    Sets the batch status, stamping the actual end of the current phase and
    the actual start of the target, and writes a phase_change history record.
    """
    on_date = on_date or date.today()
    current = batch.status

    end_field = actual_end_field(current)
    if end_field and getattr(batch, end_field) is None:
        setattr(batch, end_field, on_date)
    start_field = actual_start_field(target)
    if start_field:
        setattr(batch, start_field, on_date)

    batch.status = target
    record_history(
        batch,
        "phase_change",
        description or f"Batch phase changed from {current.value} to {target.value}",
        previous_value=current.value,
        new_value=target.value,
        user_id=user_id,
    )
    return batch


def active_trainee_count(batch):
    return UserBatchProcess.query.filter_by(batch_id=batch.id, status="active").count()


def start_batch(batch, today=None, user_id=None):
    """
    Moves a planned batch into induction.
    Raises ValueError unless the batch is planned, its start date has arrived
    and at least one trainee is actively enrolled.
    """
    today = today or date.today()
    if batch.status != BatchStatusEnum.planned:
        raise ValueError("Only planned batches can be started")
    if batch.start_date > today:
        raise ValueError(f"Batch cannot start before its start date ({batch.start_date.isoformat()})")
    if active_trainee_count(batch) == 0:
        raise ValueError("Batch has no active trainees")

    return move_batch_to_phase(batch, BatchStatusEnum.induction, on_date=today, user_id=user_id,
                               description="Batch started; moved from planned to induction")


def advance_batch_phases(today=None):
    """
    Moves every batch whose current phase is due:
    - planned batches whose induction start date has arrived enter induction;
    - batches in a timed phase whose planned end date has arrived enter the next phase.
    At most one step per batch per run. Returns the list of (batch_id, from, to).
    """
    today = today or date.today()
    changes = []

    batches = Batch.query.filter(Batch.status != BatchStatusEnum.completed).all()
    for batch in batches:
        current = batch.status
        if current == BatchStatusEnum.planned:
            if batch.induction_start_date and today >= batch.induction_start_date:
                move_batch_to_phase(batch, BatchStatusEnum.induction, on_date=today)
                changes.append((batch.id, current.value, BatchStatusEnum.induction.value))
            continue

        end_field = phase_end_field(current)
        phase_end = getattr(batch, end_field) if end_field else None
        if phase_end is None or today < phase_end:
            continue

        target = next_phase(current)
        if target is None:
            continue
        move_batch_to_phase(batch, target, on_date=today)
        changes.append((batch.id, current.value, target.value))

    db.session.commit()
    for batch_id, previous, new in changes:
        logger.info("Batch %s moved from %s to %s", batch_id, previous, new)
    return changes
