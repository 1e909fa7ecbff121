from lms.models import db, User, Batch, RoleEnum

ORG_WIDE_ROLES = {RoleEnum.owner, RoleEnum.admin, RoleEnum.manager}


def ensure_same_organization(user, organization_id):
    """
    Raises PermissionError unless the user belongs to the given organization.
    """
    if not user:
        raise ValueError("No user provided")
    if organization_id is None or int(organization_id) != user.organization_id:
        raise PermissionError("Access denied to this organization")


def build_manager_map(organization_id):
    """Loads {user_id: manager_id} for every user of an organization in one query."""
    rows = (
        User.query.with_entities(User.id, User.manager_id)
        .filter(User.organization_id == organization_id)
        .all()
    )
    return {user_id: manager_id for user_id, manager_id in rows}


def is_subordinate(user_id, ancestor_id, manager_map):
    """
    True when walking user_id's manager chain upward reaches ancestor_id.
    - A user is not their own subordinate.
    - The walk stops at a missing manager or a cycle.
    """
    seen = {user_id}
    current = manager_map.get(user_id)
    while current is not None:
        if current == ancestor_id:
            return True
        if current in seen:
            return False
        seen.add(current)
        current = manager_map.get(current)
    return False


def can_view_batch(viewer, batch, manager_map=None):
    """
    Decides whether viewer may see batch.
    - Never across organizations.
    - owner, admin, manager: every batch of the organization.
    - trainer: batches they train.
    - team_lead: batches they train, or whose trainer reports to them at any depth.
    - everyone else: nothing.
    """
    if viewer is None or batch is None:
        return False
    if batch.organization_id != viewer.organization_id:
        return False

    role = viewer.role
    if role in ORG_WIDE_ROLES:
        return True
    if batch.trainer_id == viewer.id:
        return role in (RoleEnum.trainer, RoleEnum.team_lead)
    if role == RoleEnum.team_lead:
        if manager_map is None:
            manager_map = build_manager_map(viewer.organization_id)
        return is_subordinate(batch.trainer_id, viewer.id, manager_map)
    return False


def visible_batches(viewer, query=None):
    """
    Returns the batches of viewer's organization that can_view_batch allows,
    ordered by start date. The org-wide manager map is loaded once.
    """
    if viewer is None or viewer.organization_id is None:
        return []

    query = query if query is not None else Batch.query
    candidates = query.filter(Batch.organization_id == viewer.organization_id)

    role = viewer.role
    if role in ORG_WIDE_ROLES:
        return candidates.order_by(Batch.start_date.desc(), Batch.id).all()
    if role not in (RoleEnum.trainer, RoleEnum.team_lead):
        return []

    manager_map = build_manager_map(viewer.organization_id) if role == RoleEnum.team_lead else {}
    return [
        batch for batch in candidates.order_by(Batch.start_date.desc(), Batch.id).all()
        if can_view_batch(viewer, batch, manager_map)
    ]


def get_visible_batch(viewer, batch_id):
    """
    Fetches one batch through the visibility rule.
    Raises LookupError when it does not exist and PermissionError when hidden.
    """
    batch = db.session.get(Batch, batch_id) if batch_id is not None else None
    if batch is None:
        raise LookupError("Batch not found")
    if not can_view_batch(viewer, batch):
        raise PermissionError("You do not have access to this batch")
    return batch
