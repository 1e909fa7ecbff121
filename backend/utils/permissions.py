from lms.models import RolePermission, RoleEnum, normalize_role

PERMISSIONS = [
    "manage_billing",
    "manage_subscription",
    "create_admin",
    "manage_organization_settings",
    "manage_users",
    "view_users",
    "edit_users",
    "delete_users",
    "upload_users",
    "manage_courses",
    "view_courses",
    "edit_courses",
    "delete_courses",
    "create_courses",
    "manage_learning_paths",
    "view_learning_paths",
    "edit_learning_paths",
    "delete_learning_paths",
    "create_learning_paths",
    "manage_organization",
    "view_organization",
    "edit_organization",
    "manage_locations",
    "manage_processes",
    "view_performance",
    "manage_performance",
    "export_reports",
    "manage_batches",
    "manage_evaluations",
    "manage_quizzes",
    "manage_audio",
]

DEFAULT_PERMISSIONS = {
    RoleEnum.owner: [p for p in PERMISSIONS if p != "create_admin"],
    RoleEnum.admin: [
        "manage_users", "view_users", "edit_users", "delete_users", "upload_users",
        "manage_organization", "manage_organization_settings", "manage_locations", "manage_processes",
        "manage_performance", "export_reports",
        "manage_batches", "manage_evaluations", "manage_quizzes", "manage_audio",
    ],
    RoleEnum.manager: [
        "view_users", "edit_users", "view_organization", "manage_performance",
        "manage_processes", "manage_batches", "manage_evaluations", "manage_quizzes", "manage_audio",
    ],
    RoleEnum.team_lead: ["view_users", "edit_users", "manage_performance", "view_organization"],
    RoleEnum.quality_analyst: ["view_users", "manage_performance", "export_reports", "view_organization"],
    RoleEnum.trainer: ["view_users", "view_performance", "manage_quizzes"],
    RoleEnum.advisor: ["view_users", "view_performance", "export_reports"],
    RoleEnum.trainee: [],
}


def default_permissions(role):
    return list(DEFAULT_PERMISSIONS.get(normalize_role(role), []))


def get_role_permissions(organization_id, role):
    """
    Returns the effective permission list for a role in an organization.
    - A stored organization override wins.
    - Otherwise the role's defaults apply.
    - Owners always get the full default set.
    """
    role = normalize_role(role)
    if role == RoleEnum.owner or organization_id is None:
        return default_permissions(role)

    override = RolePermission.query.filter_by(organization_id=organization_id, role=role).first()
    if override is not None:
        return list(override.permissions or [])
    return default_permissions(role)


def has_permission(user, permission):
    if not user:
        return False
    return permission in get_role_permissions(user.organization_id, user.role)


def validate_permissions(permissions):
    """Raises ValueError naming any entries outside the catalogue."""
    if not isinstance(permissions, list):
        raise ValueError("permissions must be a list")
    unknown = sorted(set(permissions) - set(PERMISSIONS))
    if unknown:
        raise ValueError(f"Unknown permissions: {', '.join(unknown)}")
    return sorted(set(permissions), key=PERMISSIONS.index)
