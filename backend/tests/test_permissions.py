import pytest

from lms.models import RoleEnum
from utils.permissions import DEFAULT_PERMISSIONS, PERMISSIONS, default_permissions, validate_permissions


def test_owner_defaults_cover_catalogue_except_create_admin():
    owner = default_permissions("owner")
    assert "create_admin" not in owner
    assert set(owner) == set(PERMISSIONS) - {"create_admin"}
    assert default_permissions(RoleEnum.trainee) == []
    assert set(DEFAULT_PERMISSIONS) == set(RoleEnum)


def test_validate_permissions_rejects_unknown_entries():
    assert validate_permissions(["view_users", "manage_users", "view_users"]) == ["manage_users", "view_users"]
    with pytest.raises(ValueError, match="fly_planes"):
        validate_permissions(["view_users", "fly_planes"])
    with pytest.raises(ValueError):
        validate_permissions("view_users")


def test_list_permissions_shows_every_role(app_client, seed):
    _app, client = app_client
    org = seed.org()
    trainer = seed.user(org, "trainer")

    res = client.get("/api/permissions", headers=seed.headers(trainer))
    assert res.status_code == 200
    body = res.get_json()
    assert body["available_permissions"] == PERMISSIONS
    assert set(body["roles"]) == {role.value for role in RoleEnum}

    assert client.get("/api/permissions/wizard", headers=seed.headers(trainer)).status_code == 404


def test_override_applies_only_to_its_organization(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    manager = seed.user(org, "manager", manager_id=owner)
    other_org = seed.org()
    other_manager = seed.user(other_org, "manager")

    assert client.get(f"/api/organizations/{org}/batches", headers=seed.headers(manager)).status_code == 200

    res = client.patch("/api/permissions/manager", json={"permissions": ["view_users"]},
                       headers=seed.headers(owner))
    assert res.status_code == 200
    assert res.get_json()["permissions"] == ["view_users"]

    res = client.get("/api/permissions/manager", headers=seed.headers(manager))
    assert res.get_json()["permissions"] == ["view_users"]

    # the manager has lost manage_batches in this organization only
    structure = seed.structure(org)
    trainer = seed.user(org, "trainer", manager_id=manager)
    res = client.post(f"/api/organizations/{org}/batches", json={
        "name": "Wave", "trainer_id": trainer, "capacity_limit": 5, "start_date": "2030-01-06", **structure,
    }, headers=seed.headers(manager))
    assert res.status_code == 403

    res = client.get("/api/permissions/manager", headers=seed.headers(other_manager))
    assert "manage_batches" in res.get_json()["permissions"]


def test_owner_permissions_are_locked(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    admin = seed.user(org, "admin", manager_id=owner)

    res = client.patch("/api/permissions/owner", json={"permissions": []}, headers=seed.headers(owner))
    assert res.status_code == 403

    res = client.patch("/api/permissions/admin", json={"permissions": []}, headers=seed.headers(admin))
    assert res.status_code == 403

    res = client.patch("/api/permissions/trainer", json={"permissions": ["bogus"]}, headers=seed.headers(admin))
    assert res.status_code == 400


def test_only_owner_or_admin_edit_permissions(app_client, seed):
    _app, client = app_client
    org = seed.org()
    manager = seed.user(org, "manager")

    res = client.patch("/api/permissions/trainer", json={"permissions": []}, headers=seed.headers(manager))
    assert res.status_code == 403
