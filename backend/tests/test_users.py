from lms.models import User


def test_create_user_in_callers_organization(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    manager = seed.user(org, "manager", manager_id=owner)

    res = client.post("/api/users", json={
        "username": "new_trainer",
        "password": "password123",
        "email": "trainer@example.com",
        "role": "trainer",
        "manager_id": manager,
    }, headers=seed.headers(owner))
    assert res.status_code == 201
    body = res.get_json()
    assert body["organization_id"] == org
    assert body["manager_id"] == manager
    assert body["category"] == "active"

    res = client.post("/api/users", json={
        "username": "new_trainer", "password": "password123", "email": "x@example.com", "role": "advisor",
    }, headers=seed.headers(owner))
    assert res.status_code == 409


def test_only_owner_creates_admins_and_nobody_creates_owners(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    admin = seed.user(org, "admin", manager_id=owner)
    payload = {"password": "password123", "email": "a@example.com"}

    res = client.post("/api/users", json={**payload, "username": "admin_two", "role": "admin"},
                      headers=seed.headers(admin))
    assert res.status_code == 403

    res = client.post("/api/users", json={**payload, "username": "owner_two", "role": "owner"},
                      headers=seed.headers(owner))
    assert res.status_code == 403

    res = client.post("/api/users", json={**payload, "username": "admin_two", "role": "admin"},
                      headers=seed.headers(owner))
    assert res.status_code == 201


def test_role_aliases_are_normalized(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")

    res = client.post("/api/users", json={
        "username": "qa_person", "password": "password123", "email": "qa@example.com", "role": "qualityassurance",
    }, headers=seed.headers(owner))
    assert res.status_code == 201
    assert res.get_json()["role"] == "quality_analyst"


def test_manager_cycle_is_rejected(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    manager = seed.user(org, "manager", manager_id=owner)
    lead = seed.user(org, "team_lead", manager_id=manager)
    trainer = seed.user(org, "trainer", manager_id=lead)

    res = client.patch(f"/api/users/{manager}", json={"manager_id": trainer}, headers=seed.headers(owner))
    assert res.status_code == 400
    assert "cycle" in res.get_json()["message"]

    res = client.patch(f"/api/users/{lead}", json={"manager_id": lead}, headers=seed.headers(owner))
    assert res.status_code == 400

    res = client.patch(f"/api/users/{trainer}", json={"manager_id": manager}, headers=seed.headers(owner))
    assert res.status_code == 200
    assert seed.get(User, trainer).manager_id == manager


def test_owner_role_cannot_be_reassigned(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    admin = seed.user(org, "admin", manager_id=owner)

    res = client.patch(f"/api/users/{admin}", json={"role": "owner"}, headers=seed.headers(owner))
    assert res.status_code == 403
    res = client.patch(f"/api/users/{owner}", json={"role": "admin"}, headers=seed.headers(owner))
    assert res.status_code == 403


def test_list_users_is_tenant_scoped_and_paginated(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    for _ in range(3):
        seed.user(org, "advisor", manager_id=owner)
    other_org = seed.org()
    seed.user(other_org, "advisor")

    res = client.get(f"/api/organizations/{org}/users?role=advisor&per_page=2", headers=seed.headers(owner))
    assert res.status_code == 200
    body = res.get_json()
    assert body["total"] == 3
    assert len(body["users"]) == 2
    assert all(user["organization_id"] == org for user in body["users"])

    res = client.get(f"/api/organizations/{other_org}/users", headers=seed.headers(owner))
    assert res.status_code == 403


def test_soft_delete_hides_user_and_blocks_token(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    advisor = seed.user(org, "advisor", manager_id=owner)
    advisor_headers = seed.headers(advisor)

    assert client.delete(f"/api/users/{owner}", headers=seed.headers(owner)).status_code == 403
    assert client.delete(f"/api/users/{advisor}", headers=seed.headers(owner)).status_code == 200

    deleted = seed.get(User, advisor)
    assert deleted.deleted is True
    assert deleted.active is False
    assert client.get("/auth/me", headers=advisor_headers).status_code == 401

    res = client.get(f"/api/organizations/{org}/users", headers=seed.headers(owner))
    assert advisor not in [user["id"] for user in res.get_json()["users"]]


def test_reports_walk_the_whole_chain(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    manager = seed.user(org, "manager", manager_id=owner)
    lead = seed.user(org, "team_lead", manager_id=manager)
    trainer = seed.user(org, "trainer", manager_id=lead)
    seed.user(org, "advisor", manager_id=owner)

    res = client.get(f"/api/users/{manager}/reports", headers=seed.headers(manager))
    assert res.status_code == 200
    assert {user["id"] for user in res.get_json()["reports"]} == {lead, trainer}
