from lms.models import AttendanceRecord, BatchStatusEnum


def _running_batch(seed):
    org = seed.org()
    owner = seed.user(org, "owner")
    manager = seed.user(org, "manager", manager_id=owner)
    trainer = seed.user(org, "trainer", manager_id=manager)
    batch = seed.batch(org, trainer, status=BatchStatusEnum.training)
    trainee = seed.user(org, "trainee", manager_id=trainer)
    seed.enroll(batch, trainee)
    return org, owner, trainer, batch, trainee


def test_marking_twice_updates_the_same_record(app_client, seed):
    _app, client = app_client
    org, _owner, trainer, batch, trainee = _running_batch(seed)
    headers = seed.headers(trainer)
    payload = {"trainee_id": trainee, "batch_id": batch, "date": "2030-02-03"}

    res = client.post("/api/attendance", json={**payload, "status": "absent"}, headers=headers)
    assert res.status_code == 201
    assert res.get_json()["phase"] == "training"

    res = client.post("/api/attendance", json={**payload, "status": "late"}, headers=headers)
    assert res.status_code == 200
    assert res.get_json()["status"] == "late"

    with seed.app.app_context():
        assert AttendanceRecord.query.filter_by(trainee_id=trainee, batch_id=batch).count() == 1


def test_attendance_rejects_invalid_input(app_client, seed):
    _app, client = app_client
    org, _owner, trainer, batch, trainee = _running_batch(seed)
    headers = seed.headers(trainer)
    outsider = seed.user(org, "trainee")

    res = client.post("/api/attendance", json={"trainee_id": trainee, "batch_id": batch, "status": "sleeping"},
                      headers=headers)
    assert res.status_code == 400

    res = client.post("/api/attendance", json={"trainee_id": outsider, "batch_id": batch, "status": "present"},
                      headers=headers)
    assert res.status_code == 400

    planned = seed.batch(org, trainer)
    seed.enroll(planned, outsider)
    res = client.post("/api/attendance", json={"trainee_id": outsider, "batch_id": planned, "status": "present"},
                      headers=headers)
    assert res.status_code == 400


def test_other_trainers_cannot_mark_attendance(app_client, seed):
    _app, client = app_client
    org, _owner, _trainer, batch, trainee = _running_batch(seed)
    stranger = seed.user(org, "trainer")

    res = client.post("/api/attendance", json={"trainee_id": trainee, "batch_id": batch, "status": "present"},
                      headers=seed.headers(stranger))
    assert res.status_code == 403


def test_batch_sheet_lists_every_active_trainee(app_client, seed):
    _app, client = app_client
    org, owner, trainer, batch, trainee = _running_batch(seed)
    unmarked = seed.user(org, "trainee")
    seed.enroll(batch, unmarked)

    client.post("/api/attendance", json={"trainee_id": trainee, "batch_id": batch, "status": "present",
                                         "date": "2030-02-03"}, headers=seed.headers(trainer))

    res = client.get(f"/api/organizations/{org}/batches/{batch}/attendance?date=2030-02-03",
                     headers=seed.headers(owner))
    assert res.status_code == 200
    sheet = {row["trainee_id"]: row["status"] for row in res.get_json()["trainees"]}
    assert sheet == {trainee: "present", unmarked: None}


def test_trainee_history_is_filtered_by_visibility(app_client, seed):
    _app, client = app_client
    org, _owner, trainer, batch, trainee = _running_batch(seed)
    client.post("/api/attendance", json={"trainee_id": trainee, "batch_id": batch, "status": "present",
                                         "date": "2030-02-03"}, headers=seed.headers(trainer))
    stranger = seed.user(org, "trainer")

    own = client.get(f"/api/attendance/{trainee}", headers=seed.headers(trainee))
    assert [row["status"] for row in own.get_json()] == ["present"]

    hidden = client.get(f"/api/attendance/{trainee}", headers=seed.headers(stranger))
    assert hidden.status_code == 200
    assert hidden.get_json() == []
