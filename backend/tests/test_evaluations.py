from lms.models import Evaluation, EvaluationParameterResult, BatchStatusEnum, TemplateStatusEnum, RatingTypeEnum


def _setup(seed, passing_score=80.0):
    org = seed.org()
    owner = seed.user(org, "owner")
    manager = seed.user(org, "manager", manager_id=owner)
    trainer = seed.user(org, "trainer", manager_id=manager)
    structure = seed.structure(org)
    batch = seed.batch(org, trainer, structure, status=BatchStatusEnum.certification)
    trainee = seed.user(org, "trainee", manager_id=trainer)
    seed.enroll(batch, trainee)
    template, params = seed.evaluation_template(org, owner, structure["process_id"], passing_score=passing_score)
    return {
        "org": org, "owner": owner, "manager": manager, "trainer": trainer, "batch": batch,
        "trainee": trainee, "template": template, "params": params, "process_id": structure["process_id"],
    }


def _submit(client, seed, ctx, scores, user=None):
    return client.post("/api/evaluations", json={
        "template_id": ctx["template"],
        "trainee_id": ctx["trainee"],
        "batch_id": ctx["batch"],
        "scores": scores,
    }, headers=seed.headers(user or ctx["trainer"]))


def test_build_and_finalize_template(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    process_id = seed.structure(org)["process_id"]
    headers = seed.headers(owner)

    res = client.post(f"/api/organizations/{org}/evaluation-templates",
                      json={"name": "Certification Audit", "process_id": process_id, "passing_score": 85},
                      headers=headers)
    assert res.status_code == 201
    template = res.get_json()
    assert template["status"] == "draft"

    res = client.post(f"/api/evaluation-templates/{template['id']}/finalize", headers=headers)
    assert res.status_code == 400

    pillar = client.post(f"/api/evaluation-templates/{template['id']}/pillars",
                         json={"name": "Soft Skills", "weightage": 100}, headers=headers).get_json()
    res = client.post(f"/api/evaluation-pillars/{pillar['id']}/parameters", json={
        "name": "Empathy", "weightage": 100, "is_fatal": True,
        "no_reasons": ["Interrupted customer", " "],
    }, headers=headers)
    assert res.status_code == 201
    param = res.get_json()
    assert param["weightage_enabled"] is True
    assert param["no_reasons"] == ["Interrupted customer"]

    res = client.post(f"/api/evaluation-templates/{template['id']}/finalize", headers=headers)
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "active"
    assert body["total_pillar_weightage"] == 100

    res = client.patch(f"/api/evaluation-parameters/{param['id']}", json={"weightage": 50}, headers=headers)
    assert res.status_code == 400


def test_duplicate_creates_editable_deep_copy(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    headers = seed.headers(ctx["owner"])

    res = client.post(f"/api/evaluation-templates/{ctx['template']}/duplicate", headers=headers)
    assert res.status_code == 201
    copy = res.get_json()
    assert copy["name"] == "Call Audit (Copy)"
    assert copy["status"] == "draft"
    copied_params = copy["pillars"][0]["parameters"]
    assert [p["name"] for p in copied_params] == ["Greeting", "Verification"]
    assert not {p["id"] for p in copied_params} & set(ctx["params"])

    res = client.patch(f"/api/evaluation-parameters/{copied_params[0]['id']}", json={"weightage": 10},
                       headers=headers)
    assert res.status_code == 200


def test_submit_scores_and_persists_results(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    greeting, verification = ctx["params"]

    res = _submit(client, seed, ctx, {str(greeting): "yes", str(verification): "yes"})
    assert res.status_code == 201
    body = res.get_json()
    assert body["final_score"] == 100.0
    assert body["passed"] is True
    assert body["fatal_triggered"] is False
    assert len(body["scores"]) == 2

    with seed.app.app_context():
        assert EvaluationParameterResult.query.filter_by(evaluation_id=body["id"]).count() == 2

    listed = client.get(f"/api/organizations/{ctx['org']}/batches/{ctx['batch']}/evaluations",
                        headers=seed.headers(ctx["manager"]))
    assert [item["id"] for item in listed.get_json()] == [body["id"]]


def test_fatal_no_fails_even_with_high_score(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed, passing_score=50.0)
    greeting, verification = ctx["params"]

    res = _submit(client, seed, ctx, [
        {"parameter_id": greeting, "score": "yes"},
        {"parameter_id": verification, "score": "no", "no_reason": "Skipped"},
    ])
    body = res.get_json()
    assert res.status_code == 201
    assert body["final_score"] == 60.0
    assert body["fatal_triggered"] is True
    assert body["passed"] is False


def test_fatal_rule_can_be_switched_off(app_client, seed):
    app, client = app_client
    app.config["FATAL_PARAMETER_FAILS_EVALUATION"] = False
    ctx = _setup(seed, passing_score=50.0)
    greeting, verification = ctx["params"]

    body = _submit(client, seed, ctx, {str(greeting): "yes", str(verification): "no"}).get_json()
    assert body["fatal_triggered"] is True
    assert body["passed"] is True


def test_incomplete_submission_is_rejected_with_details(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    greeting, _verification = ctx["params"]

    res = _submit(client, seed, ctx, {str(greeting): "yes"})
    assert res.status_code == 400
    body = res.get_json()
    assert body["errors"] == ["Missing rating for parameter 'Verification'"]

    with seed.app.app_context():
        assert Evaluation.query.count() == 0


def test_submission_guards(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    scores = {str(pid): "yes" for pid in ctx["params"]}

    stranger = seed.user(ctx["org"], "trainer")
    assert _submit(client, seed, ctx, scores, user=stranger).status_code == 403

    trainee_user = _submit(client, seed, ctx, scores, user=ctx["trainee"])
    assert trainee_user.status_code == 403

    analyst = seed.user(ctx["org"], "quality_analyst")
    assert _submit(client, seed, ctx, scores, user=analyst).status_code == 201

    not_enrolled = seed.user(ctx["org"], "trainee")
    res = client.post("/api/evaluations", json={
        "template_id": ctx["template"], "trainee_id": not_enrolled, "batch_id": ctx["batch"], "scores": scores,
    }, headers=seed.headers(ctx["trainer"]))
    assert res.status_code == 400


def test_draft_templates_cannot_be_used(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    draft, params = seed.evaluation_template(ctx["org"], ctx["owner"], ctx["process_id"],
                                           status=TemplateStatusEnum.draft)

    res = client.post("/api/evaluations", json={
        "template_id": draft, "trainee_id": ctx["trainee"], "batch_id": ctx["batch"],
        "scores": {str(pid): "yes" for pid in params},
    }, headers=seed.headers(ctx["trainer"]))
    assert res.status_code == 400


def test_template_with_evaluations_cannot_be_deleted(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    _submit(client, seed, ctx, {str(pid): "yes" for pid in ctx["params"]})

    res = client.delete(f"/api/evaluation-templates/{ctx['template']}", headers=seed.headers(ctx["owner"]))
    assert res.status_code == 409


def test_trainee_can_read_own_evaluation(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    evaluation = _submit(client, seed, ctx, {str(pid): "yes" for pid in ctx["params"]}).get_json()

    res = client.get(f"/api/evaluations/{evaluation['id']}", headers=seed.headers(ctx["trainee"]))
    assert res.status_code == 200
    assert res.get_json()["trainee"]["id"] == ctx["trainee"]

    outsider = seed.user(ctx["org"], "advisor")
    res = client.get(f"/api/evaluations/{evaluation['id']}", headers=seed.headers(outsider))
    assert res.status_code == 403


def test_non_finite_numeric_ratings_are_rejected(app_client, seed):
    _app, client = app_client
    ctx = _setup(seed)
    template, (accuracy,) = seed.evaluation_template(ctx["org"], ctx["owner"], ctx["process_id"], parameters=[
        {"name": "Accuracy", "weightage": 100, "rating_type": RatingTypeEnum.numeric},
    ])
    payload = {"template_id": template, "trainee_id": ctx["trainee"], "batch_id": ctx["batch"]}

    for value in ("nan", "inf", "-500"):
        res = client.post("/api/evaluations", json={**payload, "scores": {str(accuracy): value}},
                          headers=seed.headers(ctx["trainer"]))
        assert res.status_code == 400
        assert "Accuracy" in res.get_json()["errors"][0]

    res = client.post("/api/evaluations", json={**payload, "scores": {str(accuracy): "4"}},
                      headers=seed.headers(ctx["trainer"]))
    assert res.status_code == 201
    assert res.get_json()["final_score"] == 4.0
