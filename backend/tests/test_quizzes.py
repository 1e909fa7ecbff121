import random
from datetime import date

from lms.models import Quiz, QuizAttempt, Question, QuestionTypeEnum, BatchStatusEnum
from utils import quiz as quiz_utils
from utils.quiz import (
    grade_quiz, is_correct, prepare_quiz_questions, quiz_seed, select_random_questions, shuffle_with_seed,
)


def _bank(seed, org, author, process_id=None):
    ids = {"easy": [], "hard": [], "billing": [], "tech": []}
    for _ in range(4):
        ids["easy"].append(seed.question(org, author, category="billing", difficulty=1, process_id=process_id))
    for _ in range(3):
        ids["hard"].append(seed.question(org, author, category="tech", difficulty=3, process_id=process_id))
    ids["billing"] = ids["easy"]
    ids["tech"] = ids["hard"]
    return ids


def test_seed_format_and_deterministic_shuffle():
    seed = quiz_seed(7, 3, date(2030, 5, 1))
    assert seed == "user-7-quiz-3-date-2030-05-01"
    items = list(range(20))
    assert shuffle_with_seed(items, seed) == shuffle_with_seed(items, seed)
    assert sorted(shuffle_with_seed(items, seed)) == items
    assert items == list(range(20))


def test_option_shuffle_remaps_index_answers():
    question = Question(id=11, question="Pick C", type=QuestionTypeEnum.multiple_choice,
                        options=["A", "B", "C", "D", "E", "F"], correct_answer="2", difficulty_level=1,
                        category="general")
    for user_id in range(1, 6):
        items = prepare_quiz_questions([question], user_id=user_id, quiz_id=1, shuffle_options=True,
                                       on_date=date(2030, 5, 1), include_answer=True)
        item = items[0]
        assert item["options"][int(item["correct_answer"])] == "C"
        assert is_correct(item, "c")
        assert is_correct(item, item["correct_answer"])


def test_answers_hidden_unless_requested():
    question = Question(id=1, question="?", type=QuestionTypeEnum.true_false, options=["True", "False"],
                        correct_answer="true", difficulty_level=1, category="general")
    items = prepare_quiz_questions([question], user_id=1, quiz_id=1)
    assert "correct_answer" not in items[0]


def test_grading_counts_correct_answers():
    items = [
        {"id": 1, "type": "multiple_choice", "options": ["A", "B"], "correct_answer": "1"},
        {"id": 2, "type": "true_false", "options": ["True", "False"], "correct_answer": "false"},
        {"id": 3, "type": "short_answer", "options": [], "correct_answer": "25"},
    ]
    score, graded = grade_quiz(items, {"1": "B", 2: " FALSE ", "3": "30"})
    assert score == 66.67
    assert [entry["is_correct"] for entry in graded] == [True, True, False]
    assert grade_quiz([], {}) == (0.0, [])


def test_category_distribution_wins_and_fills_remaining(app_client, seed):
    app, _client = app_client
    org = seed.org()
    author = seed.user(org, "trainer")
    bank = _bank(seed, org, author)

    with app.app_context():
        picked = select_random_questions(org, 5, category_distribution={"tech": 2},
                                         difficulty_distribution={"1": 3}, rng=random.Random(1))
        ids = [q.id for q in picked]
    assert len(ids) == 5
    assert len(set(ids)) == 5
    assert set(ids[:2]) <= set(bank["tech"])


def test_difficulty_distribution_and_shortage(app_client, seed):
    app, _client = app_client
    org = seed.org()
    author = seed.user(org, "trainer")
    bank = _bank(seed, org, author)

    with app.app_context():
        picked = select_random_questions(org, 3, difficulty_distribution={"3": 3}, rng=random.Random(2))
        assert {q.id for q in picked} == set(bank["hard"])

        short = select_random_questions(org, 5, category_distribution={"tech": 5}, rng=random.Random(3))
        assert len(short) == 3


def test_generate_and_take_quiz(app_client, seed):
    app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    trainer = seed.user(org, "trainer", manager_id=owner)
    structure = seed.structure(org)
    batch = seed.batch(org, trainer, structure, status=BatchStatusEnum.training)
    trainee = seed.user(org, "trainee", manager_id=trainer)
    seed.enroll(batch, trainee)
    _bank(seed, org, owner, process_id=structure["process_id"])
    headers = seed.headers(trainer)

    res = client.post("/api/quiz-templates", json={
        "name": "Week 1 Check", "question_count": 4, "time_limit": 20, "passing_score": 75,
        "shuffle_questions": True, "shuffle_options": True,
        "category_distribution": {"billing": 2, "tech": 2}, "process_id": structure["process_id"],
    }, headers=headers)
    assert res.status_code == 201
    template = res.get_json()

    res = client.post(f"/api/quiz-templates/{template['id']}/generate", headers=headers)
    assert res.status_code == 201
    quiz = res.get_json()
    assert len(quiz["question_ids"]) == 4
    assert quiz["status"] == "active"

    listed = client.get("/api/trainee/quizzes", headers=seed.headers(trainee)).get_json()
    assert [item["id"] for item in listed] == [quiz["id"]]

    first = client.get(f"/api/quizzes/{quiz['id']}", headers=seed.headers(trainee)).get_json()
    second = client.get(f"/api/quizzes/{quiz['id']}", headers=seed.headers(trainee)).get_json()
    assert [q["id"] for q in first["questions"]] == [q["id"] for q in second["questions"]]
    assert all("correct_answer" not in q for q in first["questions"])

    # answer every question by option text; all bank questions have "A" as the answer
    answers = {str(q["id"]): "A" for q in first["questions"]}
    res = client.post(f"/api/quizzes/{quiz['id']}/submit", json={"answers": answers}, headers=seed.headers(trainee))
    assert res.status_code == 201
    attempt = res.get_json()
    assert attempt["score"] == 100.0
    assert attempt["passed"] is True

    res = client.get(f"/api/quiz-attempts/{attempt['id']}", headers=seed.headers(trainee))
    assert res.status_code == 200
    assert res.get_json()["quiz"]["id"] == quiz["id"]

    other_trainee = seed.user(org, "trainee")
    res = client.get(f"/api/quiz-attempts/{attempt['id']}", headers=seed.headers(other_trainee))
    assert res.status_code == 403


def test_generate_reports_shortage(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    _bank(seed, org, owner)
    headers = seed.headers(owner)

    template = client.post("/api/quiz-templates", json={
        "name": "Hard Only", "question_count": 5, "difficulty_distribution": {"3": 5},
    }, headers=headers).get_json()

    res = client.post(f"/api/quiz-templates/{template['id']}/generate", headers=headers)
    assert res.status_code == 400
    body = res.get_json()
    assert body["message"] == "Not enough questions available to generate quiz"
    assert "5 with difficulty 3" in body["details"]


def test_template_validation_and_cascade_delete(app_client, seed):
    app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    _bank(seed, org, owner)
    headers = seed.headers(owner)

    res = client.post("/api/quiz-templates", json={
        "name": "Too Many", "question_count": 2, "category_distribution": {"billing": 3},
    }, headers=headers)
    assert res.status_code == 400

    template = client.post("/api/quiz-templates", json={"name": "Any", "question_count": 2},
                           headers=headers).get_json()
    quiz = client.post(f"/api/quiz-templates/{template['id']}/generate", headers=headers).get_json()
    client.post(f"/api/quizzes/{quiz['id']}/submit", json={"answers": {}}, headers=headers)

    res = client.delete(f"/api/quiz-templates/{template['id']}", headers=headers)
    assert res.status_code == 200
    with app.app_context():
        assert Quiz.query.count() == 0
        assert QuizAttempt.query.count() == 0


def test_question_bank_crud_requires_permission(app_client, seed):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    advisor = seed.user(org, "advisor", manager_id=owner)

    payload = {"question": "2 + 2?", "type": "multiple_choice", "options": ["3", "4"], "correct_answer": "4"}
    assert client.post("/api/questions", json=payload, headers=seed.headers(advisor)).status_code == 403

    res = client.post("/api/questions", json=payload, headers=seed.headers(owner))
    assert res.status_code == 201
    question_id = res.get_json()["id"]

    res = client.post("/api/questions", json={**payload, "correct_answer": "5"}, headers=seed.headers(owner))
    assert res.status_code == 400

    res = client.patch(f"/api/questions/{question_id}", json={"category": "math"}, headers=seed.headers(owner))
    assert res.get_json()["category"] == "math"

    res = client.get("/api/random-questions?count=1&category_distribution=%7B%22math%22%3A1%7D",
                     headers=seed.headers(owner))
    assert [q["id"] for q in res.get_json()] == [question_id]

    assert client.delete(f"/api/questions/{question_id}", headers=seed.headers(owner)).status_code == 200


class _NextDay(date):
    @classmethod
    def today(cls):
        return date.fromordinal(date.today().toordinal() + 1)


def test_index_answers_survive_a_date_change_between_fetch_and_submit(app_client, seed, monkeypatch):
    _app, client = app_client
    org = seed.org()
    owner = seed.user(org, "owner")
    options = ["A", "B", "C", "D", "E", "F"]
    for _ in range(4):
        seed.question(org, owner, options=options, correct_answer="0")
    headers = seed.headers(owner)

    template = client.post("/api/quiz-templates", json={
        "name": "Late Night", "question_count": 4, "shuffle_questions": True, "shuffle_options": True,
    }, headers=headers).get_json()
    quiz = client.post(f"/api/quiz-templates/{template['id']}/generate", headers=headers).get_json()

    fetched = client.get(f"/api/quizzes/{quiz['id']}", headers=headers).get_json()
    answers = {str(q["id"]): str(q["options"].index("A")) for q in fetched["questions"]}

    monkeypatch.setattr(quiz_utils, "date", _NextDay)
    res = client.post(f"/api/quizzes/{quiz['id']}/submit", json={"answers": answers}, headers=headers)
    assert res.status_code == 201
    assert res.get_json()["score"] == 100.0
