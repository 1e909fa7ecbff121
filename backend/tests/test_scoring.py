import pytest

from lms.models import EvaluationTemplate, EvaluationPillar, EvaluationParameter, RatingTypeEnum
from utils.scoring import ScoringError, aggregate_score, normalize_score, score_evaluation


def _template(params, passing_score=80.0):
    template = EvaluationTemplate(name="QA", passing_score=passing_score)
    pillar = EvaluationPillar(name="Core", weightage=100, order_index=0)
    pillar.parameters = [
        EvaluationParameter(
            id=index + 1,
            name=fields.get("name", f"P{index + 1}"),
            rating_type=fields.get("rating_type", RatingTypeEnum.yes_no_na),
            weightage=fields.get("weightage", 10),
            weightage_enabled=fields.get("weightage_enabled", True),
            is_fatal=fields.get("is_fatal", False),
            requires_comment=fields.get("requires_comment", False),
            no_reasons=fields.get("no_reasons"),
            order_index=index,
        )
        for index, fields in enumerate(params)
    ]
    template.pillars = [pillar]
    return template


def test_yes_no_na_normalization():
    param = EvaluationParameter(name="Greeting", rating_type=RatingTypeEnum.yes_no_na)
    assert normalize_score(param, "yes") == 100
    assert normalize_score(param, "No") == 0
    assert normalize_score(param, "na") is None
    with pytest.raises(ScoringError):
        normalize_score(param, "maybe")


def test_numeric_ratings_are_used_as_is():
    param = EvaluationParameter(name="Accuracy", rating_type=RatingTypeEnum.numeric)
    assert normalize_score(param, "4.5") == 4.5
    assert normalize_score(param, 0) == 0
    with pytest.raises(ScoringError):
        normalize_score(param, "high")

    custom = EvaluationParameter(name="Handle time", rating_type=RatingTypeEnum.custom)
    assert normalize_score(custom, "87.5") == 87.5


@pytest.mark.parametrize("value", ["nan", "inf", "-inf", "-500", "5.01", "1e9"])
def test_numeric_ratings_must_be_finite_and_in_range(value):
    template = _template([{"rating_type": RatingTypeEnum.numeric}, {}])
    with pytest.raises(ScoringError) as excinfo:
        score_evaluation(template, {"1": value, "2": "yes"})
    assert "P1" in excinfo.value.details[0]


@pytest.mark.parametrize("value", ["nan", "inf", "-1", "100.5"])
def test_custom_ratings_must_be_finite_percentages(value):
    param = EvaluationParameter(name="Handle time", rating_type=RatingTypeEnum.custom)
    with pytest.raises(ScoringError):
        normalize_score(param, value)


def test_numeric_range_is_configurable():
    template = _template([{"rating_type": RatingTypeEnum.numeric}])
    outcome = score_evaluation(template, {"1": "8"}, numeric_range=(1, 10))
    assert outcome["final_score"] == 8.0
    with pytest.raises(ScoringError):
        score_evaluation(template, {"1": "0"}, numeric_range=(1, 10))


def test_weighted_mean_skips_na_and_disabled_weights():
    template = _template([
        {"weightage": 60},
        {"weightage": 40},
        {"weightage": 50},
        {"weightage": 90, "weightage_enabled": False},
    ])
    outcome = score_evaluation(template, {"1": "yes", "2": "no", "3": "na", "4": "no"})
    # (60*100 + 40*0) / (60 + 40)
    assert outcome["final_score"] == 60.0
    assert outcome["passed"] is False
    assert len(outcome["results"]) == 4


def test_all_na_scores_zero():
    assert aggregate_score([(10, None), (20, None)]) == 0.0
    outcome = score_evaluation(_template([{}, {}]), {1: "na", 2: "na"})
    assert outcome["final_score"] == 0.0


def test_pass_compares_rounded_score():
    template = _template([
        {"rating_type": RatingTypeEnum.custom, "weightage": 1},
        {"rating_type": RatingTypeEnum.custom, "weightage": 2},
    ], passing_score=80.0)
    # (1*79.99 + 2*80.003) / 3 = 79.99867 -> 80.0
    outcome = score_evaluation(template, {"1": 79.99, "2": 80.003})
    assert outcome["final_score"] == 80.0
    assert outcome["passed"] is True


def test_no_passing_score_leaves_passed_unset():
    outcome = score_evaluation(_template([{}], passing_score=None), {"1": "yes"})
    assert outcome["final_score"] == 100.0
    assert outcome["passed"] is None


def test_fatal_no_fails_evaluation():
    template = _template([{"weightage": 90}, {"weightage": 10, "is_fatal": True}], passing_score=80)
    outcome = score_evaluation(template, {"1": "yes", "2": "no"})
    assert outcome["final_score"] == 90.0
    assert outcome["fatal_triggered"] is True
    assert outcome["passed"] is False


def test_fatal_no_can_be_reported_without_failing():
    template = _template([{"weightage": 90}, {"weightage": 10, "is_fatal": True}], passing_score=80)
    outcome = score_evaluation(template, {"1": "yes", "2": "no"}, fatal_fails=False)
    assert outcome["fatal_triggered"] is True
    assert outcome["passed"] is True


def test_list_submission_with_comments():
    template = _template([{"requires_comment": True}, {}])
    outcome = score_evaluation(template, [
        {"parameter_id": 1, "score": "no", "comment": "Skipped greeting", "no_reason": "Rushed"},
        {"parameter_id": 2, "score": "yes"},
    ])
    first = outcome["results"][0]
    assert first["comment"] == "Skipped greeting"
    assert first["no_reason"] == "Rushed"
    assert first["normalized_score"] == 0


def test_incomplete_submission_lists_every_problem():
    template = _template([{"name": "Greeting"}, {"name": "Hold", "requires_comment": True}, {"name": "Close"}])
    with pytest.raises(ScoringError) as excinfo:
        score_evaluation(template, {"2": "yes", "3": "sometimes"})
    details = excinfo.value.details
    assert len(details) == 3
    assert any("Greeting" in message for message in details)
    assert any("comment" in message for message in details)


def test_unknown_parameter_is_rejected():
    with pytest.raises(ScoringError) as excinfo:
        score_evaluation(_template([{}]), {"1": "yes", "99": "yes"})
    assert excinfo.value.details == [99]


@pytest.mark.parametrize("flipped, weightage", [(1, 60), (2, 30), (3, 10)])
def test_flipping_one_rating_moves_score_by_its_weight_share(flipped, weightage):
    template = _template([{"weightage": 60}, {"weightage": 30}, {"weightage": 10}], passing_score=None)
    all_yes = {"1": "yes", "2": "yes", "3": "yes"}
    baseline = score_evaluation(template, all_yes)["final_score"]
    changed = score_evaluation(template, {**all_yes, str(flipped): "no"})["final_score"]
    assert baseline - changed == pytest.approx(100 * weightage / 100)


def test_flip_is_proportional_with_uneven_total_weight():
    template = _template([{"weightage": 25}, {"weightage": 50}], passing_score=None)
    first = score_evaluation(template, {"1": "no", "2": "yes"})["final_score"]
    second = score_evaluation(template, {"1": "yes", "2": "no"})["final_score"]
    assert 100 - first == pytest.approx(round(100 * 25 / 75, 2))
    assert 100 - second == pytest.approx(round(100 * 50 / 75, 2))


def test_no_reason_must_come_from_the_configured_list():
    template = _template([{"name": "Verification", "no_reasons": ["Skipped ID check", "Wrong account"]}])
    outcome = score_evaluation(template, [{"parameter_id": 1, "score": "no", "no_reason": "Wrong account"}])
    assert outcome["results"][0]["no_reason"] == "Wrong account"

    with pytest.raises(ScoringError) as excinfo:
        score_evaluation(template, [{"parameter_id": 1, "score": "no", "no_reason": "Felt like it"}])
    assert "Verification" in excinfo.value.details[0]


def test_no_reason_is_dropped_unless_rating_is_no():
    template = _template([{"no_reasons": ["Skipped ID check"]}])
    outcome = score_evaluation(template, [{"parameter_id": 1, "score": "yes", "no_reason": "Anything"}])
    assert outcome["results"][0]["no_reason"] is None
