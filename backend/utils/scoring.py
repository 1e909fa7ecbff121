import math

from lms.models import RatingTypeEnum

NA_VALUES = {"na", "n/a"}
YES_NO_VALUES = {"yes": 100.0, "no": 0.0}
NUMERIC_RANGE = (0.0, 5.0)
CUSTOM_RANGE = (0.0, 100.0)


class ScoringError(ValueError):
    """Raised for incomplete or malformed evaluation submissions."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details or []


def normalize_score(parameter, raw, numeric_range=NUMERIC_RANGE):
    """
    Converts one submitted rating to its numeric contribution.
    - yes_no_na: yes -> 100, no -> 0, na -> None (excluded).
    - numeric: a finite number inside numeric_range (0-5 unless configured).
    - custom: a finite number between 0 and 100.
    """
    value = str(raw).strip().lower() if raw is not None else ""
    if value == "":
        raise ScoringError(f"Missing rating for parameter '{parameter.name}'")

    if parameter.rating_type == RatingTypeEnum.yes_no_na:
        if value in NA_VALUES:
            return None
        if value not in YES_NO_VALUES:
            raise ScoringError(f"Rating for '{parameter.name}' must be yes, no or na")
        return YES_NO_VALUES[value]

    try:
        number = float(value)
    except ValueError:
        raise ScoringError(f"Rating for '{parameter.name}' must be numeric")
    if not math.isfinite(number):
        raise ScoringError(f"Rating for '{parameter.name}' must be a finite number")

    low, high = numeric_range if parameter.rating_type == RatingTypeEnum.numeric else CUSTOM_RANGE
    if not low <= number <= high:
        raise ScoringError(f"Rating for '{parameter.name}' must be between {low:g} and {high:g}")
    return number


def _index_submission(scores):
    """Accepts {parameter_id: entry} or [{"parameter_id": .., "score": ..}, ...]."""
    indexed = {}
    if isinstance(scores, dict):
        items = scores.items()
    elif isinstance(scores, list):
        items = []
        for entry in scores:
            if not isinstance(entry, dict) or "parameter_id" not in entry:
                raise ScoringError("Each score needs a parameter_id")
            items.append((entry["parameter_id"], entry))
    else:
        raise ScoringError("scores must be an object or a list")

    for key, entry in items:
        try:
            parameter_id = int(key)
        except (TypeError, ValueError):
            raise ScoringError(f"Invalid parameter id: {key}")
        if not isinstance(entry, dict):
            entry = {"score": entry}
        indexed[parameter_id] = entry
    return indexed


def aggregate_score(weighted_scores):
    """
    Weighted mean of (weightage, normalized) pairs.
    Pairs with a None score do not count; an empty denominator gives 0.
    """
    numerator = 0.0
    denominator = 0.0
    for weightage, score in weighted_scores:
        if score is None:
            continue
        numerator += weightage * score
        denominator += weightage
    if denominator == 0:
        return 0.0
    return numerator / denominator


def is_passing(aggregate, passing_score):
    if passing_score is None:
        return None
    return aggregate >= passing_score


def score_evaluation(template, scores, fatal_fails=True, numeric_range=NUMERIC_RANGE):
    """
    Scores a submission against every parameter of an evaluation template.

    Returns a dict with:
      final_score: the weighted aggregate, rounded to 2 decimals
      passed: aggregate >= passing_score (None without a passing score)
      fatal_triggered: a fatal parameter was rated "no"
      results: one entry per parameter, ready to persist

    Raises ScoringError listing every parameter that is unrated, malformed,
    out of range, missing a required comment or given an unlisted no_reason.
    """
    submitted = _index_submission(scores)
    parameters = template.parameters()
    known_ids = {param.id for param in parameters}

    unknown = sorted(set(submitted) - known_ids)
    if unknown:
        raise ScoringError("Scores reference parameters outside this template", details=unknown)

    errors = []
    results = []
    weighted = []
    fatal_triggered = False

    for param in parameters:
        entry = submitted.get(param.id)
        if entry is None or entry.get("score") in (None, ""):
            errors.append(f"Missing rating for parameter '{param.name}'")
            continue
        try:
            normalized = normalize_score(param, entry.get("score"), numeric_range)
        except ScoringError as exc:
            errors.append(str(exc))
            continue

        comment = (entry.get("comment") or "").strip()
        if param.requires_comment and not comment:
            errors.append(f"A comment is required for parameter '{param.name}'")
            continue

        raw = str(entry.get("score")).strip().lower()
        no_reason = (entry.get("no_reason") or entry.get("noReason") or "").strip() if raw == "no" else ""
        allowed_reasons = param.no_reasons or []
        if no_reason and allowed_reasons and no_reason not in allowed_reasons:
            errors.append(f"'{no_reason}' is not a listed reason for parameter '{param.name}'")
            continue

        if param.is_fatal and raw == "no":
            fatal_triggered = True
        if param.weightage_enabled:
            weighted.append((param.weightage, normalized))

        results.append({
            "parameter_id": param.id,
            "score": raw,
            "normalized_score": normalized,
            "comment": comment or None,
            "no_reason": no_reason or None,
        })

    if errors:
        raise ScoringError("Evaluation is incomplete or invalid", details=errors)

    aggregate = round(aggregate_score(weighted), 2)
    passed = is_passing(aggregate, template.passing_score)
    if fatal_triggered and fatal_fails:
        passed = False

    return {
        "final_score": aggregate,
        "passed": passed,
        "fatal_triggered": fatal_triggered,
        "results": results,
    }
