import random
from datetime import date

from lms.models import Question, QuestionTypeEnum


def _parse_distribution(distribution, cast=str):
    if not distribution:
        return {}
    if not isinstance(distribution, dict):
        raise ValueError("Distribution must be an object of {key: count}")
    parsed = {}
    for key, count in distribution.items():
        try:
            count = int(count)
            parsed[cast(key)] = count
        except (TypeError, ValueError):
            raise ValueError(f"Invalid distribution entry: {key}={count}")
        if count < 0:
            raise ValueError(f"Distribution count for {key} must be >= 0")
    return parsed


def select_random_questions(organization_id, count, category_distribution=None,
                            difficulty_distribution=None, process_id=None, rng=None):
    """
    Draws up to `count` questions from the organization's bank.
    - A category distribution takes that many questions per category.
    - Otherwise a difficulty distribution takes that many per difficulty level.
    - Remaining slots are filled from the rest of the pool.
    The result can be shorter than `count` when the bank runs out.
    """
    if count is None or int(count) < 1:
        raise ValueError("Question count must be a positive number")
    count = int(count)
    rng = rng or random.Random()

    categories = _parse_distribution(category_distribution)
    difficulties = _parse_distribution(difficulty_distribution, cast=int)

    query = Question.query.filter_by(organization_id=organization_id)
    if process_id:
        query = query.filter_by(process_id=process_id)
    pool = query.order_by(Question.id).all()

    selected = []
    chosen_ids = set()

    def take(candidates, n):
        candidates = [q for q in candidates if q.id not in chosen_ids]
        picked = rng.sample(candidates, min(n, len(candidates)))
        for question in picked:
            chosen_ids.add(question.id)
            selected.append(question)

    if categories:
        for category, n in categories.items():
            take([q for q in pool if q.category == category], n)
    elif difficulties:
        for level, n in difficulties.items():
            take([q for q in pool if q.difficulty_level == level], n)
    else:
        take(pool, count)

    distribution = categories or difficulties
    if distribution and sum(distribution.values()) < count:
        take(pool, count - len(selected))

    return selected[:count]


def shortage_details(template):
    parts = []
    if template.category_distribution:
        parts.append("category distribution (" + ", ".join(
            f"{n} from {cat}" for cat, n in template.category_distribution.items()) + ")")
    if template.difficulty_distribution:
        parts.append("difficulty distribution (" + ", ".join(
            f"{n} with difficulty {level}" for level, n in template.difficulty_distribution.items()) + ")")
    summary = " and ".join(parts) if parts else "any category"
    return f"Need {template.question_count} questions matching: {summary}"


def quiz_seed(user_id, quiz_id, on_date=None):
    on_date = on_date or date.today()
    return f"user-{user_id}-quiz-{quiz_id}-date-{on_date.isoformat()}"


def shuffle_with_seed(items, seed):
    """Returns a shuffled copy; the same seed always gives the same order."""
    shuffled = list(items)
    if len(shuffled) > 1:
        random.Random(seed).shuffle(shuffled)
    return shuffled


def prepare_quiz_questions(questions, user_id, quiz_id, shuffle_questions=False,
                           shuffle_options=False, on_date=None, include_answer=False):
    """
    Serializes quiz questions for one trainee, applying the template's shuffle
    settings. Index-style correct answers are remapped to the shuffled options.
    """
    seed = quiz_seed(user_id, quiz_id, on_date)
    items = [q.to_dict(include_answer=True) for q in questions]

    if shuffle_questions:
        items = shuffle_with_seed(items, seed)

    if shuffle_options:
        for index, item in enumerate(items):
            options = item["options"]
            if item["type"] != QuestionTypeEnum.multiple_choice.value or len(options) < 2:
                continue
            shuffled = shuffle_with_seed(options, f"{seed}-question-{item['id']}-{index}")
            answer = item["correct_answer"]
            if str(answer).isdigit() and int(answer) < len(options):
                item["correct_answer"] = str(shuffled.index(options[int(answer)]))
            item["options"] = shuffled

    if not include_answer:
        for item in items:
            item.pop("correct_answer", None)
    return items


def is_correct(item, answer):
    """
    Compares a submitted answer to a serialized question's answer, ignoring
    case and spacing. Multiple-choice answers may be an option index or text.
    """
    if answer is None:
        return False
    expected = str(item["correct_answer"]).strip().lower()
    given = str(answer).strip().lower()
    if given == expected:
        return True
    options = [str(option).strip().lower() for option in item.get("options") or []]
    if item["type"] != QuestionTypeEnum.multiple_choice.value or not options:
        return False
    if expected.isdigit() and int(expected) < len(options):
        expected_text = options[int(expected)]
        if given == expected_text:
            return True
        return given.isdigit() and int(given) < len(options) and options[int(given)] == expected_text
    return given.isdigit() and int(given) < len(options) and options[int(given)] == expected


def grade_quiz(items, answers):
    """
    Grades answers ({question_id: answer}) against serialized questions, as
    returned by prepare_quiz_questions(..., include_answer=True).
    Returns (score, graded) where score = correct / total * 100.
    """
    answers = {str(k): v for k, v in (answers or {}).items()}
    graded = []
    correct = 0
    for item in items:
        given = answers.get(str(item["id"]))
        ok = is_correct(item, given)
        correct += 1 if ok else 0
        graded.append({
            "question_id": item["id"],
            "answer": given,
            "is_correct": ok,
            "correct_answer": item["correct_answer"],
        })
    score = (correct / len(items) * 100) if items else 0.0
    return round(score, 2), graded
