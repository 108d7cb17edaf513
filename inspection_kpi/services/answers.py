"""
Checklist answer tagging and defect detection.

Inspection forms store one field per question with free-form values
("pass", "Fail", "NG", "no", "n/a", remarks, photo lists...). Values are
tagged once when a document is read so that defect detection is a simple
match on ``AnswerKind`` rather than string heuristics scattered around.
"""

from typing import Any, Dict, Iterable, Mapping

from inspection_kpi.models import Answer, AnswerKind

FAIL_VALUES = frozenset({'fail', 'failed', 'ng', 'no'})
PASS_VALUES = frozenset({'pass', 'passed', 'ok', 'yes', 'good'})
NOT_APPLICABLE_VALUES = frozenset({'n/a', 'na', 'not applicable', '-'})

# Document fields that describe the record itself rather than a question.
RECORD_FIELDS = frozenset({
    'id', 'bu', 'type', 'site', 'inspector', 'timestamp', 'createdAt',
    'remark', 'images', 'docId', 'lat', 'lng', 'email',
})


def classify_answer(value: Any) -> Answer:
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in FAIL_VALUES:
            return Answer(kind=AnswerKind.FAIL, raw=value)
        if normalized in PASS_VALUES:
            return Answer(kind=AnswerKind.PASS, raw=value)
        if normalized in NOT_APPLICABLE_VALUES:
            return Answer(kind=AnswerKind.NOT_APPLICABLE, raw=value)
    return Answer(kind=AnswerKind.OTHER, raw=value)


def extract_answers(document: Mapping[str, Any], skip: Iterable[str] = RECORD_FIELDS) -> Dict[str, Answer]:
    """Tag every question field of a raw transaction document."""
    skipped = set(skip)
    return {
        name: classify_answer(value)
        for name, value in document.items()
        if name not in skipped
    }


def has_defect(answers: Mapping[str, Answer]) -> bool:
    return any(answer.kind is AnswerKind.FAIL for answer in answers.values())


def failed_questions(answers: Mapping[str, Answer]) -> list:
    """Names of the questions answered with a failure value, in field order."""
    return [name for name, answer in answers.items() if answer.kind is AnswerKind.FAIL]
