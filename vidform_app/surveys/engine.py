"""Visibility and scoring engine for survey schemas.

Everything in this module is pure: functions take a survey schema (a dict with
``pages`` -> ``questions``) and an answer map (question id -> value) and return
new values. Nothing here touches the database, the request or storage, so the
views, the API and the tests can all call it directly.

The engine is deliberately total: malformed schemas degrade to "nothing to
show" rather than raising, because a broken survey should render badly, not
crash the page. Authoring-time validation lives in :mod:`.schema`.
"""

from __future__ import annotations

import html
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("text", "textarea", "radio", "checkbox", "dropdown", "none")
# Older schemas used these for display-only blocks; treat them like "none".
LEGACY_DISPLAY_TYPES = ("display", "heading")
NON_ANSWERABLE_TYPES = frozenset({"none", *LEGACY_DISPLAY_TYPES})
CHOICE_TYPES = frozenset({"radio", "checkbox", "dropdown"})
TEXT_TYPES = frozenset({"text", "textarea"})

OPERATOR_AND = "AND"
OPERATOR_OR = "OR"
CONDITION_OPERATORS = (OPERATOR_AND, OPERATOR_OR)

UNTITLED_SUBMISSION = "Untitled Submission"
CUSTOMER_NAME_KEYS = ("customerName", "customer-name", "Customer Name")


@dataclass(frozen=True)
class Hierarchy:
    depth: int = 0
    parents: tuple[str, ...] = field(default_factory=tuple)


# -------------------- Schema traversal --------------------


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def iter_pages(schema: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    if not isinstance(schema, Mapping):
        return []
    return [p for p in _as_list(schema.get("pages")) if isinstance(p, Mapping)]


def page_questions(page: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    if not isinstance(page, Mapping):
        return []
    return [q for q in _as_list(page.get("questions")) if isinstance(q, Mapping)]


def iter_questions(
    schema: Mapping[str, Any] | None,
) -> Iterator[tuple[int, dict[str, Any], dict[str, Any]]]:
    """Yield ``(page_index, page, question)`` in schema order."""
    for page_index, page in enumerate(iter_pages(schema)):
        for question in page_questions(page):
            yield page_index, page, question


def questions_by_id(questions: Iterable[Mapping[str, Any]]) -> dict[str, Mapping[str, Any]]:
    return {q["id"]: q for q in questions if isinstance(q, Mapping) and q.get("id")}


# -------------------- Visibility --------------------


def _strict_equals(left: Any, right: Any) -> bool:
    # No coercion: "1" != 1 and True != 1. Containers never match a condition
    # value, so a checkbox answer can't satisfy an equality condition.
    if isinstance(left, (list, dict, tuple, set)) or isinstance(
        right, (list, dict, tuple, set)
    ):
        return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    numeric = (int, float)
    if isinstance(left, numeric) and isinstance(right, numeric):
        return left == right
    return type(left) is type(right) and left == right


def _condition_met(condition: Any, answers: Mapping[str, Any]) -> bool:
    if not isinstance(condition, Mapping):
        return False
    question_id = condition.get("questionId")
    if not question_id or condition.get("value") is None:
        return False
    return _strict_equals(answers.get(question_id), condition["value"])


def is_visible(question: Mapping[str, Any], answers: Mapping[str, Any] | None) -> bool:
    """Return whether ``question`` is shown for the given answers.

    ``visibleIf`` is either absent, a single ``{questionId, value}`` condition or
    ``{operator, conditions: [...]}``. Empty AND is true, empty OR is false, and
    anything unrecognised hides the question.
    """
    answers = answers or {}
    rule = question.get("visibleIf") if isinstance(question, Mapping) else None
    if rule is None:
        return True
    if not isinstance(rule, Mapping):
        # Blank non-mapping values mean "no condition"; anything else is malformed
        return not rule

    conditions = rule.get("conditions")
    if isinstance(conditions, list):
        operator = rule.get("operator") or OPERATOR_AND
        results = [_condition_met(c, answers) for c in conditions]
        if operator == OPERATOR_AND:
            return all(results)
        if operator == OPERATOR_OR:
            return any(results)
        return False

    if rule.get("questionId"):
        return _condition_met(rule, answers)

    return False


def condition_parent_id(question: Mapping[str, Any]) -> str | None:
    """The question a conditional question hangs under for display purposes.

    For multi-condition rules this is the first listed sub-condition.
    """
    rule = question.get("visibleIf") if isinstance(question, Mapping) else None
    if not isinstance(rule, Mapping):
        return None
    conditions = rule.get("conditions")
    if isinstance(conditions, list) and conditions:
        first = conditions[0]
        if isinstance(first, Mapping) and first.get("questionId"):
            return first["questionId"]
    return rule.get("questionId") or None


def question_hierarchy(
    question_id: str,
    questions: Mapping[str, Mapping[str, Any]],
    visited: set[str] | None = None,
) -> Hierarchy:
    """Walk the condition chain upwards from ``question_id``.

    ``visited`` guards against cyclic schemas: a repeat visit ends that branch
    with depth 0 instead of recursing forever.
    """
    if visited is None:
        visited = set()
    question = questions.get(question_id)
    if question is None or question_id in visited:
        return Hierarchy()
    visited.add(question_id)

    parent_id = condition_parent_id(question)
    if not parent_id:
        return Hierarchy()
    parent = question_hierarchy(parent_id, questions, visited)
    return Hierarchy(depth=parent.depth + 1, parents=(*parent.parents, parent_id))


def visible_questions(
    page: Mapping[str, Any] | None, answers: Mapping[str, Any] | None
) -> list[tuple[dict[str, Any], Hierarchy]]:
    questions = page_questions(page)
    by_id = questions_by_id(questions)
    out: list[tuple[dict[str, Any], Hierarchy]] = []
    for question in questions:
        if not is_visible(question, answers):
            continue
        out.append((question, question_hierarchy(question.get("id", ""), by_id)))
    return out


def apply_answer_change(
    answers: Mapping[str, Any] | None,
    question_id: str,
    value: Any,
    questions: Sequence[Mapping[str, Any]],
) -> dict[str, Any]:
    """Set one answer and drop answers to questions that are now hidden.

    Returns a new dict. A value of ``None`` clears the answer. Removal repeats
    until nothing else changes, so chains of dependent questions collapse.
    """
    updated = dict(answers or {})
    if value is None:
        updated.pop(question_id, None)
    else:
        updated[question_id] = value

    changed = True
    while changed:
        changed = False
        for question in questions:
            if not isinstance(question, Mapping):
                continue
            qid = question.get("id")
            if not qid or qid not in updated:
                continue
            if not is_visible(question, updated):
                del updated[qid]
                changed = True
    return updated


def prune_hidden_answers(
    answers: Mapping[str, Any] | None, schema: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Drop answers to hidden questions across every page of ``schema``."""
    pruned = dict(answers or {})
    for page in iter_pages(schema):
        questions = page_questions(page)
        for question in questions:
            qid = question.get("id")
            if qid and qid in pruned:
                pruned = apply_answer_change(pruned, qid, pruned[qid], questions)
    return pruned


# -------------------- Scoring --------------------


def is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, str):
        return value.strip() != ""
    return True


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def completion_percent(
    answers: Mapping[str, Any] | None, schema: Mapping[str, Any] | None
) -> int:
    """Percentage of visible, answerable questions that have an answer.

    Returns 0 when there is nothing to answer.
    """
    answers = answers or {}
    total = 0
    answered = 0
    for _, _, question in iter_questions(schema):
        if question.get("type") in NON_ANSWERABLE_TYPES:
            continue
        if not is_visible(question, answers):
            continue
        total += 1
        if is_answered(answers.get(question.get("id"))):
            answered += 1
    if total == 0:
        return 0
    return _round_half_up(answered / total * 100)


def clamp_page_index(page_index: int, total_pages: int) -> int:
    if total_pages < 1:
        return 0
    return max(0, min(page_index, total_pages - 1))


def page_progress(page_index: int, total_pages: int) -> int:
    total_pages = max(total_pages, 1)
    page_index = clamp_page_index(page_index, total_pages)
    return _round_half_up((page_index + 1) / total_pages * 100)


# -------------------- Review helpers --------------------


def organize_by_page(
    answers: Mapping[str, Any] | None, schema: Mapping[str, Any] | None
) -> list[dict[str, Any]]:
    """Rebuild an answer map into schema page order for read-only review.

    Visibility is not re-checked; pages without any answered entry are dropped.
    """
    answers = answers or {}
    organized: list[dict[str, Any]] = []
    for page_index, page in enumerate(iter_pages(schema)):
        entries = []
        for question in page_questions(page):
            qid = question.get("id")
            if not qid or qid not in answers:
                continue
            entries.append(
                {
                    "id": qid,
                    "label": question.get("label") or "Question",
                    "description": question.get("description") or "",
                    "type": question.get("type") or "text",
                    "value": answers[qid],
                }
            )
        if entries:
            organized.append(
                {
                    "page_title": page.get("title") or f"Page {page_index + 1}",
                    "answers": entries,
                }
            )
    return organized


def format_answer(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def response_title(
    answers: Mapping[str, Any] | None, schema: Mapping[str, Any] | None
) -> str:
    answers = answers or {}
    for page in iter_pages(schema):
        questions = page_questions(page)
        if not questions:
            continue
        first_id = questions[0].get("id")
        if first_id and is_answered(answers.get(first_id)):
            return format_answer(answers[first_id])
    return UNTITLED_SUBMISSION


def customer_name(answers: Mapping[str, Any] | None) -> str:
    answers = answers or {}
    for key in CUSTOMER_NAME_KEYS:
        if answers.get(key):
            return format_answer(answers[key])
    return ""


def to_utc_datetime(value: Any) -> datetime:
    """Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), epoch milliseconds and
    ISO-8601 strings. Anything else falls back to the current time.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return to_utc_datetime(datetime.fromisoformat(raw))
        except ValueError:
            pass
    logger.warning("Could not parse timestamp %r, using current time", value)
    return datetime.now(timezone.utc)


def _default_timestamp(response: Any) -> Any:
    if isinstance(response, Mapping):
        return response.get("timestamp")
    return getattr(response, "timestamp", None)


def sort_newest_first(
    responses: Iterable[Any], key: Callable[[Any], Any] = _default_timestamp
) -> list[Any]:
    return sorted(responses, key=lambda r: to_utc_datetime(key(r)), reverse=True)


def group_by_date(
    responses: Iterable[Any], key: Callable[[Any], Any] = _default_timestamp
) -> list[dict[str, Any]]:
    """Group responses by UTC calendar date, newest date first.

    Order inside a group is whatever order the caller passed in.
    """
    grouped: dict[str, list[Any]] = {}
    for response in responses:
        date_key = to_utc_datetime(key(response)).date().isoformat()
        grouped.setdefault(date_key, []).append(response)
    return [
        {"date_key": date_key, "responses": grouped[date_key]}
        for date_key in sorted(grouped, reverse=True)
    ]


# -------------------- Answers --------------------


def coerce_answer(question: Mapping[str, Any], raw: Any) -> Any:
    """Turn a raw submitted value into the answer shape for the question type.

    Checkbox questions yield a list of strings, text and single-choice
    questions a string. Returns ``None`` when the submission amounts to no
    answer (blank text, unknown option, display-only question).
    """
    qtype = question.get("type") or "text"
    if qtype in NON_ANSWERABLE_TYPES:
        return None
    options = [str(o) for o in _as_list(question.get("options"))]

    if qtype == "checkbox":
        if raw is None:
            return None
        values = raw if isinstance(raw, (list, tuple)) else [raw]
        picked = [v for v in values if isinstance(v, str) and v != ""]
        if options:
            picked = [v for v in picked if v in options]
        return picked or None

    if isinstance(raw, (list, tuple)):
        raw = raw[-1] if raw else None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        raw = str(raw)
    if not isinstance(raw, str) or raw.strip() == "":
        return None

    if qtype in ("radio", "dropdown"):
        if options and raw not in options:
            return None
        return raw
    return raw


# -------------------- Formatting --------------------

_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_ITALIC_RE = re.compile(r"\*(.*?)\*")


def render_formatted_text(text: str | None) -> str:
    """Render the description mini-markup (``**bold**``, ``*italic*``, newlines) to HTML."""
    if not text:
        return ""
    formatted = html.escape(str(text), quote=True)
    formatted = _BOLD_RE.sub(r"<strong>\1</strong>", formatted)
    formatted = _ITALIC_RE.sub(r"<em>\1</em>", formatted)
    return formatted.replace("\r\n", "\n").replace("\n", "<br>")
