"""Authoring-time handling of survey schemas.

The engine in :mod:`.engine` tolerates anything; this module is where a schema
gets checked before it is saved. The builder helpers at the bottom mirror the
editor buttons and always return a fresh schema so the caller can validate the
result before persisting it.
"""

from __future__ import annotations

import copy
import time
from typing import Any, Mapping

from django.core.exceptions import ValidationError

from .engine import (
    CHOICE_TYPES,
    CONDITION_OPERATORS,
    LEGACY_DISPLAY_TYPES,
    OPERATOR_AND,
    QUESTION_TYPES,
)

DEFAULT_SURVEY_TITLE = "Untitled Survey"
DEFAULT_QUESTION_LABEL = "Untitled Question"
NEW_QUESTION_LABEL = "New Question"

# Palette offered by the editor: key -> (label, background, text colour)
BACKGROUND_COLORS: dict[str, dict[str, str]] = {
    "default": {"label": "Light Grey", "value": "#f3f4f6", "text_color": "#1f2937"},
    "green": {"label": "Green", "value": "#ecfdf5", "text_color": "#065f46"},
    "yellow": {"label": "Yellow", "value": "#fefce8", "text_color": "#92400e"},
    "red": {"label": "Red", "value": "#fef2f2", "text_color": "#991b1b"},
}


class SchemaValidationError(ValidationError):
    """Raised when a survey schema cannot be saved."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_survey_id() -> str:
    return f"survey_{_now_ms()}"


def default_survey_schema() -> dict[str, Any]:
    return {
        "title": DEFAULT_SURVEY_TITLE,
        "pages": [
            {
                "title": "Page 1",
                "questions": [
                    {
                        "id": "q1",
                        "label": DEFAULT_QUESTION_LABEL,
                        "description": "",
                        "type": "text",
                        "options": [],
                        "backgroundColor": "default",
                        "videoUrl": "",
                    }
                ],
            }
        ],
    }


def normalize_question(raw: Any) -> dict[str, Any]:
    question = copy.deepcopy(dict(raw)) if isinstance(raw, Mapping) else {}
    question["id"] = str(question.get("id") or "").strip()
    question["label"] = question.get("label") or DEFAULT_QUESTION_LABEL
    question["description"] = question.get("description") or ""
    question["type"] = question.get("type") or "text"
    options = question.get("options")
    question["options"] = [str(o) for o in options] if isinstance(options, list) else []
    question["backgroundColor"] = question.get("backgroundColor") or "default"
    question["videoUrl"] = question.get("videoUrl") or ""
    if not question.get("visibleIf"):
        question.pop("visibleIf", None)
    return question


def normalize_schema(raw: Any) -> dict[str, Any]:
    """Return a deep copy of ``raw`` with every default filled in."""
    source = raw if isinstance(raw, Mapping) else {}
    schema = {k: copy.deepcopy(v) for k, v in source.items() if k != "pages"}
    schema["title"] = source.get("title") or DEFAULT_SURVEY_TITLE
    pages = source.get("pages") if isinstance(source.get("pages"), list) else []
    schema["pages"] = []
    for index, page in enumerate(pages):
        page = page if isinstance(page, Mapping) else {}
        questions = page.get("questions") if isinstance(page.get("questions"), list) else []
        schema["pages"].append(
            {
                **{k: copy.deepcopy(v) for k, v in page.items() if k != "questions"},
                "title": page.get("title") or f"Page {index + 1}",
                "questions": [normalize_question(q) for q in questions],
            }
        )
    return schema


def _condition_refs(rule: Any) -> list[str]:
    if not isinstance(rule, Mapping):
        return []
    conditions = rule.get("conditions")
    if isinstance(conditions, list):
        return [c.get("questionId") or "" for c in conditions if isinstance(c, Mapping)]
    return [rule.get("questionId") or ""]


def _find_cycle(edges: dict[str, list[str]]) -> list[str] | None:
    visiting: set[str] = set()
    done: set[str] = set()
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        visiting.add(node)
        stack.append(node)
        for nxt in edges.get(node, []):
            if nxt in visiting:
                return stack[stack.index(nxt):] + [nxt]
            if nxt not in done and nxt in edges:
                found = visit(nxt)
                if found:
                    return found
        visiting.discard(node)
        done.add(node)
        stack.pop()
        return None

    for node in edges:
        if node not in done:
            found = visit(node)
            if found:
                return found
    return None


def _question_positions(pages: list) -> dict[str, tuple[int, int]]:
    """Question id -> (page index, position within page), first occurrence wins."""
    positions: dict[str, tuple[int, int]] = {}
    for page_index, page in enumerate(pages):
        if not isinstance(page, Mapping) or not isinstance(page.get("questions"), list):
            continue
        for position, question in enumerate(page["questions"]):
            qid = question.get("id") if isinstance(question, Mapping) else None
            if qid and qid not in positions:
                positions[qid] = (page_index, position)
    return positions


def condition_reference_errors(schema: Any) -> list[str]:
    """Problems with what conditions point at: unknown, own, later or other-page
    questions, and cycles. Blank placeholder conditions are not reported."""
    if not isinstance(schema, Mapping) or not isinstance(schema.get("pages"), list):
        return []
    pages = schema["pages"]
    positions = _question_positions(pages)
    errors: list[str] = []
    edges: dict[str, list[str]] = {}
    for page_index, page in enumerate(pages):
        if not isinstance(page, Mapping) or not isinstance(page.get("questions"), list):
            continue
        for position, question in enumerate(page["questions"]):
            if not isinstance(question, Mapping) or not question.get("id"):
                continue
            rule = question.get("visibleIf")
            if not rule or not isinstance(rule, Mapping):
                continue
            qid = question["id"]
            refs = [r for r in _condition_refs(rule) if r]
            edges[qid] = refs
            for ref in refs:
                if ref == qid:
                    errors.append(f"Question '{qid}' cannot depend on itself.")
                elif ref not in positions:
                    errors.append(f"Question '{qid}' depends on unknown question '{ref}'.")
                elif positions[ref][0] != page_index:
                    errors.append(
                        f"Question '{qid}' depends on '{ref}' which is on another page."
                    )
                elif positions[ref][1] > position:
                    errors.append(
                        f"Question '{qid}' depends on '{ref}' which comes after it."
                    )

    cycle = _find_cycle(edges)
    if cycle:
        errors.append("Conditions form a cycle: " + " -> ".join(cycle) + ".")
    return errors


def validate_schema(schema: Any) -> list[str]:
    """Return a list of human-readable problems with ``schema`` (empty when valid)."""
    errors: list[str] = []
    if not isinstance(schema, Mapping):
        return ["Survey schema must be an object."]
    pages = schema.get("pages")
    if not isinstance(pages, list) or not pages:
        return ["Survey must have at least one page."]

    seen: set[str] = set()
    for page_index, page in enumerate(pages):
        if not isinstance(page, Mapping):
            errors.append(f"Page {page_index + 1} must be an object.")
            continue
        questions = page.get("questions")
        if questions is not None and not isinstance(questions, list):
            errors.append(f"Page {page_index + 1} questions must be a list.")
            continue
        for position, question in enumerate(questions or []):
            qid = question.get("id") if isinstance(question, Mapping) else None
            if not qid:
                errors.append(
                    f"Question {position + 1} on page {page_index + 1} has no id."
                )
                continue
            if qid in seen:
                errors.append(f"Duplicate question id '{qid}'.")
                continue
            seen.add(qid)

            qtype = question.get("type") or "text"
            if qtype not in QUESTION_TYPES and qtype not in LEGACY_DISPLAY_TYPES:
                errors.append(f"Question '{qid}' has unknown type '{qtype}'.")
            colour = question.get("backgroundColor") or "default"
            if colour not in BACKGROUND_COLORS:
                errors.append(f"Question '{qid}' has unknown background colour '{colour}'.")
            if qtype in CHOICE_TYPES:
                options = question.get("options")
                if not isinstance(options, list) or not [o for o in options if o != ""]:
                    errors.append(f"Question '{qid}' needs at least one option.")

            rule = question.get("visibleIf")
            if not rule:
                continue
            if not isinstance(rule, Mapping):
                errors.append(f"Question '{qid}' has a malformed condition.")
                continue
            if isinstance(rule.get("conditions"), list):
                operator = rule.get("operator") or OPERATOR_AND
                if operator not in CONDITION_OPERATORS:
                    errors.append(
                        f"Question '{qid}' uses unknown condition operator '{operator}'."
                    )
            if any(not ref for ref in _condition_refs(rule)):
                errors.append(f"Question '{qid}' has a condition without a question.")

    errors.extend(condition_reference_errors(schema))
    return errors


def clean_schema(raw: Any) -> dict[str, Any]:
    """Normalise ``raw`` and raise :class:`SchemaValidationError` if it is invalid."""
    schema = normalize_schema(raw)
    errors = validate_schema(schema)
    if errors:
        raise SchemaValidationError(errors)
    return schema


# -------------------- Builder helpers --------------------


def _pages(schema: Mapping[str, Any]) -> list[dict[str, Any]]:
    return schema.setdefault("pages", [])  # type: ignore[union-attr]


def _question_ids(schema: Mapping[str, Any]) -> set[str]:
    return {
        q.get("id")
        for p in schema.get("pages") or []
        for q in (p.get("questions") or [])
        if isinstance(q, Mapping)
    }


def add_page(schema: Mapping[str, Any]) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    pages = _pages(updated)
    pages.append({"title": f"Page {len(pages) + 1}", "questions": []})
    return updated


def delete_page(schema: Mapping[str, Any], page_index: int) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    pages = _pages(updated)
    if len(pages) <= 1:
        raise SchemaValidationError("A survey must keep at least one page.")
    if not 0 <= page_index < len(pages):
        raise SchemaValidationError(f"Page {page_index + 1} does not exist.")
    pages.pop(page_index)
    return updated


def add_question(schema: Mapping[str, Any], page_index: int) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    pages = _pages(updated)
    if not 0 <= page_index < len(pages):
        raise SchemaValidationError(f"Page {page_index + 1} does not exist.")
    taken = _question_ids(updated)
    stamp = _now_ms()
    while f"q{stamp}" in taken:
        stamp += 1
    pages[page_index].setdefault("questions", []).append(
        {
            "id": f"q{stamp}",
            "label": NEW_QUESTION_LABEL,
            "description": "",
            "type": "text",
            "options": [],
            "backgroundColor": "default",
            "videoUrl": "",
        }
    )
    return updated


def delete_question(
    schema: Mapping[str, Any], page_index: int, question_index: int
) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    questions = _get_questions(updated, page_index)
    if not 0 <= question_index < len(questions):
        raise SchemaValidationError(f"Question {question_index + 1} does not exist.")
    questions.pop(question_index)
    return updated


def move_item(items: list, index: int, direction: str) -> list:
    """Swap ``items[index]`` with its neighbour; out-of-range moves are ignored."""
    moved = list(items)
    target = index - 1 if direction == "up" else index + 1
    if 0 <= index < len(moved) and 0 <= target < len(moved):
        moved[index], moved[target] = moved[target], moved[index]
    return moved


def move_page(schema: Mapping[str, Any], page_index: int, direction: str) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    updated["pages"] = move_item(_pages(updated), page_index, direction)
    return updated


def move_question(
    schema: Mapping[str, Any], page_index: int, question_index: int, direction: str
) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    questions = _get_questions(updated, page_index)
    updated["pages"][page_index]["questions"] = move_item(questions, question_index, direction)
    return updated


def _get_questions(schema: dict[str, Any], page_index: int) -> list[dict[str, Any]]:
    pages = _pages(schema)
    if not 0 <= page_index < len(pages):
        raise SchemaValidationError(f"Page {page_index + 1} does not exist.")
    return pages[page_index].setdefault("questions", [])


def _get_question(schema: dict[str, Any], page_index: int, question_index: int) -> dict[str, Any]:
    questions = _get_questions(schema, page_index)
    if not 0 <= question_index < len(questions):
        raise SchemaValidationError(f"Question {question_index + 1} does not exist.")
    return questions[question_index]


def add_condition(
    schema: Mapping[str, Any], page_index: int, question_index: int
) -> dict[str, Any]:
    """Append a blank sub-condition, promoting a single condition to AND form."""
    updated = copy.deepcopy(dict(schema))
    question = _get_question(updated, page_index, question_index)
    rule = question.get("visibleIf") or {}
    if isinstance(rule.get("conditions"), list):
        conditions = list(rule["conditions"])
        operator = rule.get("operator") or OPERATOR_AND
    elif rule.get("questionId"):
        conditions = [{"questionId": rule["questionId"], "value": rule.get("value", "")}]
        operator = OPERATOR_AND
    else:
        conditions = []
        operator = OPERATOR_AND
    conditions.append({"questionId": "", "value": ""})
    question["visibleIf"] = {"operator": operator, "conditions": conditions}
    return updated


def remove_condition(
    schema: Mapping[str, Any], page_index: int, question_index: int, condition_index: int
) -> dict[str, Any]:
    """Drop one sub-condition, collapsing to single form or to no condition."""
    updated = copy.deepcopy(dict(schema))
    question = _get_question(updated, page_index, question_index)
    rule = question.get("visibleIf") or {}
    conditions = list(rule.get("conditions") or []) if isinstance(rule, Mapping) else []
    if 0 <= condition_index < len(conditions):
        conditions.pop(condition_index)
    else:
        conditions = []
    if len(conditions) == 1:
        only = conditions[0]
        question["visibleIf"] = {"questionId": only.get("questionId", ""), "value": only.get("value", "")}
    elif conditions:
        question["visibleIf"] = {**rule, "conditions": conditions}
    else:
        question.pop("visibleIf", None)
    return updated


def condition_choices(schema: Mapping[str, Any], page_index: int, question_index: int) -> list[dict[str, Any]]:
    """Questions a condition on this question may reference: earlier ones on the same page."""
    pages = schema.get("pages") or []
    if not 0 <= page_index < len(pages):
        return []
    questions = pages[page_index].get("questions") or []
    return [q for q in questions[:question_index] if isinstance(q, Mapping) and q.get("id")]


def set_question_video(schema: Mapping[str, Any], question_id: str, url: str) -> dict[str, Any]:
    updated = copy.deepcopy(dict(schema))
    for page in _pages(updated):
        for question in page.get("questions") or []:
            if question.get("id") == question_id:
                question["videoUrl"] = url
                return updated
    raise SchemaValidationError(f"Question '{question_id}' does not exist.")


def find_question(schema: Mapping[str, Any], question_id: str) -> dict[str, Any] | None:
    for page in schema.get("pages") or []:
        for question in page.get("questions") or []:
            if isinstance(question, Mapping) and question.get("id") == question_id:
                return question
    return None
