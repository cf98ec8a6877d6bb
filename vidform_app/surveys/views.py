from __future__ import annotations

import json
import logging
from typing import Any

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, HttpResponse, JsonResponse, QueryDict
from django.shortcuts import get_object_or_404, redirect, render
from django.urls import reverse
from django.views.decorators.http import require_http_methods
from django_ratelimit.decorators import ratelimit

from . import engine, schema as schema_ops
from .models import Survey, SurveyResponse
from .permissions import (
    can_edit_survey,
    require_can_edit,
    require_can_review,
    require_can_view,
)
from .schema import BACKGROUND_COLORS, SchemaValidationError
from .services import load_answers, review_payload, save_response
from .storage import VideoUploadError, delete_video, store_video

logger = logging.getLogger(__name__)

TAKE_ACTIONS = ("next", "back", "save", "submit")


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@login_required
def survey_list(request: HttpRequest) -> HttpResponse:
    surveys = list(Survey.objects.all())
    responses = {
        r.survey_id: r
        for r in SurveyResponse.objects.filter(user=request.user, survey__in=surveys)
    }
    rows = [{"survey": s, "response": responses.get(s.pk)} for s in surveys]
    return render(
        request,
        "surveys/list.html",
        {"surveys": surveys, "rows": rows, "can_edit": can_edit_survey(request.user)},
    )


# -------------------- Participant flow --------------------


def _question_rows(questions, answers: dict[str, Any]) -> list[dict[str, Any]]:
    rows = []
    for question, hierarchy in questions:
        colour = BACKGROUND_COLORS.get(
            question.get("backgroundColor") or "default", BACKGROUND_COLORS["default"]
        )
        value = answers.get(question.get("id"))
        rows.append(
            {
                "question": question,
                "field_name": f"q_{question.get('id')}",
                "depth": hierarchy.depth,
                "parents": hierarchy.parents,
                "value": value,
                "selected": value if isinstance(value, list) else [value],
                "colour": colour,
                "answerable": question.get("type") not in engine.NON_ANSWERABLE_TYPES,
            }
        )
    return rows


def _collect_page_answers(
    data: QueryDict, page: dict[str, Any], answers: dict[str, Any]
) -> dict[str, Any]:
    """Fold one page's posted fields into ``answers`` in question order."""
    questions = engine.page_questions(page)
    updated = dict(answers)
    for question in questions:
        qid = question.get("id")
        if not qid or question.get("type") in engine.NON_ANSWERABLE_TYPES:
            continue
        key = f"q_{qid}"
        raw = data.getlist(key) if question.get("type") == "checkbox" else data.get(key)
        value = engine.coerce_answer(question, raw)
        updated = engine.apply_answer_change(updated, qid, value, questions)
    return updated


def _visible_ids(page: dict[str, Any], answers: dict[str, Any]) -> set[str]:
    return {q.get("id") for q, _ in engine.visible_questions(page, answers) if q.get("id")}


@login_required
@require_http_methods(["GET", "POST"])
@ratelimit(key="user_or_ip", rate="30/m", method="POST", block=True)
def survey_take(request: HttpRequest, survey_id: str) -> HttpResponse:
    """Multi-page form. The page index travels in the query string (GET) or form (POST)."""
    survey = get_object_or_404(Survey, pk=survey_id)
    require_can_view(request.user, survey)
    pages = survey.pages
    total = len(pages)
    answers = load_answers(survey, request.user)

    if request.method == "POST":
        page_index = engine.clamp_page_index(_safe_int(request.POST.get("page")), total)
        action = request.POST.get("action") or "save"
        if action not in TAKE_ACTIONS:
            action = "save"
        revealed: set[str] = set()
        if pages:
            page = pages[page_index]
            shown = _visible_ids(page, answers)
            answers = _collect_page_answers(request.POST, page, answers)
            revealed = _visible_ids(page, answers) - shown

        if action == "submit" and not revealed:
            save_response(survey, request.user, answers, completed=True)
            messages.success(request, "Thank you for your response.")
            return redirect("surveys:thank_you", survey_id=survey.pk)

        existing = SurveyResponse.objects.filter(survey=survey, user=request.user).first()
        save_response(
            survey,
            request.user,
            answers,
            completed=bool(existing and existing.completed),
        )
        if revealed and action in ("next", "submit"):
            # Stay put so the participant sees the follow-up questions first
            messages.info(
                request, "More questions appeared on this page. Please review them before continuing."
            )
        elif action == "next":
            page_index = engine.clamp_page_index(page_index + 1, total)
        elif action == "back":
            page_index = engine.clamp_page_index(page_index - 1, total)
        else:
            messages.success(request, "Your answers have been saved.")
        return redirect(
            f"{reverse('surveys:take', kwargs={'survey_id': survey.pk})}?page={page_index}"
        )

    page_index = engine.clamp_page_index(_safe_int(request.GET.get("page")), total)
    page = pages[page_index] if pages else {}
    ctx = {
        "survey": survey,
        "page": page,
        "page_title": page.get("title") or f"Page {page_index + 1}",
        "page_index": page_index,
        "page_number": page_index + 1,
        "total_pages": total,
        "is_first": page_index == 0,
        "is_last": page_index >= total - 1,
        "page_progress": engine.page_progress(page_index, total),
        "completion": engine.completion_percent(answers, survey.schema),
        "rows": _question_rows(engine.visible_questions(page, answers), answers),
    }
    return render(request, "surveys/take.html", ctx)


@require_http_methods(["GET"])
def survey_thank_you(request: HttpRequest, survey_id: str) -> HttpResponse:
    # Render a generic page even when the survey is missing
    survey = Survey.objects.filter(pk=survey_id).first()
    return render(request, "surveys/thank_you.html", {"survey": survey})


# -------------------- Builder --------------------


@login_required
@require_http_methods(["GET", "POST"])
def survey_create(request: HttpRequest) -> HttpResponse:
    require_can_edit(request.user)
    if request.method == "POST":
        title = (request.POST.get("title") or "").strip() or schema_ops.DEFAULT_SURVEY_TITLE
        survey = Survey(owner=request.user, title=title)
        survey.schema = schema_ops.default_survey_schema()
        survey.save()
        logger.info("Survey %s created by %s", survey.pk, request.user.username)
        messages.success(request, "Survey created.")
        return redirect("surveys:edit", survey_id=survey.pk)
    return render(request, "surveys/create.html", {})


def _conditions_from_post(data: QueryDict) -> dict[str, Any] | None:
    ids = data.getlist("cond_qid")
    values = data.getlist("cond_value")
    rows = [
        {"questionId": qid, "value": values[i] if i < len(values) else ""}
        for i, qid in enumerate(ids)
    ]
    operator = data.get("operator")
    if operator:
        return {"operator": operator, "conditions": rows}
    if rows and rows[0]["questionId"]:
        return rows[0]
    return None


def _update_question(schema: dict[str, Any], data: QueryDict) -> dict[str, Any]:
    updated = json.loads(json.dumps(schema))
    page_index = _safe_int(data.get("page"), -1)
    question_index = _safe_int(data.get("question"), -1)
    pages = updated.get("pages") or []
    if not 0 <= page_index < len(pages):
        raise SchemaValidationError(f"Page {page_index + 1} does not exist.")
    questions = pages[page_index].get("questions") or []
    if not 0 <= question_index < len(questions):
        raise SchemaValidationError(f"Question {question_index + 1} does not exist.")
    question = questions[question_index]
    question["label"] = (data.get("label") or "").strip() or schema_ops.DEFAULT_QUESTION_LABEL
    question["description"] = data.get("description") or ""
    question["type"] = data.get("type") or "text"
    question["options"] = [
        line.strip() for line in (data.get("options") or "").splitlines() if line.strip()
    ]
    question["backgroundColor"] = data.get("background_color") or "default"
    condition = _conditions_from_post(data)
    allowed = {
        q.get("id") for q in schema_ops.condition_choices(updated, page_index, question_index)
    }
    for ref in data.getlist("cond_qid"):
        if ref and ref not in allowed:
            raise SchemaValidationError(
                f"Question '{question.get('id')}' can only depend on earlier questions on its page."
            )
    if condition:
        question["visibleIf"] = condition
    else:
        question.pop("visibleIf", None)
    return updated


def _apply_builder_action(
    survey: Survey, action: str, data: QueryDict
) -> dict[str, Any]:
    current = survey.schema
    page_index = _safe_int(data.get("page"), -1)
    question_index = _safe_int(data.get("question"), -1)
    direction = data.get("direction") or "down"
    if action == "add_page":
        return schema_ops.add_page(current)
    if action == "delete_page":
        return schema_ops.delete_page(current, page_index)
    if action == "move_page":
        return schema_ops.move_page(current, page_index, direction)
    if action == "rename_page":
        updated = json.loads(json.dumps(current))
        pages = updated.get("pages") or []
        if not 0 <= page_index < len(pages):
            raise SchemaValidationError(f"Page {page_index + 1} does not exist.")
        pages[page_index]["title"] = (data.get("title") or "").strip() or f"Page {page_index + 1}"
        return updated
    if action == "add_question":
        return schema_ops.add_question(current, page_index)
    if action == "delete_question":
        return schema_ops.delete_question(current, page_index, question_index)
    if action == "move_question":
        return schema_ops.move_question(current, page_index, question_index, direction)
    if action == "update_question":
        return _update_question(current, data)
    if action == "add_condition":
        return schema_ops.add_condition(current, page_index, question_index)
    if action == "remove_condition":
        return schema_ops.remove_condition(
            current, page_index, question_index, _safe_int(data.get("condition"), -1)
        )
    raise SchemaValidationError(f"Unknown action '{action}'.")


def _editor_context(survey: Survey, schema_json: str | None = None, errors=None) -> dict[str, Any]:
    pages = []
    for page_index, page in enumerate(engine.iter_pages(survey.schema)):
        questions = []
        for question_index, question in enumerate(engine.page_questions(page)):
            rule = question.get("visibleIf") or {}
            multi = isinstance(rule, dict) and isinstance(rule.get("conditions"), list)
            if multi:
                conditions = rule["conditions"]
            elif isinstance(rule, dict) and rule:
                conditions = [rule]
            else:
                conditions = []
            questions.append(
                {
                    "index": question_index,
                    "question": question,
                    "options_text": "\n".join(question.get("options") or []),
                    "multi": multi,
                    "operator": (rule.get("operator") or engine.OPERATOR_AND) if multi else "",
                    "conditions": conditions,
                    "choices": schema_ops.condition_choices(
                        survey.schema, page_index, question_index
                    ),
                }
            )
        pages.append({"index": page_index, "page": page, "questions": questions})
    return {
        "survey": survey,
        "pages": pages,
        "question_types": engine.QUESTION_TYPES,
        "background_colors": BACKGROUND_COLORS,
        "operators": engine.CONDITION_OPERATORS,
        "schema_json": schema_json
        if schema_json is not None
        else json.dumps(survey.schema, indent=2),
        "errors": errors or schema_ops.validate_schema(survey.schema),
        "single_page": len(pages) <= 1,
    }


@login_required
@require_http_methods(["GET", "POST"])
def survey_edit(request: HttpRequest, survey_id: str) -> HttpResponse:
    survey = get_object_or_404(Survey, pk=survey_id)
    require_can_edit(request.user, survey)

    if request.method == "POST":
        action = request.POST.get("action") or ""
        if action == "save":
            raw = request.POST.get("schema_json") or ""
            try:
                parsed = json.loads(raw) if raw.strip() else survey.schema
            except json.JSONDecodeError as exc:
                messages.error(request, f"Schema is not valid JSON: {exc.msg}")
                return render(
                    request,
                    "surveys/edit.html",
                    _editor_context(survey, schema_json=raw, errors=[f"Invalid JSON: {exc.msg}"]),
                    status=400,
                )
            title = (request.POST.get("title") or "").strip()
            if title and isinstance(parsed, dict):
                parsed["title"] = title
            try:
                cleaned = schema_ops.clean_schema(parsed)
            except SchemaValidationError as exc:
                return render(
                    request,
                    "surveys/edit.html",
                    _editor_context(survey, schema_json=raw, errors=exc.messages),
                    status=400,
                )
            survey.schema = cleaned
            survey.title = cleaned["title"]
            survey.save()
            logger.info("Survey %s saved by %s", survey.pk, request.user.username)
            messages.success(request, "Survey saved!")
            return redirect("surveys:edit", survey_id=survey.pk)

        try:
            updated = _apply_builder_action(survey, action, request.POST)
        except SchemaValidationError as exc:
            for message in exc.messages:
                messages.error(request, message)
            return redirect("surveys:edit", survey_id=survey.pk)
        updated = schema_ops.normalize_schema(updated)
        # Blank conditions and missing options are tolerated mid-edit, broken references are not
        known = set(schema_ops.condition_reference_errors(survey.schema))
        introduced = [
            e for e in schema_ops.condition_reference_errors(updated) if e not in known
        ]
        if introduced:
            for message in introduced:
                messages.error(request, message)
            return redirect("surveys:edit", survey_id=survey.pk)
        survey.schema = updated
        survey.save()
        for problem in schema_ops.validate_schema(survey.schema):
            messages.warning(request, problem)
        return redirect("surveys:edit", survey_id=survey.pk)

    return render(request, "surveys/edit.html", _editor_context(survey))


@login_required
@require_http_methods(["GET", "POST"])
def survey_delete(request: HttpRequest, survey_id: str) -> HttpResponse:
    survey = get_object_or_404(Survey, pk=survey_id)
    require_can_edit(request.user, survey)
    if request.method == "POST":
        if request.POST.get("confirm_title", "").strip() != survey.title:
            messages.error(request, "Survey title did not match; nothing was deleted.")
            return redirect("surveys:delete", survey_id=survey.pk)
        for _, _, question in engine.iter_questions(survey.schema):
            delete_video(question.get("videoUrl") or "")
        survey.delete()
        logger.info("Survey %s deleted by %s", survey_id, request.user.username)
        messages.success(request, "Survey deleted.")
        return redirect("surveys:list")
    return render(request, "surveys/delete.html", {"survey": survey})


# -------------------- Videos --------------------


def _video_result(request: HttpRequest, survey: Survey, payload: dict, status: int = 200):
    if request.POST.get("redirect"):
        if status >= 400:
            messages.error(request, payload.get("error", "Upload failed."))
        return redirect("surveys:edit", survey_id=survey.pk)
    return JsonResponse(payload, status=status)


@login_required
@require_http_methods(["POST"])
def question_video_upload(request: HttpRequest, survey_id: str, question_id: str):
    survey = get_object_or_404(Survey, pk=survey_id)
    require_can_edit(request.user, survey)
    question = schema_ops.find_question(survey.schema, question_id)
    if question is None:
        return _video_result(request, survey, {"error": "Unknown question."}, status=404)
    uploaded = request.FILES.get("video")
    if uploaded is None:
        return _video_result(request, survey, {"error": "No video file supplied."}, status=400)
    try:
        url = store_video(
            survey.pk, question_id, uploaded, previous_url=question.get("videoUrl") or ""
        )
    except VideoUploadError as exc:
        logger.info("Rejected video for survey %s question %s: %s", survey.pk, question_id, exc)
        return _video_result(request, survey, {"error": str(exc)}, status=400)
    survey.schema = schema_ops.set_question_video(survey.schema, question_id, url)
    survey.save()
    return _video_result(request, survey, {"videoUrl": url})


@login_required
@require_http_methods(["POST"])
def question_video_remove(request: HttpRequest, survey_id: str, question_id: str):
    survey = get_object_or_404(Survey, pk=survey_id)
    require_can_edit(request.user, survey)
    question = schema_ops.find_question(survey.schema, question_id)
    if question is None:
        return _video_result(request, survey, {"error": "Unknown question."}, status=404)
    # The reference is cleared even when the stored file could not be deleted
    delete_video(question.get("videoUrl") or "")
    survey.schema = schema_ops.set_question_video(survey.schema, question_id, "")
    survey.save()
    return _video_result(request, survey, {"videoUrl": ""})


# -------------------- Review --------------------


@login_required
@require_http_methods(["GET"])
def survey_responses(request: HttpRequest, survey_id: str) -> HttpResponse:
    survey = get_object_or_404(Survey, pk=survey_id)
    require_can_review(request.user, survey)
    groups = review_payload(survey)
    total = sum(len(g["responses"]) for g in groups)
    return render(
        request,
        "surveys/responses.html",
        {"survey": survey, "groups": groups, "total": total},
    )
