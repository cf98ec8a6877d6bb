from __future__ import annotations

import logging
from typing import Any, Mapping

from django.db import transaction
from django.utils import timezone

from . import engine
from .models import Survey, SurveyResponse

logger = logging.getLogger(__name__)


def save_response(
    survey: Survey, user, answers: Mapping[str, Any] | None, completed: bool = False
) -> SurveyResponse:
    """Store ``user``'s answers for ``survey``, replacing any earlier document.

    Answers to questions hidden by their conditions are dropped first, and the
    completion percentage is recomputed from what is left.
    """
    cleaned = engine.prune_hidden_answers(answers, survey.schema)
    progress = engine.completion_percent(cleaned, survey.schema)
    with transaction.atomic():
        response, created = SurveyResponse.objects.update_or_create(
            survey=survey,
            user=user,
            defaults={
                "answers": cleaned,
                "progress": progress,
                "completed": bool(completed),
                "submitted_at": timezone.now(),
            },
        )
    logger.info(
        "%s response for survey %s by %s (progress=%s%%, completed=%s)",
        "Created" if created else "Updated",
        survey.pk,
        getattr(user, "username", user),
        progress,
        completed,
    )
    return response


def load_answers(survey: Survey, user) -> dict[str, Any]:
    response = SurveyResponse.objects.filter(survey=survey, user=user).first()
    return dict(response.answers) if response else {}


def review_payload(survey: Survey) -> list[dict[str, Any]]:
    """Responses newest first, grouped by UTC date, each with its review summary."""
    responses = engine.sort_newest_first(
        survey.responses.select_related("user").all(),
        key=lambda r: r.submitted_at,
    )
    groups = engine.group_by_date(responses, key=lambda r: r.submitted_at)
    for group in groups:
        group["responses"] = [_summarise(survey, r) for r in group["responses"]]
    return groups


def _summarise(survey: Survey, response: SurveyResponse) -> dict[str, Any]:
    return {
        "id": response.pk,
        "user": response.user.username,
        "submitted_at": response.submitted_at,
        "completed": response.completed,
        "progress": response.progress,
        "completion": engine.completion_percent(response.answers, survey.schema),
        "title": engine.response_title(response.answers, survey.schema),
        "customer_name": engine.customer_name(response.answers),
        "pages": engine.organize_by_page(response.answers, survey.schema),
        "answers": response.answers,
    }
