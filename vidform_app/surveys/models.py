from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db import models
from django.utils import timezone

from . import engine
from .schema import default_survey_schema, new_survey_id

User = get_user_model()


class Survey(models.Model):
    # String ids (survey_<ms>) are part of stored video paths, so keep them stable
    id = models.CharField(
        primary_key=True, max_length=64, default=new_survey_id, editable=False
    )
    owner = models.ForeignKey(
        User,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="surveys",
    )
    title = models.CharField(max_length=255, default="Untitled Survey")
    # {"title", "pages": [{"title", "questions": [...]}]}
    schema = models.JSONField(default=default_survey_schema)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at"]

    def __str__(self) -> str:  # pragma: no cover
        return self.title

    def save(self, *args, **kwargs):
        # The schema carries its own title; keep both in step
        if isinstance(self.schema, dict):
            self.schema["title"] = self.title
        super().save(*args, **kwargs)

    @property
    def pages(self) -> list[dict]:
        return engine.iter_pages(self.schema)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def question_count(self) -> int:
        return sum(1 for _ in engine.iter_questions(self.schema))


class SurveyResponse(models.Model):
    survey = models.ForeignKey(
        Survey, on_delete=models.CASCADE, related_name="responses"
    )
    user = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name="survey_responses"
    )
    answers = models.JSONField(default=dict, blank=True)
    # Completion percentage at the time of the last save
    progress = models.PositiveSmallIntegerField(default=0)
    completed = models.BooleanField(default=False)
    submitted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-submitted_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["survey", "user"],
                name="one_response_per_user_per_survey",
            )
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.user} -> {self.survey_id}"

    @property
    def timestamp(self):
        return self.submitted_at
