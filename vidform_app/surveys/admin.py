from django.contrib import admin
from django.db.models import Count

from .models import Survey, SurveyResponse


class SurveyResponseInline(admin.TabularInline):
    model = SurveyResponse
    extra = 0
    can_delete = False
    fields = ("user", "progress", "completed", "submitted_at")
    readonly_fields = fields


@admin.register(Survey)
class SurveyAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "owner", "page_count", "question_count", "response_count", "updated_at")
    search_fields = ("id", "title")
    readonly_fields = ("id", "created_at", "updated_at")
    inlines = [SurveyResponseInline]

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(_responses=Count("responses"))

    @admin.display(description="Responses", ordering="_responses")
    def response_count(self, obj):
        return obj._responses


@admin.register(SurveyResponse)
class SurveyResponseAdmin(admin.ModelAdmin):
    list_display = ("survey", "user", "progress", "completed", "submitted_at")
    list_filter = ("completed",)
    search_fields = ("survey__id", "user__username")
