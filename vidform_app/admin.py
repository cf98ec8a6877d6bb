from django.conf import settings
from django.contrib.admin import AdminSite
from django.contrib.admin.apps import AdminConfig

# Apps listed first on the admin index, in this order
APP_ORDER = ("surveys", "core", "auth")


def _brand() -> str:
    return getattr(settings, "BRAND_TITLE", "Vidform")


class VidformAdminSite(AdminSite):
    """Superuser-only admin. Day-to-day survey work happens in the builder."""

    index_title = "Surveys, responses and accounts"
    site_url = "/surveys/"

    @property
    def site_header(self):
        return f"{_brand()} Admin"

    @property
    def site_title(self):
        return f"{_brand()} Admin"

    def has_permission(self, request):  # type: ignore[override]
        # Survey admins (profile role) do not get in; only active superusers
        return bool(
            request.user and request.user.is_active and request.user.is_superuser
        )

    def each_context(self, request):
        from vidform_app.surveys.models import Survey, SurveyResponse

        context = super().each_context(request)
        if self.has_permission(request):
            context["survey_totals"] = {
                "surveys": Survey.objects.count(),
                "responses": SurveyResponse.objects.count(),
                "completed": SurveyResponse.objects.filter(completed=True).count(),
            }
        return context

    def get_app_list(self, request, app_label=None):
        apps = super().get_app_list(request, app_label)
        rank = {label: i for i, label in enumerate(APP_ORDER)}
        return sorted(apps, key=lambda app: rank.get(app["app_label"], len(rank)))


class VidformAdminConfig(AdminConfig):
    default_site = "vidform_app.admin.VidformAdminSite"
