import os

from django.conf import settings
from django.contrib.auth.models import AnonymousUser

from vidform_app.surveys.permissions import is_admin


def branding(request):
    """Inject platform branding and the current user's role into all templates."""
    user = getattr(request, "user", AnonymousUser())
    brand = {
        "title": getattr(settings, "BRAND_TITLE", "Vidform"),
        # Only set when explicitly configured
        "icon_url": getattr(settings, "BRAND_ICON_URL", None),
    }
    build = {
        "version": os.environ.get("APP_VERSION") or getattr(settings, "APP_VERSION", None) or "dev",
        "commit": os.environ.get("GIT_COMMIT") or os.environ.get("GIT_SHA"),
    }
    return {"brand": brand, "is_survey_admin": is_admin(user), "build": build}
