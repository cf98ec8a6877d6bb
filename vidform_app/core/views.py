import logging

from django.contrib import messages
from django.contrib.auth import login
from django.contrib.auth.decorators import login_required
from django.http import HttpResponse
from django.shortcuts import redirect, render

from vidform_app.surveys.models import Survey, SurveyResponse
from vidform_app.surveys.permissions import is_admin

from .forms import SignupForm
from .models import UserProfile

logger = logging.getLogger(__name__)


def home(request):
    return render(request, "core/home.html")


def healthz(request):
    """Lightweight health endpoint for load balancers and readiness probes.
    Returns 200 OK without auth or redirects.
    """
    return HttpResponse("ok", content_type="text/plain")


@login_required
def profile(request):
    user = request.user
    profile = UserProfile.get_or_create_for_user(user)
    if request.method == "POST" and request.POST.get("action") == "update_display_name":
        profile.display_name = (request.POST.get("display_name") or "").strip()
        profile.save(update_fields=["display_name", "updated_at"])
        messages.success(request, "Profile updated.")
        return redirect("core:profile")
    stats = {
        "is_admin": is_admin(user),
        "surveys_owned": Survey.objects.filter(owner=user).count(),
        "responses_submitted": SurveyResponse.objects.filter(user=user).count(),
        "responses_completed": SurveyResponse.objects.filter(
            user=user, completed=True
        ).count(),
    }
    return render(request, "core/profile.html", {"profile": profile, "stats": stats})


def signup(request):
    if request.method == "POST":
        form = SignupForm(request.POST)
        if form.is_valid():
            user = form.save()
            # With multiple AUTHENTICATION_BACKENDS configured (e.g., ModelBackend + Axes),
            # login() requires an explicit backend unless the user was authenticated via authenticate().
            login(request, user, backend="django.contrib.auth.backends.ModelBackend")
            logger.info("New account created: %s", user.username)
            return redirect("surveys:list")
    else:
        form = SignupForm()
    return render(request, "registration/signup.html", {"form": form})
