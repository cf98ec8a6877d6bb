from __future__ import annotations

from django.core.exceptions import PermissionDenied

from vidform_app.core.models import UserProfile

from .models import Survey


def is_admin(user) -> bool:
    """Admins build surveys and review responses. Superusers always qualify."""
    if not getattr(user, "is_authenticated", False):
        return False
    if user.is_superuser:
        return True
    return UserProfile.get_or_create_for_user(user).is_admin


def can_view_survey(user, survey: Survey) -> bool:
    # Any signed-in account may open and fill in a survey
    return bool(getattr(user, "is_authenticated", False))


def can_edit_survey(user, survey: Survey | None = None) -> bool:
    return is_admin(user)


def can_review_responses(user, survey: Survey | None = None) -> bool:
    return is_admin(user)


def require_can_view(user, survey: Survey) -> None:
    if not can_view_survey(user, survey):
        raise PermissionDenied("You do not have permission to view this survey.")


def require_can_edit(user, survey: Survey | None = None) -> None:
    if not can_edit_survey(user, survey):
        raise PermissionDenied("You do not have permission to edit surveys.")


def require_can_review(user, survey: Survey | None = None) -> None:
    if not can_review_responses(user, survey):
        raise PermissionDenied("You do not have permission to review responses.")
