"""Custom error handler views for Django error pages."""

from django.http import HttpRequest, HttpResponse, HttpResponseNotFound, HttpResponseServerError
from django.shortcuts import render


def custom_permission_denied_view(request: HttpRequest, exception=None) -> HttpResponse:
    """403 page. The message carried by PermissionDenied is shown to the user."""
    message = str(exception) if exception else ""
    return render(request, "403.html", {"message": message}, status=403)


def custom_page_not_found_view(request: HttpRequest, exception=None) -> HttpResponse:
    return HttpResponseNotFound(render(request, "404.html").content)


def custom_server_error_view(request: HttpRequest) -> HttpResponse:
    return HttpResponseServerError(render(request, "500.html").content)
