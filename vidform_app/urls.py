from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.contrib.auth import views as auth_views
from django.urls import include, path
from django.views.generic import RedirectView

urlpatterns = [
    path("", RedirectView.as_view(pattern_name="core:home", permanent=False)),
    path("admin/", admin.site.urls),
    # Auth routes (explicit to avoid include conflicts)
    path(
        "accounts/login/",
        auth_views.LoginView.as_view(template_name="registration/login.html"),
        name="login",
    ),
    path("accounts/logout/", auth_views.LogoutView.as_view(), name="logout"),
    path("", include("vidform_app.core.urls")),
    path("surveys/", include("vidform_app.surveys.urls")),
    path("api/", include("vidform_app.api.urls")),
]

# Serve uploaded videos in development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

# Custom error handlers
handler403 = "vidform_app.core.error_handlers.custom_permission_denied_view"
handler404 = "vidform_app.core.error_handlers.custom_page_not_found_view"
handler500 = "vidform_app.core.error_handlers.custom_server_error_view"
