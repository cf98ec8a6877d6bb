from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)

router = DefaultRouter()
# Accept both /api/surveys/<id>/response and /api/surveys/<id>/response/
router.trailing_slash = "/?"
router.register(r'surveys', views.SurveyViewSet, basename='survey')

urlpatterns = [
    path('health', views.healthcheck, name='healthcheck'),
    path('token', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('token/refresh', TokenRefreshView.as_view(), name='token_refresh'),
    path('', include(router.urls)),
]
