from django.urls import path

from . import views

app_name = "surveys"

urlpatterns = [
    path("", views.survey_list, name="list"),
    path("create/", views.survey_create, name="create"),
    path("<str:survey_id>/take/", views.survey_take, name="take"),
    path("<str:survey_id>/thank-you/", views.survey_thank_you, name="thank_you"),
    path("<str:survey_id>/edit/", views.survey_edit, name="edit"),
    path("<str:survey_id>/delete/", views.survey_delete, name="delete"),
    path("<str:survey_id>/responses/", views.survey_responses, name="responses"),
    path(
        "<str:survey_id>/questions/<str:question_id>/video",
        views.question_video_upload,
        name="video_upload",
    ),
    path(
        "<str:survey_id>/questions/<str:question_id>/video/remove",
        views.question_video_remove,
        name="video_remove",
    ),
]
