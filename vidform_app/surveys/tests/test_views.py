from __future__ import annotations

import json
import os

import pytest
from django.contrib.auth.models import User
from django.core.files.uploadedfile import SimpleUploadedFile
from django.urls import reverse

from vidform_app.core.models import UserProfile
from vidform_app.surveys.models import Survey, SurveyResponse
from vidform_app.surveys.schema import validate_schema

SCHEMA = {
    "title": "Customer feedback",
    "pages": [
        {
            "title": "About you",
            "questions": [
                {"id": "q1", "label": "Are you a customer?", "type": "radio", "options": ["yes", "no"]},
                {
                    "id": "q2",
                    "label": "Which plan?",
                    "type": "radio",
                    "options": ["a", "b"],
                    "visibleIf": {"questionId": "q1", "value": "yes"},
                },
                {"id": "q3", "label": "Name", "type": "text", "description": "Your **full** name"},
            ],
        },
        {
            "title": "Preferences",
            "questions": [
                {"id": "q4", "label": "Colours", "type": "checkbox", "options": ["red", "green", "blue"]},
                {"id": "q5", "label": "Thanks for answering", "type": "none"},
            ],
        },
    ],
}


@pytest.fixture
def users(db):
    admin = User.objects.create_user(username="admin", password="x")
    UserProfile.objects.create(user=admin, role=UserProfile.Role.ADMIN)
    participant = User.objects.create_user(username="participant", password="x")
    other = User.objects.create_user(username="other", password="x")
    return admin, participant, other


@pytest.fixture
def survey(db, users):
    admin, _, _ = users
    return Survey.objects.create(owner=admin, title="Customer feedback", schema=json.loads(json.dumps(SCHEMA)))


def schema_errors(survey):
    return validate_schema(survey.schema)


def take_url(survey, page=None):
    url = reverse("surveys:take", kwargs={"survey_id": survey.pk})
    return url if page is None else f"{url}?page={page}"


@pytest.mark.django_db
def test_list_requires_login(client, survey):
    res = client.get(reverse("surveys:list"))
    assert res.status_code == 302
    assert "/accounts/login/" in res["Location"]


@pytest.mark.django_db
def test_participant_sees_surveys_without_edit_links(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.get(reverse("surveys:list"))
    assert res.status_code == 200
    assert [s.pk for s in res.context["surveys"]] == [survey.pk]
    assert res.context["can_edit"] is False
    assert reverse("surveys:edit", kwargs={"survey_id": survey.pk}).encode() not in res.content


@pytest.mark.django_db
def test_take_first_page_hides_conditional_question(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.get(take_url(survey))
    assert res.status_code == 200
    ids = [row["question"]["id"] for row in res.context["rows"]]
    assert ids == ["q1", "q3"]
    assert res.context["page_progress"] == 50
    assert b"<strong>full</strong>" in res.content


@pytest.mark.django_db
def test_take_out_of_range_page_is_clamped(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.get(take_url(survey, page=9))
    assert res.context["page_index"] == 1
    assert res.context["is_last"] is True
    res = client.get(take_url(survey, page="abc"))
    assert res.context["page_index"] == 0


@pytest.mark.django_db
def test_next_saves_draft_and_moves_on(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.post(take_url(survey), {"page": "0", "action": "next", "q_q1": "no", "q_q3": "Ada"})
    assert res.status_code == 302
    assert res["Location"].endswith("?page=1")
    response = SurveyResponse.objects.get(survey=survey, user=participant)
    assert response.answers == {"q1": "no", "q3": "Ada"}
    assert response.completed is False
    # q1, q3, q4 are answerable and visible -> 2 of 3 answered
    assert response.progress == 67


@pytest.mark.django_db
def test_next_stays_on_page_when_follow_up_appears(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.post(take_url(survey), {"page": "0", "action": "next", "q_q1": "yes", "q_q3": "Ada"})
    assert res["Location"].endswith("?page=0")
    assert SurveyResponse.objects.get(user=participant).answers == {"q1": "yes", "q3": "Ada"}

    res = client.get(take_url(survey, page=0))
    assert [row["question"]["id"] for row in res.context["rows"]] == ["q1", "q2", "q3"]
    assert "More questions appeared" in res.content.decode()

    # Once the follow-up has been shown, next moves on
    res = client.post(take_url(survey), {"page": "0", "action": "next", "q_q1": "yes", "q_q2": "b", "q_q3": "Ada"})
    assert res["Location"].endswith("?page=1")


@pytest.mark.django_db
def test_submit_is_held_back_when_follow_up_appears(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.post(take_url(survey), {"page": "0", "action": "submit", "q_q1": "yes"})
    assert res["Location"].endswith("?page=0")
    assert SurveyResponse.objects.get(user=participant).completed is False

    res = client.post(take_url(survey), {"page": "0", "action": "submit", "q_q1": "yes"})
    assert res["Location"] == reverse("surveys:thank_you", kwargs={"survey_id": survey.pk})
    assert SurveyResponse.objects.get(user=participant).completed is True


@pytest.mark.django_db
def test_dependent_question_appears_once_parent_matches(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    client.post(take_url(survey), {"page": "0", "action": "save", "q_q1": "yes"})
    res = client.get(take_url(survey))
    rows = res.context["rows"]
    assert [row["question"]["id"] for row in rows] == ["q1", "q2", "q3"]
    assert rows[1]["depth"] == 1


@pytest.mark.django_db
def test_changing_parent_answer_clears_hidden_dependent(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    client.post(take_url(survey), {"page": "0", "action": "save", "q_q1": "yes", "q_q2": "a"})
    assert SurveyResponse.objects.get(user=participant).answers == {"q1": "yes", "q2": "a"}
    client.post(take_url(survey), {"page": "0", "action": "save", "q_q1": "no", "q_q2": "a"})
    assert SurveyResponse.objects.get(user=participant).answers == {"q1": "no"}


@pytest.mark.django_db
def test_checkbox_answers_keep_only_declared_options(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    client.post(take_url(survey), {"page": "1", "action": "save", "q_q4": ["red", "purple", "blue"]})
    assert SurveyResponse.objects.get(user=participant).answers == {"q4": ["red", "blue"]}


@pytest.mark.django_db
def test_back_keeps_answers_from_other_pages(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    client.post(take_url(survey), {"page": "0", "action": "next", "q_q1": "no"})
    res = client.post(take_url(survey), {"page": "1", "action": "back", "q_q4": "green"})
    assert res["Location"].endswith("?page=0")
    assert SurveyResponse.objects.get(user=participant).answers == {"q1": "no", "q4": ["green"]}


@pytest.mark.django_db
def test_submit_marks_complete_and_resubmission_overwrites(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.post(take_url(survey), {"page": "1", "action": "submit", "q_q4": "red"})
    assert res.status_code == 302
    assert res["Location"] == reverse("surveys:thank_you", kwargs={"survey_id": survey.pk})
    first = SurveyResponse.objects.get(user=participant)
    assert first.completed is True

    client.post(take_url(survey), {"page": "1", "action": "submit", "q_q4": "blue"})
    assert SurveyResponse.objects.filter(survey=survey, user=participant).count() == 1
    assert SurveyResponse.objects.get(user=participant).answers == {"q4": ["blue"]}


@pytest.mark.django_db
def test_draft_after_submission_stays_completed(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    client.post(take_url(survey), {"page": "1", "action": "submit", "q_q4": "red"})
    client.post(take_url(survey), {"page": "0", "action": "save", "q_q1": "no"})
    assert SurveyResponse.objects.get(user=participant).completed is True


@pytest.mark.django_db
def test_thank_you_page_renders_for_missing_survey(client):
    res = client.get(reverse("surveys:thank_you", kwargs={"survey_id": "nope"}))
    assert res.status_code == 200
    assert b"Thank you" in res.content


@pytest.mark.django_db
def test_unknown_survey_is_404(client, users):
    _, participant, _ = users
    client.force_login(participant)
    res = client.get(take_url(Survey(pk="missing")))
    assert res.status_code == 404


# -------------------- builder --------------------


@pytest.mark.django_db
def test_non_admin_cannot_open_editor(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.get(reverse("surveys:edit", kwargs={"survey_id": survey.pk}))
    assert res.status_code == 403
    assert b"Access Denied" in res.content
    res = client.post(reverse("surveys:create"), {"title": "Nope"})
    assert res.status_code == 403
    assert Survey.objects.count() == 1


@pytest.mark.django_db
def test_superuser_counts_as_admin(client, survey):
    boss = User.objects.create_superuser(username="boss", password="x", email="b@example.com")
    client.force_login(boss)
    res = client.get(reverse("surveys:edit", kwargs={"survey_id": survey.pk}))
    assert res.status_code == 200


@pytest.mark.django_db
def test_admin_creates_survey_from_template(client, users):
    admin, _, _ = users
    client.force_login(admin)
    res = client.post(reverse("surveys:create"), {"title": "Onboarding"})
    survey = Survey.objects.get(title="Onboarding")
    assert res.status_code == 302
    assert res["Location"] == reverse("surveys:edit", kwargs={"survey_id": survey.pk})
    assert survey.pk.startswith("survey_")
    assert survey.schema["title"] == "Onboarding"
    assert survey.schema["pages"][0]["questions"][0]["id"] == "q1"
    assert survey.owner == admin


@pytest.mark.django_db
def test_editor_builder_actions(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})

    client.post(url, {"action": "add_page"})
    survey.refresh_from_db()
    assert [p["title"] for p in survey.schema["pages"]] == ["About you", "Preferences", "Page 3"]

    client.post(url, {"action": "add_question", "page": "2"})
    survey.refresh_from_db()
    assert survey.schema["pages"][2]["questions"][0]["label"] == "New Question"

    client.post(url, {"action": "move_question", "page": "0", "question": "2", "direction": "up"})
    survey.refresh_from_db()
    assert [q["id"] for q in survey.schema["pages"][0]["questions"]] == ["q1", "q3", "q2"]

    client.post(url, {"action": "delete_page", "page": "2"})
    survey.refresh_from_db()
    assert len(survey.schema["pages"]) == 2


@pytest.mark.django_db
def test_editor_update_question_sets_condition(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})
    client.post(
        url,
        {
            "action": "update_question",
            "page": "0",
            "question": "2",
            "label": "Full name",
            "description": "*Optional*",
            "type": "text",
            "options": "",
            "background_color": "green",
            "cond_qid": "q1",
            "cond_value": "yes",
        },
    )
    survey.refresh_from_db()
    question = survey.schema["pages"][0]["questions"][2]
    assert question["label"] == "Full name"
    assert question["backgroundColor"] == "green"
    assert question["visibleIf"] == {"questionId": "q1", "value": "yes"}


@pytest.mark.django_db
def test_editor_condition_buttons(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})
    client.post(url, {"action": "add_condition", "page": "0", "question": "1"})
    survey.refresh_from_db()
    rule = survey.schema["pages"][0]["questions"][1]["visibleIf"]
    assert rule["operator"] == "AND"
    assert len(rule["conditions"]) == 2

    client.post(url, {"action": "remove_condition", "page": "0", "question": "1", "condition": "1"})
    survey.refresh_from_db()
    assert survey.schema["pages"][0]["questions"][1]["visibleIf"] == {"questionId": "q1", "value": "yes"}


@pytest.mark.django_db
def test_editor_rejects_condition_on_later_question(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})
    res = client.post(
        url,
        {
            "action": "update_question",
            "page": "0",
            "question": "0",
            "label": "Are you a customer?",
            "type": "radio",
            "options": "yes\nno",
            "cond_qid": "q2",
            "cond_value": "a",
        },
    )
    assert res.status_code == 302
    survey.refresh_from_db()
    assert "visibleIf" not in survey.schema["pages"][0]["questions"][0]
    assert survey.schema["pages"][0]["questions"][0]["label"] == "Are you a customer?"
    page = client.get(url)
    assert "can only depend on earlier questions on its page" in page.content.decode()
    assert schema_errors(survey) == []


@pytest.mark.django_db
def test_editor_refuses_moves_that_break_conditions(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})
    # q2 depends on q1; putting it first would make it depend on a later question
    client.post(url, {"action": "move_question", "page": "0", "question": "1", "direction": "up"})
    survey.refresh_from_db()
    assert [q["id"] for q in survey.schema["pages"][0]["questions"]] == ["q1", "q2", "q3"]

    client.post(url, {"action": "delete_question", "page": "0", "question": "0"})
    survey.refresh_from_db()
    assert [q["id"] for q in survey.schema["pages"][0]["questions"]] == ["q1", "q2", "q3"]
    assert schema_errors(survey) == []


@pytest.mark.django_db
def test_editor_refuses_to_delete_last_page(client, users):
    admin, _, _ = users
    client.force_login(admin)
    survey = Survey.objects.create(owner=admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})
    client.post(url, {"action": "delete_page", "page": "0"})
    survey.refresh_from_db()
    assert len(survey.schema["pages"]) == 1


@pytest.mark.django_db
def test_editor_json_save_validates(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:edit", kwargs={"survey_id": survey.pk})

    res = client.post(url, {"action": "save", "schema_json": "{not json"})
    assert res.status_code == 400

    bad = json.loads(json.dumps(SCHEMA))
    bad["pages"][0]["questions"][0]["visibleIf"] = {"questionId": "q3", "value": "x"}
    res = client.post(url, {"action": "save", "schema_json": json.dumps(bad)})
    assert res.status_code == 400
    assert "Question &#x27;q1&#x27; depends on &#x27;q3&#x27; which comes after it." in res.content.decode()
    survey.refresh_from_db()
    assert "visibleIf" not in survey.schema["pages"][0]["questions"][0]

    good = json.loads(json.dumps(SCHEMA))
    good["pages"][0]["title"] = "Renamed"
    res = client.post(url, {"action": "save", "title": "Feedback 2", "schema_json": json.dumps(good)})
    assert res.status_code == 302
    survey.refresh_from_db()
    assert survey.title == "Feedback 2"
    assert survey.schema["title"] == "Feedback 2"
    assert survey.schema["pages"][0]["title"] == "Renamed"


@pytest.mark.django_db
def test_delete_survey_requires_matching_title(client, users, survey):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:delete", kwargs={"survey_id": survey.pk})
    client.post(url, {"confirm_title": "wrong"})
    assert Survey.objects.filter(pk=survey.pk).exists()
    res = client.post(url, {"confirm_title": "Customer feedback"})
    assert res.status_code == 302
    assert not Survey.objects.filter(pk=survey.pk).exists()


# -------------------- videos --------------------


def video_file(name="clip.mp4", content_type="video/mp4", size=16):
    return SimpleUploadedFile(name, b"\x00" * size, content_type=content_type)


@pytest.mark.django_db
def test_video_upload_stores_file_and_updates_question(client, users, survey, media_root):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:video_upload", kwargs={"survey_id": survey.pk, "question_id": "q3"})
    res = client.post(url, {"video": video_file()})
    assert res.status_code == 200
    video_url = res.json()["videoUrl"]
    assert video_url.startswith(f"/media/surveys/{survey.pk}/questions/q3/video_")
    assert video_url.endswith(".mp4")
    stored = media_root / video_url[len("/media/"):]
    assert stored.exists()
    survey.refresh_from_db()
    assert survey.schema["pages"][0]["questions"][2]["videoUrl"] == video_url


@pytest.mark.django_db
def test_video_replace_deletes_previous_file(client, users, survey, media_root):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:video_upload", kwargs={"survey_id": survey.pk, "question_id": "q3"})
    first = client.post(url, {"video": video_file()}).json()["videoUrl"]
    second = client.post(url, {"video": video_file(name="clip.webm", content_type="video/webm")}).json()["videoUrl"]
    assert first != second
    assert not (media_root / first[len("/media/"):]).exists()
    assert (media_root / second[len("/media/"):]).exists()


@pytest.mark.django_db
def test_video_upload_rejects_wrong_type_and_size(client, users, survey, media_root, settings):
    admin, _, _ = users
    client.force_login(admin)
    url = reverse("surveys:video_upload", kwargs={"survey_id": survey.pk, "question_id": "q3"})
    res = client.post(url, {"video": video_file(name="notes.txt", content_type="text/plain")})
    assert res.status_code == 400
    assert "video file" in res.json()["error"]

    settings.VIDEO_MAX_UPLOAD_MB = 0
    res = client.post(url, {"video": video_file()})
    assert res.status_code == 400
    assert "File size must be less than" in res.json()["error"]
    survey.refresh_from_db()
    assert survey.schema["pages"][0]["questions"][2].get("videoUrl", "") == ""


@pytest.mark.django_db
def test_video_remove_clears_reference(client, users, survey, media_root):
    admin, _, _ = users
    client.force_login(admin)
    upload = reverse("surveys:video_upload", kwargs={"survey_id": survey.pk, "question_id": "q3"})
    video_url = client.post(upload, {"video": video_file()}).json()["videoUrl"]
    remove = reverse("surveys:video_remove", kwargs={"survey_id": survey.pk, "question_id": "q3"})
    res = client.post(remove)
    assert res.json() == {"videoUrl": ""}
    assert not os.path.exists(media_root / video_url[len("/media/"):])
    survey.refresh_from_db()
    assert survey.schema["pages"][0]["questions"][2]["videoUrl"] == ""


@pytest.mark.django_db
def test_video_upload_forbidden_for_participants(client, users, survey, media_root):
    _, participant, _ = users
    client.force_login(participant)
    url = reverse("surveys:video_upload", kwargs={"survey_id": survey.pk, "question_id": "q3"})
    res = client.post(url, {"video": video_file()})
    assert res.status_code == 403


# -------------------- review --------------------


@pytest.mark.django_db
def test_responses_grouped_by_day_newest_first(client, users, survey):
    from datetime import datetime, timezone

    admin, participant, other = users
    older = SurveyResponse.objects.create(
        survey=survey, user=participant, answers={"q1": "no", "q3": "Ada"}, completed=True
    )
    newer = SurveyResponse.objects.create(survey=survey, user=other, answers={"q4": ["red"]})
    SurveyResponse.objects.filter(pk=older.pk).update(submitted_at=datetime(2025, 6, 1, 1, tzinfo=timezone.utc))
    SurveyResponse.objects.filter(pk=newer.pk).update(submitted_at=datetime(2025, 6, 2, 23, tzinfo=timezone.utc))

    client.force_login(admin)
    res = client.get(reverse("surveys:responses", kwargs={"survey_id": survey.pk}))
    assert res.status_code == 200
    groups = res.context["groups"]
    assert [g["date_key"] for g in groups] == ["2025-06-02", "2025-06-01"]
    first = groups[1]["responses"][0]
    assert first["title"] == "no"
    assert first["completion"] == 67
    assert [p["page_title"] for p in first["pages"]] == ["About you"]
    assert groups[0]["responses"][0]["title"] == "red"
    assert res.context["total"] == 2


@pytest.mark.django_db
def test_responses_forbidden_for_participants(client, users, survey):
    _, participant, _ = users
    client.force_login(participant)
    res = client.get(reverse("surveys:responses", kwargs={"survey_id": survey.pk}))
    assert res.status_code == 403
