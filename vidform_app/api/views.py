import logging

from rest_framework import permissions, serializers, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.response import Response

from vidform_app.surveys import engine
from vidform_app.surveys.models import Survey, SurveyResponse
from vidform_app.surveys.permissions import can_edit_survey, can_review_responses
from vidform_app.surveys.schema import SchemaValidationError, clean_schema
from vidform_app.surveys.services import review_payload, save_response

logger = logging.getLogger(__name__)


class SurveySerializer(serializers.ModelSerializer):
    owner = serializers.SerializerMethodField()
    title = serializers.CharField(max_length=255, required=False)

    class Meta:
        model = Survey
        fields = ["id", "title", "schema", "owner", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def get_owner(self, obj):
        return obj.owner.username if obj.owner_id else None

    def validate_schema(self, value):
        try:
            return clean_schema(value)
        except SchemaValidationError as exc:
            raise serializers.ValidationError(exc.messages)

    def validate(self, attrs):
        schema = attrs.get("schema")
        title = (attrs.get("title") or "").strip()
        if schema is not None:
            if title:
                schema["title"] = title
            else:
                attrs["title"] = schema["title"]
        return attrs


class SurveyResponseSerializer(serializers.ModelSerializer):
    survey = serializers.CharField(source="survey_id", read_only=True)
    user = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = SurveyResponse
        fields = ["id", "survey", "user", "answers", "progress", "completed", "submitted_at"]
        read_only_fields = fields


class ResponseWriteSerializer(serializers.Serializer):
    answers = serializers.DictField(child=serializers.JSONField(), required=False, default=dict)
    completed = serializers.BooleanField(required=False, default=False)


class EvaluateSerializer(serializers.Serializer):
    answers = serializers.DictField(child=serializers.JSONField(), required=False, default=dict)
    page = serializers.IntegerField(required=False, default=0)


class IsSurveyAdminOrReadOnly(permissions.BasePermission):
    """Any signed-in user may read surveys; only admins may change them."""

    def has_permission(self, request, view):
        if not (request.user and request.user.is_authenticated):
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return can_edit_survey(request.user)


def coerce_answers(survey: Survey, raw: dict) -> dict:
    """Keep answers for known questions only, shaped by each question's type."""
    by_id = {q.get("id"): q for _, _, q in engine.iter_questions(survey.schema) if q.get("id")}
    answers = {}
    for qid, value in (raw or {}).items():
        question = by_id.get(qid)
        if question is None:
            continue
        coerced = engine.coerce_answer(question, value)
        if coerced is not None:
            answers[qid] = coerced
    return answers


class SurveyViewSet(viewsets.ModelViewSet):
    serializer_class = SurveySerializer
    permission_classes = [IsSurveyAdminOrReadOnly]
    queryset = Survey.objects.select_related("owner").all()

    def perform_create(self, serializer):
        survey = serializer.save(owner=self.request.user)
        logger.info("Survey %s created via API by %s", survey.pk, self.request.user.username)

    def perform_update(self, serializer):
        survey = serializer.save()
        logger.info("Survey %s updated via API by %s", survey.pk, self.request.user.username)

    @action(
        detail=True,
        methods=["get", "put"],
        url_path="response",
        permission_classes=[permissions.IsAuthenticated],
    )
    def my_response(self, request, pk=None):
        survey = self.get_object()
        if request.method == "PUT":
            ser = ResponseWriteSerializer(data=request.data)
            ser.is_valid(raise_exception=True)
            answers = coerce_answers(survey, ser.validated_data["answers"])
            response = save_response(
                survey, request.user, answers, completed=ser.validated_data["completed"]
            )
            return Response(SurveyResponseSerializer(response).data)
        response = SurveyResponse.objects.filter(survey=survey, user=request.user).first()
        if response is None:
            raise NotFound("You have not answered this survey yet.")
        return Response(SurveyResponseSerializer(response).data)

    @action(
        detail=True,
        methods=["get"],
        permission_classes=[permissions.IsAuthenticated],
    )
    def responses(self, request, pk=None):
        survey = self.get_object()
        if not can_review_responses(request.user, survey):
            raise PermissionDenied("Only admins can review responses.")
        groups = review_payload(survey)
        return Response(
            {"survey": survey.pk, "groups": groups, "total": sum(len(g["responses"]) for g in groups)}
        )

    @action(
        detail=True,
        methods=["post"],
        permission_classes=[permissions.IsAuthenticated],
    )
    def evaluate(self, request, pk=None):
        """Which questions show on a page for the given answers, plus progress figures."""
        survey = self.get_object()
        ser = EvaluateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        answers = ser.validated_data["answers"]
        pages = survey.pages
        page_index = engine.clamp_page_index(ser.validated_data["page"], len(pages))
        page = pages[page_index] if pages else {}
        visible = [
            {"id": q.get("id"), "depth": h.depth, "parents": list(h.parents)}
            for q, h in engine.visible_questions(page, answers)
        ]
        return Response(
            {
                "page": page_index,
                "total_pages": len(pages),
                "page_progress": engine.page_progress(page_index, len(pages)),
                "completion": engine.completion_percent(answers, survey.schema),
                "visible": visible,
            },
            status=status.HTTP_200_OK,
        )


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def healthcheck(request):
    return Response({"status": "ok"})
