from rest_framework import serializers, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from evaluation.exceptions import AuthorizationError, NotFoundError, ValidationError
from evaluation.services import access
from evaluation.services.aggregator import class_subject_results
from evaluation.services.approval import list_approvals, toggle_approval
from evaluation.services.class_history import get_class_history
from evaluation.services.grade_mapper import map_grade
from evaluation.services.grading_scale import (
    assign_grading_scheme,
    create_grading_scheme,
    delete_grading_scheme,
    list_grading_schemes,
    resolve_scale,
    update_grading_scheme,
)
from evaluation.services.metrics import get_metrics, reset_metrics
from evaluation.services.promotion import promote_students
from evaluation.services.reports import get_term_report
from evaluation.services.weights import (
    delete_term_weight,
    list_term_weights,
    resolve_weights,
    set_subject_weights,
    set_term_weight,
)
from schools.models import TERMS, Class, Subject


class TermQuerySerializer(serializers.Serializer):
    term = serializers.ChoiceField(choices=TERMS)


class ReportQuerySerializer(TermQuerySerializer):
    class_id = serializers.IntegerField(required=False)


class WeightPairSerializer(serializers.Serializer):
    assignment_weight = serializers.FloatField()
    exam_weight = serializers.FloatField()


class TermWeightSerializer(WeightPairSerializer):
    term = serializers.ChoiceField(choices=TERMS)


class BandSerializer(serializers.Serializer):
    label = serializers.CharField(max_length=16)
    min_percentage = serializers.FloatField()
    max_percentage = serializers.FloatField()
    description = serializers.CharField(required=False, allow_blank=True, default="")
    order = serializers.IntegerField(required=False, min_value=1)


class GradingSchemeSerializer(serializers.Serializer):
    school_id = serializers.IntegerField()
    name = serializers.CharField(max_length=128)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    is_default = serializers.BooleanField(required=False, default=False)
    bands = BandSerializer(many=True)


class SchoolQuerySerializer(serializers.Serializer):
    school_id = serializers.IntegerField()


class GradingSchemeUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=128, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    is_default = serializers.BooleanField(required=False)
    bands = BandSerializer(many=True, required=False)


class AssignSchemeSerializer(serializers.Serializer):
    scheme_id = serializers.IntegerField(allow_null=True)


class ApprovalSerializer(serializers.Serializer):
    term = serializers.ChoiceField(choices=TERMS)
    is_approved = serializers.BooleanField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PromotionSerializer(serializers.Serializer):
    student_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    from_class_id = serializers.IntegerField()
    to_class_id = serializers.IntegerField()
    academic_year = serializers.CharField(max_length=9)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


def _validated(serializer_class, data) -> dict:
    """Run a serializer and report its first error in the domain error format."""
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        field_name, errors = next(iter(serializer.errors.items()))
        raise ValidationError(f"{field_name}: {errors[0] if isinstance(errors, list) else errors}")
    return serializer.validated_data


def _subject(subject_id: int) -> Subject:
    subject = Subject.objects.filter(pk=subject_id).first()
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found.", subject_id=subject_id)
    return subject


def _klass(class_id: int) -> Class:
    klass = Class.objects.filter(pk=class_id).first()
    if klass is None:
        raise NotFoundError(f"Class {class_id} not found.", class_id=class_id)
    return klass


def _override_dict(override) -> dict:
    return {
        "subject_id": override.subject_id,
        "term": override.term,
        "assignment_weight": override.assignment_weight,
        "exam_weight": override.exam_weight,
        "updated_at": override.updated_at,
    }


def _scheme_dict(scheme) -> dict:
    return {
        "id": scheme.id,
        "school_id": scheme.school_id,
        "name": scheme.name,
        "description": scheme.description,
        "is_default": scheme.is_default,
        "bands": [
            {
                "label": b.label,
                "min_percentage": b.min_percentage,
                "max_percentage": b.max_percentage,
                "description": b.description,
                "order": b.order,
            }
            for b in scheme.bands.all()
        ],
    }


class TermReportView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, student_id):
        caller = access.caller_from_user(request.user)
        params = _validated(ReportQuerySerializer, request.query_params)
        class_id = params.get("class_id")
        if class_id is None:
            history = get_class_history(student_id, caller=caller)
            class_id = next(e["class_id"] for e in history["history"] if e["is_active"])
        return Response(get_term_report(caller, student_id, class_id, params["term"]))


class ClassTermResultsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, class_id, subject_id):
        caller = access.caller_from_user(request.user)
        access.require_class(caller, _klass(class_id))
        term = _validated(TermQuerySerializer, request.query_params)["term"]
        data = class_subject_results(class_id, subject_id, term)
        bands = resolve_scale(subject_id).bands
        weights = data["weights"]
        results = []
        for row in data["results"]:
            student, summary = row["student"], row["summary"]
            results.append(
                {
                    "student_id": student.id,
                    "name": f"{student.first_name} {student.last_name}",
                    "matricule": student.matricule,
                    "assignment_average": summary.assignment_average,
                    "exam_average": summary.exam_average,
                    "final_percentage": round(summary.final_percentage, 2),
                    "grade": map_grade(summary.final_percentage, summary.has_any_grades, bands),
                    "counts": summary.counts(),
                    "has_any_grades": summary.has_any_grades,
                    "is_partial_grading": summary.is_partial,
                    "breakdown": list(summary.breakdown),
                }
            )
        return Response(
            {
                "class_id": class_id,
                "subject_id": subject_id,
                "term": term,
                "weights": {
                    "assignment_weight": weights.assignment_weight,
                    "exam_weight": weights.exam_weight,
                    "source": weights.source,
                },
                "is_using_term_specific_weights": weights.is_term_specific,
                "total_assignments": data["total_assignments"],
                "total_exams": data["total_exams"],
                "results": results,
            }
        )


class SubjectWeightsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, subject_id):
        subject = _subject(subject_id)
        return Response(
            {
                "subject_id": subject.id,
                "assignment_weight": subject.assignment_weight,
                "exam_weight": subject.exam_weight,
            }
        )

    def put(self, request, subject_id):
        caller = access.caller_from_user(request.user)
        access.require_subject(caller, _subject(subject_id))
        data = _validated(WeightPairSerializer, request.data)
        subject = set_subject_weights(subject_id, data["assignment_weight"], data["exam_weight"])
        return Response(
            {
                "subject_id": subject.id,
                "assignment_weight": subject.assignment_weight,
                "exam_weight": subject.exam_weight,
            }
        )


class TermWeightsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, subject_id):
        term = request.query_params.get("term")
        if term:
            weights = resolve_weights(subject_id, term)
            return Response(
                {
                    "subject_id": subject_id,
                    "term": term,
                    "assignment_weight": weights.assignment_weight,
                    "exam_weight": weights.exam_weight,
                    "source": weights.source,
                    "is_term_specific": weights.is_term_specific,
                }
            )
        return Response({"subject_id": subject_id, "overrides": [_override_dict(o) for o in list_term_weights(subject_id)]})

    def post(self, request, subject_id):
        caller = access.caller_from_user(request.user)
        access.require_subject(caller, _subject(subject_id))
        data = _validated(TermWeightSerializer, request.data)
        override = set_term_weight(subject_id, data["term"], data["assignment_weight"], data["exam_weight"])
        return Response(_override_dict(override), status=status.HTTP_200_OK)

    def delete(self, request, subject_id):
        caller = access.caller_from_user(request.user)
        access.require_subject(caller, _subject(subject_id))
        term = _validated(TermQuerySerializer, request.query_params)["term"]
        if not delete_term_weight(subject_id, term):
            raise NotFoundError(f"No term weight for subject {subject_id} and term {term}.")
        return Response(status=status.HTTP_204_NO_CONTENT)


class GradingSchemeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        caller = access.caller_from_user(request.user)
        if not caller.is_staff_scoped:
            raise AuthorizationError("Only staff can list grading schemes.")
        school_id = _validated(SchoolQuerySerializer, request.query_params)["school_id"]
        return Response({"schemes": [_scheme_dict(s) for s in list_grading_schemes(school_id)]})

    def post(self, request):
        access.require_admin(access.caller_from_user(request.user))
        data = _validated(GradingSchemeSerializer, request.data)
        scheme = create_grading_scheme(
            data["school_id"],
            data["name"],
            data["bands"],
            is_default=data["is_default"],
            description=data["description"],
        )
        return Response(_scheme_dict(scheme), status=status.HTTP_201_CREATED)


class GradingSchemeDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def put(self, request, scheme_id):
        access.require_admin(access.caller_from_user(request.user))
        data = _validated(GradingSchemeUpdateSerializer, request.data)
        scheme = update_grading_scheme(
            scheme_id,
            name=data.get("name"),
            bands=data.get("bands"),
            is_default=data.get("is_default"),
            description=data.get("description"),
        )
        return Response(_scheme_dict(scheme))

    def delete(self, request, scheme_id):
        access.require_admin(access.caller_from_user(request.user))
        delete_grading_scheme(scheme_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class AssignSchemeView(APIView):
    permission_classes = [IsAuthenticated]

    def put(self, request, subject_id):
        caller = access.caller_from_user(request.user)
        access.require_subject(caller, _subject(subject_id))
        data = _validated(AssignSchemeSerializer, request.data)
        subject = assign_grading_scheme(subject_id, data["scheme_id"])
        return Response({"subject_id": subject.id, "grading_scheme_id": subject.grading_scheme_id})


class ApprovalListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, school_id):
        caller = access.caller_from_user(request.user)
        if not caller.is_staff_scoped:
            raise AuthorizationError("Only staff can list approvals.")
        term = _validated(TermQuerySerializer, request.query_params)["term"]
        return Response({"school_id": school_id, "term": term, "approvals": list_approvals(school_id, term)})


class ToggleApprovalView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, class_id):
        caller = access.caller_from_user(request.user)
        access.require_admin(caller)
        data = _validated(ApprovalSerializer, request.data)
        state = toggle_approval(
            class_id, data["term"], data["is_approved"], notes=data["notes"], acting_user_id=caller.user_id
        )
        return Response(state.as_dict())


class PromoteStudentsView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        caller = access.caller_from_user(request.user)
        data = _validated(PromotionSerializer, request.data)
        result = promote_students(
            caller,
            data["student_ids"],
            data["from_class_id"],
            data["to_class_id"],
            data["academic_year"],
            notes=data["notes"],
        )
        return Response(result.as_dict(), status=status.HTTP_200_OK)


class ClassHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, student_id):
        caller = access.caller_from_user(request.user)
        return Response(get_class_history(student_id, caller=caller))


class MetricsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        access.require_admin(access.caller_from_user(request.user))
        metrics = get_metrics()
        if metrics is None:
            return Response({"detail": "Metrics backend unavailable"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response(metrics)


class ResetMetricsView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        access.require_admin(access.caller_from_user(request.user))
        if not reset_metrics():
            return Response({"detail": "Metrics backend unavailable"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response({"detail": "Metrics reset"}, status=status.HTTP_200_OK)
