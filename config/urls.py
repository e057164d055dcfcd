from django.contrib import admin
from django.urls import path

from evaluation.api import (
    ApprovalListView,
    AssignSchemeView,
    ClassHistoryView,
    ClassTermResultsView,
    GradingSchemeDetailView,
    GradingSchemeView,
    MetricsView,
    PromoteStudentsView,
    ResetMetricsView,
    SubjectWeightsView,
    TermReportView,
    TermWeightsView,
    ToggleApprovalView,
)


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/students/<int:student_id>/report/", TermReportView.as_view(), name="term-report"),
    path("api/students/<int:student_id>/class-history/", ClassHistoryView.as_view(), name="class-history"),
    path("api/students/promote/", PromoteStudentsView.as_view(), name="promote-students"),
    path(
        "api/classes/<int:class_id>/subjects/<int:subject_id>/results/",
        ClassTermResultsView.as_view(),
        name="class-term-results",
    ),
    path("api/classes/<int:class_id>/approval/", ToggleApprovalView.as_view(), name="toggle-approval"),
    path("api/schools/<int:school_id>/approvals/", ApprovalListView.as_view(), name="list-approvals"),
    path("api/subjects/<int:subject_id>/weights/", SubjectWeightsView.as_view(), name="subject-weights"),
    path("api/subjects/<int:subject_id>/term-weights/", TermWeightsView.as_view(), name="term-weights"),
    path("api/subjects/<int:subject_id>/grading-scheme/", AssignSchemeView.as_view(), name="assign-scheme"),
    path("api/grading-schemes/", GradingSchemeView.as_view(), name="grading-schemes"),
    path("api/grading-schemes/<int:scheme_id>/", GradingSchemeDetailView.as_view(), name="grading-scheme-detail"),
    path("api/metrics/", MetricsView.as_view(), name="metrics"),
    path("api/metrics/reset/", ResetMetricsView.as_view(), name="reset-metrics"),
]
