from django.contrib import admin

from .models import (
    Class,
    GradeBand,
    GradedItem,
    GradeLevel,
    GradingScheme,
    ResultRecord,
    School,
    Student,
    Subject,
    TermWeightOverride,
)


@admin.register(School)
class SchoolAdmin(admin.ModelAdmin):
    list_display = ("name", "country")
    search_fields = ("name", "country")


@admin.register(GradeLevel)
class GradeLevelAdmin(admin.ModelAdmin):
    list_display = ("level", "name")


@admin.register(Class)
class ClassAdmin(admin.ModelAdmin):
    list_display = ("name", "grade", "school", "supervisor")
    list_filter = ("school", "grade")
    search_fields = ("name", "school__name")
    filter_horizontal = ("teachers",)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ("first_name", "last_name", "matricule", "klass", "grade")
    search_fields = ("first_name", "last_name", "matricule", "klass__name", "klass__school__name")
    list_filter = ("klass", "grade")


class GradeBandInline(admin.TabularInline):
    model = GradeBand
    extra = 0


@admin.register(GradingScheme)
class GradingSchemeAdmin(admin.ModelAdmin):
    list_display = ("name", "school", "is_default", "created_at")
    list_filter = ("school", "is_default")
    inlines = [GradeBandInline]


class TermWeightInline(admin.TabularInline):
    model = TermWeightOverride
    extra = 0


@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ("name", "school", "assignment_weight", "exam_weight", "grading_scheme")
    list_filter = ("school",)
    search_fields = ("name", "school__name")
    filter_horizontal = ("teachers",)
    inlines = [TermWeightInline]


@admin.register(GradedItem)
class GradedItemAdmin(admin.ModelAdmin):
    list_display = ("title", "subject", "klass", "term", "category", "max_points")
    list_filter = ("term", "category", "subject__school")
    search_fields = ("title", "subject__name", "klass__name")


@admin.register(ResultRecord)
class ResultRecordAdmin(admin.ModelAdmin):
    list_display = ("student", "graded_item", "score", "created_at")
    list_filter = ("graded_item__term", "graded_item__category")
    search_fields = ("student__first_name", "student__last_name", "student__matricule")
