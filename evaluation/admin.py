from django.contrib import admin

from .models import ClassHistoryEntry, TermApproval


@admin.register(TermApproval)
class TermApprovalAdmin(admin.ModelAdmin):
    list_display = ("klass", "term", "is_approved", "approved_by", "approved_at")
    list_filter = ("term", "is_approved", "klass__school")
    search_fields = ("klass__name",)


@admin.register(ClassHistoryEntry)
class ClassHistoryEntryAdmin(admin.ModelAdmin):
    list_display = ("student", "klass", "grade", "academic_year", "is_active", "start_date", "end_date")
    list_filter = ("is_active", "academic_year", "grade")
    search_fields = ("student__first_name", "student__last_name", "student__matricule")
    # placement changes go through promotion and ledger repair
    readonly_fields = ("student", "klass", "is_active", "promoted_by", "promoted_at")

    def has_delete_permission(self, request, obj=None):
        return False
