"""
Django Admin configuration for DRIVERS app.
"""

from django.contrib import admin, messages

from .models import ApplicationStatus, DriverApplication, DriverDocument, DriverProfile
from .services import DriverApplicationService, DriverDocumentService


@admin.register(DriverApplication)
class DriverApplicationAdmin(admin.ModelAdmin):
    """Admin review queue for driver applications."""

    list_display = ('full_name', 'email', 'city', 'state', 'vehicle_type', 'status', 'created_at')
    list_filter = ('status', 'vehicle_type', 'state', 'payout_method', 'has_criminal_record')
    search_fields = ('first_name', 'last_name', 'email', 'phone', 'license_number', 'license_plate')
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'
    raw_id_fields = ('applicant',)
    readonly_fields = ('status', 'reviewed_by', 'reviewed_at', 'created_at', 'updated_at')

    fieldsets = (
        ('Applicant', {
            'fields': (
                'applicant', 'first_name', 'last_name', 'email', 'phone', 'date_of_birth',
                'address', 'city', 'state', 'zip_code'
            )
        }),
        ('License', {
            'fields': ('license_number', 'license_state', 'license_expiry', 'has_commercial_license')
        }),
        ('Vehicle', {
            'fields': (
                'vehicle_type', 'vehicle_make', 'vehicle_model', 'vehicle_year',
                'license_plate', 'vehicle_color'
            )
        }),
        ('Insurance', {
            'fields': (
                'insurance_company', 'insurance_policy_number', 'insurance_expiry',
                'has_commercial_insurance'
            )
        }),
        ('Availability & payout', {
            'fields': (
                'years_experience', 'preferred_areas', 'availability', 'max_distance_miles',
                'payout_method', 'cash_app_handle', 'venmo_handle'
            )
        }),
        ('Background', {
            'fields': ('has_criminal_record', 'criminal_record_details'),
            'classes': ('collapse',)
        }),
        ('Emergency contact', {
            'fields': (
                'emergency_contact_name', 'emergency_contact_phone', 'emergency_contact_relationship'
            ),
            'classes': ('collapse',)
        }),
        ('Review', {
            'fields': ('status', 'admin_notes', 'reviewed_by', 'reviewed_at', 'created_at', 'updated_at')
        }),
    )

    actions = ['approve_selected', 'reject_selected']

    def _decide(self, request, queryset, new_status):
        done = 0
        for application in queryset:
            try:
                DriverApplicationService.update_status(
                    application, new_status, admin=request.user,
                    notes=application.admin_notes or f"{new_status.title()} from admin"
                )
                done += 1
            except (ValueError, PermissionError) as e:
                self.message_user(request, f"#{application.pk}: {e}", level=messages.WARNING)
        self.message_user(request, f"{done} application(s) {new_status}.")

    @admin.action(description="Approve selected applications")
    def approve_selected(self, request, queryset):
        self._decide(request, queryset, ApplicationStatus.APPROVED)

    @admin.action(description="Reject selected applications")
    def reject_selected(self, request, queryset):
        self._decide(request, queryset, ApplicationStatus.REJECTED)


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    list_display = (
        'user', 'vehicle_description', 'is_online', 'is_available',
        'total_deliveries', 'total_earnings', 'last_active_at'
    )
    list_filter = ('is_online', 'is_available', 'vehicle_type', 'license_verified', 'insurance_verified')
    search_fields = ('user__email', 'user__full_name', 'license_plate')
    raw_id_fields = ('user', 'application')
    readonly_fields = ('last_location_at', 'last_active_at', 'went_online_at', 'created_at', 'updated_at')


@admin.register(DriverDocument)
class DriverDocumentAdmin(admin.ModelAdmin):
    list_display = ('driver', 'document_type', 'is_verified', 'verified_by', 'uploaded_at')
    list_filter = ('document_type', 'is_verified')
    search_fields = ('driver__email',)
    raw_id_fields = ('driver',)
    readonly_fields = ('verified_by', 'verified_at', 'uploaded_at')

    actions = ['verify_selected']

    @admin.action(description="Mark selected documents verified")
    def verify_selected(self, request, queryset):
        for document in queryset.filter(is_verified=False):
            DriverDocumentService.verify(document, request.user)
        self.message_user(request, "Documents verified.")
