from django.contrib import admin

from .models import BloodRequestRecord, DonorRecord, DonorResponseRecord


@admin.register(BloodRequestRecord)
class BloodRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "blood_type", "units_needed", "urgency", "status", "expires_at", "matched_donor")
    list_filter = ("status", "urgency", "blood_type")


@admin.register(DonorRecord)
class DonorAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "blood_type", "is_available", "notifications_opt_in", "last_donation_at")
    list_filter = ("blood_type", "is_available")


admin.site.register(DonorResponseRecord)
