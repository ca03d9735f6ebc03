import uuid

from django.db import models
from phonenumber_field.modelfields import PhoneNumberField

from blood_requests.models import BloodType, RequestStatus, ResponseKind, ResponseStatus, Urgency

# Choices come straight from the domain enums so the two can never drift apart
BLOOD_TYPE_CHOICES = [(blood_type.value, blood_type.value) for blood_type in BloodType]
URGENCY_CHOICES = [(urgency.value, urgency.value.title()) for urgency in Urgency]
REQUEST_STATUS_CHOICES = [(status.value, status.value.title()) for status in RequestStatus]
RESPONSE_KIND_CHOICES = [(kind.value, kind.value.title()) for kind in ResponseKind]
RESPONSE_STATUS_CHOICES = [(status.value, status.value.title()) for status in ResponseStatus]


def _new_id():
    return str(uuid.uuid4())


class DonorRecord(models.Model):
    """
    A registered donor. Coordinates are optional, ranking falls back to a
    default distance when they are missing.
    """
    id = models.CharField(primary_key=True, max_length=64, default=_new_id)
    name = models.CharField(max_length=255, blank=True)

    # Using PhoneNumberField to validate Zimbabwe numbers (+263...)
    phone_number = PhoneNumberField(blank=True, null=True, region="ZW")

    blood_type = models.CharField(max_length=3, choices=BLOOD_TYPE_CHOICES)
    lat = models.FloatField(blank=True, null=True)
    lng = models.FloatField(blank=True, null=True)

    # Hard gates for matching
    is_available = models.BooleanField(default=True)
    notifications_opt_in = models.BooleanField(default=True)

    last_donation_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        indexes = [models.Index(fields=["blood_type", "is_available"])]

    def __str__(self):
        return f"{self.name or self.id} ({self.blood_type})"


class BloodRequestRecord(models.Model):
    """
    Tracks lifecycle: Pending -> Matched -> Completed, or Expired / Cancelled.
    Status only ever changes through conditional updates (see bloodbank.store).
    """
    id = models.CharField(primary_key=True, max_length=64, default=_new_id)

    blood_type = models.CharField(max_length=3, choices=BLOOD_TYPE_CHOICES)
    units_needed = models.PositiveIntegerField()
    urgency = models.CharField(max_length=10, choices=URGENCY_CHOICES, default=Urgency.NORMAL.value)
    status = models.CharField(max_length=10, choices=REQUEST_STATUS_CHOICES, default=RequestStatus.PENDING.value)

    patient_name = models.CharField(max_length=255, blank=True)
    hospital_name = models.CharField(max_length=255, blank=True)
    contact_name = models.CharField(max_length=255, blank=True)
    contact_phone = PhoneNumberField(blank=True, region="ZW")
    additional_info = models.TextField(blank=True)

    # Where the blood is needed
    lat = models.FloatField(blank=True, null=True)
    lng = models.FloatField(blank=True, null=True)

    created_at = models.DateTimeField()
    # Fixed at creation from urgency, never extended
    expires_at = models.DateTimeField()

    escalation_count = models.PositiveIntegerField(default=0)
    response_count = models.PositiveIntegerField(default=0)

    # Set only by the match arbiter
    matched_donor = models.ForeignKey(
        DonorRecord, on_delete=models.SET_NULL, null=True, blank=True, related_name="matched_requests"
    )
    matched_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        indexes = [models.Index(fields=["status", "expires_at"])]

    def __str__(self):
        return f"{self.blood_type} x{self.units_needed} ({self.status})"


class DonorResponseRecord(models.Model):
    """
    One row per (request, donor). A second answer from the same donor updates it.
    """
    id = models.CharField(primary_key=True, max_length=64, default=_new_id)
    request = models.ForeignKey(BloodRequestRecord, on_delete=models.CASCADE, related_name="responses")
    donor = models.ForeignKey(DonorRecord, on_delete=models.CASCADE, related_name="responses")

    kind = models.CharField(max_length=10, choices=RESPONSE_KIND_CHOICES)
    status = models.CharField(max_length=10, choices=RESPONSE_STATUS_CHOICES, default=ResponseStatus.PENDING.value)
    eta_minutes = models.PositiveIntegerField(blank=True, null=True)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()
    confirmed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["request", "donor"], name="one_response_per_donor"),
        ]

    def __str__(self):
        return f"{self.donor_id} -> {self.request_id}: {self.kind}"
