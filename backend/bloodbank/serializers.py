from rest_framework import serializers
from phonenumber_field.serializerfields import PhoneNumberField

from blood_requests.models import BloodType, ResponseKind, Urgency


def _choices(enum_cls):
    return [member.value for member in enum_cls]


class RequestCreateSerializer(serializers.Serializer):
    """
    Boundary validation for POST /requests/. The core re-validates the draft,
    this layer only turns bad JSON into field level 400s.
    """
    blood_type = serializers.ChoiceField(choices=_choices(BloodType))
    units_needed = serializers.IntegerField(min_value=1)
    urgency = serializers.ChoiceField(choices=_choices(Urgency), default=Urgency.NORMAL.value)

    patient_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    hospital_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    contact_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    contact_phone = PhoneNumberField(required=False, allow_blank=True)
    additional_info = serializers.CharField(required=False, allow_blank=True)

    latitude = serializers.FloatField(required=False, min_value=-90, max_value=90)
    longitude = serializers.FloatField(required=False, min_value=-180, max_value=180)

    def to_draft_payload(self):
        data = dict(self.validated_data)
        if data.get("contact_phone"):
            data["contact_phone"] = str(data["contact_phone"])
        return data


class BloodRequestSerializer(serializers.Serializer):
    id = serializers.CharField()
    blood_type = serializers.CharField(source="blood_type.value")
    units_needed = serializers.IntegerField()
    urgency = serializers.CharField(source="urgency.value")
    status = serializers.CharField(source="status.value")

    patient_name = serializers.CharField()
    hospital_name = serializers.CharField()
    contact_name = serializers.CharField()
    contact_phone = serializers.CharField()
    additional_info = serializers.CharField()
    latitude = serializers.SerializerMethodField()
    longitude = serializers.SerializerMethodField()

    created_at = serializers.DateTimeField()
    expires_at = serializers.DateTimeField()
    escalation_count = serializers.IntegerField()
    response_count = serializers.IntegerField()
    matched_donor_id = serializers.CharField(allow_null=True)
    matched_at = serializers.DateTimeField(allow_null=True)

    def get_latitude(self, obj):
        return obj.location[0] if obj.location else None

    def get_longitude(self, obj):
        return obj.location[1] if obj.location else None


class ResponseSubmitSerializer(serializers.Serializer):
    donor_id = serializers.CharField()
    kind = serializers.ChoiceField(choices=_choices(ResponseKind))
    eta_minutes = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DonorResponseSerializer(serializers.Serializer):
    id = serializers.CharField()
    donor_id = serializers.CharField()
    request_id = serializers.CharField()
    kind = serializers.CharField(source="kind.value")
    status = serializers.CharField(source="status.value")
    eta_minutes = serializers.IntegerField(allow_null=True)
    notes = serializers.CharField()
    created_at = serializers.DateTimeField(allow_null=True)
    updated_at = serializers.DateTimeField(allow_null=True)
    confirmed_at = serializers.DateTimeField(allow_null=True)


class CandidateSerializer(serializers.Serializer):
    donor_id = serializers.CharField()
    donor_name = serializers.CharField(source="donor.name")
    blood_type = serializers.CharField(source="donor.blood_type.value")
    distance_km = serializers.FloatField()
    eta_minutes = serializers.IntegerField()
    score = serializers.FloatField()
    exact_match = serializers.BooleanField()


class NotificationOutcomeSerializer(serializers.Serializer):
    donor_id = serializers.CharField()
    status = serializers.CharField(source="status.value")
    attempts = serializers.IntegerField()
    reason = serializers.SerializerMethodField()
    retry_after_ms = serializers.IntegerField(allow_null=True)
    error = serializers.CharField(allow_null=True)

    def get_reason(self, obj):
        return obj.reason.value if obj.reason else None


class DispatchReportSerializer(serializers.Serializer):
    request_id = serializers.CharField()
    summary = serializers.SerializerMethodField()
    outcomes = NotificationOutcomeSerializer(many=True)

    def get_summary(self, obj):
        return obj.summary()


class MatchRequestSerializer(serializers.Serializer):
    donor_id = serializers.CharField()


class MatchResultSerializer(serializers.Serializer):
    bound = serializers.BooleanField()
    reason = serializers.CharField(source="reason.value")
    request = BloodRequestSerializer()


class SweepReportSerializer(serializers.Serializer):
    expired = serializers.ListField(child=serializers.CharField())
    escalated = serializers.ListField(child=serializers.CharField())
